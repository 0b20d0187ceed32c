from typing import Dict, Any, Optional, Callable, Awaitable, Union
from dataclasses import dataclass, field
from enum import Enum
import asyncio
import inspect
import itertools
import structlog

logger = structlog.get_logger(__name__)

TimeoutCallback = Callable[[], Union[None, Awaitable[None]]]


class TimeoutPreset(int, Enum):
    """Default idle timeouts in milliseconds"""
    SETUP = 5 * 60 * 1000
    QUERY = 2 * 60 * 1000
    CONFIRMATION = 60 * 1000
    SHORT = 30 * 1000


@dataclass
class _TimerEntry:
    timer_id: int
    timeout_ms: int
    task: "asyncio.Task[None]"
    started_at: float = field(default=0.0)


class IdleTimerManager:
    """One cancellable countdown per key

    Expiry removes the entry before the callback runs, so a callback can
    start a new timer for the same key. Callback exceptions are logged and
    never reach the event loop.
    """

    def __init__(self, presets: Optional[Dict[str, int]] = None):
        self._timers: Dict[str, _TimerEntry] = {}
        self._ids = itertools.count(1)
        self.presets: Dict[str, int] = {preset.name: preset.value for preset in TimeoutPreset}
        if presets:
            self.presets.update(presets)

    def preset(self, name: str) -> int:
        """Resolve a named timeout preset to milliseconds"""
        return self.presets[name.upper()]

    def start(self, key: str, timeout_ms: int, on_timeout: TimeoutCallback) -> None:
        """Start a timer for key, superseding any live one"""

        self.stop(key)

        loop = asyncio.get_running_loop()
        timer_id = next(self._ids)
        task = loop.create_task(
            self._expire(key, timer_id, timeout_ms, on_timeout),
            name=f"idle-timer:{key}",
        )
        self._timers[key] = _TimerEntry(
            timer_id=timer_id,
            timeout_ms=timeout_ms,
            task=task,
            started_at=loop.time(),
        )
        logger.debug("Idle timer started", key=key, timeout_ms=timeout_ms)

    def reset(self, key: str, timeout_ms: int, on_timeout: TimeoutCallback) -> None:
        self.stop(key)
        self.start(key, timeout_ms, on_timeout)

    def stop(self, key: str) -> bool:
        """Cancel the timer for key, returning whether one was live"""

        entry = self._timers.pop(key, None)
        if entry is None:
            return False
        entry.task.cancel()
        logger.debug("Idle timer stopped", key=key)
        return True

    def is_active(self, key: str) -> bool:
        return key in self._timers

    def active_count(self) -> int:
        return len(self._timers)

    def clear_all(self) -> int:
        """Cancel every live timer"""

        keys = list(self._timers.keys())
        for key in keys:
            self.stop(key)
        return len(keys)

    def remaining_ms(self, key: str) -> Optional[float]:
        entry = self._timers.get(key)
        if entry is None:
            return None
        elapsed = asyncio.get_running_loop().time() - entry.started_at
        return max(0.0, entry.timeout_ms - elapsed * 1000)

    async def _expire(self, key: str, timer_id: int, timeout_ms: int, on_timeout: TimeoutCallback) -> None:
        await asyncio.sleep(timeout_ms / 1000)

        current = self._timers.get(key)
        if current is not None and current.timer_id == timer_id:
            del self._timers[key]

        logger.info("Idle timer expired", key=key, timeout_ms=timeout_ms)

        try:
            result = on_timeout()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Idle timeout callback failed", key=key)

    def stats(self) -> Dict[str, Any]:
        return {
            "active": len(self._timers),
            "keys": list(self._timers.keys()),
        }
