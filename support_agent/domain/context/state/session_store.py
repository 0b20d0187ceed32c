from typing import Dict, Any, Optional, Callable
from collections import OrderedDict
from datetime import datetime, timezone
import structlog

logger = structlog.get_logger(__name__)

CREATED_AT = "created_at"
LAST_UPDATED = "last_updated"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Per-user ephemeral key/value bags with merge-on-write semantics

    Operations are synchronous so a bag is never observed half-written across
    an await. The registry is bounded: writing beyond ``max_entries`` evicts
    the least recently written session, and ``sweep_expired`` drops sessions
    idle for longer than ``ttl_seconds``.
    """

    def __init__(
        self,
        max_entries: int = 10_000,
        ttl_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.sessions: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock or _utcnow

    def set(self, key: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Merge partial into the session, creating it on first write"""

        now = self._clock()
        bag = self.sessions.get(key)
        if bag is None:
            bag = {CREATED_AT: now}
            self.sessions[key] = bag

        bag.update({k: v for k, v in partial.items() if k != CREATED_AT})
        bag[LAST_UPDATED] = now
        self.sessions.move_to_end(key)

        self._evict_overflow()
        return dict(bag)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Get a copy of the full session bag"""

        bag = self.sessions.get(key)
        return dict(bag) if bag is not None else None

    def get_field(self, key: str, field: str) -> Any:
        """Get one field of a session"""

        bag = self.sessions.get(key)
        if bag is None:
            return None
        return bag.get(field)

    def has(self, key: str) -> bool:
        return key in self.sessions

    def clear(self, key: str) -> bool:
        """Remove a session, returning whether it existed"""

        existed = self.sessions.pop(key, None) is not None
        if existed:
            logger.debug("Session cleared", key=key)
        return existed

    def clear_all(self) -> int:
        count = len(self.sessions)
        self.sessions.clear()
        return count

    def size(self) -> int:
        return len(self.sessions)

    def sweep_expired(self) -> int:
        """Drop sessions idle for longer than ttl_seconds and return count"""

        if self.ttl_seconds is None:
            return 0

        now = self._clock()
        expired_keys = [
            key for key, bag in self.sessions.items()
            if (now - bag[LAST_UPDATED]).total_seconds() > self.ttl_seconds
        ]
        for key in expired_keys:
            del self.sessions[key]

        if expired_keys:
            logger.info("Expired sessions swept", count=len(expired_keys))
        return len(expired_keys)

    def _evict_overflow(self):
        while len(self.sessions) > self.max_entries:
            key, _ = self.sessions.popitem(last=False)
            logger.warning("Session evicted at capacity", key=key, max_entries=self.max_entries)

    def debug(self) -> Dict[str, Any]:
        """Snapshot of the registry for diagnostics"""

        return {
            "size": len(self.sessions),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "keys": list(self.sessions.keys()),
        }
