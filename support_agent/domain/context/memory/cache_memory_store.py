from typing import Dict, Any, Optional, Callable, Protocol, runtime_checkable
import asyncio
from datetime import datetime, timedelta, timezone
import structlog

from support_agent.domain.models.agent_state import Profile

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TTLCache:
    """In-memory cache with per-entry TTL"""

    def __init__(self, default_ttl: int = 3600, clock: Callable[[], datetime] = _utcnow):
        self.cache: Dict[str, Dict[str, Any]] = {}
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = asyncio.Lock()

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set a value in cache with TTL"""

        async with self._lock:
            expires_at = self._clock() + timedelta(seconds=self.default_ttl if ttl is None else ttl)
            self.cache[key] = {
                "value": value,
                "expires_at": expires_at
            }

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired"""

        async with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                return None

            if self._clock() > entry["expires_at"]:
                del self.cache[key]
                return None

            return entry["value"]

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self.cache.pop(key, None) is not None


@runtime_checkable
class ProfileDirectory(Protocol):
    """Personality lookup by conversation"""

    async def get(self, context_id: str) -> Optional[Profile]: ...


class StaticProfileDirectory:
    """Profile directory backed by a dict, with an optional default"""

    def __init__(self, profiles: Optional[Dict[str, Profile]] = None, default: Optional[Profile] = None):
        self.profiles = dict(profiles or {})
        self.default = default

    async def get(self, context_id: str) -> Optional[Profile]:
        return self.profiles.get(context_id, self.default)


class CachedProfileDirectory:
    """Caches profile lookups and falls back to a default profile"""

    def __init__(self, directory: ProfileDirectory, cache: TTLCache, fallback: Optional[Profile] = None):
        self.directory = directory
        self.cache = cache
        self.fallback = fallback or Profile()

    async def get(self, context_id: str) -> Profile:
        cached = await self.cache.get(f"profile:{context_id}")
        if cached is not None:
            return cached

        try:
            profile = await self.directory.get(context_id)
        except Exception:
            logger.exception("Profile lookup failed, using fallback", context_id=context_id)
            return self.fallback

        if profile is None:
            return self.fallback

        await self.cache.set(f"profile:{context_id}", profile)
        return profile

    async def invalidate(self, context_id: str) -> bool:
        return await self.cache.delete(f"profile:{context_id}")
