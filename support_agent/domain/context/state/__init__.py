# State = everything needed to resume a user's in-progress dialogue.
#
# Kept in process memory only, keyed per user:
#
#   SessionStore      merge-on-write bags (wizard fields, ambient flags)
#   IdleTimerManager  one countdown per user guarding capture steps
#   KeyedLock         arrival-order serialisation of one user's handlers
#
# Entries are advisory caches. Finalized results are written to an external
# store before a session is cleared.

from .session_store import SessionStore
from .idle_timer import IdleTimerManager, TimeoutPreset
from .keyed_lock import KeyedLock

__all__ = ["SessionStore", "IdleTimerManager", "TimeoutPreset", "KeyedLock"]
