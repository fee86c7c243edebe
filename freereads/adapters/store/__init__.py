"""Key-value store adapters.

Token records, blacklist entries, attempt counters and traffic windows all
live behind one small contract so the service layer does not care whether
state is shared through Redis or kept in process memory.
"""

from freereads.adapters.store.base import (
    AbstractKeyValueStore,
    StoreError,
    StoreUnavailableError,
)
from freereads.adapters.store.in_memory import InMemoryKeyValueStore
from freereads.adapters.store.redis_store import RedisKeyValueStore

__all__ = [
    "AbstractKeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "StoreError",
    "StoreUnavailableError",
]
