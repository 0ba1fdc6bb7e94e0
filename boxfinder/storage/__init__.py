"""Local persistence: key-value backends, entity cache and mutation queue."""

from boxfinder.storage.cache import CACHE_KEYS, EntityCache
from boxfinder.storage.kv import KeyValueStore, MemoryKeyValueStore, SQLiteKeyValueStore
from boxfinder.storage.queue import SYNC_QUEUE_KEY, MutationQueue

__all__ = [
    "CACHE_KEYS",
    "EntityCache",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "MutationQueue",
    "SQLiteKeyValueStore",
    "SYNC_QUEUE_KEY",
]
