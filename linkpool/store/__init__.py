from .base import BINDINGS, CONSUMERS, DELETE, DOMAINS, POOL, POOL_KEY, RecordStore
from .file import JsonFileRecordStore
from .memory import InMemoryRecordStore
from .redis import RedisRecordStore

__all__ = [
    "BINDINGS",
    "CONSUMERS",
    "DELETE",
    "DOMAINS",
    "POOL",
    "POOL_KEY",
    "InMemoryRecordStore",
    "JsonFileRecordStore",
    "RecordStore",
    "RedisRecordStore",
]
