"""Storage engines package.

Provides the ``StorageEngine`` Protocol and the concrete engines:
``MemoryStorage`` (in-process) and ``SqlStorage`` (SQLAlchemy async).

Usage:
    from relstore.adapters import MemoryStorage, SqlStorage, StorageEngine
"""

from relstore.adapters.base import (
    CollectionHandle,
    Key,
    StorageEngine,
    StorageTransaction,
    key_sort_key,
)
from relstore.adapters.memory import MemoryStorage
from relstore.adapters.sql import SqlStorage

__all__ = [
    "CollectionHandle",
    "Key",
    "StorageEngine",
    "StorageTransaction",
    "key_sort_key",
    "MemoryStorage",
    "SqlStorage",
]
