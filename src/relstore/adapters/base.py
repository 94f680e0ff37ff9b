"""Storage engine protocol definitions.

Defines the ``StorageEngine``, ``StorageTransaction`` and ``CollectionHandle``
Protocols that every storage backend must implement.  All I/O methods are
``async def`` -- the library is async-first.

The engine is a key-value store organized into named collections.  A
transaction is opened against an explicit list of collection names and a
mode, and only those collections may be touched through it.

Usage:
    from relstore.adapters.base import StorageEngine

    async def count(storage: StorageEngine, name: str) -> int:
        tx = await storage.open_transaction([name], "readonly")
        seen = 0

        def on_record(doc: dict) -> bool:
            nonlocal seen
            seen += 1
            return True

        await tx.get_collection(name).open_cursor(on_record)
        await tx.commit()
        return seen
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Literal, Protocol

Key = int | float | str | datetime
"""Valid primary key values."""

TransactionMode = Literal["readonly", "readwrite"]
TransactionStatus = Literal["running", "aborted", "complete"]

CursorCallback = Callable[[dict], bool | Awaitable[bool]]
"""Cursor callback: receives a copy of the record, returns ``True`` to continue."""


def key_sort_key(key: Key) -> tuple:
    """Sort key giving the cross-type key order: number < date < string."""
    if isinstance(key, bool):
        raise TypeError(f"Invalid key: {key!r}")
    if isinstance(key, (int, float)):
        return (0, key)
    if isinstance(key, datetime):
        return (1, key.timestamp())
    if isinstance(key, str):
        return (2, key)
    raise TypeError(f"Invalid key: {key!r}")


class CollectionHandle(Protocol):
    """A single collection as seen through one transaction."""

    name: str
    key_path: str

    async def add(self, doc: dict) -> Key:
        """Insert a new document.

        Raises:
            AddFailedError: If a document with the same key already exists.
        """
        ...

    async def get(self, key: Key) -> dict | None:
        """Return a copy of the document, or ``None`` if absent."""
        ...

    async def put(self, doc: dict) -> Key:
        """Insert or replace the document keyed by ``doc[key_path]``."""
        ...

    async def delete(self, key: Key) -> None:
        """Delete the document (no-op when absent)."""
        ...

    async def open_cursor(self, on_record: CursorCallback) -> None:
        """Iterate documents in key order until the callback returns ``False``.

        Keys are captured when the cursor opens; documents deleted during
        iteration are skipped and documents are read at visit time.
        """
        ...


class StorageTransaction(Protocol):
    """A transaction scoped to a fixed set of collections."""

    collection_names: list[str]
    mode: TransactionMode
    status: TransactionStatus
    error: Exception | None

    def get_collection(self, name: str) -> CollectionHandle:
        """Return the handle for ``name``.

        Raises:
            InvalidTransactionError: If ``name`` is not part of the transaction.
        """
        ...

    async def abort(self, error: Exception) -> Exception:
        """Roll back every write and record ``error``.  Returns ``error``."""
        ...

    async def commit(self) -> None:
        """Make every write visible to later transactions."""
        ...


class StorageEngine(Protocol):
    """Storage engine interface that all backends must implement."""

    async def create_collection(self, name: str, key_path: str) -> None:
        """Create the collection if it does not exist yet."""
        ...

    async def collection_names(self) -> list[str]:
        ...

    async def open_transaction(
        self,
        collection_names: list[str],
        mode: TransactionMode,
    ) -> StorageTransaction:
        """Open a transaction over exactly ``collection_names``."""
        ...

    async def close(self) -> None:
        """Release resources held by the engine."""
        ...
