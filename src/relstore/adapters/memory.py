"""In-process storage engine.

Provides ``MemoryStorage``, an implementation of the ``StorageEngine``
protocol that keeps every collection in a dict.  Transactions are
copy-on-write: writes land in a per-transaction overlay that ``commit()``
applies and ``abort()`` discards.  Read-write transactions over
overlapping collections are serialized with per-collection
``asyncio.Lock``s acquired in sorted order.

Usage:
    from relstore.adapters.memory import MemoryStorage

    storage = MemoryStorage()
    await storage.create_collection("books", key_path="id")
    tx = await storage.open_transaction(["books"], "readwrite")
    await tx.get_collection("books").add({"id": 1, "title": "T"})
    await tx.commit()
"""

import asyncio
import copy
import inspect
import logging

from relstore.adapters.base import (
    CursorCallback,
    Key,
    TransactionMode,
    TransactionStatus,
    key_sort_key,
)
from relstore.errors import (
    AddFailedError,
    InvalidTransactionError,
    NotFoundError,
    UpdateFailedError,
)

logger = logging.getLogger(__name__)

_DELETED = object()


class MemoryCollection:
    """Collection handle bound to one ``MemoryTransaction``."""

    def __init__(self, tx: "MemoryTransaction", name: str, key_path: str) -> None:
        self.name = name
        self.key_path = key_path
        self._tx = tx

    def _read(self, key: Key) -> dict | None:
        overlay = self._tx._writes[self.name]
        if key in overlay:
            doc = overlay[key]
            return None if doc is _DELETED else doc
        return self._tx._storage._data[self.name].get(key)

    def _key_of(self, doc: dict) -> Key:
        if self.key_path not in doc or doc[self.key_path] is None:
            raise UpdateFailedError(
                f"Document in '{self.name}' is missing key '{self.key_path}'"
            )
        return doc[self.key_path]

    async def add(self, doc: dict) -> Key:
        self._tx._assert_writable()
        key = self._key_of(doc)
        if self._read(key) is not None:
            raise AddFailedError(
                f"Document with key {key!r} already exists in '{self.name}'"
            )
        self._tx._writes[self.name][key] = copy.deepcopy(doc)
        return key

    async def get(self, key: Key) -> dict | None:
        self._tx._assert_running()
        doc = self._read(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def put(self, doc: dict) -> Key:
        self._tx._assert_writable()
        key = self._key_of(doc)
        self._tx._writes[self.name][key] = copy.deepcopy(doc)
        return key

    async def delete(self, key: Key) -> None:
        self._tx._assert_writable()
        self._tx._writes[self.name][key] = _DELETED

    async def open_cursor(self, on_record: CursorCallback) -> None:
        self._tx._assert_running()
        committed = self._tx._storage._data[self.name]
        keys = set(committed) | set(self._tx._writes[self.name])
        for key in sorted(keys, key=key_sort_key):
            doc = self._read(key)
            if doc is None:
                continue
            result = on_record(copy.deepcopy(doc))
            if inspect.isawaitable(result):
                result = await result
            if not result:
                break


class MemoryTransaction:
    """Copy-on-write transaction over a fixed set of collections."""

    def __init__(
        self,
        storage: "MemoryStorage",
        collection_names: list[str],
        mode: TransactionMode,
    ) -> None:
        self.collection_names = list(collection_names)
        self.mode: TransactionMode = mode
        self.status: TransactionStatus = "running"
        self.error: Exception | None = None
        self._storage = storage
        self._writes: dict[str, dict] = {name: {} for name in collection_names}
        self._handles = {
            name: MemoryCollection(self, name, storage._key_paths[name])
            for name in collection_names
        }
        self._locks: list[asyncio.Lock] = []

    def _assert_running(self) -> None:
        if self.status != "running":
            raise InvalidTransactionError(f"Transaction is {self.status}")

    def _assert_writable(self) -> None:
        self._assert_running()
        if self.mode != "readwrite":
            raise InvalidTransactionError("Transaction is read-only")

    def get_collection(self, name: str) -> MemoryCollection:
        handle = self._handles.get(name)
        if handle is None:
            raise InvalidTransactionError(
                f"Collection '{name}' is not a part of this transaction"
            )
        return handle

    async def abort(self, error: Exception) -> Exception:
        if self.status == "running":
            self._writes = {name: {} for name in self.collection_names}
            self.status = "aborted"
            self.error = error
            self._release()
        return error

    async def commit(self) -> None:
        self._assert_running()
        for name, overlay in self._writes.items():
            committed = self._storage._data[name]
            for key, doc in overlay.items():
                if doc is _DELETED:
                    committed.pop(key, None)
                else:
                    committed[key] = doc
        self.status = "complete"
        self._release()

    def _release(self) -> None:
        for lock in self._locks:
            lock.release()
        self._locks = []


class MemoryStorage:
    """Dict-backed implementation of the ``StorageEngine`` protocol.

    Example:
        storage = MemoryStorage()
        client = await compiled.create_client(storage)
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[Key, dict]] = {}
        self._key_paths: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def create_collection(self, name: str, key_path: str) -> None:
        if name in self._data:
            return
        self._data[name] = {}
        self._key_paths[name] = key_path
        self._locks[name] = asyncio.Lock()
        logger.debug(f"Created collection '{name}' (key path '{key_path}')")

    async def collection_names(self) -> list[str]:
        return list(self._data)

    async def open_transaction(
        self,
        collection_names: list[str],
        mode: TransactionMode,
    ) -> MemoryTransaction:
        names = sorted(set(collection_names))
        for name in names:
            if name not in self._data:
                raise NotFoundError(f"No collection with the name '{name}' found")

        tx = MemoryTransaction(self, names, mode)
        if mode == "readwrite":
            try:
                for name in names:
                    lock = self._locks[name]
                    await lock.acquire()
                    tx._locks.append(lock)
            except BaseException:
                # Cancelled while waiting: give back what was already held
                tx._release()
                raise
        return tx

    async def close(self) -> None:
        self._data.clear()
        self._key_paths.clear()
        self._locks.clear()
