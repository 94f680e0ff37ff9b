"""SQL-backed storage engine.

Provides ``SqlStorage``, an implementation of the ``StorageEngine``
protocol on top of SQLAlchemy's async engine.  Each collection is one
table of ``(doc_key, doc_body)`` rows; keys and documents are stored as tagged JSON
so ``datetime`` values survive the round trip.  A ``_relstore_collections``
table records each collection's key path.

Cursor order is computed in Python (number < date < string), matching
``MemoryStorage``.

Usage:
    from relstore.adapters.sql import SqlStorage

    storage = SqlStorage("sqlite+aiosqlite:///library.db")
    client = await compiled.create_client(storage)
    ...
    await storage.close()
"""

import asyncio
import inspect
import json
import logging
import re
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from relstore.adapters.base import (
    CursorCallback,
    Key,
    TransactionMode,
    TransactionStatus,
    key_sort_key,
)
from relstore.errors import (
    AddFailedError,
    DeleteFailedError,
    InvalidConfigError,
    InvalidTransactionError,
    NotFoundError,
    UpdateFailedError,
)

logger = logging.getLogger(__name__)

_META_TABLE = "_relstore_collections"
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def normalize_url(database_url: str) -> str:
    """Normalize a database URL to an async driver scheme.

    ``postgres://`` and ``postgresql://`` become ``postgresql+asyncpg://``;
    ``sqlite://`` becomes ``sqlite+aiosqlite://``.  Other URLs are returned
    unchanged.
    """
    url = database_url
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = "postgresql+asyncpg://" + url[len("postgresql://"):]
    if url.startswith("sqlite://"):
        url = "sqlite+aiosqlite://" + url[len("sqlite://"):]
    return url


def create_storage_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine for ``SqlStorage``.

    PostgreSQL URLs get pooled defaults (``pool_size=5``,
    ``max_overflow=10``, ``pool_pre_ping=True``, ``pool_recycle=300``);
    caller kwargs override them.
    """
    url = normalize_url(database_url)
    defaults: dict[str, Any] = {"echo": False}
    if url.startswith("postgresql+asyncpg://"):
        defaults.update(
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=300,
        )
    merged = {**defaults, **kwargs}
    return create_async_engine(url, **merged)


# ------------------------------------------------------------------
# Tagged JSON encoding
# ------------------------------------------------------------------


def _encode_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return {"$date": value.isoformat()}
    raise TypeError(f"Value of type {type(value).__name__} is not storable")


def _decode_hook(obj: dict) -> Any:
    if len(obj) == 1 and "$date" in obj:
        return datetime.fromisoformat(obj["$date"])
    return obj


def encode(value: Any) -> str:
    return json.dumps(value, default=_encode_default, sort_keys=True)


def decode(raw: str) -> Any:
    return json.loads(raw, object_hook=_decode_hook)


def _table(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise InvalidConfigError(f"Invalid collection name for SQL storage: '{name}'")
    return f'"{name}"'


class SqlCollection:
    """Collection handle bound to one ``SqlTransaction``."""

    def __init__(self, tx: "SqlTransaction", name: str, key_path: str) -> None:
        self.name = name
        self.key_path = key_path
        self._tx = tx
        self._table = _table(name)

    def _key_of(self, doc: dict) -> Key:
        if doc.get(self.key_path) is None:
            raise UpdateFailedError(
                f"Document in '{self.name}' is missing key '{self.key_path}'"
            )
        return doc[self.key_path]

    async def _exists(self, encoded_key: str) -> bool:
        result = await self._tx._conn.execute(
            text(f"SELECT 1 FROM {self._table} WHERE doc_key = :key"),
            {"key": encoded_key},
        )
        return result.first() is not None

    async def add(self, doc: dict) -> Key:
        self._tx._assert_writable()
        key = self._key_of(doc)
        encoded_key = encode(key)
        if await self._exists(encoded_key):
            raise AddFailedError(
                f"Document with key {key!r} already exists in '{self.name}'"
            )
        try:
            await self._tx._conn.execute(
                text(f"INSERT INTO {self._table} (doc_key, doc_body) VALUES (:key, :doc)"),
                {"key": encoded_key, "doc": encode(doc)},
            )
        except IntegrityError as e:
            raise AddFailedError(
                f"Document with key {key!r} could not be added to '{self.name}'"
            ) from e
        return key

    async def get(self, key: Key) -> dict | None:
        self._tx._assert_running()
        result = await self._tx._conn.execute(
            text(f"SELECT doc_body FROM {self._table} WHERE doc_key = :key"),
            {"key": encode(key)},
        )
        row = result.first()
        return decode(row[0]) if row is not None else None

    async def put(self, doc: dict) -> Key:
        self._tx._assert_writable()
        key = self._key_of(doc)
        encoded_key = encode(key)
        await self._tx._conn.execute(
            text(f"DELETE FROM {self._table} WHERE doc_key = :key"),
            {"key": encoded_key},
        )
        await self._tx._conn.execute(
            text(f"INSERT INTO {self._table} (doc_key, doc_body) VALUES (:key, :doc)"),
            {"key": encoded_key, "doc": encode(doc)},
        )
        return key

    async def delete(self, key: Key) -> None:
        self._tx._assert_writable()
        try:
            await self._tx._conn.execute(
                text(f"DELETE FROM {self._table} WHERE doc_key = :key"),
                {"key": encode(key)},
            )
        except SQLAlchemyError as e:
            raise DeleteFailedError(
                f"Document with key {key!r} could not be deleted from '{self.name}'"
            ) from e

    async def open_cursor(self, on_record: CursorCallback) -> None:
        self._tx._assert_running()
        result = await self._tx._conn.execute(text(f"SELECT doc_key FROM {self._table}"))
        keys = [decode(row[0]) for row in result.fetchall()]
        for key in sorted(keys, key=key_sort_key):
            doc = await self.get(key)
            if doc is None:
                continue
            outcome = on_record(doc)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if not outcome:
                break


class SqlTransaction:
    """A database transaction on one pooled connection."""

    def __init__(
        self,
        conn: AsyncConnection,
        key_paths: dict[str, str],
        collection_names: list[str],
        mode: TransactionMode,
    ) -> None:
        self.collection_names = list(collection_names)
        self.mode: TransactionMode = mode
        self.status: TransactionStatus = "running"
        self.error: Exception | None = None
        self._conn = conn
        self._handles = {
            name: SqlCollection(self, name, key_paths[name])
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

    def get_collection(self, name: str) -> SqlCollection:
        handle = self._handles.get(name)
        if handle is None:
            raise InvalidTransactionError(
                f"Collection '{name}' is not a part of this transaction"
            )
        return handle

    async def abort(self, error: Exception) -> Exception:
        if self.status == "running":
            self.status = "aborted"
            self.error = error
            try:
                await self._conn.rollback()
                await self._conn.close()
            finally:
                self._release()
        return error

    async def commit(self) -> None:
        self._assert_running()
        try:
            await self._conn.commit()
            await self._conn.close()
            self.status = "complete"
        finally:
            self._release()

    def _release(self) -> None:
        for lock in self._locks:
            lock.release()
        self._locks = []


class SqlStorage:
    """SQLAlchemy implementation of the ``StorageEngine`` protocol.

    Args:
        database_url: Database URL.  ``sqlite://``, ``postgres://`` and
            ``postgresql://`` schemes are normalized to their async drivers.
        **engine_kwargs: Forwarded to ``create_storage_engine``.

    Example:
        storage = SqlStorage("sqlite+aiosqlite:///library.db")
        await storage.create_collection("books", key_path="id")
    """

    def __init__(self, database_url: str, **engine_kwargs: Any) -> None:
        self._engine: AsyncEngine = create_storage_engine(database_url, **engine_kwargs)
        self._key_paths: dict[str, str] | None = None
        self._locks: dict[str, asyncio.Lock] = {}

    async def _load_key_paths(self) -> dict[str, str]:
        if self._key_paths is None:
            async with self._engine.begin() as conn:
                await conn.execute(
                    text(
                        f"CREATE TABLE IF NOT EXISTS {_META_TABLE} "
                        "(name TEXT PRIMARY KEY, key_path TEXT NOT NULL)"
                    )
                )
                result = await conn.execute(
                    text(f"SELECT name, key_path FROM {_META_TABLE}")
                )
                self._key_paths = {row[0]: row[1] for row in result.fetchall()}
        return self._key_paths

    async def create_collection(self, name: str, key_path: str) -> None:
        key_paths = await self._load_key_paths()
        if name in key_paths:
            return
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    f"CREATE TABLE IF NOT EXISTS {_table(name)} "
                    "(doc_key TEXT PRIMARY KEY, doc_body TEXT NOT NULL)"
                )
            )
            await conn.execute(
                text(f"INSERT INTO {_META_TABLE} (name, key_path) VALUES (:name, :key_path)"),
                {"name": name, "key_path": key_path},
            )
        key_paths[name] = key_path
        logger.debug(f"Created collection table '{name}' (key path '{key_path}')")

    async def collection_names(self) -> list[str]:
        return list(await self._load_key_paths())

    async def open_transaction(
        self,
        collection_names: list[str],
        mode: TransactionMode,
    ) -> SqlTransaction:
        key_paths = await self._load_key_paths()
        names = sorted(set(collection_names))
        for name in names:
            if name not in key_paths:
                raise NotFoundError(f"No collection with the name '{name}' found")

        locks: list[asyncio.Lock] = []
        conn = None
        try:
            if mode == "readwrite":
                for name in names:
                    lock = self._locks.setdefault(name, asyncio.Lock())
                    await lock.acquire()
                    locks.append(lock)
            conn = await self._engine.connect()
            await conn.begin()
        except BaseException:
            if conn is not None:
                await conn.close()
            for lock in locks:
                lock.release()
            raise

        tx = SqlTransaction(conn, key_paths, names, mode)
        tx._locks = locks
        return tx

    async def close(self) -> None:
        """Dispose of the engine's connection pool."""
        await self._engine.dispose()
