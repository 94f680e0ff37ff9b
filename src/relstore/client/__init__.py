"""Database client: per-collection operations over a storage engine.

``DbClient`` is created by ``CompiledDb.create_client(storage)``.  Each
collection is reached as ``client["name"]`` (a ``CollectionClient``).
Every operation opens one transaction over the collections it can touch,
or reuses the transaction passed as ``tx=``.

Usage:
    from relstore.adapters import MemoryStorage

    client = await compiled.create_client(MemoryStorage())
    author = await client["authors"].add({"name": "A", "books": {"$create": {"title": "T"}}})
    await client["authors"].find({"include": {"books": True}})
    await client["authors"].update_many({"where": {"id": author}, "data": {"name": "B"}})
    await client["authors"].delete(author)

    # Several operations in one transaction
    async with client.transaction(["authors", "books"], "readwrite") as tx:
        key = await client["authors"].add({"name": "C"}, tx=tx)
        await client["books"].add({"title": "U", "author": {"$connect": key}}, tx=tx)
"""

import logging
from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any

from relstore.adapters.base import Key, StorageEngine, StorageTransaction, TransactionMode
from relstore.client.compiled_query import CompiledQuery
from relstore.client.delete import delete_by_key, delete_documents
from relstore.client.mutation import insert_document, update_documents
from relstore.client.query import build_selector, find_documents
from relstore.client.scope import get_accessed_collections, searchable_query
from relstore.client.transaction import open_transaction
from relstore.errors import InvalidItemError
from relstore.schema.compiler import CompiledDb
from relstore.schema.model import Model

logger = logging.getLogger(__name__)


@dataclass
class ModelCache:
    """Per-collection state owned by a client."""

    auto_increment: int | None = None


class DbClient:
    """Entry point bound to one storage engine and one compiled schema."""

    def __init__(self, storage: StorageEngine, compiled: CompiledDb) -> None:
        self.storage = storage
        self.compiled = compiled
        self.name = compiled.name
        self._caches = {name: ModelCache() for name in compiled.keys()}
        self.collections = {name: CollectionClient(self, name) for name in compiled.keys()}

    def __repr__(self) -> str:
        return f"DbClient({self.name!r}, collections={list(self.collections)})"

    def __getitem__(self, name: str) -> "CollectionClient":
        self.compiled.get_model(name)
        return self.collections[name]

    def keys(self) -> list[str]:
        return list(self.collections)

    def get_model(self, name: str) -> Model:
        return self.compiled.get_model(name)

    def transaction(
        self,
        collections: Iterable[str] | None = None,
        mode: TransactionMode = "readwrite",
    ) -> AbstractAsyncContextManager[StorageTransaction]:
        """Open a caller-owned transaction to thread through ``tx=``.

        Commits when the block exits normally, aborts otherwise.  Defaults
        to every collection.
        """
        names = self.keys() if collections is None else collections
        return open_transaction(self.storage, names, mode)

    async def next_key(self, name: str, tx: StorageTransaction) -> int:
        """Next auto-increment key for ``name``.

        The counter is loaded from the highest stored key on first use and
        kept in memory afterwards.

        Raises:
            InvalidItemError: If a stored key is not an integer.
        """
        cache = self._caches[name]
        if cache.auto_increment is None:
            model = self.get_model(name)
            highest = 0

            def on_record(doc: dict) -> bool:
                nonlocal highest
                key = doc.get(model.primary_key)
                if isinstance(key, bool) or not isinstance(key, int):
                    raise InvalidItemError(
                        f"Auto-increment key {key!r} in '{name}' is not an integer"
                    )
                highest = max(highest, key)
                return True

            await tx.get_collection(name).open_cursor(on_record)
            cache.auto_increment = highest + 1
            logger.debug(f"Loaded auto-increment counter for '{name}': {cache.auto_increment}")

        key = cache.auto_increment
        cache.auto_increment += 1
        return key

    def invalidate_caches(self, name: str | None = None) -> None:
        """Drop cached counters, for one collection or all of them."""
        names = self.keys() if name is None else [name]
        for key in names:
            self._caches[key] = ModelCache()

    async def close(self) -> None:
        await self.storage.close()


class CollectionClient:
    """Operations on one collection.

    Every method accepts ``tx=`` to run inside a caller-owned transaction;
    that transaction must cover the collections the operation touches.
    """

    def __init__(self, client: DbClient, name: str) -> None:
        self._client = client
        self.name = name

    def __repr__(self) -> str:
        return f"CollectionClient({self.name!r})"

    @property
    def model(self) -> Model:
        return self._client.get_model(self.name)

    def _mutation_scope(self, payloads: Iterable[Any]) -> set[str]:
        scope = {self.name}
        for payload in payloads:
            scope |= get_accessed_collections(self._client.compiled, self.name, payload, True)
        return scope

    def _open(self, scope: Iterable[str], mode: TransactionMode, tx: StorageTransaction | None):
        return open_transaction(self._client.storage, scope, mode, tx)

    # ------------------------------------------------------------------
    # Insert
    # ------------------------------------------------------------------

    async def add(self, data: dict, tx: StorageTransaction | None = None) -> Key:
        """Insert one document and return its primary key.

        Raises:
            InvalidItemError: If the payload fails validation.
            AddFailedError: If the primary key already exists.
            DocumentNotFoundError: If a ``$connect`` target does not exist.
        """
        async with self._open(self._mutation_scope([data]), "readwrite", tx) as scope_tx:
            return await insert_document(self._client, self.name, data, scope_tx)

    async def add_many(self, items: list[dict], tx: StorageTransaction | None = None) -> list[Key]:
        """Insert several documents in one transaction; all or nothing."""
        if not isinstance(items, list):
            raise InvalidItemError("add_many expects a list of documents")
        async with self._open(self._mutation_scope(items), "readwrite", tx) as scope_tx:
            return [
                await insert_document(self._client, self.name, item, scope_tx)
                for item in items
            ]

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def get(self, key: Key, tx: StorageTransaction | None = None) -> dict | None:
        """Raw stored document by primary key, or ``None``."""
        async with self._open([self.name], "readonly", tx) as scope_tx:
            return await scope_tx.get_collection(self.name).get(key)

    async def _find(self, query: dict | None, stop_on_first: bool, tx: StorageTransaction | None) -> list[dict]:
        compiled = self._client.compiled
        scope = get_accessed_collections(compiled, self.name, searchable_query(query), False)
        selector = build_selector(compiled, self.name, query)
        async with self._open(scope, "readonly", tx) as scope_tx:
            return await find_documents(self.name, selector, scope_tx, stop_on_first)

    async def find(self, query: dict | None = None, tx: StorageTransaction | None = None) -> list[dict]:
        """Every document matching ``query``, in primary-key order."""
        return await self._find(query, False, tx)

    async def find_first(self, query: dict | None = None, tx: StorageTransaction | None = None) -> dict | None:
        """First document matching ``query``, or ``None``."""
        results = await self._find(query, True, tx)
        return results[0] if results else None

    def compile_query(self, query: dict | None = None) -> CompiledQuery:
        return CompiledQuery(self._client, self.name, query)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def _update(self, mutation: dict, stop_on_first: bool, tx: StorageTransaction | None) -> list[Key]:
        data = mutation.get("data") if isinstance(mutation, dict) else None
        async with self._open(self._mutation_scope([data]), "readwrite", tx) as scope_tx:
            return await update_documents(self._client, self.name, mutation, scope_tx, stop_on_first)

    async def update_first(self, mutation: dict, tx: StorageTransaction | None = None) -> Key | None:
        """Update the first matching document; return its key or ``None``."""
        updated = await self._update(mutation, True, tx)
        return updated[0] if updated else None

    async def update_many(self, mutation: dict, tx: StorageTransaction | None = None) -> list[Key]:
        """Update every matching document; return their keys."""
        return await self._update(mutation, False, tx)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def _delete_scope(self) -> frozenset[str]:
        return self._client.compiled.reachable(self.name)

    async def delete(self, key: Key, tx: StorageTransaction | None = None) -> bool:
        """Delete one document by key; ``False`` if it does not exist.

        Raises:
            DeleteRestrictedError: If a restricting relation is populated.
        """
        async with self._open(self._delete_scope(), "readwrite", tx) as scope_tx:
            return await delete_by_key(self._client, self.name, key, scope_tx)

    async def delete_first(self, where: dict | None = None, tx: StorageTransaction | None = None) -> bool:
        """Delete the first document matching ``where``."""
        async with self._open(self._delete_scope(), "readwrite", tx) as scope_tx:
            return await delete_documents(self._client, self.name, where, scope_tx, True) > 0

    async def delete_many(self, where: dict | None = None, tx: StorageTransaction | None = None) -> int:
        """Delete every document matching ``where``; return the count."""
        async with self._open(self._delete_scope(), "readwrite", tx) as scope_tx:
            return await delete_documents(self._client, self.name, where, scope_tx)

    async def clear(self, tx: StorageTransaction | None = None) -> int:
        """Delete every document, applying on-delete actions, and reset the counter."""
        count = await self.delete_many(None, tx)
        self._client.invalidate_caches(self.name)
        logger.debug(f"Cleared {count} document(s) from '{self.name}'")
        return count

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    async def dump(self, where: dict | None = None, tx: StorageTransaction | None = None) -> dict[str, dict]:
        """Export documents keyed by primary key with relation pointers.

        See ``relstore.backup.export_collection``.
        """
        from relstore.backup.dump_restore import export_collection

        return await export_collection(self._client, self.name, where, tx)


__all__ = ["CollectionClient", "CompiledQuery", "DbClient", "ModelCache"]
