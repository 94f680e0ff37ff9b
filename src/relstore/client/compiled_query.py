"""Pre-built, reusable queries.

``CompiledQuery`` runs the scope analysis and selector construction once;
every ``find`` then only opens a readonly transaction and walks the
cursor.

Usage:
    query = client["authors"].compile_query({"include": {"books": True}})
    everyone = await query.find()
    first = await query.find_first()
"""

from typing import TYPE_CHECKING, Any

from relstore.adapters.base import StorageTransaction
from relstore.client.query import build_selector, find_documents
from relstore.client.scope import get_accessed_collections, searchable_query
from relstore.client.transaction import open_transaction

if TYPE_CHECKING:
    from relstore.client import DbClient


class CompiledQuery:
    """A query bound to one collection of one client."""

    def __init__(self, client: "DbClient", name: str, query: dict | None = None) -> None:
        self._client = client
        self.name = name
        self.query = query or {}
        self.collections = sorted(
            get_accessed_collections(client.compiled, name, searchable_query(self.query), False)
        )
        self._selector = build_selector(client.compiled, name, self.query)

    def __repr__(self) -> str:
        return f"CompiledQuery({self.name!r}, collections={self.collections})"

    async def _run(self, stop_on_first: bool, tx: StorageTransaction | None) -> list[dict]:
        async with open_transaction(
            self._client.storage, self.collections, "readonly", tx
        ) as scope_tx:
            return await find_documents(self.name, self._selector, scope_tx, stop_on_first)

    async def find(self, tx: StorageTransaction | None = None) -> list[dict]:
        """Every matching document in primary-key order."""
        return await self._run(False, tx)

    async def find_first(self, tx: StorageTransaction | None = None) -> Any:
        """First matching document, or ``None``."""
        results = await self._run(True, tx)
        return results[0] if results else None
