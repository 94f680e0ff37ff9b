"""Static collection-scope analysis.

Before a transaction is opened, the engine works out which collections an
operation could touch from the compiled schema and the payload shape
alone.  The result may over-approximate, never under-approximate.

Usage:
    from relstore.client.scope import get_accessed_collections

    names = get_accessed_collections(compiled, "books", {"author": {"$connect": 1}}, True)
    # {"books", "authors"}
"""

from typing import Any

from relstore.client.actions import (
    Connect,
    Create,
    Delete,
    DeleteAll,
    Disconnect,
    DisconnectAll,
    Update,
    parse_actions,
)
from relstore.errors import InvalidItemError
from relstore.schema.compiler import CompiledDb


def searchable_query(query: dict | None) -> dict:
    """Return the projection part of a query (``select`` or ``include``)."""
    if not query:
        return {}
    return query.get("select") or query.get("include") or {}


def get_accessed_collections(
    compiled: CompiledDb,
    name: str,
    shape: Any,
    is_mutation: bool,
) -> set[str]:
    """Collections an operation on ``name`` may read or write.

    Args:
        compiled: Compiled schema.
        name: Collection the operation starts from.
        shape: Mutation payload (``is_mutation``) or query projection.
        is_mutation: Whether ``shape`` is a mutation payload.

    Returns:
        Set of collection names, always including ``name``.

    Raises:
        InvalidItemError: If a mutation payload is malformed.
    """
    model = compiled.get_model(name)
    accessed = {name}
    if not shape:
        return accessed
    if not isinstance(shape, dict):
        raise InvalidItemError(f"Expected an object for model '{name}'")

    for key, value in shape.items():
        relation = model.get_relation(key)
        if relation is None or not value:
            continue

        if not is_mutation:
            if isinstance(value, dict):
                accessed |= get_accessed_collections(
                    compiled, relation.to, searchable_query(value), False
                )
            else:
                accessed.add(relation.to)
            continue

        for action in parse_actions(name, key, relation, value):
            if isinstance(action, (Connect, Disconnect, DisconnectAll)):
                accessed.add(relation.to)
            elif isinstance(action, (Delete, DeleteAll)):
                accessed |= compiled.reachable(relation.to)
            elif isinstance(action, Create):
                accessed |= get_accessed_collections(compiled, relation.to, action.data, True)
            elif isinstance(action, Update):
                accessed |= get_accessed_collections(compiled, relation.to, action.data, True)

    return accessed
