"""Query building: where predicates and relation-resolving selectors.

A query is ``{"where": ..., "select": ...}`` or ``{"where": ...,
"include": ...}``.  ``select`` keeps only the listed fields; ``include``
keeps every field and resolves the listed relations.  A relation value in
either is ``True`` (resolve to full documents) or a nested query.

Where clauses are conjunctions of per-field checks.  A check is either a
literal (equality; ``datetime`` values compare as instants) or a callable
receiving the field value.

Usage:
    selector = build_selector(compiled, "authors", {
        "where": {"name": "A"},
        "include": {"books": {"where": {"year": lambda y: y > 2000}}},
    })
    result = await selector(doc, tx)   # None when filtered out
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from relstore.adapters.base import StorageTransaction
from relstore.errors import InvalidConfigError, InvalidItemError
from relstore.schema.compiler import CompiledDb
from relstore.schema.model import FieldKind, Model

WhereClause = Callable[[dict], bool]
Selector = Callable[[dict, StorageTransaction], Awaitable[dict | None]]

_QUERY_KEYS = {"where", "select", "include"}


# ============================================================================
# Where
# ============================================================================


def _literal_check(expected: Any) -> Callable[[Any], bool]:
    if isinstance(expected, bool):
        return lambda value: isinstance(value, bool) and value is expected
    if isinstance(expected, datetime):
        return lambda value: isinstance(value, datetime) and value == expected
    return lambda value: not isinstance(value, bool) and value == expected


def build_where(where: Any, model: Model | None = None) -> WhereClause:
    """Compile a where clause into a document predicate.

    Args:
        where: Mapping of field name to literal or predicate, or ``None``.
        model: When given, field names are checked against it.

    Returns:
        Predicate over stored documents.

    Raises:
        InvalidItemError: If ``where`` is not a mapping or names an
            unknown field.
    """
    if not where:
        return lambda doc: True
    if not isinstance(where, dict):
        raise InvalidItemError(f"Where clause must be an object, got {type(where).__name__}")

    checks: list[tuple[str, Callable[[Any], bool]]] = []
    for key, expected in where.items():
        if model is not None and key not in model:
            raise InvalidItemError(f"Where clause key '{key}' does not exist on model '{model.name}'")
        checks.append((key, expected if callable(expected) else _literal_check(expected)))

    def matches(doc: dict) -> bool:
        return all(bool(check(doc.get(key))) for key, check in checks)

    return matches


# ============================================================================
# Selectors
# ============================================================================


def _lists_field(selection: Any, field: str) -> bool:
    """Whether a nested relation selection explicitly asks for ``field``."""
    if not isinstance(selection, dict):
        return False
    projection = selection.get("select") or selection.get("include") or {}
    return bool(projection.get(field))


def _relation_resolver(compiled: CompiledDb, name: str, key: str, selection: Any):
    relation = compiled.get_model(name).get_relation(key)
    mirror = compiled.mirror(name, key)
    nested = build_selector(compiled, relation.to, selection) if isinstance(selection, dict) else None
    strip = mirror.field if mirror is not None and not _lists_field(selection, mirror.field) else None

    async def load(ref: Any, tx: StorageTransaction) -> dict | None:
        target = await tx.get_collection(relation.to).get(ref)
        if target is None:
            return None
        if nested is not None:
            target = await nested(target, tx)
            if target is None:
                return None
        if strip is not None:
            target.pop(strip, None)
        return target

    if relation.is_array:

        async def resolve(refs: Any, tx: StorageTransaction) -> list[dict]:
            resolved = []
            for ref in refs or []:
                item = await load(ref, tx)
                if item is not None:
                    resolved.append(item)
            return resolved

    else:

        async def resolve(ref: Any, tx: StorageTransaction) -> dict | None:
            if ref is None:
                return None
            return await load(ref, tx)

    return resolve


def build_selector(compiled: CompiledDb, name: str, query: Any = None) -> Selector:
    """Compile a query into an async selector over raw documents.

    The selector returns ``None`` for documents failing ``where`` and the
    projected document otherwise.  Relation keys are resolved through
    ``tx``; dangling references are dropped from arrays and become
    ``None`` for singular relations.  The mirror back-reference on a
    resolved document is removed unless the nested query lists it.

    Raises:
        InvalidConfigError: If both ``select`` and ``include`` are given.
        InvalidItemError: On unknown query options or field names.
    """
    query = query or {}
    if not isinstance(query, dict):
        raise InvalidItemError(f"Query on model '{name}' must be an object")
    unknown = set(query) - _QUERY_KEYS
    if unknown:
        raise InvalidItemError(f"Unknown query option(s): {sorted(unknown)}")

    select, include = query.get("select"), query.get("include")
    if select is not None and include is not None:
        raise InvalidConfigError("include and select cannot both be defined")

    model = compiled.get_model(name)
    where = build_where(query.get("where"), model)
    projection = select if select is not None else include

    if projection is None:

        async def select_all(doc: dict, tx: StorageTransaction) -> dict | None:
            return doc if where(doc) else None

        return select_all

    if not isinstance(projection, dict):
        raise InvalidItemError(f"Projection on model '{name}' must be an object")

    is_select = select is not None
    getters = []
    for key, selection in projection.items():
        kind = model.key_kind(key)
        if kind == FieldKind.INVALID:
            raise InvalidItemError(f"Key '{key}' does not exist on model '{name}'")
        if not selection:
            continue
        if kind == FieldKind.RELATION:
            getters.append((key, _relation_resolver(compiled, name, key, selection)))
        elif is_select:
            getters.append((key, None))

    async def project(doc: dict, tx: StorageTransaction) -> dict | None:
        if not where(doc):
            return None
        result = {} if is_select else dict(doc)
        for key, resolve in getters:
            value = doc.get(key)
            result[key] = value if resolve is None else await resolve(value, tx)
        return result

    return project


async def find_documents(
    name: str,
    selector: Selector,
    tx: StorageTransaction,
    stop_on_first: bool = False,
) -> list[dict]:
    """Run ``selector`` over ``name`` in primary-key order."""
    results: list[dict] = []

    async def on_record(doc: dict) -> bool:
        item = await selector(doc, tx)
        if item is not None:
            results.append(item)
            if stop_on_first:
                return False
        return True

    await tx.get_collection(name).open_cursor(on_record)
    return results
