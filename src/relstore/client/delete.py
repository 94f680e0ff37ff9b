"""Delete with on-delete propagation.

Deleting a document first checks its ``Restrict`` relations, then walks its
``Cascade`` and ``SetNull`` relations, then removes it.  Each walk carries
an in-progress set of ``(collection, key)`` pairs: documents already being
deleted are never revisited (cycles terminate) and do not count as live
references for ``Restrict``.

Usage:
    async with open_transaction(storage, compiled.reachable("authors"), "readwrite") as tx:
        count = await delete_documents(client, "authors", {"name": "A"}, tx)
"""

import logging
from typing import TYPE_CHECKING, Any

from relstore.adapters.base import Key, StorageTransaction
from relstore.client.query import build_where
from relstore.errors import DeleteRestrictedError, InvalidConfigError
from relstore.schema.fields import OnDelete

if TYPE_CHECKING:
    from relstore.client import DbClient

logger = logging.getLogger(__name__)

InProgress = set[tuple[str, Key]]


def _refs(doc: dict, key: str, is_array: bool) -> list:
    value = doc.get(key)
    if is_array:
        return list(value or [])
    return [] if value is None else [value]


async def delete_document(
    client: "DbClient",
    name: str,
    doc: dict,
    tx: StorageTransaction,
    in_progress: InProgress,
) -> None:
    """Delete ``doc`` from ``name`` and apply its on-delete actions.

    Raises:
        DeleteRestrictedError: If a ``Restrict`` relation still references a
            document outside the current walk.
    """
    model = client.get_model(name)
    this_key = doc[model.primary_key]
    in_progress.add((name, this_key))

    relations = list(model.relations())
    for key, relation in relations:
        if relation.on_delete != OnDelete.RESTRICT:
            continue
        live = [
            ref
            for ref in _refs(doc, key, relation.is_array)
            if (relation.to, ref) not in in_progress
        ]
        if live:
            raise DeleteRestrictedError(
                f"Key '{key}' on model '{name}': deletion is restricted while "
                f"there is an active relation"
            )

    for key, relation in relations:
        if relation.on_delete == OnDelete.CASCADE:
            collection = tx.get_collection(relation.to)
            for ref in _refs(doc, key, relation.is_array):
                if (relation.to, ref) in in_progress:
                    continue
                target = await collection.get(ref)
                if target is None:
                    continue
                await delete_document(client, relation.to, target, tx, in_progress)

        elif relation.on_delete == OnDelete.SET_NULL:
            mirror = client.compiled.mirror(name, key)
            if mirror is None:
                continue
            mirror_relation = client.get_model(mirror.model).get_relation(mirror.field)
            if not mirror_relation.is_nullable:
                raise InvalidConfigError(
                    f"Key '{key}' on model '{name}': SetNull requires "
                    f"'{mirror.model}.{mirror.field}' to be optional or an array"
                )
            collection = tx.get_collection(relation.to)
            for ref in _refs(doc, key, relation.is_array):
                if (relation.to, ref) in in_progress:
                    continue
                target = await collection.get(ref)
                if target is None:
                    continue
                if mirror_relation.is_array:
                    target[mirror.field] = [
                        item for item in target.get(mirror.field) or [] if item != this_key
                    ]
                elif target.get(mirror.field) == this_key:
                    target[mirror.field] = None
                else:
                    continue
                await collection.put(target)

    await tx.get_collection(name).delete(this_key)
    logger.debug(f"Deleted {name}[{this_key!r}]")


async def delete_by_key(
    client: "DbClient",
    name: str,
    key: Key,
    tx: StorageTransaction,
    in_progress: InProgress | None = None,
) -> bool:
    """Delete one document by primary key.

    Returns:
        ``False`` if no document has that key.
    """
    doc = await tx.get_collection(name).get(key)
    if doc is None:
        return False
    await delete_document(client, name, doc, tx, set() if in_progress is None else in_progress)
    return True


async def delete_documents(
    client: "DbClient",
    name: str,
    where: Any,
    tx: StorageTransaction,
    stop_on_first: bool = False,
) -> int:
    """Delete every document in ``name`` matching ``where``.

    One in-progress set is shared across the whole call, so documents
    removed by an earlier cascade are not visited again.

    Returns:
        Number of documents matched and deleted directly (cascaded
        deletions are not counted).
    """
    model = client.get_model(name)
    matches = build_where(where, model)
    in_progress: InProgress = set()
    count = 0

    async def on_record(doc: dict) -> bool:
        nonlocal count
        if (name, doc[model.primary_key]) in in_progress:
            return True
        if not matches(doc):
            return True
        await delete_document(client, name, doc, tx, in_progress)
        count += 1
        return not stop_on_first

    await tx.get_collection(name).open_cursor(on_record)
    return count
