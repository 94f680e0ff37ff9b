"""Insert, update and relation (dis)connection.

All functions here run inside an already open transaction; the caller
(``CollectionClient``) owns the transaction boundary.  Relation fields are
always written on both ends: whenever a document gains or loses a
reference, its mirror on the other side is updated in the same
transaction.

Usage:
    async with open_transaction(storage, scope, "readwrite") as tx:
        key = await insert_document(client, "authors", {"name": "A"}, tx)
        await update_documents(client, "authors", {"data": {"name": "B"}}, tx)
"""

import logging
from collections.abc import Collection
from typing import TYPE_CHECKING, Any, assert_never

from relstore.adapters.base import CollectionHandle, Key, StorageTransaction
from relstore.client.actions import (
    INSERT_ACTIONS,
    UPDATE_ACTIONS,
    Connect,
    Create,
    Delete,
    DeleteAll,
    Disconnect,
    DisconnectAll,
    RelationAction,
    Update,
    parse_actions,
)
from relstore.client.delete import delete_by_key
from relstore.client.query import build_where
from relstore.errors import (
    DocumentNotFoundError,
    InvalidItemError,
    OverwriteRelationError,
    StoreAssertionError,
    UpdateFailedError,
)
from relstore.schema.fields import MISSING, Cardinality, Relation
from relstore.schema.model import FieldKind

if TYPE_CHECKING:
    from relstore.client import DbClient

logger = logging.getLogger(__name__)


def _refs(value: Any, relation: Relation) -> list:
    """Keys currently held by a relation field value."""
    if relation.is_array:
        return list(value or [])
    return [] if value is None else [value]


# ============================================================================
# Relation endpoints
# ============================================================================


async def connect_document(
    client: "DbClient",
    name: str,
    key: str,
    this_key: Key,
    target_key: Key,
    tx: StorageTransaction,
) -> None:
    """Record ``this_key`` on the mirror side of ``name.key`` in ``target_key``.

    Raises:
        DocumentNotFoundError: If the target document does not exist.
        OverwriteRelationError: If a singular mirror already holds another key.
    """
    relation = client.get_model(name).get_relation(key)
    if relation is None:
        raise StoreAssertionError(f"'{name}.{key}' is not a relation")

    collection = tx.get_collection(relation.to)
    target = await collection.get(target_key)
    if target is None:
        raise DocumentNotFoundError(
            f"Document with primary key {target_key!r} could not be found "
            f"in model '{relation.to}'"
        )

    mirror = client.compiled.mirror(name, key)
    if mirror is None:
        return
    mirror_relation = client.get_model(mirror.model).get_relation(mirror.field)

    if mirror_relation.is_array:
        refs = target.get(mirror.field)
        if not isinstance(refs, list):
            raise StoreAssertionError(
                f"Array relation '{mirror.model}.{mirror.field}' holds {refs!r}"
            )
        if this_key in refs:
            return
        refs.append(this_key)
    else:
        current = target.get(mirror.field)
        if current is not None and current != this_key:
            raise OverwriteRelationError(
                f"Document {target_key!r} in '{mirror.model}' already has "
                f"'{mirror.field}' set to {current!r}"
            )
        target[mirror.field] = this_key

    await collection.put(target)


async def disconnect_document(
    client: "DbClient",
    name: str,
    key: str,
    this_key: Key,
    target_key: Key,
    tx: StorageTransaction,
) -> None:
    """Remove ``this_key`` from the mirror side of ``name.key`` in ``target_key``.

    A missing target or a mirror that does not reference ``this_key`` is a
    no-op.

    Raises:
        InvalidItemError: If the mirror is a required singular relation.
    """
    relation = client.get_model(name).get_relation(key)
    mirror = client.compiled.mirror(name, key)
    if relation is None or mirror is None:
        return

    collection = tx.get_collection(relation.to)
    target = await collection.get(target_key)
    if target is None:
        return

    mirror_relation = client.get_model(mirror.model).get_relation(mirror.field)
    current = target.get(mirror.field)
    if mirror_relation.is_array:
        if this_key not in (current or []):
            return
        target[mirror.field] = [ref for ref in current if ref != this_key]
    else:
        if current != this_key:
            return
        if not mirror_relation.is_nullable:
            raise InvalidItemError(
                f"Relation '{mirror.model}.{mirror.field}' is required and "
                f"cannot be disconnected from {this_key!r}"
            )
        target[mirror.field] = None

    await collection.put(target)


# ============================================================================
# Insert
# ============================================================================


async def _link_inserted(
    collection: CollectionHandle,
    name: str,
    this_key: Key,
    key: str,
    relation: Relation,
    child_key: Key,
) -> None:
    """Record ``child_key`` on the stored copy of a document being inserted.

    Nested actions may already have written mirror fields into the stored
    document (a child connecting back through another relation, a
    self-relation), so the stored copy is re-read rather than overwritten.
    """
    stored = await collection.get(this_key)
    if stored is None:
        raise StoreAssertionError(f"{name}[{this_key!r}] disappeared during insert")
    if relation.is_array:
        refs = stored.get(key) or []
        if child_key not in refs:
            stored[key] = [*refs, child_key]
    else:
        current = stored.get(key)
        if current is not None and current != child_key:
            raise OverwriteRelationError(
                f"Document {this_key!r} in '{name}' already has '{key}' set to {current!r}"
            )
        stored[key] = child_key
    await collection.put(stored)


async def insert_document(
    client: "DbClient",
    name: str,
    data: Any,
    tx: StorageTransaction,
    inbound: tuple[str, Key] | None = None,
) -> Key:
    """Validate and insert one document, processing nested relation actions.

    Args:
        client: Owning client.
        name: Collection name.
        data: Insert payload.
        tx: Active readwrite transaction.
        inbound: ``(field, parent_key)`` when created through a parent's
            ``$create``; the field is pre-populated with the parent key.

    Returns:
        The new document's primary key.

    Raises:
        InvalidItemError: On unknown keys, failed validation, missing
            required relations or a supplied key for a generated primary key.
        AddFailedError: If the primary key already exists.
        DocumentNotFoundError: If a ``$connect`` target does not exist.
    """
    if not isinstance(data, dict):
        raise InvalidItemError(f"Expected an object for model '{name}'")
    model = client.get_model(name)

    for key in data:
        if key not in model:
            raise InvalidItemError(f"Key '{key}' does not exist on model '{name}'")

    pk_field = model.get_primary_key()
    supplied = data.get(model.primary_key, MISSING)
    if pk_field.is_generated:
        if supplied is not MISSING:
            raise InvalidItemError(
                f"Primary key '{model.primary_key}' of model '{name}' is generated "
                f"and cannot be supplied"
            )
        if pk_field.is_auto_incremented:
            this_key = await client.next_key(name, tx)
        else:
            this_key = pk_field.gen_key()
    else:
        if supplied is MISSING or supplied is None:
            raise InvalidItemError(
                f"Primary key '{model.primary_key}' of model '{name}' is required"
            )
        result = pk_field.validate(supplied)
        if not result.success:
            raise InvalidItemError(
                f"Key '{model.primary_key}' has the following validation error: "
                f"{result.error}"
            )
        this_key = result.data

    doc: dict = {model.primary_key: this_key}
    for key, prop in model.properties():
        result = prop.validate(data.get(key, MISSING))
        if not result.success:
            raise InvalidItemError(
                f"Key '{key}' has the following validation error: {result.error}"
            )
        doc[key] = result.data

    threaded = inbound[0] if inbound is not None else None
    planned: list[tuple[str, Relation, list[RelationAction]]] = []
    for key, relation in model.relations():
        doc[key] = [] if relation.is_array else None
        value = data.get(key)
        if key == threaded:
            doc[key] = [inbound[1]] if relation.is_array else inbound[1]
            if value is not None and not relation.is_array:
                raise InvalidItemError(
                    f"Key '{key}' on model '{name}' is already set by the parent document"
                )
        if value is None:
            if relation.cardinality == Cardinality.SINGLE and key != threaded:
                raise InvalidItemError(
                    f"Required relation '{key}' is not defined on model '{name}'"
                )
            continue
        target_pk = client.get_model(relation.to).get_primary_key()
        planned.append(
            (key, relation, parse_actions(name, key, relation, value, INSERT_ACTIONS, target_pk.adapter))
        )

    collection = tx.get_collection(name)
    # Placeholder write claims the key before any nested writes
    await collection.add(doc)

    for key, relation, actions in planned:
        for action in actions:
            if isinstance(action, Connect):
                if action.key in _refs(doc[key], relation):
                    raise InvalidItemError(
                        f"Key '{key}' on model '{name}' connects {action.key!r} more than once"
                    )
                await connect_document(client, name, key, this_key, action.key, tx)
                child_key = action.key
            elif isinstance(action, Create):
                mirror = client.compiled.mirror(name, key)
                child_key = await insert_document(
                    client,
                    relation.to,
                    action.data,
                    tx,
                    inbound=(mirror.field, this_key) if mirror is not None else None,
                )
            else:
                raise StoreAssertionError(f"Unexpected insert action {action!r}")

            if relation.is_array:
                doc[key].append(child_key)
            else:
                doc[key] = child_key
            await _link_inserted(collection, name, this_key, key, relation, child_key)

    logger.debug(f"Inserted {name}[{this_key!r}]")
    return this_key


# ============================================================================
# Update
# ============================================================================


async def _apply_relation_action(
    client: "DbClient",
    name: str,
    key: str,
    relation: Relation,
    this_key: Key,
    action: RelationAction,
    tx: StorageTransaction,
) -> None:
    """Run one relation action for one document.

    Side effects on other documents happen first; the document itself is
    then re-read and written, so changes those side effects made to it
    (a SetNull on another field, say) are kept.
    """
    collection = tx.get_collection(name)
    current = await collection.get(this_key)
    if current is None:
        raise StoreAssertionError(f"{name}[{this_key!r}] disappeared during update")
    refs = _refs(current.get(key), relation)

    if isinstance(action, Connect):
        if action.key in refs:
            return
        if not relation.is_array and refs:
            await disconnect_document(client, name, key, this_key, refs[0], tx)
        await connect_document(client, name, key, this_key, action.key, tx)
        new_refs = refs + [action.key] if relation.is_array else [action.key]
    elif isinstance(action, Create):
        if not relation.is_array and refs:
            await disconnect_document(client, name, key, this_key, refs[0], tx)
        mirror = client.compiled.mirror(name, key)
        child_key = await insert_document(
            client,
            relation.to,
            action.data,
            tx,
            inbound=(mirror.field, this_key) if mirror is not None else None,
        )
        new_refs = refs + [child_key] if relation.is_array else [child_key]
    elif isinstance(action, Update):
        if refs:
            await update_documents(client, relation.to, action.mutation, tx, restrict_keys=refs)
        return
    elif isinstance(action, Delete):
        if action.key not in refs:
            return
        await delete_by_key(client, relation.to, action.key, tx, in_progress={(name, this_key)})
        new_refs = [ref for ref in refs if ref != action.key]
    elif isinstance(action, Disconnect):
        if action.key not in refs:
            return
        await disconnect_document(client, name, key, this_key, action.key, tx)
        new_refs = [ref for ref in refs if ref != action.key]
    elif isinstance(action, DeleteAll):
        for ref in refs:
            await delete_by_key(client, relation.to, ref, tx, in_progress={(name, this_key)})
        new_refs = []
    elif isinstance(action, DisconnectAll):
        for ref in refs:
            await disconnect_document(client, name, key, this_key, ref, tx)
        new_refs = []
    else:
        assert_never(action)

    doc = await collection.get(this_key)
    if doc is None:
        raise StoreAssertionError(f"{name}[{this_key!r}] disappeared during update")
    if relation.is_array:
        doc[key] = new_refs
    else:
        doc[key] = new_refs[0] if new_refs else None
    await collection.put(doc)


async def update_documents(
    client: "DbClient",
    name: str,
    mutation: Any,
    tx: StorageTransaction,
    stop_on_first: bool = False,
    restrict_keys: Collection[Key] | None = None,
) -> list[Key]:
    """Apply ``mutation`` to every document matching its ``where``.

    Args:
        client: Owning client.
        name: Collection name.
        mutation: ``{"where": ..., "data": ...}``.  Property values may be
            literals or callables receiving the old value.
        tx: Active readwrite transaction.
        stop_on_first: Stop after the first matching document.
        restrict_keys: Only consider documents with these primary keys
            (used by nested ``$update``).

    Returns:
        Primary keys of the updated documents, in cursor order.

    Raises:
        UpdateFailedError: If ``data`` contains the primary key.
        InvalidItemError: On unknown keys or failed validation.
    """
    if not isinstance(mutation, dict) or not isinstance(mutation.get("data"), dict):
        raise InvalidItemError(f"Update on model '{name}' requires a 'data' object")
    unknown = set(mutation) - {"where", "data"}
    if unknown:
        raise InvalidItemError(f"Unknown update option(s): {sorted(unknown)}")

    model = client.get_model(name)
    where = build_where(mutation.get("where"), model)

    properties: list[tuple[str, Any]] = []
    relations: list[tuple[str, Relation, list[RelationAction]]] = []
    for key, value in mutation["data"].items():
        kind = model.key_kind(key)
        if kind == FieldKind.PRIMARY_KEY:
            raise UpdateFailedError(
                f"Primary key '{key}' of model '{name}' cannot be updated"
            )
        if kind == FieldKind.INVALID:
            raise InvalidItemError(f"Key '{key}' does not exist on model '{name}'")
        if kind == FieldKind.PROPERTY:
            properties.append((key, value))
            continue
        relation = model.get_relation(key)
        target_pk = client.get_model(relation.to).get_primary_key()
        relations.append(
            (key, relation, parse_actions(name, key, relation, value, UPDATE_ACTIONS, target_pk.adapter))
        )

    collection = tx.get_collection(name)
    allowed = None if restrict_keys is None else list(restrict_keys)
    updated: list[Key] = []

    async def on_record(doc: dict) -> bool:
        this_key = doc[model.primary_key]
        if allowed is not None and this_key not in allowed:
            return True
        if not where(doc):
            return True

        if properties:
            for key, value in properties:
                new_value = value(doc.get(key)) if callable(value) else value
                result = model.get(key).validate(new_value)
                if not result.success:
                    raise InvalidItemError(
                        f"Key '{key}' has the following validation error: {result.error}"
                    )
                doc[key] = result.data
            await collection.put(doc)

        for key, relation, actions in relations:
            for action in actions:
                await _apply_relation_action(client, name, key, relation, this_key, action, tx)

        updated.append(this_key)
        return not stop_on_first

    await collection.open_cursor(on_record)
    logger.debug(f"Updated {len(updated)} document(s) in '{name}'")
    return updated
