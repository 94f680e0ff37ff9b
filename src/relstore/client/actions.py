"""Relation mutation vocabulary.

Relation fields in a mutation payload hold connection objects such as
``{"$connect": 3}`` or ``{"$createMany": [{...}, {...}]}``.  This module
parses them into a closed union of action variants; the ``...Many`` forms
expand into repeated singular actions and the ``...All`` forms become
``DeleteAll`` / ``DisconnectAll``.

Usage:
    actions = parse_actions(
        "authors", "books", relation,
        [{"$connect": 1}, {"$createMany": [{"title": "T"}]}],
        allowed=INSERT_ACTIONS,
    )
    # [Connect(key=1), Create(data={"title": "T"})]
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import TypeAdapter

from relstore.errors import InvalidItemError
from relstore.schema.fields import Relation
from relstore.schema.values import validate


@dataclass(frozen=True)
class Connect:
    key: Any


@dataclass(frozen=True)
class Create:
    data: dict = field(hash=False)


@dataclass(frozen=True)
class Update:
    mutation: dict = field(hash=False)

    @property
    def data(self) -> dict:
        return self.mutation.get("data") or {}


@dataclass(frozen=True)
class Delete:
    key: Any


@dataclass(frozen=True)
class Disconnect:
    key: Any


@dataclass(frozen=True)
class DeleteAll:
    pass


@dataclass(frozen=True)
class DisconnectAll:
    pass


RelationAction = Connect | Create | Update | Delete | Disconnect | DeleteAll | DisconnectAll

_SINGLE = {
    "$connect": Connect,
    "$create": Create,
    "$update": Update,
    "$delete": Delete,
    "$disconnect": Disconnect,
}
_MANY = {
    "$connectMany": Connect,
    "$createMany": Create,
    "$updateMany": Update,
    "$deleteMany": Delete,
    "$disconnectMany": Disconnect,
}
_ALL = {
    "$deleteAll": DeleteAll,
    "$disconnectAll": DisconnectAll,
}

INSERT_ACTIONS = frozenset({"$connect", "$create", "$connectMany", "$createMany"})
UPDATE_ACTIONS = frozenset(_SINGLE) | frozenset(_MANY) | frozenset(_ALL)

# Actions that empty a relation field, so they need an optional or array relation
_NULLABLE_ONLY = (Delete, Disconnect, DeleteAll, DisconnectAll)


def _build(cls: type, payload: Any, where: str, key_adapter: TypeAdapter | None) -> RelationAction:
    if cls is Create:
        if not isinstance(payload, dict):
            raise InvalidItemError(f"{where}: '$create' expects an object")
        return Create(payload)
    if cls is Update:
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
            raise InvalidItemError(f"{where}: '$update' expects an object with 'data'")
        return Update(payload)
    if key_adapter is not None:
        result = validate(key_adapter, payload)
        if not result.success:
            raise InvalidItemError(f"{where}: invalid primary key {payload!r}: {result.error}")
        payload = result.data
    return cls(payload)


def parse_actions(
    model_name: str,
    key: str,
    relation: Relation,
    value: Any,
    allowed: frozenset[str] = UPDATE_ACTIONS,
    key_adapter: TypeAdapter | None = None,
) -> list[RelationAction]:
    """Normalize a relation payload into a list of actions.

    Args:
        model_name: Model owning the relation (for messages).
        key: Relation field name.
        relation: Relation declaration.
        value: Connection object, or a list of them for array relations.
        allowed: Action keys accepted in this context.
        key_adapter: Optional validator for the target primary key.

    Returns:
        Actions in payload order.

    Raises:
        InvalidItemError: On unknown or disallowed action keys, malformed
            payloads, list forms on singular relations, or a singular
            relation resolving to anything but exactly one action.
    """
    where = f"Key '{key}' on model '{model_name}'"

    if isinstance(value, list):
        if not relation.is_array:
            raise InvalidItemError(f"{where}: a list of connections needs an array relation")
        items = value
    else:
        items = [value]

    actions: list[RelationAction] = []
    for item in items:
        if not isinstance(item, dict) or not item:
            raise InvalidItemError(f"{where} cannot be an empty connection object")
        for action_key, payload in item.items():
            if action_key not in allowed:
                raise InvalidItemError(
                    f"Connection object on {where.lower()} has an unknown key '{action_key}'"
                )
            if action_key in _MANY:
                if not relation.is_array:
                    raise InvalidItemError(f"{where}: '{action_key}' needs an array relation")
                if not isinstance(payload, list):
                    raise InvalidItemError(f"{where}: '{action_key}' expects a list")
                for sub in payload:
                    actions.append(_build(_MANY[action_key], sub, where, key_adapter))
            elif action_key in _ALL:
                if not relation.is_array:
                    raise InvalidItemError(f"{where}: '{action_key}' needs an array relation")
                if payload:
                    actions.append(_ALL[action_key]())
            else:
                actions.append(_build(_SINGLE[action_key], payload, where, key_adapter))

    if not relation.is_array and len(actions) != 1:
        raise InvalidItemError(f"{where}: a singular relation takes exactly one action")

    for action in actions:
        if isinstance(action, _NULLABLE_ONLY) and not relation.is_nullable:
            raise InvalidItemError(
                f"{where}: item cannot be deleted or disconnected, relation is required"
            )
    return actions
