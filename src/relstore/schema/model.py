"""Model: a named, ordered set of field declarations.

Usage:
    from relstore.schema.fields import Field
    from relstore.schema.model import Model

    authors = Model("authors", {
        "id": Field.primary_key().auto_increment(),
        "name": Field.string(),
        "books": Field.relation("books").array(),
    })
    authors.primary_key          # "id"
    list(authors.relations())    # [("books", Relation('books', ...))]
"""

from collections.abc import Iterator
from enum import Enum

from relstore.errors import InvalidConfigError
from relstore.schema.fields import FieldDef, PrimaryKey, Property, Relation


class FieldKind(str, Enum):
    PRIMARY_KEY = "primary_key"
    PROPERTY = "property"
    RELATION = "relation"
    INVALID = "invalid"


class Model:
    """A collection's field declarations.

    Args:
        name: Collection name.
        fields: Ordered mapping of field name to field declaration.

    Raises:
        InvalidConfigError: If a field key is empty, a value is not a field
            declaration, or the model does not have exactly one primary key.
    """

    def __init__(self, name: str, fields: dict[str, FieldDef]) -> None:
        if not name:
            raise InvalidConfigError("Model name cannot be empty")
        self.name = name
        self._fields = dict(fields)

        primary: str | None = None
        for key, field in self._fields.items():
            if not key:
                raise InvalidConfigError(
                    f"Model '{name}' has an empty-string field key. This is not allowed."
                )
            if isinstance(field, PrimaryKey):
                if primary is not None:
                    raise InvalidConfigError(f"Model '{name}' has more than one primary key")
                primary = key
            elif not isinstance(field, (Property, Relation)):
                raise InvalidConfigError(
                    f"Unknown field value on key '{key}' of model '{name}': {field!r}"
                )

        if primary is None:
            raise InvalidConfigError(f"Model '{name}' has no primary key")
        self.primary_key = primary

    def __repr__(self) -> str:
        return f"Model({self.name!r}, fields={list(self._fields)})"

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def keys(self) -> list[str]:
        return list(self._fields)

    def entries(self) -> Iterator[tuple[str, FieldDef]]:
        yield from self._fields.items()

    def get(self, key: str) -> FieldDef | None:
        return self._fields.get(key)

    def get_primary_key(self) -> PrimaryKey:
        return self._fields[self.primary_key]  # type: ignore[return-value]

    def key_kind(self, key: str) -> FieldKind:
        field = self._fields.get(key)
        if isinstance(field, PrimaryKey):
            return FieldKind.PRIMARY_KEY
        if isinstance(field, Property):
            return FieldKind.PROPERTY
        if isinstance(field, Relation):
            return FieldKind.RELATION
        return FieldKind.INVALID

    def get_relation(self, key: str) -> Relation | None:
        field = self._fields.get(key)
        return field if isinstance(field, Relation) else None

    def properties(self) -> Iterator[tuple[str, Property]]:
        for key, field in self._fields.items():
            if isinstance(field, Property):
                yield key, field

    def relations(self) -> Iterator[tuple[str, Relation]]:
        for key, field in self._fields.items():
            if isinstance(field, Relation):
                yield key, field
