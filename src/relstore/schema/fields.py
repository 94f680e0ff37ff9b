"""Field declarations: primary keys, properties and relations.

A model is an ordered mapping of field name to one of three field kinds:

- ``PrimaryKey``: the document key (number, string or date), generated by
  an auto-increment counter, by a caller function, or supplied by the caller.
- ``Property``: a scalar or structured value validated by pydantic.
- ``Relation``: a typed reference to another collection's primary key with
  a cardinality and an on-delete action.

Usage:
    from relstore.schema.fields import Field, OnDelete

    fields = {
        "id": Field.primary_key().auto_increment(),
        "title": Field.string(),
        "tags": Field.string().array().default(list),
        "author": Field.relation("authors", name="written_by", on_delete=OnDelete.CASCADE),
    }
"""

import copy
import uuid
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from functools import cached_property
from typing import Any, Literal, Optional

from pydantic import TypeAdapter

from relstore.errors import InvalidConfigError, StoreAssertionError
from relstore.schema.values import ParseResult, validate

KeyType = Literal["number", "string", "date"]

KEY_TYPES: dict[str, type] = {
    "number": int,
    "string": str,
    "date": datetime,
}


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()
"""Sentinel for "no value supplied" (distinct from ``None``)."""


# ============================================================================
# Relation enums
# ============================================================================


class OnDelete(str, Enum):
    """What happens to referenced documents when a document is deleted."""

    CASCADE = "Cascade"
    SET_NULL = "SetNull"
    RESTRICT = "Restrict"
    NONE = "None"


class Cardinality(str, Enum):
    SINGLE = "single"
    OPTIONAL = "optional"
    ARRAY = "array"


_ON_DELETE_ALIASES = {
    "CASCADE": OnDelete.CASCADE,
    "SETNULL": OnDelete.SET_NULL,
    "SET_NULL": OnDelete.SET_NULL,
    "SET NULL": OnDelete.SET_NULL,
    "RESTRICT": OnDelete.RESTRICT,
    "NONE": OnDelete.NONE,
    "DO_NOTHING": OnDelete.NONE,
    "DO NOTHING": OnDelete.NONE,
}


def normalize_on_delete(action: OnDelete | str) -> OnDelete:
    """Normalize an on-delete value ("Cascade", "SET_NULL", ...) to ``OnDelete``.

    Raises:
        InvalidConfigError: If the action is not recognized.
    """
    if isinstance(action, OnDelete):
        return action
    if isinstance(action, str):
        normalized = _ON_DELETE_ALIASES.get(action.upper().strip())
        if normalized is not None:
            return normalized
    raise InvalidConfigError(f"Unknown onDelete action: {action!r}")


# ============================================================================
# Primary key
# ============================================================================


class PrimaryKey:
    """Primary key field.

    Exactly one of three key sources applies to a model:

    - auto-increment (``.auto_increment()``, number keys only)
    - generator function (``.generator(fn)``, ``PrimaryKey.uuid()``,
      ``PrimaryKey.date()``)
    - caller supplied (neither of the above)
    """

    def __init__(
        self,
        key_type: KeyType = "number",
        generator: Callable[[], Any] | None = None,
    ) -> None:
        if key_type not in KEY_TYPES:
            raise InvalidConfigError(f"Invalid primary key type: {key_type!r}")
        self.key_type: KeyType = key_type
        self.adapter = TypeAdapter(KEY_TYPES[key_type])
        self._generator = generator
        self._auto_increment = False

    def auto_increment(self) -> "PrimaryKey":
        if self.key_type != "number":
            raise InvalidConfigError(
                "Primary key must be a number to use auto_increment()"
            )
        self._generator = None
        self._auto_increment = True
        return self

    def generator(self, fn: Callable[[], Any]) -> "PrimaryKey":
        self._generator = fn
        self._auto_increment = False
        return self

    @classmethod
    def uuid(cls) -> "PrimaryKey":
        """String key generated with ``uuid4``."""
        return cls("string", lambda: str(uuid.uuid4()))

    @classmethod
    def date(cls) -> "PrimaryKey":
        """Date key generated with ``datetime.now``."""
        return cls("date", datetime.now)

    @property
    def is_auto_incremented(self) -> bool:
        return self._auto_increment

    @property
    def is_generated(self) -> bool:
        return self._auto_increment or self._generator is not None

    def gen_key(self) -> Any:
        if self._generator is None:
            raise StoreAssertionError("Generator function not defined")
        return self._generator()

    def validate(self, raw: Any) -> ParseResult:
        return validate(self.adapter, raw)

    def __repr__(self) -> str:
        mode = (
            "auto_increment"
            if self._auto_increment
            else "generated"
            if self._generator
            else "supplied"
        )
        return f"PrimaryKey({self.key_type!r}, {mode})"


# ============================================================================
# Property
# ============================================================================


class Property:
    """Scalar or structured field validated by a pydantic ``TypeAdapter``.

    Modifiers return new ``Property`` objects, so a base declaration can be
    shared.  ``.array()`` drops any default, like re-declaring the field.
    """

    def __init__(
        self,
        annotation: Any,
        *,
        is_optional: bool = False,
        is_array: bool = False,
        default: Any = MISSING,
    ) -> None:
        self.annotation = annotation
        self.is_optional = is_optional
        self.is_array = is_array
        self._default = default

    def optional(self) -> "Property":
        return Property(
            self.annotation,
            is_optional=True,
            is_array=self.is_array,
            default=self._default,
        )

    def array(self) -> "Property":
        return Property(self.annotation, is_optional=self.is_optional, is_array=True)

    def default(self, value: Any) -> "Property":
        """Set a default value, or a zero-argument factory when callable."""
        return Property(
            self.annotation,
            is_optional=self.is_optional,
            is_array=self.is_array,
            default=value,
        )

    @property
    def has_default(self) -> bool:
        return self._default is not MISSING

    def get_default(self) -> Any:
        if callable(self._default):
            return self._default()
        return copy.deepcopy(self._default)

    @cached_property
    def type_annotation(self) -> Any:
        annotation = self.annotation
        if self.is_array:
            annotation = list[annotation]
        if self.is_optional:
            annotation = Optional[annotation]
        return annotation

    @cached_property
    def adapter(self) -> TypeAdapter:
        return TypeAdapter(self.type_annotation)

    def validate(self, raw: Any = MISSING) -> ParseResult:
        """Validate a payload value, applying the default when it is missing."""
        if raw is MISSING:
            if self.has_default:
                raw = self.get_default()
            elif self.is_optional:
                return ParseResult(success=True, data=None)
            else:
                return ParseResult(success=False, error="Field is required")
        return validate(self.adapter, raw)

    def __repr__(self) -> str:
        return f"Property({self.type_annotation!r})"


# ============================================================================
# Relation
# ============================================================================


class Relation:
    """Reference from one collection's field to another collection's key.

    Two relations mirror each other when they point at each other's models
    and share the same ``name``.  The schema compiler links them; a relation
    without a mirror is a configuration error unless declared with
    ``unidirectional=True``.

    Default on-delete action is ``RESTRICT`` for singular relations and
    ``NONE`` for optional and array relations.
    """

    def __init__(
        self,
        to: str,
        name: str = "",
        *,
        cardinality: Cardinality = Cardinality.SINGLE,
        on_delete: OnDelete | str | None = None,
        unidirectional: bool = False,
    ) -> None:
        if not to:
            raise InvalidConfigError("Relation target model cannot be empty")
        self.to = to
        self.name = name
        self.cardinality = cardinality
        self.unidirectional = unidirectional
        if on_delete is None:
            on_delete = (
                OnDelete.RESTRICT
                if cardinality == Cardinality.SINGLE
                else OnDelete.NONE
            )
        self.on_delete = normalize_on_delete(on_delete)

    def optional(self, on_delete: OnDelete | str | None = None) -> "Relation":
        return Relation(
            self.to,
            self.name,
            cardinality=Cardinality.OPTIONAL,
            on_delete=on_delete,
            unidirectional=self.unidirectional,
        )

    def array(self, on_delete: OnDelete | str | None = None) -> "Relation":
        return Relation(
            self.to,
            self.name,
            cardinality=Cardinality.ARRAY,
            on_delete=on_delete,
            unidirectional=self.unidirectional,
        )

    @property
    def is_array(self) -> bool:
        return self.cardinality == Cardinality.ARRAY

    @property
    def is_optional(self) -> bool:
        return self.cardinality == Cardinality.OPTIONAL

    @property
    def is_nullable(self) -> bool:
        """Whether the field may be emptied (optional or array)."""
        return self.cardinality != Cardinality.SINGLE

    def __repr__(self) -> str:
        return (
            f"Relation({self.to!r}, name={self.name!r}, "
            f"cardinality={self.cardinality.value}, on_delete={self.on_delete.value})"
        )


FieldDef = PrimaryKey | Property | Relation


# ============================================================================
# Field factory
# ============================================================================


class Field:
    """Factory helpers for declaring model fields."""

    @staticmethod
    def primary_key(key_type: KeyType = "number") -> PrimaryKey:
        return PrimaryKey(key_type)

    @staticmethod
    def string() -> Property:
        return Property(str)

    @staticmethod
    def number() -> Property:
        return Property(int | float)

    @staticmethod
    def boolean() -> Property:
        return Property(bool)

    @staticmethod
    def date() -> Property:
        return Property(datetime)

    @staticmethod
    def literal(*values: str | int | bool) -> Property:
        if not values:
            raise InvalidConfigError("Field.literal() needs at least one value")
        return Property(Literal[values])

    @staticmethod
    def custom(annotation: Any) -> Property:
        """Any annotation pydantic can validate (``dict[str, int]``, a model, ...)."""
        return Property(annotation)

    @staticmethod
    def array(item: Property | Any) -> Property:
        if isinstance(item, Property):
            return item.array()
        return Property(item).array()

    @staticmethod
    def relation(
        to: str,
        name: str = "",
        *,
        on_delete: OnDelete | str | None = None,
        unidirectional: bool = False,
    ) -> Relation:
        return Relation(to, name, on_delete=on_delete, unidirectional=unidirectional)
