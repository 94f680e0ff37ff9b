"""Schema/relation compiler.

Turns per-collection field declarations into a ``CompiledDb``: validated
models, per-field validators, and an immutable ``RelationGraph`` linking
every relation to its mirror field.

Mirror matching: a relation ``A.x -> B`` is linked to the first relation
``B.y -> A`` that shares its ``name``, is not linked yet and (for
self-relations) is a different field.  Every relation must find a mirror
unless it is declared ``unidirectional=True``; there are no implicit
reverse relations.

Usage:
    from relstore.schema.compiler import Builder
    from relstore.schema.fields import Field

    builder = Builder("library", ["authors", "books"])
    builder.define_model("authors", {
        "id": Field.primary_key().auto_increment(),
        "name": Field.string(),
        "books": Field.relation("books").array(),
    })
    builder.define_model("books", {
        "id": Field.primary_key().auto_increment(),
        "title": Field.string(),
        "author": Field.relation("authors"),
    })
    compiled = builder.compile()
    compiled.relations.mirror("books", "author")  # RelationEnd("authors", "books")
"""

import logging
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Optional

from pydantic import TypeAdapter

from relstore.errors import InvalidConfigError, NotFoundError
from relstore.schema.fields import (
    KEY_TYPES,
    Cardinality,
    FieldDef,
    OnDelete,
    Relation,
)
from relstore.schema.model import Model
from relstore.schema.values import ParseResult, validate

if TYPE_CHECKING:
    from relstore.adapters.base import StorageEngine
    from relstore.client import DbClient

logger = logging.getLogger(__name__)


# ============================================================================
# Relation graph
# ============================================================================


@dataclass(frozen=True)
class RelationEnd:
    """One side of a relation: ``(model, field)``."""

    model: str
    field: str


class RelationGraph:
    """Immutable adjacency table ``(model, field) -> mirror (model, field)``.

    Unidirectional relations map to ``None``.
    """

    def __init__(self, links: dict[RelationEnd, RelationEnd | None]) -> None:
        self._links = MappingProxyType(dict(links))

    def __len__(self) -> int:
        return len(self._links)

    def __iter__(self) -> Iterator[RelationEnd]:
        return iter(self._links)

    def __contains__(self, end: object) -> bool:
        return end in self._links

    def mirror(self, model: str, field: str) -> RelationEnd | None:
        """Return the mirror end of ``model.field`` (``None`` if unidirectional)."""
        end = RelationEnd(model, field)
        if end not in self._links:
            raise NotFoundError(f"'{model}.{field}' is not a relation")
        return self._links[end]

    def items(self) -> Iterator[tuple[RelationEnd, RelationEnd | None]]:
        yield from self._links.items()


def build_relation_graph(models: dict[str, Model]) -> RelationGraph:
    """Link every relation field to its mirror in one pass.

    Raises:
        InvalidConfigError: On an unknown target model, an unmatched
            relation, or ``SetNull`` on a relation whose mirror is not
            nullable.
    """
    links: dict[RelationEnd, RelationEnd | None] = {}

    for name, model in models.items():
        for key, relation in model.relations():
            end = RelationEnd(name, key)
            if end in links:
                continue

            target = models.get(relation.to)
            if target is None:
                raise InvalidConfigError(
                    f"Relation '{name}.{key}' points to unknown model '{relation.to}'"
                )

            if relation.unidirectional:
                links[end] = None
                continue

            for other_key, other in target.relations():
                other_end = RelationEnd(target.name, other_key)
                if other_end == end or other_end in links:
                    continue
                if other.unidirectional:
                    continue
                if other.to == name and other.name == relation.name:
                    links[end] = other_end
                    links[other_end] = end
                    break
            else:
                raise InvalidConfigError(
                    f"Relation '{relation.name}' on key '{key}' of model '{name}' "
                    f"does not have an equivalent relation on model '{relation.to}'"
                )

    for end, mirror in links.items():
        relation = models[end.model].get_relation(end.field)
        if relation.on_delete != OnDelete.SET_NULL or mirror is None:
            continue
        mirror_relation = models[mirror.model].get_relation(mirror.field)
        if not mirror_relation.is_nullable:
            raise InvalidConfigError(
                f"Key '{mirror.field}' on model '{mirror.model}': non-optional "
                f"relation cannot be the target of '{end.model}.{end.field}' SetNull action"
            )

    return RelationGraph(links)


def relation_adapter(relation: Relation, target: Model) -> TypeAdapter:
    """Validator for a stored relation value, from the target key type."""
    key_type: Any = KEY_TYPES[target.get_primary_key().key_type]
    if relation.cardinality == Cardinality.OPTIONAL:
        return TypeAdapter(Optional[key_type])
    if relation.cardinality == Cardinality.ARRAY:
        return TypeAdapter(list[key_type])
    return TypeAdapter(key_type)


# ============================================================================
# Compiled database
# ============================================================================


class CompiledDb:
    """Immutable compiled schema: models, validators and relation graph.

    Args:
        name: Database name.
        models: Mapping of collection name to ``Model``.

    Raises:
        InvalidConfigError: If the schema or relation graph is invalid.
    """

    def __init__(self, name: str, models: dict[str, Model]) -> None:
        self.name = name
        for key, model in models.items():
            if key != model.name:
                raise InvalidConfigError(
                    f"Collection key '{key}' does not match model name '{model.name}'"
                )
        self._models = dict(models)
        self.relations = build_relation_graph(self._models)

        self.validators: dict[str, dict[str, TypeAdapter]] = {}
        for key, model in self._models.items():
            validators: dict[str, TypeAdapter] = {}
            for field_key, field in model.entries():
                if isinstance(field, Relation):
                    validators[field_key] = relation_adapter(field, self._models[field.to])
                else:
                    validators[field_key] = field.adapter
            self.validators[key] = validators

        self._reachable: dict[str, frozenset[str]] = {}
        logger.debug(
            f"Compiled '{name}': {len(self._models)} collections, "
            f"{len(self.relations)} relation ends"
        )

    def keys(self) -> list[str]:
        return list(self._models)

    def get_model(self, name: str) -> Model:
        model = self._models.get(name)
        if model is None:
            raise NotFoundError(f"No collection with the name '{name}' found")
        return model

    def get_field(self, name: str, key: str) -> FieldDef | None:
        return self.get_model(name).get(key)

    def mirror(self, name: str, key: str) -> RelationEnd | None:
        return self.relations.mirror(name, key)

    def reachable(self, name: str) -> frozenset[str]:
        """Every collection transitively reachable from ``name`` via relations.

        Includes ``name`` itself.  Memoized per compiled schema.
        """
        cached = self._reachable.get(name)
        if cached is not None:
            return cached

        visited: set[str] = set()
        queue = deque([name])
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            known = self._reachable.get(current)
            if known is not None:
                visited |= known
                continue
            visited.add(current)
            for _, relation in self.get_model(current).relations():
                if relation.to not in visited:
                    queue.append(relation.to)

        result = frozenset(visited)
        self._reachable[name] = result
        return result

    def validate_document(self, name: str, doc: dict) -> ParseResult:
        """Validate a stored-form document (relations as raw keys).

        Returns the first failing field as the error.
        """
        validators = self.validators[self.get_model(name).name]
        unknown = [key for key in doc if key not in validators]
        if unknown:
            return ParseResult(
                success=False,
                error=f"Unknown key '{unknown[0]}' on model '{name}'",
            )
        data: dict = {}
        for key, adapter in validators.items():
            result = validate(adapter, doc.get(key))
            if not result.success:
                return ParseResult(
                    success=False,
                    error=f"Key '{key}' has the following validation error: {result.error}",
                )
            data[key] = result.data
        return ParseResult(success=True, data=data)

    async def create_client(self, storage: "StorageEngine") -> "DbClient":
        """Ensure one storage collection per model and return a ``DbClient``."""
        from relstore.client import DbClient

        for name, model in self._models.items():
            await storage.create_collection(name, model.primary_key)
        return DbClient(storage, self)


# ============================================================================
# Builder
# ============================================================================


class Builder:
    """Registers collection names and model definitions, then compiles them.

    Args:
        name: Database name.
        names: Every collection name the database will contain.
    """

    def __init__(self, name: str, names: list[str]) -> None:
        if len(set(names)) != len(names):
            raise InvalidConfigError(f"Duplicate collection names in {names}")
        self.name = name
        self.names = list(names)
        self.models: dict[str, Model] = {}

    def define_model(
        self,
        name_or_model: str | Model,
        fields: dict[str, FieldDef] | None = None,
    ) -> Model:
        if isinstance(name_or_model, Model):
            model = name_or_model
        else:
            if fields is None:
                raise InvalidConfigError("Model fields must be defined")
            model = Model(name_or_model, fields)

        if model.name not in self.names:
            raise InvalidConfigError(
                f"Model '{model.name}' is not a declared collection of '{self.name}'"
            )
        if model.name in self.models:
            raise InvalidConfigError(f"Model '{model.name}' is defined more than once")
        self.models[model.name] = model
        return model

    def compile(self, models: dict[str, Model] | None = None) -> CompiledDb:
        models = dict(self.models if models is None else models)
        missing = [name for name in self.names if name not in models]
        if missing:
            raise InvalidConfigError(
                f"Collections declared without a model: {', '.join(missing)}"
            )
        extra = [name for name in models if name not in self.names]
        if extra:
            raise InvalidConfigError(
                f"Models defined for undeclared collections: {', '.join(extra)}"
            )
        return CompiledDb(self.name, {name: models[name] for name in self.names})
