"""Schema declaration and compilation.

Usage:
    from relstore.schema import Builder, Field, OnDelete
"""

from relstore.schema.compiler import (
    Builder,
    CompiledDb,
    RelationEnd,
    RelationGraph,
    build_relation_graph,
)
from relstore.schema.fields import (
    MISSING,
    Cardinality,
    Field,
    OnDelete,
    PrimaryKey,
    Property,
    Relation,
)
from relstore.schema.model import FieldKind, Model
from relstore.schema.values import ParseResult, deserialize, serialize, validate

__all__ = [
    "Builder",
    "CompiledDb",
    "RelationEnd",
    "RelationGraph",
    "build_relation_graph",
    "MISSING",
    "Cardinality",
    "Field",
    "OnDelete",
    "PrimaryKey",
    "Property",
    "Relation",
    "FieldKind",
    "Model",
    "ParseResult",
    "deserialize",
    "serialize",
    "validate",
]
