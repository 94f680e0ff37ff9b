"""Scalar value validation and serialization.

Wraps pydantic ``TypeAdapter`` so every field can be validated, serialized
to a JSON-safe value for export, and deserialized back.

- ``validate`` runs in strict mode: payload values must already have the
  declared type (no ``"1"`` -> ``1`` coercion).
- ``deserialize`` runs in lax mode, so ISO strings become ``datetime``.

Usage:
    from pydantic import TypeAdapter
    from relstore.schema.values import validate

    result = validate(TypeAdapter(int), 5)
    result.success  # True
    result.data     # 5
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError


class ParseResult(BaseModel):
    """Outcome of validating one raw value.

    Example:
        >>> ParseResult(success=False, error="Input should be a valid string")
        ParseResult(success=False, data=None, error='Input should be a valid string')
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    data: Any = None
    error: str | None = None


def _format_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{loc}: {item['msg']}" if loc else item["msg"])
    return "; ".join(parts)


def validate(adapter: TypeAdapter, raw: Any) -> ParseResult:
    """Strictly validate ``raw`` against ``adapter``."""
    try:
        return ParseResult(success=True, data=adapter.validate_python(raw, strict=True))
    except ValidationError as e:
        return ParseResult(success=False, error=_format_error(e))


def serialize(adapter: TypeAdapter, value: Any) -> Any:
    """Convert ``value`` to a JSON-safe value."""
    return adapter.dump_python(value, mode="json")


def deserialize(adapter: TypeAdapter, raw: Any) -> Any:
    """Rebuild a value produced by ``serialize``.

    Raises:
        pydantic.ValidationError: If ``raw`` does not fit the type.
    """
    return adapter.validate_python(raw)
