"""Pydantic models for store configuration."""

from typing import Literal

from pydantic import BaseModel


# ============================================================================
# Configuration Models
# ============================================================================


class StorageProfile(BaseModel):
    """Storage profile from relstore.toml."""

    provider: Literal["memory", "sql"] = "sql"
    url: str = ""
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution


class StoreConfig(BaseModel):
    """Complete store configuration from relstore.toml."""

    profiles: dict[str, StorageProfile]
    schema_ref: str | None = None  # "package.module:attribute" of a CompiledDb
    dump_dir: str = "dumps"
