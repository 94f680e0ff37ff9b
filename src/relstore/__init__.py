"""relstore: relation-aware document store with async transactional storage.

Declare collections and their relations, compile them once, then insert,
update, delete and query documents while both ends of every relation are
kept in sync inside a single transaction.

Usage:
    from relstore import Builder, Field, MemoryStorage

    builder = Builder("library", ["authors", "books"])
    builder.define_model("authors", {
        "id": Field.primary_key().auto_increment(),
        "name": Field.string(),
        "books": Field.relation("books").array(on_delete="Cascade"),
    })
    builder.define_model("books", {
        "id": Field.primary_key().auto_increment(),
        "title": Field.string(),
        "author": Field.relation("authors"),
    })
    client = await builder.compile().create_client(MemoryStorage())
"""

__version__ = "0.1.0"

# Storage
from relstore.adapters import MemoryStorage, SqlStorage, StorageEngine, StorageTransaction

# Schema
from relstore.schema.compiler import Builder, CompiledDb
from relstore.schema.fields import Field, OnDelete, PrimaryKey, Property, Relation
from relstore.schema.model import Model

# Client
from relstore.client import CollectionClient, CompiledQuery, DbClient

# Backup
from relstore.backup import (
    RestoreSummary,
    ValidationReport,
    dump_database,
    export_collection,
    export_database,
    import_database,
    restore_database,
    validate_dump,
)

# Config / factory
from relstore.config import StorageProfile, StoreConfig, load_store_config
from relstore.factory import ProfileNotFoundError, connect, resolve_url

# Errors
from relstore.errors import (
    AddFailedError,
    DeleteRestrictedError,
    DocumentNotFoundError,
    InvalidConfigError,
    InvalidItemError,
    InvalidTransactionError,
    NotFoundError,
    OverwriteRelationError,
    StoreError,
    UnknownError,
    UpdateFailedError,
)

__all__ = [
    # Storage
    "MemoryStorage",
    "SqlStorage",
    "StorageEngine",
    "StorageTransaction",
    # Schema
    "Builder",
    "CompiledDb",
    "Field",
    "Model",
    "OnDelete",
    "PrimaryKey",
    "Property",
    "Relation",
    # Client
    "CollectionClient",
    "CompiledQuery",
    "DbClient",
    # Backup
    "RestoreSummary",
    "ValidationReport",
    "dump_database",
    "export_collection",
    "export_database",
    "import_database",
    "restore_database",
    "validate_dump",
    # Config / factory
    "StorageProfile",
    "StoreConfig",
    "load_store_config",
    "ProfileNotFoundError",
    "connect",
    "resolve_url",
    # Errors
    "AddFailedError",
    "DeleteRestrictedError",
    "DocumentNotFoundError",
    "InvalidConfigError",
    "InvalidItemError",
    "InvalidTransactionError",
    "NotFoundError",
    "OverwriteRelationError",
    "StoreError",
    "UnknownError",
    "UpdateFailedError",
]
