"""Error taxonomy for relstore.

Every error raised by the engine is a ``StoreError`` subclass carrying a
stable ``code``.  Transaction boundaries abort the enclosing transaction
before the error reaches the caller, and wrap anything that is not a
``StoreError`` in ``UnknownError``.

Usage:
    from relstore.errors import DocumentNotFoundError, StoreError

    try:
        await client["books"].add({"title": "T", "author": {"$connect": 99}})
    except DocumentNotFoundError as e:
        print(e.code)  # "NOT_FOUND"
"""


class StoreError(Exception):
    """Base class for all relstore errors.

    Args:
        message: Human readable message.  Falls back to the class default.
    """

    code: str = "UNKNOWN"
    default_message: str = "An unknown error occurred"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(f"({self.code}) {self.message}")


# ============================================================================
# Configuration / schema errors
# ============================================================================


class InvalidConfigError(StoreError):
    """Schema or relation graph is invalid (fatal at compile time)."""

    code = "INVALID_CONFIG"
    default_message = "Configuration is invalid"


# ============================================================================
# Payload errors
# ============================================================================


class InvalidItemError(StoreError):
    """Payload failed validation or uses malformed mutation vocabulary."""

    code = "INVALID_ITEM"
    default_message = "Item is invalid"


class NotFoundError(StoreError):
    """A referenced collection or key does not exist."""

    code = "NOT_FOUND"
    default_message = "Not found"


class DocumentNotFoundError(NotFoundError):
    default_message = "Document not found"


class OverwriteRelationError(StoreError):
    """Repointing a populated singular bidirectional relation."""

    code = "OVERWRITE_RELATION"
    default_message = "Relation cannot be overwritten"


class DeleteRestrictedError(StoreError):
    """A ``Restrict`` relation is populated on a document being deleted."""

    code = "DELETE_RESTRICTED"
    default_message = "Deletion is restricted while a relation is active"


# ============================================================================
# Storage-level errors
# ============================================================================


class AddFailedError(StoreError):
    code = "ADD_FAILED"
    default_message = "Item could not be added"


class UpdateFailedError(StoreError):
    code = "UPDATE_FAILED"
    default_message = "Item could not be updated"


class DeleteFailedError(StoreError):
    """The storage backend failed to remove a document."""

    code = "DELETE_FAILED"
    default_message = "Item could not be deleted"


class InvalidTransactionError(StoreError):
    """The transaction is closed or does not cover the requested collection."""

    code = "INVALID_TX"
    default_message = "Transaction is invalid"


# ============================================================================
# Internal / wrapped errors
# ============================================================================


class StoreAssertionError(StoreError):
    """An internal invariant was violated (e.g. a corrupt stored document)."""

    code = "ASSERTION_FAILED"
    default_message = "Assertion failed"


class UnknownError(StoreError):
    """Wraps an exception raised by a collaborator that is not a StoreError."""

    code = "UNKNOWN"
    default_message = "An unknown error occurred"


# ============================================================================
# Export / import errors
# ============================================================================


class ExportError(StoreError):
    code = "EXPORT"
    default_message = "Export failed"


class RestoreError(StoreError):
    code = "IMPORT"
    default_message = "Import failed"
