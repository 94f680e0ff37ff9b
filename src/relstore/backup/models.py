"""Dump and restore report models.

Usage:
    from relstore.backup.models import RestoreSummary

    summary = RestoreSummary(dry_run=False)
    summary.for_collection("authors").inserted += 1
"""

from pydantic import BaseModel, ConfigDict, Field


class DumpMetadata(BaseModel):
    """``metadata`` section of a dump file.

    Extra keys are kept: per-collection ``<name>_count`` entries and any
    caller-supplied metadata.
    """

    model_config = ConfigDict(extra="allow")

    created_at: str
    database: str
    version: str


class CollectionSummary(BaseModel):
    """Per-collection restore counts."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0


class RestoreSummary(BaseModel):
    """Result of an import or restore."""

    dry_run: bool = False
    collections: dict[str, CollectionSummary] = Field(default_factory=dict)

    def for_collection(self, name: str) -> CollectionSummary:
        return self.collections.setdefault(name, CollectionSummary())

    @property
    def total(self) -> int:
        return sum(
            c.inserted + c.updated + c.skipped for c in self.collections.values()
        )


class ValidationReport(BaseModel):
    """Outcome of ``validate_dump``."""

    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
