"""Export, dump and restore of collections as JSON."""

from relstore.backup.dump_restore import (
    dump_database,
    export_collection,
    export_database,
    import_database,
    restore_database,
    validate_dump,
)
from relstore.backup.models import (
    CollectionSummary,
    DumpMetadata,
    RestoreSummary,
    ValidationReport,
)

__all__ = [
    "CollectionSummary",
    "DumpMetadata",
    "RestoreSummary",
    "ValidationReport",
    "dump_database",
    "export_collection",
    "export_database",
    "import_database",
    "restore_database",
    "validate_dump",
]
