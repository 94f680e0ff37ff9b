"""JSON export, dump files and restore.

Exported documents are keyed by primary key.  Scalar values go through
the value layer (``datetime`` becomes an ISO string) and relation values
become JSON pointers ``/collection/key`` (``~`` escaped as ``~0``, ``/`` as
``~1``), so a dump is plain JSON that can be re-imported into any storage
backend.

Dump files look like::

    {
      "metadata": {"created_at": "...", "database": "library",
                   "version": "1.0", "authors_count": 2},
      "collections": {
        "authors": {"1": {"id": 1, "name": "A", "books": ["/books/1"]}},
        "books": {"1": {"id": 1, "title": "T", "author": "/authors/1"}}
      }
    }

Usage:
    from relstore.backup import dump_database, restore_database, validate_dump

    path = await dump_database(client, metadata={"environment": "staging"})
    report = validate_dump(path, compiled)       # sync, file only
    summary = await restore_database(client, path, mode="skip")
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import ValidationError

from relstore.adapters.base import Key, StorageTransaction
from relstore.backup.models import DumpMetadata, RestoreSummary, ValidationReport
from relstore.client.query import build_where
from relstore.client.transaction import open_transaction
from relstore.errors import (
    DocumentNotFoundError,
    ExportError,
    InvalidItemError,
    RestoreError,
    StoreError,
)
from relstore.schema.compiler import CompiledDb
from relstore.schema.fields import PrimaryKey, Relation
from relstore.schema.values import deserialize, serialize

if TYPE_CHECKING:
    from relstore.client import DbClient

logger = logging.getLogger(__name__)

DUMP_VERSION = "1.0"

RestoreMode = Literal["skip", "overwrite", "fail"]


# ============================================================================
# JSON pointers
# ============================================================================


def escape_token(text: str) -> str:
    return text.replace("~", "~0").replace("/", "~1")


def unescape_token(text: str) -> str:
    return text.replace("~1", "/").replace("~0", "~")


def key_token(pk: PrimaryKey, key: Key) -> str:
    """String form of a primary key, used as object key and pointer token."""
    value = serialize(pk.adapter, key)
    return value if isinstance(value, str) else json.dumps(value)


def parse_key(pk: PrimaryKey, token: str) -> Key:
    """Inverse of ``key_token``: ``"1"`` -> ``1`` for number keys.

    Raises:
        RestoreError: If ``token`` is not a valid key for ``pk``.
    """
    try:
        return deserialize(pk.adapter, token)
    except ValidationError as e:
        raise RestoreError(f"Invalid primary key {token!r}: {e.error_count()} error(s)") from e


def to_pointer(collection: str, token: str) -> str:
    return f"/{escape_token(collection)}/{escape_token(token)}"


def parse_pointer(pointer: Any) -> tuple[str, str]:
    """Split ``/collection/key`` into its unescaped parts.

    Raises:
        RestoreError: If ``pointer`` is not a two-token pointer string.
    """
    if not isinstance(pointer, str) or not pointer.startswith("/"):
        raise RestoreError(f"Expected reference string, received: {pointer!r}")
    parts = pointer[1:].split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise RestoreError(f"Expected reference string, received: {pointer!r}")
    return unescape_token(parts[0]), unescape_token(parts[1])


# ============================================================================
# Export
# ============================================================================


def _export_document(compiled: CompiledDb, name: str, doc: dict) -> dict:
    exported: dict[str, Any] = {}
    for key, field in compiled.get_model(name).entries():
        value = doc.get(key)
        if isinstance(field, Relation):
            target_pk = compiled.get_model(field.to).get_primary_key()
            if field.is_array:
                if not isinstance(value, list):
                    raise ExportError(f"Expected a list on '{name}.{key}', found {value!r}")
                exported[key] = [to_pointer(field.to, key_token(target_pk, ref)) for ref in value]
            elif value is None:
                exported[key] = None
            else:
                exported[key] = to_pointer(field.to, key_token(target_pk, value))
        else:
            exported[key] = serialize(field.adapter, value)
    return exported


async def _collect(
    client: "DbClient",
    name: str,
    where: Any,
    tx: StorageTransaction,
) -> dict[str, dict]:
    compiled = client.compiled
    model = compiled.get_model(name)
    pk = model.get_primary_key()
    matches = build_where(where, model)
    result: dict[str, dict] = {}

    def on_record(doc: dict) -> bool:
        if not matches(doc):
            return True
        token = key_token(pk, doc[model.primary_key])
        if token in result:
            raise ExportError(f"Duplicate primary key {token!r} detected in '{name}'")
        result[token] = _export_document(compiled, name, doc)
        return True

    await tx.get_collection(name).open_cursor(on_record)
    return result


async def export_collection(
    client: "DbClient",
    name: str,
    where: Any = None,
    tx: StorageTransaction | None = None,
) -> dict[str, dict]:
    """Export one collection as ``{key: document}`` with relation pointers.

    Args:
        client: Database client.
        name: Collection name.
        where: Optional where clause restricting exported documents.
        tx: Optional caller-owned transaction.

    Raises:
        ExportError: On duplicate keys or malformed stored relation values.
    """
    async with open_transaction(client.storage, [name], "readonly", tx) as scope_tx:
        return await _collect(client, name, where, scope_tx)


async def export_database(
    client: "DbClient",
    collections: list[str] | None = None,
    tx: StorageTransaction | None = None,
) -> dict[str, dict[str, dict]]:
    """Export several collections in one read transaction."""
    names = collections if collections is not None else client.keys()
    for name in names:
        client.get_model(name)
    async with open_transaction(client.storage, names, "readonly", tx) as scope_tx:
        return {name: await _collect(client, name, None, scope_tx) for name in names}


async def dump_database(
    client: "DbClient",
    output_path: str | None = None,
    collections: list[str] | None = None,
    metadata: dict | None = None,
) -> str:
    """Export the database to a JSON dump file.

    Args:
        client: Database client.
        output_path: Path to write.  When ``None``, a timestamped path under
            ``./dumps/`` is generated.
        collections: Collections to include (default: all).
        metadata: Extra metadata merged into the dump's ``metadata`` section.

    Returns:
        Path of the written dump file.

    Example:
        path = await dump_database(client, metadata={"environment": "staging"})
    """
    if output_path is None:
        dumps_dir = Path.cwd() / "dumps"
        dumps_dir.mkdir(exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d-%H%M%S")
        output_path = str(dumps_dir / f"dump-{timestamp}.json")

    exported = await export_database(client, collections)

    meta = DumpMetadata(
        created_at=datetime.now().isoformat(),
        database=client.name,
        version=DUMP_VERSION,
    ).model_dump()
    for name, documents in exported.items():
        meta[f"{name}_count"] = len(documents)
    if metadata:
        meta.update(metadata)

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump({"metadata": meta, "collections": exported}, f, indent=2)

    logger.info(f"Dumped {len(exported)} collection(s) to {path}")
    return str(path)


# ============================================================================
# Import
# ============================================================================


def _import_document(
    compiled: CompiledDb,
    name: str,
    token: str,
    raw: Any,
) -> tuple[dict, list[tuple[str, Key]]]:
    """Decode one exported document.

    Returns:
        The stored-form document and the ``(collection, key)`` pairs it
        references.

    Raises:
        RestoreError: On malformed documents or pointers.
        InvalidItemError: If the decoded document fails validation.
    """
    if not isinstance(raw, dict):
        raise RestoreError(f"Document {token!r} in '{name}' is not an object")
    model = compiled.get_model(name)
    pk = model.get_primary_key()
    expected_key = parse_key(pk, token)

    doc: dict[str, Any] = {}
    references: list[tuple[str, Key]] = []
    for key, value in raw.items():
        field = model.get(key)
        if field is None:
            raise RestoreError(f"Key '{key}' does not exist on model '{name}'")
        if isinstance(field, Relation):
            pointers = value if field.is_array else [value]
            if field.is_array and not isinstance(value, list):
                raise RestoreError(f"Expected a list of references on '{name}.{key}'")
            refs = []
            for pointer in pointers:
                if pointer is None and not field.is_array:
                    continue
                collection, ref_token = parse_pointer(pointer)
                if collection != field.to:
                    raise RestoreError(
                        f"Reference {pointer!r} on '{name}.{key}' must point into '{field.to}'"
                    )
                ref = parse_key(compiled.get_model(field.to).get_primary_key(), ref_token)
                refs.append(ref)
                references.append((field.to, ref))
            doc[key] = refs if field.is_array else (refs[0] if refs else None)
        else:
            try:
                doc[key] = deserialize(field.adapter, value)
            except ValidationError as e:
                raise InvalidItemError(
                    f"Key '{key}' on '{name}' document {token!r} could not be decoded: {e}"
                ) from e

    if doc.get(model.primary_key) != expected_key:
        raise RestoreError(
            f"Document {token!r} in '{name}' has primary key {doc.get(model.primary_key)!r}"
        )

    result = compiled.validate_document(name, doc)
    if not result.success:
        raise InvalidItemError(f"Document {token!r} in '{name}': {result.error}")
    return result.data, references


async def import_database(
    client: "DbClient",
    data: dict,
    mode: RestoreMode = "skip",
    dry_run: bool = False,
    tx: StorageTransaction | None = None,
) -> RestoreSummary:
    """Import exported collections in one readwrite transaction.

    Every document is decoded and validated before anything is written.
    References must resolve to a document in the import itself or already
    in storage.

    Args:
        client: Database client.
        data: ``{collection: {key: document}}`` as produced by
            ``export_database``.
        mode: How to handle documents whose key already exists:
            - ``"skip"``: keep the stored document (default).
            - ``"overwrite"``: replace it with the imported one.
            - ``"fail"``: raise ``RestoreError``.
        dry_run: Count what would change without writing.
        tx: Optional caller-owned transaction.

    Returns:
        Per-collection inserted/updated/skipped counts.

    Raises:
        RestoreError: On malformed input or an existing key with ``mode="fail"``.
        InvalidItemError: If a document fails validation.
        DocumentNotFoundError: If a reference cannot be resolved.
    """
    if not isinstance(data, dict):
        raise RestoreError("Expected an object of collections")
    if mode not in ("skip", "overwrite", "fail"):
        raise RestoreError(f"Unknown restore mode {mode!r}")
    compiled = client.compiled

    decoded: dict[str, list[dict]] = {}
    imported_keys: dict[str, set] = {}
    references: list[tuple[str, str, Key]] = []
    for name, documents in data.items():
        if name not in compiled.keys():
            raise RestoreError(f"No collection with the name '{name}' found")
        if not isinstance(documents, dict):
            raise RestoreError(f"Expected an object of documents on key '{name}'")
        pk_name = compiled.get_model(name).primary_key
        decoded[name] = []
        imported_keys[name] = set()
        for token, raw in documents.items():
            doc, refs = _import_document(compiled, name, token, raw)
            decoded[name].append(doc)
            imported_keys[name].add(doc[pk_name])
            references.extend((name, collection, ref) for collection, ref in refs)

    scope = set(decoded) | {collection for _, collection, _ in references}
    summary = RestoreSummary(dry_run=dry_run)

    async with open_transaction(client.storage, scope, "readwrite", tx) as scope_tx:
        for source, collection, ref in references:
            if ref in imported_keys.get(collection, ()):
                continue
            if await scope_tx.get_collection(collection).get(ref) is None:
                raise DocumentNotFoundError(
                    f"Document '{source}' references {ref!r} in '{collection}', "
                    f"which is neither imported nor stored"
                )

        for name, documents in decoded.items():
            pk_name = compiled.get_model(name).primary_key
            handle = scope_tx.get_collection(name)
            counts = summary.for_collection(name)
            for doc in documents:
                existing = await handle.get(doc[pk_name])
                if existing is not None:
                    if mode == "fail":
                        raise RestoreError(
                            f"{name} {doc[pk_name]!r} already exists (mode=fail)"
                        )
                    if mode == "skip":
                        counts.skipped += 1
                        continue
                    if not dry_run:
                        await handle.put(doc)
                    counts.updated += 1
                else:
                    if not dry_run:
                        await handle.put(doc)
                    counts.inserted += 1

    if not dry_run:
        for name in decoded:
            client.invalidate_caches(name)
    logger.info(f"Imported {summary.total} document(s) (dry_run={dry_run})")
    return summary


async def restore_database(
    client: "DbClient",
    dump_path: str,
    mode: RestoreMode = "skip",
    dry_run: bool = False,
) -> RestoreSummary:
    """Restore a dump file written by ``dump_database``.

    Raises:
        RestoreError: If the dump file fails validation.

    Example:
        summary = await restore_database(client, "dumps/dump-2026-01-15.json", mode="overwrite")
    """
    report = validate_dump(dump_path, client.compiled)
    if report.errors:
        raise RestoreError(f"Invalid dump file: {'; '.join(report.errors)}")
    with open(dump_path) as f:
        dump = json.load(f)
    return await import_database(client, dump["collections"], mode=mode, dry_run=dry_run)


def validate_dump(dump_path: str, compiled: CompiledDb) -> ValidationReport:
    """Validate dump file format and document integrity.

    This function is **sync**: it only reads a local JSON file.  References
    to documents missing from the dump are reported as warnings because
    they may already exist in storage.

    Args:
        dump_path: Path to the dump file.
        compiled: Compiled schema to validate against.

    Example:
        report = validate_dump("dumps/dump.json", compiled)
        if not report.valid:
            print(report.errors)
    """
    report = ValidationReport()

    try:
        with open(dump_path) as f:
            dump = json.load(f)
    except FileNotFoundError:
        report.errors.append(f"Dump file not found: {dump_path}")
    except json.JSONDecodeError as e:
        report.errors.append(f"Invalid JSON: {e}")
    else:
        if not isinstance(dump, dict):
            report.errors.append("Dump file must contain a JSON object")
        else:
            for key in ("metadata", "collections"):
                if not isinstance(dump.get(key), dict):
                    report.errors.append(f"Missing required key: {key}")

    if report.errors:
        report.valid = False
        return report

    metadata = dump["metadata"]
    for key in DumpMetadata.model_fields:
        if key not in metadata:
            report.warnings.append(f"Missing metadata field: {key}")
    version = metadata.get("version")
    if version != DUMP_VERSION:
        report.errors.append(f"Unsupported dump version '{version}' (expected '{DUMP_VERSION}')")

    present: dict[str, set] = {}
    references: list[tuple[str, str, Key]] = []
    for name, documents in dump["collections"].items():
        if name not in compiled.keys():
            report.errors.append(f"Unknown collection: {name}")
            continue
        if not isinstance(documents, dict):
            report.errors.append(f"Expected an object of documents on key '{name}'")
            continue
        pk_name = compiled.get_model(name).primary_key
        present[name] = set()
        for token, raw in documents.items():
            try:
                doc, refs = _import_document(compiled, name, token, raw)
            except StoreError as e:
                report.errors.append(str(e))
                continue
            present[name].add(doc[pk_name])
            references.extend((name, collection, ref) for collection, ref in refs)

    for source, collection, ref in references:
        if ref not in present.get(collection, ()):
            report.warnings.append(
                f"{source} references {collection} {ref!r}, which is not in the dump"
            )

    report.valid = not report.errors
    return report
