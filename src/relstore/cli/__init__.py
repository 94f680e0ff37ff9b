"""CLI module for store profiles, schema inspection, dumps and restores.

Usage:
    relstore profiles
    relstore schema --schema myapp.db:compiled
    RELSTORE_PROFILE=local relstore dump --output dumps/library.json
    relstore --profile local restore dumps/library.json --mode overwrite --dry-run
    relstore validate dumps/library.json

Commands:
    profiles  - List profiles from relstore.toml
    schema    - Show collections, fields and relation links of the schema
    dump      - Write every collection to a JSON dump file
    restore   - Import a dump file into the active profile
    validate  - Check a dump file against the schema (no storage access)
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.table import Table

from relstore.backup.dump_restore import dump_database, restore_database, validate_dump
from relstore.config.loader import load_store_config
from relstore.errors import InvalidConfigError, StoreError
from relstore.factory import (
    PROFILE_ENV_VAR,
    ProfileNotFoundError,
    connect,
    load_schema,
)
from relstore.schema.compiler import CompiledDb
from relstore.schema.fields import PrimaryKey, Property, Relation

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def _load_compiled(args: argparse.Namespace) -> CompiledDb:
    """Resolve the schema from ``--schema`` or the config's ``[schema] ref``."""
    ref = args.schema
    if ref is None:
        ref = load_store_config(args.config).schema_ref
    if ref is None:
        raise InvalidConfigError("No schema configured: pass --schema or set [schema] ref")
    return load_schema(ref)


def _describe_field(field: PrimaryKey | Property | Relation) -> str:
    if isinstance(field, PrimaryKey):
        return repr(field)
    if isinstance(field, Relation):
        return f"-> {field.to} ({field.cardinality.value}, on_delete={field.on_delete.value})"
    return repr(field.type_annotation)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_dump(args: argparse.Namespace) -> int:
    output = args.output
    if output is None:
        dump_dir = Path(load_store_config(args.config).dump_dir)
        timestamp = datetime.now().strftime("%Y-%m-%d-%H%M%S")
        output = str(dump_dir / f"dump-{timestamp}.json")

    client = await connect(args.profile, args.schema, args.config, args.env_prefix)
    try:
        collections = args.collections.split(",") if args.collections else None
        console.print("Dumping collections...", style="dim")
        path = await dump_database(client, output, collections)
    finally:
        await client.close()
    console.print(f"[bold green]v[/bold green] Dump written to [cyan]{path}[/cyan]")
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    client = await connect(args.profile, args.schema, args.config, args.env_prefix)
    try:
        summary = await restore_database(client, args.path, mode=args.mode, dry_run=args.dry_run)
    finally:
        await client.close()

    table = Table(title="Restore Summary", show_header=True, header_style="bold")
    table.add_column("Collection")
    table.add_column("Inserted", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Skipped", justify="right")
    for name, counts in summary.collections.items():
        table.add_row(name, str(counts.inserted), str(counts.updated), str(counts.skipped))
    console.print(table)

    if summary.dry_run:
        console.print("[bold yellow]DRY RUN[/bold yellow] - No changes made.")
    return 0


# ============================================================================
# Command handlers
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from relstore.toml.

    Returns:
        0 on success, 1 if the config file is not found.
    """
    try:
        config = load_store_config(args.config)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = os.environ.get(f"{args.env_prefix}{PROFILE_ENV_VAR}")

    table = Table(title="Storage Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        table.add_row(marker, name, profile.provider, profile.description or "")

    console.print(table)
    if current:
        console.print("\n[bold green]*[/bold green] = active profile")
    return 0


def cmd_schema(args: argparse.Namespace) -> int:
    """Show every collection with its fields and relation mirrors."""
    compiled = _load_compiled(args)

    for name in compiled.keys():
        model = compiled.get_model(name)
        table = Table(title=f"{compiled.name}.{name}", show_header=True, header_style="bold")
        table.add_column("Field")
        table.add_column("Definition")
        table.add_column("Mirror")
        for key, field in model.entries():
            mirror = ""
            if isinstance(field, Relation):
                end = compiled.mirror(name, key)
                mirror = f"{end.model}.{end.field}" if end else "[dim]unidirectional[/dim]"
            table.add_row(key, _describe_field(field), mirror)
        console.print(table)
    return 0


def cmd_dump(args: argparse.Namespace) -> int:
    """Write a dump file.  Wraps the async implementation with ``asyncio.run()``."""
    return asyncio.run(_async_dump(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a dump file.  Wraps the async implementation with ``asyncio.run()``."""
    return asyncio.run(_async_restore(args))


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a dump file against the schema.

    Returns:
        0 when valid, 1 otherwise.
    """
    compiled = _load_compiled(args)
    report = validate_dump(args.path, compiled)

    for warning in report.warnings:
        console.print(f"[yellow]! {warning}[/yellow]")
    if report.valid:
        console.print(f"[bold green]v[/bold green] {Path(args.path).name} is valid")
        return 0
    for error in report.errors:
        console.print(f"[red]x {error}[/red]")
    return 1


# ============================================================================
# Entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relstore",
        description="Relational document store toolkit",
    )
    parser.add_argument("--config", default=None, help="Path to relstore.toml")
    parser.add_argument(
        "--env-prefix",
        default="",
        help=f"Prefix for environment variable lookup (e.g., APP_ reads APP_{PROFILE_ENV_VAR})",
    )
    parser.add_argument("--profile", default=None, help="Profile name (overrides the environment)")
    parser.add_argument("--schema", default=None, help="Schema reference 'module:attribute'")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_schema = subparsers.add_parser("schema", help="Show the compiled schema")
    p_schema.set_defaults(func=cmd_schema)

    p_dump = subparsers.add_parser("dump", help="Write a JSON dump of the database")
    p_dump.add_argument("--output", "-o", default=None, help="Output file path")
    p_dump.add_argument("--collections", default=None, help="Comma-separated collection names")
    p_dump.set_defaults(func=cmd_dump)

    p_restore = subparsers.add_parser("restore", help="Restore a JSON dump")
    p_restore.add_argument("path", help="Dump file to restore")
    p_restore.add_argument(
        "--mode",
        choices=["skip", "overwrite", "fail"],
        default="skip",
        help="How to handle documents that already exist",
    )
    p_restore.add_argument("--dry-run", action="store_true", help="Count changes without writing")
    p_restore.set_defaults(func=cmd_restore)

    p_validate = subparsers.add_parser("validate", help="Validate a dump file")
    p_validate.add_argument("path", help="Dump file to validate")
    p_validate.set_defaults(func=cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except (StoreError, ProfileNotFoundError, FileNotFoundError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
