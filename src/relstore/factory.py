"""Storage and client factory.

Resolves a profile from relstore.toml, builds the matching storage engine
and binds it to a compiled schema.

Profile selection:
1. Explicit ``profile_name`` argument
2. ``{env_prefix}RELSTORE_PROFILE`` environment variable
3. Raise ``ProfileNotFoundError``

Usage:
    from relstore.factory import connect

    client = await connect("local", schema="myapp.db:compiled")
    await client["authors"].find()
    await client.close()
"""

import importlib
import logging
import os
from pathlib import Path
from urllib.parse import quote

from relstore.adapters import MemoryStorage, SqlStorage, StorageEngine
from relstore.client import DbClient
from relstore.config.loader import load_store_config
from relstore.config.models import StorageProfile, StoreConfig
from relstore.errors import InvalidConfigError
from relstore.schema.compiler import CompiledDb

logger = logging.getLogger(__name__)

PROFILE_ENV_VAR = "RELSTORE_PROFILE"


class ProfileNotFoundError(Exception):
    """Raised when no storage profile is configured or the name is unknown."""

    pass


# ============================================================================
# Profile resolution
# ============================================================================


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from the environment.

    Args:
        env_prefix: Prefix for the variable name (``"APP_"`` reads
            ``APP_RELSTORE_PROFILE``).

    Raises:
        ProfileNotFoundError: If the variable is unset or empty.
    """
    env_var = f"{env_prefix}{PROFILE_ENV_VAR}"
    profile_name = os.environ.get(env_var)
    if profile_name:
        return profile_name
    raise ProfileNotFoundError(
        "No storage profile configured.\n"
        f"Set {env_var}=<name> or pass --profile."
    )


def get_profile(
    config: StoreConfig,
    profile_name: str | None = None,
    env_prefix: str = "",
) -> tuple[str, StorageProfile]:
    """Return ``(name, profile)`` for the requested or active profile.

    Raises:
        ProfileNotFoundError: If no profile is selected or it is not in the config.
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)
    if profile_name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in config.\n"
            f"Available profiles: {', '.join(config.profiles)}"
        )
    return profile_name, config.profiles[profile_name]


def resolve_url(profile: StorageProfile) -> str:
    """Resolve profile URL with password substitution.

    Example:
        >>> resolve_url(StorageProfile(url="postgresql://u:[YOUR-PASSWORD]@h/db", db_password="p@ss"))
        'postgresql://u:p%40ss@h/db'
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Factories
# ============================================================================


def get_storage(profile: StorageProfile) -> StorageEngine:
    """Create the storage engine a profile describes.

    Raises:
        InvalidConfigError: If an ``sql`` profile has no URL.
    """
    if profile.provider == "memory":
        return MemoryStorage()
    if not profile.url:
        raise InvalidConfigError("SQL profile requires a 'url'")
    return SqlStorage(resolve_url(profile))


def load_schema(ref: str) -> CompiledDb:
    """Import a compiled schema from a ``"module:attribute"`` reference.

    The attribute may be a ``CompiledDb`` or a zero-argument callable
    returning one.

    Raises:
        InvalidConfigError: If the reference is malformed or does not
            resolve to a ``CompiledDb``.
    """
    module_name, sep, attribute = ref.partition(":")
    if not sep or not module_name or not attribute:
        raise InvalidConfigError(f"Schema reference must look like 'module:attribute', got {ref!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise InvalidConfigError(f"Cannot import schema module '{module_name}': {e}") from e

    target = getattr(module, attribute, None)
    if callable(target) and not isinstance(target, CompiledDb):
        target = target()
    if not isinstance(target, CompiledDb):
        raise InvalidConfigError(f"'{ref}' is not a CompiledDb")
    return target


async def connect(
    profile_name: str | None = None,
    schema: CompiledDb | str | None = None,
    config_path: Path | str | None = None,
    env_prefix: str = "",
) -> DbClient:
    """Open a client for a configured profile.

    Args:
        profile_name: Profile in relstore.toml (default: from the environment).
        schema: Compiled schema or ``"module:attribute"`` reference
            (default: the config's ``[schema] ref``).
        config_path: Path to relstore.toml.
        env_prefix: Prefix for the profile environment variable.

    Raises:
        ProfileNotFoundError: If no usable profile is found.
        InvalidConfigError: If no schema is configured.

    Example:
        >>> client = await connect("local", schema="myapp.db:compiled")
    """
    config = load_store_config(config_path)
    name, profile = get_profile(config, profile_name, env_prefix)

    if schema is None:
        schema = config.schema_ref
    if schema is None:
        raise InvalidConfigError("No schema configured: pass schema= or set [schema] ref")
    compiled = load_schema(schema) if isinstance(schema, str) else schema

    storage = get_storage(profile)
    logger.info(f"Connecting profile '{name}' ({profile.provider}) for '{compiled.name}'")
    return await compiled.create_client(storage)
