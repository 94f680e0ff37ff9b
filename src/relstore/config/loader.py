"""Load relstore.toml into ``StoreConfig``.

Expected layout::

    [profiles.local]
    provider = "sql"
    url = "sqlite:///./library.db"
    description = "Local SQLite file"

    [profiles.scratch]
    provider = "memory"

    [schema]
    ref = "myapp.db:compiled"

    [dump]
    dir = "dumps"
"""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from relstore.config.models import StorageProfile, StoreConfig
from relstore.errors import InvalidConfigError

CONFIG_FILENAME = "relstore.toml"


def load_store_config(config_path: Path | str | None = None) -> StoreConfig:
    """Load store configuration from a TOML file.

    Args:
        config_path: Path to the config file (default: ``./relstore.toml``).

    Returns:
        StoreConfig with all profiles.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        InvalidConfigError: If the TOML or a profile is malformed.
    """
    config_path = Path.cwd() / CONFIG_FILENAME if config_path is None else Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Store config not found: {config_path}\n"
            f"Create {CONFIG_FILENAME} with at least one [profiles.<name>] table."
        )

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise InvalidConfigError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        profiles = {
            name: StorageProfile(**profile_data)
            for name, profile_data in data.get("profiles", {}).items()
        }
        return StoreConfig(
            profiles=profiles,
            schema_ref=data.get("schema", {}).get("ref"),
            dump_dir=data.get("dump", {}).get("dir", "dumps"),
        )
    except ValidationError as e:
        raise InvalidConfigError(f"Invalid store config in {config_path}: {e}") from e
