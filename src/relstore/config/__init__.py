"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from relstore.config import load_store_config, StorageProfile, StoreConfig
"""

from relstore.config.loader import load_store_config
from relstore.config.models import StorageProfile, StoreConfig

__all__ = ["load_store_config", "StorageProfile", "StoreConfig"]
