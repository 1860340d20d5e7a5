"""
Storage Layer.

This package handles all data persistence: the INI configuration file and
the SQLite catalogue of groups, channels, items and API credentials.
"""

from .config_manager import ConfigManager
from .database import CatalogueDB

__all__ = ["CatalogueDB", "ConfigManager"]
