"""
Store Factory — Create the right data store backend from configuration.

Configuration in settings.yaml:
    storage:
      # Data store backend: where per-user and global values live
      #   "file"     JSON files on disk (default)
      #   "memory"   In-memory dicts (development, testing)
      backend: "file"

      # Directory for the file backend (also holds workflows.json)
      data_dir: "./data"

Usage:
    from database.store_factory import create_store, get_store
    store = create_store(config)     # Create from config dict
    store = get_store()              # Get singleton instance
"""
from __future__ import annotations

import structlog
from typing import Optional

from database.store_base import BaseDataStore

logger = structlog.get_logger()

_instance: Optional[BaseDataStore] = None


def create_store(config: dict = None) -> BaseDataStore:
    """
    Factory: create the appropriate data store backend.

    Args:
        config: dict with keys:
            backend: "file" | "memory"  (default: "memory")
            data_dir: str (for file backend, default: "./data")
    """
    global _instance
    if _instance is not None:
        return _instance

    config = config or {}
    backend = config.get("backend", "memory")

    if backend == "file":
        from database.store_file import FileDataStore
        data_dir = config.get("data_dir", "./data")
        _instance = FileDataStore(data_dir=data_dir)
        logger.info("store_created", backend="file", data_dir=data_dir)

    else:  # "memory" or default
        from database.store_memory import InMemoryDataStore
        _instance = InMemoryDataStore()
        logger.info("store_created", backend="memory")

    return _instance


def get_store() -> BaseDataStore:
    """Return the singleton store instance, creating a memory store if none exists."""
    global _instance
    if _instance is None:
        _instance = create_store()
    return _instance


def reset_store() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
