"""
Persistence layer — per-user / global values and the workflow collection.

Backends:
  - In-memory (dict-based, for development/testing)
  - File (JSON files on disk)

Quick start:
  from database import create_store, get_store
  store = create_store({"backend": "memory"})
  store.incr_user_value("10001", "score", 5)
"""
from database.store_base import BaseDataStore, RankInfo
from database.store_memory import InMemoryDataStore
from database.store_file import FileDataStore
from database.store_factory import create_store, get_store, reset_store
from database.workflow_repo import WorkflowRepository

__all__ = [
    # Store interface
    "BaseDataStore", "RankInfo",
    # Store backends
    "InMemoryDataStore", "FileDataStore",
    # Factory
    "create_store", "get_store", "reset_store",
    # Workflows
    "WorkflowRepository",
]
