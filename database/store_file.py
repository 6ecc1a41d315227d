"""
FileDataStore — JSON file-backed store with persistence across restarts.

Data layout:
  {data_dir}/
    user_data.json      {user_id: {key: value}}
    global_data.json    {key: value}

Features:
  - Survives process restarts (unlike InMemoryDataStore)
  - No external dependencies (no database server)
  - Flushes the changed collection on every mutation (tmp file + rename)
  - Single-process only (no concurrent write safety)

Best for: bot deployments where one process owns the data directory.
"""
from __future__ import annotations

import json
import structlog
from pathlib import Path
from typing import Any

from database.store_memory import InMemoryDataStore

logger = structlog.get_logger()

_FILES = {
    "users": "user_data.json",
    "globals": "global_data.json",
}


class FileDataStore(InMemoryDataStore):
    """
    Extends InMemoryDataStore with JSON file persistence.

    On init: loads both collections from disk.
    On every write: flushes the changed collection.
    """

    def __init__(self, data_dir: str = "./data"):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._load_all()
        logger.info("file_store_initialized", data_dir=str(self._data_dir))

    # ── Load / Save ───────────────────────────────────────

    def _file_path(self, collection: str) -> Path:
        return self._data_dir / _FILES[collection]

    def _load_all(self):
        for collection in _FILES:
            path = self._file_path(collection)
            if not path.exists():
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("file_store_load_error", collection=collection, error=str(e))
                continue
            if not isinstance(data, dict):
                logger.warning("file_store_bad_shape", collection=collection)
                continue
            if collection == "users":
                self._users = {uid: v for uid, v in data.items() if isinstance(v, dict)}
            else:
                self._globals = data
            logger.debug("file_store_loaded", collection=collection, records=len(data))

    def _collection_data(self, collection: str) -> Any:
        return self._users if collection == "users" else self._globals

    def _flush_collection(self, collection: str):
        path = self._file_path(collection)
        tmp_path = path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._collection_data(collection), f, indent=2, ensure_ascii=False, default=str)
            tmp_path.replace(path)
        except OSError as e:
            logger.error("file_store_flush_failed", collection=collection, error=str(e))

    def flush_all(self):
        """Force flush all collections to disk."""
        for collection in _FILES:
            self._flush_collection(collection)
        logger.info("file_store_flushed_all")

    def _changed(self, collection: str) -> None:
        self._flush_collection(collection)
