"""
InMemoryDataStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies
  - Full interface compatibility with FileDataStore
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import structlog
from typing import Any

from database.store_base import BaseDataStore, RankInfo
from utils.values import is_nan, tidy_number, to_number

logger = structlog.get_logger()


class InMemoryDataStore(BaseDataStore):
    """Per-user and global scalars held in plain dicts."""

    def __init__(self):
        self._users: dict[str, dict[str, Any]] = {}     # user_id → {key: value}
        self._globals: dict[str, Any] = {}              # key → value
        logger.info("inmemory_store_initialized")

    # ── Per-user values ───────────────────────────────────

    def get_user_value(self, user_id: str, key: str, default: Any = None) -> Any:
        value = self._users.get(user_id, {}).get(key)
        return default if value is None else value

    def set_user_value(self, user_id: str, key: str, value: Any) -> None:
        self._users.setdefault(user_id, {})[key] = value
        self._changed("users")

    def incr_user_value(self, user_id: str, key: str, amount: float = 1, default: float = 0) -> float | int:
        data = self._users.setdefault(user_id, {})
        current = data.get(key)
        value = tidy_number(to_number(default if current is None else current) + amount)
        data[key] = value
        self._changed("users")
        return value

    def delete_user_value(self, user_id: str, key: str) -> bool:
        data = self._users.get(user_id)
        if data is None or key not in data:
            return False
        del data[key]
        self._changed("users")
        return True

    # ── Global values ─────────────────────────────────────

    def get_global_value(self, key: str, default: Any = None) -> Any:
        value = self._globals.get(key)
        return default if value is None else value

    def set_global_value(self, key: str, value: Any) -> None:
        self._globals[key] = value
        self._changed("globals")

    def incr_global_value(self, key: str, amount: float = 1, default: float = 0) -> float | int:
        current = self._globals.get(key)
        value = tidy_number(to_number(default if current is None else current) + amount)
        self._globals[key] = value
        self._changed("globals")
        return value

    def delete_global_value(self, key: str) -> bool:
        if key not in self._globals:
            return False
        del self._globals[key]
        self._changed("globals")
        return True

    # ── Ranked reads ──────────────────────────────────────

    def _scores(self, key: str, ascending: bool) -> list[tuple[str, float | int]]:
        scores = []
        for uid, data in self._users.items():
            if key in data:
                value = to_number(data[key])
                if not is_nan(value):
                    scores.append((uid, value))
        scores.sort(key=lambda item: item[1], reverse=not ascending)
        return scores

    def top_n(self, key: str, limit: int = 10, ascending: bool = False) -> list[tuple[str, float | int]]:
        return self._scores(key, ascending)[:max(limit, 0)]

    def rank_of(self, user_id: str, key: str, ascending: bool = False) -> RankInfo:
        scores = self._scores(key, ascending)
        for i, (uid, value) in enumerate(scores):
            if uid == user_id:
                return RankInfo(rank=i + 1, value=value, total=len(scores))
        return RankInfo(rank=0, value=0, total=len(scores))

    def count_with_key(self, key: str) -> int:
        return sum(1 for data in self._users.values() if key in data)

    # ── Hooks ─────────────────────────────────────────────

    def _changed(self, collection: str) -> None:
        """Called after every mutation; persistent subclasses flush here."""
