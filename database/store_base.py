"""
Abstract Data Store — Interface for all key/value storage backends.

Implementations:
  - InMemoryDataStore (dict-based, single-process, no persistence)
  - FileDataStore     (JSON files on disk, single-process, durable)

Workflows keep two kinds of persisted scalars: per-user values (sign-in
dates, scores, counters) and global values shared by everyone. Ranked reads
(leaderboards) are computed over the per-user values of one key.

The interface is synchronous on purpose: templates and conditions read
storage inline while a message is being evaluated.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class RankInfo:
    rank: int            # 1-based; 0 when the user has no value for the key
    value: float | int
    total: int


class BaseDataStore(ABC):
    """Interface that all data store backends must implement."""

    # ── Per-user values ───────────────────────────────────────

    @abstractmethod
    def get_user_value(self, user_id: str, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set_user_value(self, user_id: str, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def incr_user_value(self, user_id: str, key: str, amount: float = 1, default: float = 0) -> float | int:
        """Add ``amount`` (seeding a missing key with ``default``) and return the new value."""
        ...

    @abstractmethod
    def delete_user_value(self, user_id: str, key: str) -> bool:
        ...

    # ── Global values ─────────────────────────────────────────

    @abstractmethod
    def get_global_value(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set_global_value(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def incr_global_value(self, key: str, amount: float = 1, default: float = 0) -> float | int:
        ...

    @abstractmethod
    def delete_global_value(self, key: str) -> bool:
        ...

    # ── Ranked reads ──────────────────────────────────────────

    @abstractmethod
    def top_n(self, key: str, limit: int = 10, ascending: bool = False) -> list[tuple[str, float | int]]:
        """``(user_id, value)`` pairs ordered by value."""
        ...

    @abstractmethod
    def rank_of(self, user_id: str, key: str, ascending: bool = False) -> RankInfo:
        ...

    @abstractmethod
    def count_with_key(self, key: str) -> int:
        ...
