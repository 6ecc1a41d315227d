"""
Bounded cache of compiled regular expressions.

Patterns are compiled once and memoised. When the cache is full the
oldest-inserted pattern is evicted first; lookups do not refresh an entry's
position. Invalid patterns compile to ``None`` and are never stored, so they
stay non-matching without raising.
"""
from __future__ import annotations

import re
from collections import OrderedDict
from typing import Optional

import structlog

logger = structlog.get_logger()


class RegexCache:
    """FIFO-bounded map of pattern text → compiled pattern."""

    def __init__(self, capacity: int = 200):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: OrderedDict[str, re.Pattern] = OrderedDict()

    def get(self, pattern: str) -> Optional[re.Pattern]:
        compiled = self._entries.get(pattern)
        if compiled is not None:
            return compiled
        try:
            compiled = re.compile(pattern)
        except (re.error, TypeError) as e:
            logger.debug("regex_invalid", pattern=pattern, error=str(e))
            return None
        if len(self._entries) >= self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("regex_evicted", pattern=evicted)
        self._entries[pattern] = compiled
        return compiled

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, pattern: object) -> bool:
        return pattern in self._entries

    def __len__(self) -> int:
        return len(self._entries)
