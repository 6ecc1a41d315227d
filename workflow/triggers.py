"""
Trigger matching — decides whether a workflow fires for a message.
"""
from __future__ import annotations

from typing import Optional

from models.schemas import SCHEDULED_SENTINELS, TriggerParams
from utils.regex_cache import RegexCache

# kinds only the scheduler can fire
CLOCK_TRIGGERS = ("scheduled", "timer")


class TriggerMatcher:

    def __init__(self, regex_cache: RegexCache):
        self.regex_cache = regex_cache

    def match(self, params: TriggerParams, text: str) -> Optional[list[str]]:
        """Capture list when the trigger fires for ``text``, None otherwise."""
        if text in SCHEDULED_SENTINELS:
            return []
        kind = params.trigger_type
        literal = params.literal
        if kind in CLOCK_TRIGGERS or not literal:
            return None

        if kind == "exact":
            return [] if text == literal else None
        if kind == "contains":
            return [] if literal in text else None
        if kind == "startswith":
            return [] if text.startswith(literal) else None
        if kind == "regex":
            pattern = self.regex_cache.get(literal)
            if pattern is None:
                return None
            m = pattern.search(text)
            if m is None:
                return None
            return [g or "" for g in m.groups()]
        if kind == "any":
            keywords = [k.strip() for k in literal.split("|")]
            return [] if any(k and k in text for k in keywords) else None
        return None
