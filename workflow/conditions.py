"""
Condition evaluator — the predicate behind every ``condition`` node.

The configured value is rendered through the template engine first, so a
condition can compare against live data (``{storage.score}``, ``{$1}``, …).
Compound values are split on a separator: ``key=value`` (data_equals,
global_equals), ``key>value`` (data_gt, global_gt), ``key<value`` (data_lt),
``key,seconds`` (cooldown), ``start-end`` (time_range), ``a|b|c``
(weekday_in).

Unknown kinds pass. Any exception fails the condition.
"""
from __future__ import annotations

import random
import structlog
from datetime import datetime
from typing import Any, Callable, Optional

from database.store_base import BaseDataStore
from models.schemas import ConditionParams, InboundEvent
from utils.regex_cache import RegexCache
from utils.values import parse_float_prefix, parse_int_prefix, to_number, to_str, truthy
from workflow.expression import Value, eval_bool
from workflow.templating import RESERVED_CONTEXT_KEYS, TemplateRenderer, sunday_weekday

logger = structlog.get_logger()

DAY_NAMES = {
    "周日": 0, "周一": 1, "周二": 2, "周三": 3, "周四": 4, "周五": 5, "周六": 6,
    "sunday": 0, "monday": 1, "tuesday": 2, "wednesday": 3,
    "thursday": 4, "friday": 5, "saturday": 6,
    "sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6,
}


def _split_pair(value: str, sep: str) -> tuple[str, Optional[str]]:
    parts = value.split(sep)
    key = parts[0].strip()
    return key, parts[1].strip() if len(parts) > 1 else None


class ConditionEvaluator:

    def __init__(
        self,
        store: BaseDataStore,
        renderer: TemplateRenderer,
        regex_cache: RegexCache,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.renderer = renderer
        self.regex_cache = regex_cache
        self.rng = rng or random.Random()
        self.clock = clock or datetime.now
        self._handlers: dict[str, Callable[[str, ConditionParams, InboundEvent, str, dict], bool]] = {
            "contains": lambda v, p, e, t, c: v in t,
            "equals": lambda v, p, e, t, c: t == v,
            "regex": self._regex,
            "random": self._random,
            "user_id": lambda v, p, e, t, c: e.user_id == v,
            "group_id": lambda v, p, e, t, c: e.group_id is not None and e.group_id == v,
            "var_equals": lambda v, p, e, t, c: to_str(c.get(p.var_name)) == v,
            "var_gt": lambda v, p, e, t, c: self._context_number(c, p.var_name) > to_number(v),
            "var_lt": lambda v, p, e, t, c: self._context_number(c, p.var_name) < to_number(v),
            "data_equals": self._data_equals,
            "data_gt": self._data_gt,
            "data_lt": self._data_lt,
            "data_is_today": self._data_is_today,
            "cooldown": self._cooldown,
            "time_range": self._time_range,
            "weekday_in": self._weekday_in,
            "global_equals": self._global_equals,
            "global_gt": self._global_gt,
            "expression": self._expression,
        }

    def evaluate(self, params: ConditionParams, event: InboundEvent, text: str, ctx: dict[str, Any]) -> bool:
        handler = self._handlers.get(params.condition_type)
        if handler is None:
            return True
        try:
            value = self.renderer.render(params.condition_value, event, text, ctx)
            return bool(handler(value, params, event, text, ctx))
        except Exception as e:
            logger.debug("condition_error", kind=params.condition_type, error=str(e))
            return False

    # ── Message ───────────────────────────────────────────

    def _regex(self, value, params, event, text, ctx) -> bool:
        pattern = self.regex_cache.get(value)
        return pattern is not None and pattern.search(text) is not None

    def _random(self, value, params, event, text, ctx) -> bool:
        percent = parse_float_prefix(value)
        return percent is not None and self.rng.random() * 100 < percent

    # ── Execution context ─────────────────────────────────

    @staticmethod
    def _context_number(ctx: dict[str, Any], name: str) -> float | int:
        value = ctx.get(name)
        return to_number(value) if truthy(value) else 0

    # ── Per-user storage ──────────────────────────────────

    def _data_equals(self, value, params, event, text, ctx) -> bool:
        key, expected = _split_pair(value, "=")
        return expected is not None and to_str(self.store.get_user_value(event.user_id, key, "")) == expected

    def _data_gt(self, value, params, event, text, ctx) -> bool:
        key, bound = _split_pair(value, ">")
        return bound is not None and to_number(self.store.get_user_value(event.user_id, key, 0)) > to_number(bound)

    def _data_lt(self, value, params, event, text, ctx) -> bool:
        key, bound = _split_pair(value, "<")
        return bound is not None and to_number(self.store.get_user_value(event.user_id, key, 0)) < to_number(bound)

    def _data_is_today(self, value, params, event, text, ctx) -> bool:
        stored = to_str(self.store.get_user_value(event.user_id, value, ""))
        return stored == self.clock().date().isoformat()

    def _cooldown(self, value, params, event, text, ctx) -> bool:
        key, seconds = _split_pair(value, ",")
        last = to_number(self.store.get_user_value(event.user_id, key, 0))
        return self.clock().timestamp() - last >= to_number(seconds or 0)

    # ── Clock ─────────────────────────────────────────────

    def _time_range(self, value, params, event, text, ctx) -> bool:
        bounds = [parse_int_prefix(x.strip()) for x in value.split("-")]
        if len(bounds) < 2 or bounds[0] is None or bounds[1] is None:
            return False
        start, end = bounds[0], bounds[1]
        hour = self.clock().hour
        if start <= end:
            return start <= hour <= end
        return hour >= start or hour <= end

    def _weekday_in(self, value, params, event, text, ctx) -> bool:
        today = sunday_weekday(self.clock())
        for day in (d.strip() for d in value.split("|")):
            number = DAY_NAMES.get(day.lower())
            if number is None:
                number = parse_int_prefix(day)
            if number == today:
                return True
        return False

    # ── Global storage ────────────────────────────────────

    def _global_equals(self, value, params, event, text, ctx) -> bool:
        key, expected = _split_pair(value, "=")
        return expected is not None and to_str(self.store.get_global_value(key, "")) == expected

    def _global_gt(self, value, params, event, text, ctx) -> bool:
        key, bound = _split_pair(value, ">")
        return bound is not None and to_number(self.store.get_global_value(key, 0)) > to_number(bound)

    # ── Expression ────────────────────────────────────────

    def _expression(self, value, params, event, text, ctx) -> bool:
        return eval_bool(value, self.expression_variables(event, text, ctx))

    def expression_variables(self, event: InboundEvent, text: str, ctx: dict[str, Any]) -> dict[str, Value]:
        now = self.clock()
        variables: dict[str, Value] = {
            "user_id": event.user_id,
            "group_id": event.group_id or "",
            "content": text,
            "message": text,
            "hour": now.hour,
            "minute": now.minute,
            "weekday": sunday_weekday(now),
            "timestamp": int(now.timestamp()),
        }
        for key, value in ctx.items():
            if key in RESERVED_CONTEXT_KEYS:
                continue
            variables[key] = value if isinstance(value, (bool, int, float, str)) else to_str(value)
        return variables
