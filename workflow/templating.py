"""
Template substitution for node parameters.

``{name}`` placeholders resolve in this order:
  1. built-ins from the event and the wall clock ({user_id}, {date}, {random6}, …)
  2. capture groups of the firing regex trigger ({$1}, {$2}, …)
  3. any other execution-context variable
  4. ``{storage.<key>}`` — per-user persisted value

Unresolved placeholders are left as-is.
"""
from __future__ import annotations

import random
import re
from datetime import datetime
from typing import Any, Callable, Optional

from database.store_base import BaseDataStore
from models.schemas import InboundEvent
from utils.values import to_str, truthy

# context keys that never interpolate
RESERVED_CONTEXT_KEYS = ("regex_groups", "api_binary")

# placeholders render_with_json never resolves against the response body
_JSON_PASSTHROUGH = ("user_id", "group_id", "content", "message", "api_response", "api_status")

WEEKDAYS_CN = ("周日", "周一", "周二", "周三", "周四", "周五", "周六")

_STORAGE_RE = re.compile(r"\{storage\.([^}]+)\}")
_PLACEHOLDER_RE = re.compile(r"\{([^}]+)\}")
_PATH_PART_RE = re.compile(r"^([^\[]+)(?:\[(\d+)\])?$")


def sunday_weekday(moment: datetime) -> int:
    """Day of week with Sunday = 0."""
    return (moment.weekday() + 1) % 7


def extract_path(data: Any, path: str) -> Any:
    """Walk ``a.b[0].c`` through nested dicts/lists; '' when anything is missing."""
    current = data
    for part in path.split("."):
        m = _PATH_PART_RE.match(part)
        if not m:
            return ""
        key, index = m.group(1), m.group(2)
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            current = None
        if index is not None:
            i = int(index)
            current = current[i] if isinstance(current, list) and i < len(current) else None
    return "" if current is None else current


class TemplateRenderer:
    """Renders ``{placeholder}`` templates against an event and an execution context."""

    def __init__(
        self,
        store: BaseDataStore,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.rng = rng or random.Random()
        self.clock = clock or datetime.now

    def _builtins(self, template: str, event: InboundEvent, text: str) -> dict[str, str]:
        now = self.clock()
        date = now.date().isoformat()
        values = {
            "{user_id}": event.user_id,
            "{group_id}": event.group_id or "",
            "{message_id}": event.message_id or "",
            "{content}": text,
            "{message}": text,
            "{date}": date,
            "{today}": date,
            "{time}": now.strftime("%H:%M:%S"),
            "{datetime}": now.strftime("%Y-%m-%d %H:%M:%S"),
            "{timestamp}": str(int(now.timestamp())),
            "{year}": str(now.year),
            "{month}": str(now.month),
            "{day}": str(now.day),
            "{hour}": str(now.hour),
            "{minute}": str(now.minute),
            "{weekday}": str(sunday_weekday(now)),
            "{weekday_cn}": WEEKDAYS_CN[sunday_weekday(now)],
            "{at_user}": f"[CQ:at,qq={event.user_id}]",
        }
        # only draw the dice that are actually used
        for name, sides in (("{random}", 100), ("{random100}", 100), ("{random10}", 10), ("{random6}", 6)):
            if name in template:
                values[name] = str(self.rng.randint(1, sides))
        return values

    def render(self, template: str, event: InboundEvent, text: str, ctx: dict[str, Any]) -> str:
        if not template or "{" not in template:
            return template or ""

        result = template
        for placeholder, value in self._builtins(template, event, text).items():
            result = result.replace(placeholder, value)

        for i, group in enumerate(ctx.get("regex_groups") or []):
            result = result.replace(f"{{${i + 1}}}", group or "")

        for key, value in ctx.items():
            if key in RESERVED_CONTEXT_KEYS:
                continue
            result = result.replace(f"{{{key}}}", to_str(value))

        return _STORAGE_RE.sub(
            lambda m: to_str(self.store.get_user_value(event.user_id, m.group(1), "")),
            result,
        )

    def render_with_json(self, template: str, event: InboundEvent, text: str, ctx: dict[str, Any]) -> str:
        """``render``, then resolve leftover ``{path}`` placeholders against ``ctx['api_json']``."""
        result = self.render(template, event, text, ctx)
        body = ctx.get("api_json")
        if body is None or (not isinstance(body, (dict, list)) and not truthy(body)):
            return result

        def resolve(m: re.Match) -> str:
            name = m.group(1)
            if name in _JSON_PASSTHROUGH or name.startswith("$"):
                return m.group(0)
            return to_str(extract_path(body, name.strip()))

        return _PLACEHOLDER_RE.sub(resolve, result)
