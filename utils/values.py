"""
Loose value coercions shared by the expression language, templates,
conditions and the math/string nodes.

Workflow data is authored as text in an editor, so every consumer needs the
same forgiving view of it: blank text is zero, unparsable text is NaN,
integral floats print without a trailing ``.0``.
"""
from __future__ import annotations

import json
import math
import re
from typing import Any, Optional

_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_FLOAT_PREFIX_RE = re.compile(r"^\s*([+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?))")
_INT_PREFIX_RE = re.compile(r"^\s*([+-]?\d+)")

NAN = float("nan")


def _num(x: float) -> float | int:
    if isinstance(x, float) and x.is_integer() and abs(x) < 2 ** 53:
        return int(x)
    return x


def to_number(value: Any) -> float | int:
    """Numeric view of a value; NaN when it has none."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        if _NUMBER_RE.match(text):
            return _num(float(text))
        if text in ("Infinity", "+Infinity"):
            return math.inf
        if text == "-Infinity":
            return -math.inf
        return NAN
    return NAN


def parse_float_prefix(text: Any) -> Optional[float | int]:
    """Leading decimal number of ``text`` or None."""
    m = _FLOAT_PREFIX_RE.match(str(text))
    if not m:
        return None
    raw = m.group(1)
    if raw.lstrip("+-") == "Infinity":
        return -math.inf if raw.startswith("-") else math.inf
    return _num(float(raw))


def parse_int_prefix(text: Any) -> Optional[int]:
    """Leading integer of ``text`` or None."""
    m = _INT_PREFIX_RE.match(str(text))
    return int(m.group(1)) if m else None


def is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def to_str(value: Any) -> str:
    """Text view of a value, as it is interpolated into messages."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join(to_str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (bytes, bytearray)):
        return f"[binary {len(value)} bytes]"
    return str(value)


def truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def loose_equals(a: Any, b: Any) -> bool:
    """Equality that lets ``1 == "1"`` and ``true == 1`` hold."""
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, bool) or isinstance(b, bool):
        if isinstance(a, bool) and isinstance(b, bool):
            return a == b
        return loose_equals(to_number(a), b) if isinstance(a, bool) else loose_equals(a, to_number(b))
    a_num = isinstance(a, (int, float))
    b_num = isinstance(b, (int, float))
    if a_num and b_num:
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if a_num and isinstance(b, str):
        return a == to_number(b)
    if b_num and isinstance(a, str):
        return to_number(a) == b
    return to_str(a) == to_str(b)


def tidy_number(value: float | int) -> float | int:
    """Integral results as int, everything else rounded to 2 decimals."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if math.isnan(value) or math.isinf(value):
        return value
    if value.is_integer():
        return int(value)
    return round(value, 2)


def parse_value(text: str) -> Any:
    """Stored literal: ints, floats and booleans are kept typed."""
    if re.fullmatch(r"-?\d+", text):
        return int(text)
    if re.fullmatch(r"-?\d+\.\d+", text):
        return float(text)
    if text == "true":
        return True
    if text == "false":
        return False
    return text


def text_length(text: str) -> int:
    """Length in UTF-16 code units, the way the editor counts characters."""
    return len(text.encode("utf-16-le")) // 2
