"""
Node actions — effects and computations for every non-trigger node kind.

Each handler reads its typed parameter record, renders templated fields
against the current event/context, performs one effect and writes named
results back into the execution context for downstream nodes.

Handlers raise freely; the engine logs a failing node and keeps walking.
Two exceptions to that rule live here: moderation / platform calls swallow
their own errors, and ``custom_api`` reports its failure to the user.
"""
from __future__ import annotations

import asyncio
import json
import math
import random
import structlog
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from channels.base import ReplySurface
from config.settings import Settings
from database.store_base import BaseDataStore
from models.schemas import (
    ActionParams, DelayParams, LeaderboardParams, ListRandomParams, MathParams,
    InboundEvent, NodeKind, SetVarParams, StorageParams, StringOpParams, WorkflowNode, is_flag_set,
)
from utils.regex_cache import RegexCache
from utils.values import (
    NAN, is_nan, parse_float_prefix, parse_int_prefix, parse_value,
    text_length, tidy_number, to_number, to_str, truthy,
)
from workflow.http import HttpCaller
from workflow.templating import TemplateRenderer

logger = structlog.get_logger()

BODY_METHODS = ("POST", "PUT", "PATCH")
MAX_REPEAT = 100


def _split_variants(text: str) -> list[str]:
    return [s.strip() for s in text.split("|||") if s.strip()]


def _pow(x, y):
    try:
        return math.pow(x, y)
    except OverflowError:
        return math.inf
    except ValueError:
        return NAN


def _mod(x, y):
    if y == 0:
        return 0
    if math.isinf(x) or is_nan(x) or is_nan(y):
        return NAN
    return math.fmod(x, y)


def _min(x, y):
    return NAN if is_nan(x) or is_nan(y) else min(x, y)


def _max(x, y):
    return NAN if is_nan(x) or is_nan(y) else max(x, y)


def _score_text(value) -> str:
    """Leaderboard scores: integers as-is, fractions to two places."""
    if isinstance(value, float) and math.isfinite(value) and not value.is_integer():
        return f"{value:.2f}"
    return to_str(tidy_number(value))


MATH_OPS: dict[str, Callable[..., Any]] = {
    "add": lambda x, y: x + y,
    "sub": lambda x, y: x - y,
    "mul": lambda x, y: x * y,
    "div": lambda x, y: x / y if y else 0,
    "mod": _mod,
    "pow": _pow,
    "min": _min,
    "max": _max,
}


class NodeActions:
    """Executes one node against a context; the engine owns traversal."""

    def __init__(
        self,
        store: BaseDataStore,
        renderer: TemplateRenderer,
        regex_cache: RegexCache,
        http: HttpCaller,
        settings: Settings,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.store = store
        self.renderer = renderer
        self.regex_cache = regex_cache
        self.http = http
        self.settings = settings
        self.rng = rng or random.Random()
        self.sleep = sleep or asyncio.sleep

    async def run(self, node: WorkflowNode, event: InboundEvent, text: str, ctx: dict[str, Any], reply: ReplySurface):
        """Execute a non-condition node. Unknown kinds do nothing."""
        p = node.params
        kind = node.type
        if kind == NodeKind.ACTION.value:
            await self.action(p, event, text, ctx, reply)
        elif kind == NodeKind.DELAY.value:
            await self.delay(p)
        elif kind == NodeKind.SET_VAR.value:
            self.set_var(p, event, text, ctx)
        elif kind == NodeKind.STORAGE.value:
            self.storage(p, event, text, ctx, per_user=True)
        elif kind == NodeKind.GLOBAL_STORAGE.value:
            self.storage(p, event, text, ctx, per_user=False)
        elif kind == NodeKind.LEADERBOARD.value:
            self.leaderboard(p, event, ctx)
        elif kind == NodeKind.MATH.value:
            self.math(p, event, text, ctx)
        elif kind == NodeKind.STRING_OP.value:
            self.string_op(p, event, text, ctx)
        elif kind == NodeKind.LIST_RANDOM.value:
            self.list_random(p, event, text, ctx)

    def _render(self, template: str, event: InboundEvent, text: str, ctx: dict[str, Any]) -> str:
        return self.renderer.render(template, event, text, ctx)

    # ── Variables & storage ───────────────────────────────

    def set_var(self, p: SetVarParams, event, text, ctx):
        if p.var_name:
            ctx[p.var_name] = self._render(p.var_value, event, text, ctx)

    def storage(self, p: StorageParams, event: InboundEvent, text: str, ctx: dict[str, Any], per_user: bool = True):
        key = self._render(p.storage_key, event, text, ctx)
        if not key:
            return
        value = self._render(p.storage_value, event, text, ctx)
        result_var = p.result_var or ("data_result" if per_user else "global_result")
        default = to_number(p.default_value)
        if is_nan(default):
            default = 0

        if per_user:
            get = partial(self.store.get_user_value, event.user_id)
            put = partial(self.store.set_user_value, event.user_id)
            incr = partial(self.store.incr_user_value, event.user_id)
            delete = partial(self.store.delete_user_value, event.user_id)
        else:
            get = self.store.get_global_value
            put = self.store.set_global_value
            incr = self.store.incr_global_value
            delete = self.store.delete_global_value

        amount = to_number(value)
        amount = amount if truthy(amount) else 1
        op = p.storage_type
        if op == "get":
            ctx[result_var] = get(key, p.default_value)
        elif op == "set":
            put(key, parse_value(value))
            ctx[result_var] = value
        elif op == "incr":
            ctx[result_var] = incr(key, amount, default)
        elif op == "decr":
            ctx[result_var] = incr(key, -amount, default)
        elif op == "delete":
            delete(key)
            ctx[result_var] = ""

    def leaderboard(self, p: LeaderboardParams, event: InboundEvent, ctx: dict[str, Any]):
        key = p.leaderboard_key
        limit = to_number(p.limit)
        limit = int(limit) if truthy(limit) and not math.isinf(limit) else 10
        ascending = is_flag_set(p.ascending)
        kind = p.leaderboard_type

        if kind == "top":
            rows = self.store.top_n(key, limit, ascending)
            ctx["leaderboard"] = "\n".join(
                f"{i + 1}. {uid[:8]}... : {_score_text(value)}"
                for i, (uid, value) in enumerate(rows)
            )
            ctx["leaderboard_list"] = [[uid, value] for uid, value in rows]
        elif kind == "my_rank":
            info = self.store.rank_of(event.user_id, key, ascending)
            ctx["my_rank"] = info.rank
            ctx["my_value"] = info.value
            ctx["total_users"] = info.total
        elif kind == "count":
            ctx["user_count"] = self.store.count_with_key(key)

    # ── Computation ───────────────────────────────────────

    def math(self, p: MathParams, event, text, ctx):
        a = to_number(self._render(p.operand1, event, text, ctx))
        b = to_number(self._render(p.operand2, event, text, ctx))
        if p.math_type == "random":
            if is_nan(a) or is_nan(b) or math.isinf(a) or math.isinf(b):
                result = NAN
            else:
                result = math.floor(self.rng.random() * (b - a + 1)) + a
        else:
            op = MATH_OPS.get(p.math_type)
            result = op(a, b) if op else a
        ctx[p.result_var] = tidy_number(result)

    def string_op(self, p: StringOpParams, event, text, ctx):
        s1 = self._render(p.input1, event, text, ctx)
        s2 = self._render(p.input2, event, text, ctx)
        kind = p.string_type
        result: Any = s1

        if kind == "concat":
            result = s1 + s2
        elif kind == "replace":
            pattern = self.regex_cache.get(p.target)
            if pattern is not None:
                result = pattern.sub(lambda m: s2, s1)
        elif kind == "split":
            parts = s1.split(s2 or "|")
            ctx["split_list"] = parts
            ctx["split_count"] = len(parts)
            result = parts[0] or ""
        elif kind == "substr":
            bounds = [parse_int_prefix(x.strip()) for x in (s2 or "0").split(",")]
            start = bounds[0] or 0
            end = bounds[1] if len(bounds) > 1 else None
            result = s1[start:end] if end else s1[start:]
        elif kind == "length":
            result = text_length(s1)
        elif kind == "upper":
            result = s1.upper()
        elif kind == "lower":
            result = s1.lower()
        elif kind == "trim":
            result = s1.strip()
        elif kind == "contains":
            found = s2 in s1
            result = "1" if found else "0"
            ctx["contains"] = found
        elif kind == "repeat":
            times = parse_int_prefix(s2) or 1
            result = s1 * max(min(times, MAX_REPEAT), 0)

        ctx[p.result_var] = result

    def list_random(self, p: ListRandomParams, event, text, ctx):
        items = [s.strip() for s in self._render(p.list_items, event, text, ctx).split("|") if s.strip()]
        if not items:
            ctx[p.result_var] = ""
            ctx[p.index_var] = -1
            return

        if p.weights:
            weights = [parse_float_prefix(w.strip()) for w in p.weights.split("|")]
            if len(weights) == len(items) and all(w is not None for w in weights):
                roll = self.rng.random() * sum(weights)
                cumulative = 0
                for i, w in enumerate(weights):
                    cumulative += w
                    if roll <= cumulative:
                        ctx[p.result_var] = items[i]
                        ctx[p.index_var] = i
                        return

        i = int(self.rng.random() * len(items))
        ctx[p.result_var] = items[i]
        ctx[p.index_var] = i

    async def delay(self, p: DelayParams):
        seconds = to_number(p.seconds) if truthy(p.seconds) else 1
        if is_nan(seconds):
            seconds = 0
        await self.sleep(max(0, min(seconds, self.settings.engine.max_delay_seconds)))

    # ── User-visible actions ──────────────────────────────

    async def _quietly(self, name: str, call: Awaitable[Any]) -> Any:
        try:
            return await call
        except Exception as e:
            logger.debug("action_call_failed", action=name, error=str(e))
            return None

    async def action(self, p: ActionParams, event: InboundEvent, text: str, ctx: dict[str, Any], reply: ReplySurface):
        kind = getattr(p, "action_type", None) or "reply_text"
        if kind == "math":
            self.math(p, event, text, ctx)
            return
        if kind == "string_op":
            self.string_op(p, event, text, ctx)
            return

        val = self._render(p.action_value, event, text, ctx)

        def rv(value: str, default: str = "") -> str:
            return self._render(value or default, event, text, ctx)

        if kind == "reply_text":
            variants = _split_variants(val)
            await reply.reply(self.rng.choice(variants) if variants else val)
        elif kind == "reply_image":
            await reply.reply_image(val, rv(p.image_text) or None)
        elif kind == "reply_voice":
            await reply.reply_voice(val)
        elif kind == "reply_video":
            await reply.reply_video(val)
        elif kind == "reply_at":
            await reply.reply_at(val)
        elif kind == "reply_face":
            await reply.reply_face(parse_int_prefix(val) or 0)
        elif kind == "reply_poke":
            await reply.reply_poke(val or event.user_id)
        elif kind == "reply_json":
            try:
                data = json.loads(val)
            except ValueError:
                await reply.reply(val)
            else:
                await reply.reply_json(data)
        elif kind == "reply_file":
            await reply.reply_file(val, rv(p.file_name) or None)
        elif kind == "reply_music":
            await reply.reply_music(p.music_type, val)
        elif kind == "reply_forward":
            await reply.reply_forward(_split_variants(val))
        elif kind == "custom_api":
            await self.custom_api(p, event, text, ctx, reply)
        elif kind == "group_sign":
            await self._quietly(kind, reply.group_sign())
        elif kind == "group_ban":
            duration = parse_int_prefix(rv(p.ban_duration, "600")) or 600
            await self._quietly(kind, reply.group_ban(rv(p.target_user, "{user_id}"), duration))
        elif kind == "group_kick":
            await self._quietly(kind, reply.group_kick(rv(p.target_user, "{user_id}"), is_flag_set(p.reject_add)))
        elif kind == "group_whole_ban":
            await self._quietly(kind, reply.group_whole_ban(is_flag_set(p.enable_ban)))
        elif kind == "group_set_card":
            await self._quietly(kind, reply.group_set_card(rv(p.target_user, "{user_id}"), rv(p.card_value)))
        elif kind == "group_set_admin":
            await self._quietly(kind, reply.group_set_admin(rv(p.target_user, "{user_id}"), is_flag_set(p.enable_admin)))
        elif kind == "group_notice":
            await self._quietly(kind, reply.group_notice(val))
        elif kind == "recall_msg":
            await self._quietly(kind, reply.recall_msg(rv(p.message_id, "{message_id}")))
        elif kind == "call_api":
            try:
                params = json.loads(rv(p.api_params, "{}"))
            except ValueError:
                params = {}
            if not isinstance(params, dict):
                params = {}
            result = await self._quietly(kind, reply.call_api(rv(p.api_action), params))
            if p.result_var:
                ctx[p.result_var] = result

    # ── Generic HTTP ──────────────────────────────────────

    def _headers(self, p: ActionParams, event, text, ctx) -> dict[str, str]:
        headers = {
            "User-Agent": self.settings.http.user_agent,
            "Accept": "*/*",
            "Content-Type": "application/json",
        }
        if not p.api_headers:
            return headers
        try:
            parsed = json.loads(p.api_headers)
        except ValueError:
            for line in p.api_headers.splitlines():
                name, _, value = line.partition(":")
                if name.strip() and value.strip():
                    headers[name.strip()] = self._render(value.strip(), event, text, ctx)
        else:
            if isinstance(parsed, dict):
                headers.update({str(k): to_str(v) for k, v in parsed.items()})
        return headers

    def _body(self, p: ActionParams, method: str, event, text, ctx) -> Optional[str]:
        if not p.api_body or method not in BODY_METHODS:
            return None
        content = self._render(p.api_body, event, text, ctx)
        try:
            body = json.loads(content)
        except ValueError:
            return content
        if isinstance(body, dict) and self.settings.bot_id:
            body.update(self.settings.request_meta())
        return json.dumps(body, ensure_ascii=False)

    async def custom_api(self, p: ActionParams, event: InboundEvent, text: str, ctx: dict[str, Any], reply: ReplySurface):
        url = self._render(p.api_url, event, text, ctx)
        method = p.api_method.upper()
        headers = self._headers(p, event, text, ctx)
        body = self._body(p, method, event, text, ctx)
        timeout = to_number(p.api_timeout)
        timeout = timeout if truthy(timeout) and timeout > 0 else self.settings.http.timeout

        try:
            response = await self.http.request(method, url, headers=headers, content=body, timeout=timeout)
            ctx["api_status"] = response.status_code
            if p.response_type == "json":
                try:
                    ctx["api_json"] = response.json()
                    ctx["api_response"] = json.dumps(ctx["api_json"], ensure_ascii=False, separators=(",", ":"))
                except ValueError:
                    ctx["api_response"] = response.text
            elif p.response_type == "binary":
                ctx["api_binary"] = response.content
                ctx["api_response"] = url
            else:
                ctx["api_response"] = response.text

            if p.api_reply:
                out = self.renderer.render_with_json(p.api_reply, event, text, ctx)
            else:
                out = to_str(ctx["api_response"])
            payload = ctx["api_binary"] if p.response_type == "binary" and ctx.get("api_binary") else out

            if p.reply_type == "image":
                await reply.reply_image(payload, self._render(p.image_text, event, text, ctx) or None)
            elif p.reply_type == "voice":
                await reply.reply_voice(payload)
            elif p.reply_type == "video":
                await reply.reply_video(payload)
            elif p.reply_type == "forward":
                await reply.reply_forward(_split_variants(out))
            else:
                await reply.reply(out)
        except Exception as e:
            logger.warning("custom_api_failed", url=url, method=method, error=str(e))
            await reply.reply(f"{self.settings.http.failure_prefix}{str(e) or '超时'}")
