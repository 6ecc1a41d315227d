"""Tests for node actions: variables, storage, computation, replies and custom_api."""
import json
import math

import httpx
import pytest

from conftest import RecordingReplySurface, make_event
from models.schemas import WorkflowNode
from workflow.http import HttpCaller


def node(kind, **data):
    return WorkflowNode.model_validate({"id": "n", "type": kind, "data": data})


@pytest.fixture
def run(engine, reply):
    async def _run(n, text="", ctx=None, event=None, surface=None):
        ctx = {} if ctx is None else ctx
        await engine.actions.run(n, event or make_event(text), text, ctx, surface or reply)
        return ctx
    return _run


@pytest.fixture
def use_transport(engine, settings):
    def _use(handler):
        engine.actions.http = HttpCaller(settings.http, transport=httpx.MockTransport(handler), backoff=0)
    return _use


# ──────────────────────────────────────────────────────────────
#  Variables & storage
# ──────────────────────────────────────────────────────────────

class TestVariables:
    @pytest.mark.asyncio
    async def test_set_var_renders_value(self, run):
        ctx = await run(node("set_var", var_name="greeting", var_value="{user_id}-x"))
        assert ctx["greeting"] == "10001-x"

    @pytest.mark.asyncio
    async def test_set_var_without_name_is_noop(self, run):
        assert await run(node("set_var", var_value="x")) == {}


class TestStorageNode:
    @pytest.mark.asyncio
    async def test_set_keeps_numbers_typed(self, run, store):
        ctx = await run(node("storage", storage_type="set", storage_key="coins", storage_value="5"))
        assert store.get_user_value("10001", "coins") == 5
        assert ctx["data_result"] == "5"

    @pytest.mark.asyncio
    async def test_get_with_default(self, run):
        ctx = await run(node("storage", storage_type="get", storage_key="coins", default_value="7", result_var="c"))
        assert ctx["c"] == "7"

    @pytest.mark.asyncio
    async def test_incr_and_decr(self, run, store):
        await run(node("storage", storage_type="incr", storage_key="score"))
        ctx = await run(node("storage", storage_type="incr", storage_key="score", storage_value="3"))
        assert ctx["data_result"] == 4
        ctx = await run(node("storage", storage_type="decr", storage_key="score", storage_value="2"))
        assert ctx["data_result"] == 2
        assert store.get_user_value("10001", "score") == 2

    @pytest.mark.asyncio
    async def test_incr_seeds_missing_key_with_default(self, run):
        ctx = await run(node("storage", storage_type="incr", storage_key="hp", default_value="10"))
        assert ctx["data_result"] == 11

    @pytest.mark.asyncio
    async def test_delete(self, run, store):
        store.set_user_value("10001", "coins", 3)
        ctx = await run(node("storage", storage_type="delete", storage_key="coins"))
        assert store.get_user_value("10001", "coins") is None
        assert ctx["data_result"] == ""

    @pytest.mark.asyncio
    async def test_templated_key(self, run, store):
        await run(node("storage", storage_type="set", storage_key="last_{date}", storage_value="1"))
        assert store.get_user_value("10001", "last_2024-03-15") == 1

    @pytest.mark.asyncio
    async def test_global_storage(self, run, store):
        ctx = await run(node("global_storage", storage_type="incr", storage_key="visits", storage_value="2"))
        assert ctx["global_result"] == 2
        assert store.get_global_value("visits") == 2
        assert store.get_user_value("10001", "visits") is None

    @pytest.mark.asyncio
    async def test_global_delete(self, run, store):
        store.set_global_value("event", "on")
        await run(node("global_storage", storage_type="delete", storage_key="event"))
        assert store.get_global_value("event") is None


class TestLeaderboard:
    @pytest.fixture(autouse=True)
    def scores(self, store):
        store.set_user_value("111111111", "score", 30)
        store.set_user_value("222222222", "score", 10)
        store.set_user_value("10001", "score", 20)

    @pytest.mark.asyncio
    async def test_top(self, run):
        ctx = await run(node("leaderboard", leaderboard_type="top", leaderboard_key="score", limit="2"))
        assert ctx["leaderboard"] == "1. 11111111... : 30\n2. 10001... : 20"
        assert ctx["leaderboard_list"] == [["111111111", 30], ["10001", 20]]

    @pytest.mark.asyncio
    async def test_top_ascending(self, run):
        ctx = await run(node("leaderboard", leaderboard_type="top", leaderboard_key="score", ascending="true"))
        assert ctx["leaderboard_list"][0] == ["222222222", 10]

    @pytest.mark.asyncio
    async def test_my_rank(self, run):
        ctx = await run(node("leaderboard", leaderboard_type="my_rank", leaderboard_key="score"))
        assert (ctx["my_rank"], ctx["my_value"], ctx["total_users"]) == (2, 20, 3)

    @pytest.mark.asyncio
    async def test_count(self, run):
        ctx = await run(node("leaderboard", leaderboard_type="count", leaderboard_key="score"))
        assert ctx["user_count"] == 3

    @pytest.mark.asyncio
    async def test_top_fractional_scores_use_two_places(self, run, store):
        store.set_user_value("333333333", "score", 40.5)
        ctx = await run(node("leaderboard", leaderboard_type="top", leaderboard_key="score", limit="2"))
        assert ctx["leaderboard"] == "1. 33333333... : 40.50\n2. 11111111... : 30"


# ──────────────────────────────────────────────────────────────
#  Computation
# ──────────────────────────────────────────────────────────────

class TestMath:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("op,a,b,expected", [
        ("add", "2", "3", 5),
        ("sub", "2", "3", -1),
        ("mul", "4", "2.5", 10),
        ("div", "7", "2", 3.5),
        ("div", "1", "3", 0.33),
        ("div", "1", "0", 0),
        ("mod", "7", "3", 1),
        ("pow", "2", "10", 1024),
        ("min", "4", "9", 4),
        ("max", "4", "9", 9),
        ("unknown", "4", "9", 4),
    ])
    async def test_ops(self, run, op, a, b, expected):
        ctx = await run(node("math", math_type=op, operand1=a, operand2=b))
        assert ctx["math_result"] == expected

    @pytest.mark.asyncio
    async def test_random_inclusive_range(self, run):
        for _ in range(20):
            ctx = await run(node("math", math_type="random", operand1="1", operand2="6", result_var="roll"))
            assert 1 <= ctx["roll"] <= 6

    @pytest.mark.asyncio
    async def test_operands_render_context(self, run):
        ctx = await run(node("math", math_type="mul", operand1="{n}", operand2="3"), ctx={"n": 4})
        assert ctx["math_result"] == 12

    @pytest.mark.asyncio
    @pytest.mark.parametrize("op", ["min", "max"])
    @pytest.mark.parametrize("a,b", [("abc", "1"), ("1", "abc")])
    async def test_min_max_with_nan_operand(self, run, op, a, b):
        ctx = await run(node("math", math_type=op, operand1=a, operand2=b))
        assert math.isnan(ctx["math_result"])

    @pytest.mark.asyncio
    async def test_math_as_action_type(self, run):
        n = node("action", action_type="math", math_type="add", operand1="1", operand2="1", result_var="sum")
        ctx = await run(n)
        assert ctx["sum"] == 2


class TestStringOp:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("op,s1,s2,expected", [
        ("concat", "ab", "cd", "abcd"),
        ("substr", "hello", "1,3", "el"),
        ("substr", "hello", "2", "llo"),
        ("length", "签到", "", 2),
        ("upper", "abc", "", "ABC"),
        ("lower", "ABC", "", "abc"),
        ("trim", "  x  ", "", "x"),
    ])
    async def test_ops(self, run, op, s1, s2, expected):
        ctx = await run(node("string_op", string_type=op, input1=s1, input2=s2))
        assert ctx["string_result"] == expected

    @pytest.mark.asyncio
    async def test_replace_uses_regex(self, run):
        ctx = await run(node("string_op", string_type="replace", input1="a1b2", input2="#", target=r"\d"))
        assert ctx["string_result"] == "a#b#"

    @pytest.mark.asyncio
    async def test_replace_with_invalid_pattern_keeps_input(self, run):
        ctx = await run(node("string_op", string_type="replace", input1="a(b", input2="#", target="("))
        assert ctx["string_result"] == "a(b"

    @pytest.mark.asyncio
    async def test_split(self, run):
        ctx = await run(node("string_op", string_type="split", input1="a|b|c"))
        assert ctx["split_list"] == ["a", "b", "c"]
        assert ctx["split_count"] == 3
        assert ctx["string_result"] == "a"

    @pytest.mark.asyncio
    async def test_contains(self, run):
        ctx = await run(node("string_op", string_type="contains", input1="hello", input2="ell"))
        assert ctx["string_result"] == "1"
        assert ctx["contains"] is True

    @pytest.mark.asyncio
    async def test_repeat_is_capped(self, run):
        ctx = await run(node("string_op", string_type="repeat", input1="ab", input2="500"))
        assert ctx["string_result"] == "ab" * 100


class TestListRandom:
    @pytest.mark.asyncio
    async def test_uniform_pick(self, run):
        ctx = await run(node("list_random", list_items="a | b | c"))
        assert ctx["list_result"] in ("a", "b", "c")
        assert ctx["list_result"] == ["a", "b", "c"][ctx["list_index"]]

    @pytest.mark.asyncio
    async def test_weighted_pick(self, run):
        ctx = await run(node("list_random", list_items="a|b|c", weights="0|0|1"))
        assert ctx["list_result"] == "c"
        assert ctx["list_index"] == 2

    @pytest.mark.asyncio
    async def test_empty_list(self, run):
        ctx = await run(node("list_random", list_items=" | "))
        assert ctx["list_result"] == ""
        assert ctx["list_index"] == -1


class TestDelay:
    @pytest.mark.asyncio
    async def test_clamped_to_max(self, run, sleep):
        await run(node("delay", seconds="30"))
        sleep.assert_awaited_once_with(10)

    @pytest.mark.asyncio
    async def test_default_one_second(self, run, sleep):
        await run(node("delay"))
        sleep.assert_awaited_once_with(1)


# ──────────────────────────────────────────────────────────────
#  Replies & platform actions
# ──────────────────────────────────────────────────────────────

class FailingKickSurface(RecordingReplySurface):
    async def group_kick(self, user_id, reject_add=False):
        raise RuntimeError("no permission")


class TestReplies:
    @pytest.mark.asyncio
    async def test_reply_text_renders(self, run, reply):
        await run(node("action", action_type="reply_text", action_value="hi {user_id}"))
        assert reply.texts == ["hi 10001"]

    @pytest.mark.asyncio
    async def test_reply_text_picks_variant(self, run, reply):
        await run(node("action", action_type="reply_text", action_value="a ||| b"))
        assert reply.texts[0] in ("a", "b")

    @pytest.mark.asyncio
    async def test_media_and_misc(self, run, reply):
        await run(node("action", action_type="reply_image", action_value="http://x/a.png", image_text="cap"))
        await run(node("action", action_type="reply_at", action_value="welcome"))
        await run(node("action", action_type="reply_face", action_value="14"))
        await run(node("action", action_type="reply_poke"))
        await run(node("action", action_type="reply_forward", action_value="x|||y"))
        await run(node("action", action_type="reply_music", action_value="123", music_type="163"))
        assert reply.calls == [
            ("reply_image", ("http://x/a.png", "cap")),
            ("reply_at", ("welcome",)),
            ("reply_face", (14,)),
            ("reply_poke", ("10001",)),
            ("reply_forward", (["x", "y"],)),
            ("reply_music", ("163", "123")),
        ]

    @pytest.mark.asyncio
    async def test_reply_json_falls_back_to_text(self, run, reply):
        await run(node("action", action_type="reply_json", action_value='{"a": 1}'))
        await run(node("action", action_type="reply_json", action_value="not json"))
        assert reply.calls == [("reply_json", ({"a": 1},)), ("reply", ("not json",))]

    @pytest.mark.asyncio
    async def test_group_ban_defaults(self, run, reply):
        await run(node("action", action_type="group_ban"))
        await run(node("action", action_type="group_ban", target_user="555", ban_duration="60"))
        assert reply.named("group_ban") == [("10001", 600), ("555", 60)]

    @pytest.mark.asyncio
    async def test_moderation_errors_are_swallowed(self, run):
        surface = FailingKickSurface()
        await run(node("action", action_type="group_kick", reject_add="true"), surface=surface)
        assert surface.calls == []

    @pytest.mark.asyncio
    async def test_recall_defaults_to_current_message(self, run, reply):
        await run(node("action", action_type="recall_msg"))
        assert reply.named("recall_msg") == [("m1",)]

    @pytest.mark.asyncio
    async def test_call_api_stores_result(self, run):
        surface = RecordingReplySurface(api_result={"ok": True})
        n = node("action", action_type="call_api", api_action="get_status", api_params='{"id": "{user_id}"}', result_var="st")
        ctx = await run(n, surface=surface)
        assert surface.named("call_api") == [("get_status", {"id": "10001"})]
        assert ctx["st"] == {"ok": True}

    @pytest.mark.asyncio
    async def test_call_api_bad_params_become_empty(self, run, reply):
        await run(node("action", action_type="call_api", api_action="x", api_params="{oops"))
        assert reply.named("call_api") == [("x", {})]


# ──────────────────────────────────────────────────────────────
#  custom_api
# ──────────────────────────────────────────────────────────────

class TestCustomApi:
    @pytest.mark.asyncio
    async def test_json_response_with_template(self, run, reply, use_transport):
        use_transport(lambda request: httpx.Response(200, json={"data": {"msg": "hi"}}))
        n = node("action", action_type="custom_api", api_url="http://api.test/q", api_reply="got {data.msg}")
        ctx = await run(n)
        assert reply.texts == ["got hi"]
        assert ctx["api_status"] == 200
        assert ctx["api_json"] == {"data": {"msg": "hi"}}

    @pytest.mark.asyncio
    async def test_json_response_without_template(self, run, reply, use_transport):
        use_transport(lambda request: httpx.Response(200, json={"a": 1}))
        await run(node("action", action_type="custom_api", api_url="http://api.test/q"))
        assert reply.texts == ['{"a":1}']

    @pytest.mark.asyncio
    async def test_text_response(self, run, reply, use_transport):
        use_transport(lambda request: httpx.Response(200, text="plain"))
        await run(node("action", action_type="custom_api", api_url="http://api.test/q", response_type="text"))
        assert reply.texts == ["plain"]

    @pytest.mark.asyncio
    async def test_error_status_is_not_a_failure(self, run, reply, use_transport):
        use_transport(lambda request: httpx.Response(500, text="boom"))
        ctx = await run(node("action", action_type="custom_api", api_url="http://api.test/q", response_type="text"))
        assert ctx["api_status"] == 500
        assert reply.texts == ["boom"]

    @pytest.mark.asyncio
    async def test_binary_image_reply(self, run, reply, use_transport):
        use_transport(lambda request: httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"}))
        n = node("action", action_type="custom_api", api_url="http://api.test/img", response_type="binary", reply_type="image")
        await run(n)
        assert reply.calls == [("reply_image", (b"\x89PNG", None))]

    @pytest.mark.asyncio
    async def test_post_body_and_headers(self, run, settings, use_transport):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={})

        settings.bot_id = "bot9"
        use_transport(handler)
        n = node(
            "action",
            action_type="custom_api",
            api_url="http://api.test/q",
            api_method="post",
            api_headers="X-Token: {user_id}\nX-Mode: test",
            api_body='{"q": "{content}"}',
        )
        await run(n, "hello")
        assert seen["body"] == {"q": "hello", "bot_id": "bot9", "user_id": "bot9"}
        assert seen["headers"]["x-token"] == "10001"
        assert seen["headers"]["x-mode"] == "test"
        assert seen["headers"]["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_get_sends_no_body(self, run, use_transport):
        seen = {}

        def handler(request):
            seen["body"] = request.content
            return httpx.Response(200, json={})

        use_transport(handler)
        await run(node("action", action_type="custom_api", api_url="http://api.test/q", api_body='{"a": 1}'))
        assert seen["body"] == b""

    @pytest.mark.asyncio
    async def test_transport_failure_is_retried_then_reported(self, run, reply, use_transport):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("refused", request=request)

        use_transport(handler)
        await run(node("action", action_type="custom_api", api_url="http://api.test/q"))
        assert len(attempts) == 3
        assert reply.texts == ["API失败: refused"]

    @pytest.mark.asyncio
    async def test_zero_retries_is_one_attempt(self, run, use_transport, settings):
        settings.http.retries = 0
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("refused", request=request)

        use_transport(handler)
        await run(node("action", action_type="custom_api", api_url="http://api.test/q"))
        assert len(attempts) == 1
