"""Tests for trigger matching."""
import pytest

from models.schemas import TriggerParams
from utils.regex_cache import RegexCache
from workflow.triggers import TriggerMatcher


@pytest.fixture
def matcher():
    return TriggerMatcher(RegexCache(16))


def _params(kind, content):
    return TriggerParams.model_validate({"trigger_type": kind, "trigger_content": content})


class TestTriggerKinds:
    def test_exact(self, matcher):
        assert matcher.match(_params("exact", "签到"), "签到") == []
        assert matcher.match(_params("exact", "签到"), "签到!") is None

    def test_contains(self, matcher):
        assert matcher.match(_params("contains", "hi"), "oh hi there") == []
        assert matcher.match(_params("contains", "hi"), "hello") is None

    def test_startswith(self, matcher):
        assert matcher.match(_params("startswith", "/roll"), "/roll 20") == []
        assert matcher.match(_params("startswith", "/roll"), "x /roll") is None

    def test_regex_captures(self, matcher):
        assert matcher.match(_params("regex", r"^roll (\d+)d(\d+)$"), "roll 2d6") == ["2", "6"]

    def test_regex_unmatched_optional_group_is_empty(self, matcher):
        assert matcher.match(_params("regex", r"a(b)?(c)"), "ac") == ["", "c"]

    def test_invalid_regex_never_matches(self, matcher):
        assert matcher.match(_params("regex", "(oops"), "(oops") is None

    def test_any_keyword(self, matcher):
        params = _params("any", "早上好 | 早安")
        assert matcher.match(params, "大家早安") == []
        assert matcher.match(params, "晚安") is None

    def test_trigger_value_fallback(self, matcher):
        params = TriggerParams.model_validate({"trigger_type": "exact", "trigger_value": "ping"})
        assert matcher.match(params, "ping") == []

    def test_empty_literal_never_matches(self, matcher):
        assert matcher.match(_params("contains", ""), "anything") is None

    def test_unknown_kind_never_matches(self, matcher):
        assert matcher.match(_params("fuzzy", "x"), "x") is None


class TestClockTriggers:
    def test_clock_kinds_ignore_messages(self, matcher):
        assert matcher.match(_params("scheduled", "x"), "x") is None
        assert matcher.match(_params("timer", "x"), "x") is None

    @pytest.mark.parametrize("sentinel", ["__scheduled__", "__scheduled_trigger__"])
    def test_sentinel_satisfies_every_kind(self, matcher, sentinel):
        for kind in ("exact", "regex", "scheduled", "timer", "any"):
            assert matcher.match(_params(kind, "zzz"), sentinel) == []
