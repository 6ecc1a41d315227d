"""Tests for the loose value helpers."""
import math

from utils.values import (
    loose_equals, parse_float_prefix, parse_int_prefix, parse_value,
    text_length, tidy_number, to_number, to_str, truthy,
)


class TestToNumber:
    def test_blank_is_zero(self):
        assert to_number("") == 0
        assert to_number("   ") == 0
        assert to_number(None) == 0

    def test_numeric_text(self):
        assert to_number("42") == 42
        assert to_number(" 3.5 ") == 3.5
        assert to_number("-7") == -7
        assert isinstance(to_number("10.0"), int)

    def test_unparsable_is_nan(self):
        assert math.isnan(to_number("abc"))
        assert math.isnan(to_number("12abc"))

    def test_booleans(self):
        assert to_number(True) == 1
        assert to_number(False) == 0


class TestPrefixParsing:
    def test_float_prefix(self):
        assert parse_float_prefix("12.5kg") == 12.5
        assert parse_float_prefix("  7") == 7
        assert parse_float_prefix("abc") is None

    def test_int_prefix(self):
        assert parse_int_prefix("600s") == 600
        assert parse_int_prefix("-3") == -3
        assert parse_int_prefix("x1") is None


class TestToStr:
    def test_integral_float_drops_fraction(self):
        assert to_str(5.0) == "5"
        assert to_str(2.5) == "2.5"

    def test_special_values(self):
        assert to_str(None) == ""
        assert to_str(True) == "true"
        assert to_str(float("nan")) == "NaN"
        assert to_str(float("inf")) == "Infinity"

    def test_containers(self):
        assert to_str(["a", 1]) == "a,1"
        assert to_str({"k": "v"}) == '{"k": "v"}'


class TestLooseHelpers:
    def test_truthy(self):
        assert not truthy("")
        assert not truthy(0)
        assert not truthy(float("nan"))
        assert truthy("0")
        assert truthy([])

    def test_loose_equals(self):
        assert loose_equals(1, "1")
        assert loose_equals(True, 1)
        assert loose_equals("a", "a")
        assert loose_equals(1, "01")
        assert not loose_equals("1", "01")
        assert not loose_equals(None, 0)

    def test_tidy_number(self):
        assert tidy_number(3.0) == 3
        assert isinstance(tidy_number(3.0), int)
        assert tidy_number(1 / 3) == 0.33

    def test_parse_value(self):
        assert parse_value("12") == 12
        assert parse_value("1.5") == 1.5
        assert parse_value("true") is True
        assert parse_value("2024-01-01") == "2024-01-01"

    def test_text_length_counts_utf16_units(self):
        assert text_length("abc") == 3
        assert text_length("签到") == 2
        assert text_length("😀") == 2
