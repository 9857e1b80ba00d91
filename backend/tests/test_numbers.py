"""Tests for amount and integer parsing helpers."""

import pytest

from pedimento.document_extractor.numbers import is_numeric_token, parse_amount, parse_int


class TestParseAmount:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("12,345.67", 12345.67),
            ("1,250.500", 1250.5),
            ("1,000,000", 1000000.0),
            ("17.2500", 17.25),
            ("$ 1,380.00", 1380.0),
            ("0", 0.0),
            (42, 42.0),
            (3.5, 3.5),
        ],
    )
    def test_parses_printed_amounts(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "N/A", "12,34", "1.2.3", "abc123", True, [], {}])
    def test_unparseable_is_none_not_zero(self, raw):
        assert parse_amount(raw) is None

    def test_negative(self):
        assert parse_amount("-1,500.00") == -1500.0


class TestParseInt:
    def test_string_and_numbers(self):
        assert parse_int("5") == 5
        assert parse_int(" 12 ") == 12
        assert parse_int(7) == 7
        assert parse_int(3.0) == 3

    def test_rejects_fractions_and_text(self):
        assert parse_int(3.5) is None
        assert parse_int("3.5") is None
        assert parse_int("SEC") is None
        assert parse_int(None) is None
        assert parse_int(False) is None


class TestIsNumericToken:
    def test_numeric(self):
        assert is_numeric_token("0")
        assert is_numeric_token("4,312.50")
        assert is_numeric_token("16")

    def test_not_numeric(self):
        assert not is_numeric_token("IVA")
        assert not is_numeric_token("-5")
        assert not is_numeric_token("")
        assert not is_numeric_token("PERMISO123456")
