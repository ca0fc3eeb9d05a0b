# tests/test_validators.py
import math

import pytest

from lexnotar.utils.helpers import as_local_naive, fmt_date, fmt_money, round_to_step
from lexnotar.utils.validators import is_valid_amount, non_empty, parse_money

from conftest import FIXED_NOW


@pytest.mark.parametrize("raw,expected", [
    ("  120.5 ", 120.5),
    (10.005, 10.01),
    (7, 7.0),
    (-3.333, -3.33),
])
def test_parse_money_rounds_half_up(raw, expected):
    assert parse_money(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", None, True, math.nan, math.inf])
def test_parse_money_rejects_non_numbers(raw):
    assert parse_money(raw) is None


def test_is_valid_amount():
    assert is_valid_amount("5")
    assert not is_valid_amount(0)
    assert is_valid_amount(0, allow_zero=True)
    assert not is_valid_amount(-1, allow_zero=True)


def test_formatting_helpers():
    assert fmt_money(1234567.891) == "1,234,567.89"
    assert fmt_money("n/a") == "n/a"
    assert fmt_date(FIXED_NOW) == "14/03/2025"
    assert fmt_date(None) == ""
    assert round_to_step(2.675) == 2.68
    assert not non_empty("   ")


def test_as_local_naive():
    from datetime import timezone
    assert as_local_naive(None) is None
    assert as_local_naive(FIXED_NOW) is FIXED_NOW
    aware = FIXED_NOW.replace(tzinfo=timezone.utc)
    assert as_local_naive(aware) == aware.astimezone().replace(tzinfo=None)
