from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_UP, Decimal

import pytest

from app.utils.money import PERCENT_SCALE, money_str, to_decimal, to_money
from app.utils.symbols import normalize_symbol


def test_float_input_is_parsed_by_its_text_form() -> None:
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(0.1) + to_decimal(0.2) == Decimal("0.3")


@pytest.mark.parametrize("bad", [None, True, "abc", "NaN", "Infinity", float("inf"), [1]])
def test_non_numbers_are_rejected(bad) -> None:
    with pytest.raises(ValueError):
        to_decimal(bad)


def test_rounding_modes() -> None:
    assert to_money("1.000000005") == Decimal("1.00000000")
    assert to_money("1.000000009", rounding=ROUND_DOWN) == Decimal("1.00000000")
    assert to_money("1.000000001", rounding=ROUND_UP) == Decimal("1.00000001")
    assert to_money("12.34567", PERCENT_SCALE) == Decimal("12.3457")


def test_money_str_has_no_exponent() -> None:
    assert money_str(Decimal("1E-8")) == "0.00000001"
    assert money_str(Decimal("1000")) == "1000.00000000"
    assert money_str(Decimal("-3"), PERCENT_SCALE) == "-3.0000"
    assert money_str(None) is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("btc", "BTC"),
        (" BTC ", "BTC"),
        ("BTC/USDT", "BTC"),
        ("eth-usdt", "ETH"),
        ("ETHUSDT", "ETH"),
        ("SOL_USD", "SOL"),
        ("USDT", "USDT"),
        (None, ""),
    ],
)
def test_normalize_symbol(raw, expected) -> None:
    assert normalize_symbol(raw) == expected
