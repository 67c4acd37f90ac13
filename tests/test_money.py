from decimal import Decimal
from types import SimpleNamespace

from money import (
    add_money,
    combine_net,
    merge_money_maps,
    normalize_currency,
    pick_investment_amount,
    pick_money,
    round2,
    round_money_map,
    subtract_money_maps,
    to_amount,
)


def test_round2_rounds_half_away_from_zero() -> None:
    assert round2(1.005) == 1.01
    assert round2(0.125) == 0.13
    assert round2(-1.005) == -1.0
    assert round2(10) == 10.0


def test_round2_corrects_float_drift() -> None:
    assert 0.1 + 0.2 != 0.3
    assert round2(0.1 + 0.2) == 0.3
    assert round2(1.1 + 2.2) == 3.3


def test_round2_never_returns_negative_zero() -> None:
    value = round2(-0.001)
    assert value == 0.0
    assert str(value) == "0.0"


def test_round2_falls_back_to_zero_for_garbage() -> None:
    assert round2(None) == 0.0
    assert round2("abc") == 0.0
    assert round2(float("inf")) == 0.0
    assert round2(float("nan")) == 0.0


def test_to_amount_coerces_row_values() -> None:
    assert to_amount(Decimal("12.50")) == 12.5
    assert to_amount(" 7.25 ") == 7.25
    assert to_amount("") == 0.0
    assert to_amount("n/a") == 0.0
    assert to_amount(None) == 0.0
    assert to_amount(True) == 0.0
    assert to_amount(float("nan")) == 0.0


def test_add_money_skips_blank_currency_and_non_finite() -> None:
    totals: dict[str, float] = {}
    add_money(totals, "usd", 10)
    add_money(totals, "USD", "5.5")
    add_money(totals, "", 100)
    add_money(totals, None, 100)
    add_money(totals, "ARS", float("nan"))
    assert totals == {"USD": 15.5}


def test_merge_and_subtract_money_maps() -> None:
    base = {"ARS": 1000.0}
    merge_money_maps(base, {"ARS": 200.0, "USD": 50.0})
    assert base == {"ARS": 1200.0, "USD": 50.0}

    out = subtract_money_maps({"ARS": 1000.0}, {"ARS": 1200.0, "EUR": 30.0})
    assert out == {"ARS": -200.0, "EUR": -30.0}
    assert list(out) == ["ARS", "EUR"]


def test_combine_net_keeps_currencies_from_both_sides() -> None:
    net = combine_net({"ARS": 500.0}, {"ARS": 200.0, "USD": 10.0})
    assert net == {"ARS": 300.0, "USD": -10.0}


def test_round_money_map() -> None:
    assert round_money_map({"ARS": 33.333333, "USD": 0.005}) == {
        "ARS": 33.33,
        "USD": 0.01,
    }


def test_normalize_currency_aliases() -> None:
    assert normalize_currency("us$") == "USD"
    assert normalize_currency("U$S") == "USD"
    assert normalize_currency("$") == "ARS"
    assert normalize_currency(" eur ") == "EUR"
    assert normalize_currency(None) == "ARS"
    assert normalize_currency("", default="USD") == "USD"


def test_pick_money_prefers_complete_override() -> None:
    assert pick_money(100, "ars", 80, "usd") == ("USD", 80.0)
    assert pick_money(100, "ars", 80, None) == ("ARS", 100.0)
    assert pick_money(100, "ars", None, "USD") == ("ARS", 100.0)
    assert pick_money(100, None) == ("ARS", 100.0)
    assert pick_money(100, "u$s") == ("USD", 100.0)
    assert pick_money(100, "ars", 80, "U$D") == ("USD", 80.0)


def test_pick_investment_amount_sums_allocations() -> None:
    inv = SimpleNamespace(
        amount=Decimal("500"),
        currency="USD",
        base_amount=None,
        base_currency=None,
        allocations=[
            SimpleNamespace(amount_payment=Decimal("120"), payment_currency="USD"),
            SimpleNamespace(amount_payment=Decimal("80"), payment_currency="USD"),
        ],
    )
    assert pick_investment_amount(inv) == ("USD", 200.0)


def test_pick_investment_amount_without_allocations_uses_base() -> None:
    inv = SimpleNamespace(
        amount=Decimal("500"),
        currency="ARS",
        base_amount=Decimal("4"),
        base_currency="USD",
        allocations=[],
    )
    assert pick_investment_amount(inv) == ("USD", 4.0)
