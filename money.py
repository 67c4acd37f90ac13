"""Currency-keyed money maps.

A money map is a plain ``dict`` from an uppercase currency code to an
accumulated float amount. A missing key means zero. Accumulation never
rounds; only values handed back to callers for display go through
``round2``.
"""

import math
import sys
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

MoneyMap = dict[str, float]

EPSILON = sys.float_info.epsilon

_USD_ALIASES = {"US$", "U$S", "U$D", "DOL"}
_ARS_ALIASES = {"$", "AR$"}


def to_amount(value: Any) -> float:
    """Coerce a row value to a finite float, falling back to 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, Decimal):
        if not value.is_finite():
            return 0.0
        return float(value)
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return 0.0
        try:
            number = float(raw)
        except ValueError:
            return 0.0
    else:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, InvalidOperation):
        return None
    if not math.isfinite(number):
        return None
    return number


def round2(value: Any) -> float:
    """Round half away from zero to two decimals, nudged by EPSILON."""
    number = _finite(value)
    if number is None:
        return 0.0
    scaled = Decimal(repr((number + EPSILON) * 100))
    rounded = scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    # + 0.0 turns -0.0 into 0.0
    return float(rounded) / 100 + 0.0


def normalize_currency(value: Any, default: str = "ARS") -> str:
    code = str(value if value is not None else "").strip().upper()
    if not code:
        return default
    if code in _USD_ALIASES:
        return "USD"
    if code in _ARS_ALIASES:
        return "ARS"
    return code


def add_money(target: MoneyMap, currency: Any, amount: Any) -> None:
    if currency is None:
        return
    code = str(currency).strip().upper()
    if not code:
        return
    number = _finite(amount)
    if number is None:
        return
    target[code] = target.get(code, 0.0) + number


def merge_money_maps(target: MoneyMap, addition: MoneyMap) -> None:
    for currency, amount in addition.items():
        add_money(target, currency, amount)


def subtract_money_maps(base: MoneyMap, subtract: MoneyMap) -> MoneyMap:
    out: MoneyMap = {}
    for key in list(base) + [k for k in subtract if k not in base]:
        out[key] = base.get(key, 0.0) - subtract.get(key, 0.0)
    return out


def combine_net(incomes: MoneyMap, expenses: MoneyMap) -> MoneyMap:
    return subtract_money_maps(incomes, expenses)


def round_money_map(money: MoneyMap) -> MoneyMap:
    return {currency: round2(amount) for currency, amount in money.items()}


def pick_money(
    amount: Any,
    currency: Any,
    override_amount: Any = None,
    override_currency: Any = None,
) -> tuple[str, float]:
    """Amount/currency pair, replaced by the override pair when one is set.

    Used for receipts settled in a counter currency and for investments
    carrying a base amount.
    """
    has_override = (
        override_amount is not None
        and override_currency is not None
        and str(override_currency).strip() != ""
    )
    raw_currency = override_currency if has_override else currency
    raw_amount = override_amount if has_override else amount
    code = normalize_currency(raw_currency)
    return code, to_amount(raw_amount)


def pick_investment_amount(investment: Any) -> tuple[str, float]:
    allocations = list(getattr(investment, "allocations", None) or [])
    if allocations:
        code = normalize_currency(
            getattr(investment, "currency", None) or allocations[0].payment_currency
        )
        total = sum(to_amount(alloc.amount_payment) for alloc in allocations)
        return code, total
    return pick_money(
        investment.amount,
        investment.currency,
        getattr(investment, "base_amount", None),
        getattr(investment, "base_currency", None),
    )
