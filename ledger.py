"""Cash-flow legs and opening balance reconstruction.

Account balances are never stored as a running column. The balance of an
(account, currency) pair at a date is the latest opening balance snapshot
on or before that date, plus every income leg and minus every expense leg
dated after the snapshot and before the target date.
"""

import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Optional, Sequence

from money import round2

NO_METHOD = "Sin método"
NO_ACCOUNT = "Sin cuenta"

CASH_FLOW_TYPES = ("income", "expense")


@dataclass(frozen=True)
class CashFlowLeg:
    amount: float
    payment_method: str
    account: str


@dataclass(frozen=True)
class OpeningBalanceSeed:
    account_id: Optional[int]
    account: str
    currency: str
    amount: float
    effective_date: date


def _label(value: Optional[str], fallback: str) -> str:
    return (value or "").strip() or fallback


def _leg_amount(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def cash_flow_legs(movement: Any) -> list[CashFlowLeg]:
    """Legs a movement contributes to method and account totals.

    A movement paid in several lines contributes each line under its own
    method and account; otherwise the movement itself is the only leg.
    Legs without a usable positive amount are dropped.
    """
    payments = getattr(movement, "payments", None) or []
    if payments:
        legs = [
            CashFlowLeg(
                amount=_leg_amount(p.amount),
                payment_method=_label(p.payment_method, NO_METHOD),
                account=_label(p.account, NO_ACCOUNT),
            )
            for p in payments
        ]
    else:
        legs = [
            CashFlowLeg(
                amount=_leg_amount(movement.amount),
                payment_method=_label(movement.payment_method, NO_METHOD),
                account=_label(movement.account, NO_ACCOUNT),
            )
        ]
    return [leg for leg in legs if math.isfinite(leg.amount) and leg.amount > 0]


def account_currency_key(account: str, currency: str) -> str:
    return f"{account.strip().lower()}::{currency.strip().upper()}"


def latest_seeds(
    seeds: Iterable[OpeningBalanceSeed], as_of: date
) -> list[OpeningBalanceSeed]:
    """Most recent snapshot per (account, currency) effective on or before ``as_of``."""
    picked: dict[tuple[Optional[int], str], OpeningBalanceSeed] = {}
    for seed in seeds:
        if seed.effective_date > as_of:
            continue
        key = (seed.account_id, seed.currency.strip().upper())
        current = picked.get(key)
        if current is None or seed.effective_date > current.effective_date:
            picked[key] = seed
    return list(picked.values())


def _sort_key(row: dict[str, Any]) -> tuple[str, str]:
    return (str(row["account"]).casefold(), str(row["currency"]).casefold())


def reconstruct_opening_balances(
    seeds: Sequence[OpeningBalanceSeed],
    movements: Iterable[Any],
    target: date,
) -> list[dict[str, Any]]:
    seed_by_key: dict[str, OpeningBalanceSeed] = {}
    balances: dict[str, dict[str, Any]] = {}
    for seed in seeds:
        currency = seed.currency.strip().upper()
        key = account_currency_key(seed.account, currency)
        seed_by_key[key] = seed
        balances[key] = {
            "account": seed.account,
            "currency": currency,
            "amount": float(seed.amount),
        }

    for movement in movements:
        if movement.type not in CASH_FLOW_TYPES:
            continue
        if movement.date is None or movement.date >= target:
            continue
        for leg in cash_flow_legs(movement):
            key = account_currency_key(leg.account, movement.currency)
            seed = seed_by_key.get(key)
            if seed is not None and movement.date <= seed.effective_date:
                continue
            delta = leg.amount if movement.type == "income" else -leg.amount
            row = balances.get(key)
            if row is None:
                row = {
                    "account": leg.account,
                    "currency": movement.currency,
                    "amount": 0.0,
                }
                balances[key] = row
            row["amount"] += delta

    rows = [{**row, "amount": round2(row["amount"])} for row in balances.values()]
    rows.sort(key=_sort_key)
    return rows


def balance_as_of(
    account: str,
    currency: str,
    seed: Optional[OpeningBalanceSeed],
    movements: Iterable[Any],
    target: date,
) -> float:
    key = account_currency_key(account, currency)
    seeds = [seed] if seed is not None else []
    for row in reconstruct_opening_balances(seeds, movements, target):
        if account_currency_key(row["account"], row["currency"]) == key:
            return row["amount"]
    return 0.0
