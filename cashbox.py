"""Monthly cashbox summary.

Movements are plain records built by ``services.CashboxService`` from
receipts, other incomes, investments, transfers, adjustments and scheduled
debts. ``aggregate_cashbox`` turns them into the JSON document served by
``GET /api/cashbox``.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Optional, Sequence

from ledger import NO_ACCOUNT, NO_METHOD, account_currency_key, cash_flow_legs
from money import round2

MOVEMENT_TYPES = ("income", "expense", "client_debt", "operator_debt", "other")
MOVEMENT_SOURCES = (
    "receipt",
    "other_income",
    "investment",
    "client_payment",
    "operator_due",
    "credit_entry",
    "manual",
    "other",
)
DEBT_TYPES = ("client_debt", "operator_debt")


@dataclass
class PaymentBreakdown:
    amount: float
    payment_method: Optional[str] = None
    account: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": self.amount,
            "paymentMethod": self.payment_method,
            "account": self.account,
        }


@dataclass
class CashboxMovement:
    id: str
    date: date
    type: str
    source: str
    description: str
    currency: str
    # always positive, the direction comes from ``type``
    amount: float
    client_name: Optional[str] = None
    operator_name: Optional[str] = None
    booking_label: Optional[str] = None
    due_date: Optional[date] = None
    payment_method: Optional[str] = None
    account: Optional[str] = None
    category_name: Optional[str] = None
    counterparty_name: Optional[str] = None
    payee_name: Optional[str] = None
    payments: list[PaymentBreakdown] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.type not in MOVEMENT_TYPES:
            raise ValueError(f"Unknown movement type: {self.type}")
        if self.source not in MOVEMENT_SOURCES:
            raise ValueError(f"Unknown movement source: {self.source}")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "date": self.date.isoformat(),
            "type": self.type,
            "source": self.source,
            "description": self.description,
            "currency": self.currency,
            "amount": self.amount,
            "clientName": self.client_name,
            "operatorName": self.operator_name,
            "bookingLabel": self.booking_label,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "paymentMethod": self.payment_method,
            "account": self.account,
            "categoryName": self.category_name,
            "counterpartyName": self.counterparty_name,
            "payeeName": self.payee_name,
        }
        if self.payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


def _by_name(*names: str) -> tuple[str, ...]:
    return tuple(name.casefold() for name in names)


def aggregate_cashbox(
    year: int,
    month: int,
    start: date,
    end: date,
    movements: Sequence[CashboxMovement],
    opening_balances: Iterable[dict[str, Any]] = (),
    balances_override: Optional[dict[str, Optional[list[dict[str, Any]]]]] = None,
) -> dict[str, Any]:
    totals_by_currency: dict[str, dict[str, float]] = {}
    totals_by_method: dict[str, dict[str, Any]] = {}
    totals_by_account: dict[str, dict[str, Any]] = {}
    opening_by_currency: dict[str, float] = {}
    client_debt: dict[str, float] = {}
    operator_debt: dict[str, float] = {}
    upcoming_due: list[CashboxMovement] = []

    for m in movements:
        if m.type in ("income", "expense"):
            totals = totals_by_currency.setdefault(
                m.currency, {"income": 0.0, "expenses": 0.0}
            )
            side = "income" if m.type == "income" else "expenses"
            totals[side] += m.amount

            for leg in cash_flow_legs(m):
                method = leg.payment_method or NO_METHOD
                method_key = f"{method.lower()}::{m.currency}"
                method_totals = totals_by_method.setdefault(
                    method_key,
                    {
                        "paymentMethod": method,
                        "currency": m.currency,
                        "income": 0.0,
                        "expenses": 0.0,
                    },
                )
                method_totals[side] += leg.amount

                account = leg.account or NO_ACCOUNT
                account_totals = totals_by_account.setdefault(
                    account_currency_key(account, m.currency),
                    {
                        "account": account,
                        "currency": m.currency,
                        "income": 0.0,
                        "expenses": 0.0,
                        "opening": None,
                    },
                )
                account_totals[side] += leg.amount

        if m.type == "client_debt":
            client_debt[m.currency] = client_debt.get(m.currency, 0.0) + m.amount
        elif m.type == "operator_debt":
            operator_debt[m.currency] = operator_debt.get(m.currency, 0.0) + m.amount

        if m.type in DEBT_TYPES and m.due_date and start <= m.due_date <= end:
            upcoming_due.append(m)

    for ob in opening_balances:
        currency = ob["currency"]
        amount = float(ob["amount"])
        opening_by_currency[currency] = opening_by_currency.get(currency, 0.0) + amount

        account = (ob.get("account") or "").strip() or NO_ACCOUNT
        key = account_currency_key(account, currency)
        account_totals = totals_by_account.get(key)
        if account_totals is None:
            totals_by_account[key] = {
                "account": account,
                "currency": currency,
                "income": 0.0,
                "expenses": 0.0,
                "opening": amount,
            }
        elif account_totals["opening"] is None:
            account_totals["opening"] = amount

    for currency in opening_by_currency:
        totals_by_currency.setdefault(currency, {"income": 0.0, "expenses": 0.0})

    currency_rows = []
    for currency, totals in totals_by_currency.items():
        opening = opening_by_currency.get(currency, 0.0)
        currency_rows.append(
            {
                "currency": currency,
                "income": round2(totals["income"]),
                "expenses": round2(totals["expenses"]),
                "net": round2(totals["income"] - totals["expenses"] + opening),
            }
        )
    currency_rows.sort(key=lambda row: _by_name(row["currency"]))

    method_rows = [
        {
            "paymentMethod": t["paymentMethod"],
            "currency": t["currency"],
            "income": round2(t["income"]),
            "expenses": round2(t["expenses"]),
            "net": round2(t["income"] - t["expenses"]),
        }
        for t in totals_by_method.values()
    ]
    method_rows.sort(key=lambda row: _by_name(row["paymentMethod"], row["currency"]))

    account_rows = []
    for t in totals_by_account.values():
        net = t["income"] - t["expenses"]
        opening = t["opening"]
        account_rows.append(
            {
                "account": t["account"],
                "currency": t["currency"],
                "income": round2(t["income"]),
                "expenses": round2(t["expenses"]),
                "net": round2(net),
                "opening": round2(opening) if opening is not None else None,
                "closing": round2(opening + net) if opening is not None else None,
            }
        )
    account_rows.sort(key=lambda row: _by_name(row["account"], row["currency"]))

    computed_client = [
        {"currency": c, "amount": round2(a)} for c, a in client_debt.items()
    ]
    computed_operator = [
        {"currency": c, "amount": round2(a)} for c, a in operator_debt.items()
    ]
    override = balances_override or {}
    client_rows = override.get("clientDebtByCurrency")
    operator_rows = override.get("operatorDebtByCurrency")

    sorted_movements = sorted(movements, key=lambda m: m.date)
    sorted_due = sorted(upcoming_due, key=lambda m: m.due_date or date.min)

    return {
        "range": {
            "year": year,
            "month": month,
            "from": start.isoformat(),
            "to": end.isoformat(),
        },
        "totalsByCurrency": currency_rows,
        "totalsByPaymentMethod": method_rows,
        "totalsByAccount": account_rows,
        "balances": {
            "clientDebtByCurrency": (
                client_rows if client_rows is not None else computed_client
            ),
            "operatorDebtByCurrency": (
                operator_rows if operator_rows is not None else computed_operator
            ),
        },
        "upcomingDue": [m.to_dict() for m in sorted_due],
        "movements": [m.to_dict() for m in sorted_movements],
    }
