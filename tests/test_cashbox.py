from datetime import date

import pytest

from cashbox import CashboxMovement, PaymentBreakdown, aggregate_cashbox

JAN_START = date(2025, 1, 1)
JAN_END = date(2025, 1, 31)


def _summary(movements, opening=(), override=None):
    return aggregate_cashbox(
        2025,
        1,
        JAN_START,
        JAN_END,
        movements,
        opening_balances=opening,
        balances_override=override,
    )


def test_net_is_income_minus_expenses_per_currency() -> None:
    movements = [
        CashboxMovement(
            id="receipt:1",
            date=date(2025, 1, 3),
            type="income",
            source="receipt",
            description="Recibo 1",
            currency="ARS",
            amount=500,
            payment_method="Efectivo",
            account="Caja",
        ),
        CashboxMovement(
            id="investment:1",
            date=date(2025, 1, 5),
            type="expense",
            source="investment",
            description="Alquiler",
            currency="ARS",
            amount=200,
            payment_method="Transferencia",
            account="Banco",
        ),
    ]
    summary = _summary(movements)

    assert summary["range"] == {
        "year": 2025,
        "month": 1,
        "from": "2025-01-01",
        "to": "2025-01-31",
    }
    assert summary["totalsByCurrency"] == [
        {"currency": "ARS", "income": 500.0, "expenses": 200.0, "net": 300.0}
    ]
    methods = {row["paymentMethod"]: row for row in summary["totalsByPaymentMethod"]}
    assert methods["Efectivo"]["net"] == 500.0
    assert methods["Transferencia"]["net"] == -200.0
    accounts = {row["account"]: row for row in summary["totalsByAccount"]}
    assert accounts["Banco"]["opening"] is None
    assert accounts["Banco"]["closing"] is None
    assert [m["id"] for m in summary["movements"]] == ["receipt:1", "investment:1"]


def test_opening_balance_feeds_currency_net_and_account_closing() -> None:
    movements = [
        CashboxMovement(
            id="receipt:1",
            date=date(2025, 1, 3),
            type="income",
            source="receipt",
            description="Recibo 1",
            currency="USD",
            amount=100,
            account="Caja",
        ),
    ]
    opening = [
        {"account": "Caja", "currency": "USD", "amount": 1000.0},
        {"account": "Banco", "currency": "ARS", "amount": 50.0},
    ]
    summary = _summary(movements, opening)

    currencies = {row["currency"]: row for row in summary["totalsByCurrency"]}
    assert currencies["USD"]["net"] == 1100.0
    assert currencies["ARS"] == {
        "currency": "ARS",
        "income": 0.0,
        "expenses": 0.0,
        "net": 50.0,
    }
    accounts = {(row["account"], row["currency"]): row for row in summary["totalsByAccount"]}
    assert accounts[("Caja", "USD")]["opening"] == 1000.0
    assert accounts[("Caja", "USD")]["closing"] == 1100.0
    assert accounts[("Banco", "ARS")]["closing"] == 50.0


def test_split_payments_feed_method_and_account_totals() -> None:
    movement = CashboxMovement(
        id="investment:7",
        date=date(2025, 1, 9),
        type="expense",
        source="investment",
        description="Pago operador",
        currency="USD",
        amount=300,
        payment_method="Transferencia",
        account="Banco",
        payments=[
            PaymentBreakdown(amount=200, payment_method="Transferencia", account="Banco"),
            PaymentBreakdown(amount=100, payment_method="Efectivo", account="Caja"),
        ],
    )
    summary = _summary([movement])

    methods = {row["paymentMethod"]: row["expenses"] for row in summary["totalsByPaymentMethod"]}
    assert methods == {"Efectivo": 100.0, "Transferencia": 200.0}
    accounts = {row["account"]: row["expenses"] for row in summary["totalsByAccount"]}
    assert accounts == {"Banco": 200.0, "Caja": 100.0}
    assert summary["movements"][0]["payments"][1] == {
        "amount": 100,
        "paymentMethod": "Efectivo",
        "account": "Caja",
    }


def test_debts_and_upcoming_due() -> None:
    movements = [
        CashboxMovement(
            id="client_payment:1",
            date=date(2024, 12, 20),
            type="client_debt",
            source="client_payment",
            description="Pago de pax pendiente",
            currency="ARS",
            amount=800,
            due_date=date(2025, 1, 20),
        ),
        CashboxMovement(
            id="operator_due:1",
            date=date(2024, 12, 1),
            type="operator_debt",
            source="operator_due",
            description="Hotel",
            currency="USD",
            amount=400,
            due_date=date(2025, 1, 10),
        ),
        CashboxMovement(
            id="operator_due:2",
            date=date(2024, 12, 1),
            type="operator_debt",
            source="operator_due",
            description="Vuelo",
            currency="USD",
            amount=100,
            due_date=date(2025, 2, 10),
        ),
    ]
    summary = _summary(movements)

    assert summary["totalsByCurrency"] == []
    assert summary["balances"] == {
        "clientDebtByCurrency": [{"currency": "ARS", "amount": 800.0}],
        "operatorDebtByCurrency": [{"currency": "USD", "amount": 500.0}],
    }
    assert [m["id"] for m in summary["upcomingDue"]] == [
        "operator_due:1",
        "client_payment:1",
    ]


def test_balances_override_replaces_computed_debt() -> None:
    override = {
        "clientDebtByCurrency": [{"currency": "ARS", "amount": 10.0}],
        "operatorDebtByCurrency": None,
    }
    movement = CashboxMovement(
        id="operator_due:1",
        date=date(2025, 1, 1),
        type="operator_debt",
        source="operator_due",
        description="Hotel",
        currency="USD",
        amount=400,
    )
    summary = _summary([movement], override=override)
    assert summary["balances"]["clientDebtByCurrency"] == [
        {"currency": "ARS", "amount": 10.0}
    ]
    assert summary["balances"]["operatorDebtByCurrency"] == [
        {"currency": "USD", "amount": 400.0}
    ]


def test_unknown_movement_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        CashboxMovement(
            id="x",
            date=JAN_START,
            type="refund",
            source="manual",
            description="",
            currency="ARS",
            amount=1,
        )
