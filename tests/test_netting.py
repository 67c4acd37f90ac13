from decimal import Decimal
from types import SimpleNamespace

from netting import (
    client_debt,
    debt_balances_from_credit_accounts,
    operator_debt,
    receipt_paid_for_services,
    receipted_service_ids,
    service_sale_with_interest,
    sum_costs,
    sum_sales,
    sum_sales_with_interest,
)


def _service(
    sale=0,
    cost=0,
    currency="ARS",
    card_interest=None,
    taxable=None,
    vat=None,
):
    return SimpleNamespace(
        sale_price=Decimal(str(sale)),
        cost_price=Decimal(str(cost)),
        currency=currency,
        card_interest=card_interest,
        taxable_card_interest=taxable,
        vat_on_card_interest=vat,
    )


def _receipt(amount=0, currency="ARS", service_ids=(), allocations=(), fee=None, **extra):
    data = dict(
        amount=amount,
        amount_currency=currency,
        base_amount=None,
        base_currency=None,
        payment_fee_amount=fee,
        service_ids=list(service_ids),
        service_allocations=list(allocations),
    )
    data.update(extra)
    return SimpleNamespace(**data)


def _alloc(service_id, amount, currency=None):
    return SimpleNamespace(
        service_id=service_id, amount_service=amount, service_currency=currency
    )


def test_split_interest_wins_over_flat_card_interest() -> None:
    svc = _service(sale=1000, card_interest=100, taxable=40, vat=8.5)
    assert service_sale_with_interest(svc) == 1048.5
    flat = _service(sale=1000, card_interest=100)
    assert service_sale_with_interest(flat) == 1100.0


def test_sums_per_currency() -> None:
    services = [
        _service(sale=100, cost=80, currency="ARS"),
        _service(sale=50, cost=40, currency="usd", card_interest=5),
        _service(sale=10, cost=5, currency="ARS"),
    ]
    assert sum_sales(services) == {"ARS": 110.0, "USD": 50.0}
    assert sum_costs(services) == {"ARS": 85.0, "USD": 40.0}
    assert sum_sales_with_interest(services) == {"ARS": 110.0, "USD": 55.0}


def test_client_debt_keeps_overpayment_negative() -> None:
    assert client_debt({"ARS": 1000.0}, {"ARS": 1200.0}) == {"ARS": -200.0}
    assert client_debt({"ARS": 1000.0}, {"USD": 10.0}) == {"ARS": 1000.0, "USD": -10.0}


def test_operator_debt() -> None:
    assert operator_debt({"USD": 700.0}, {"USD": 300.0}) == {"USD": 400.0}
    assert operator_debt({"USD": 700.0}, {}) == {"USD": 700.0}


def test_allocations_are_authoritative_and_use_service_currency() -> None:
    receipt = _receipt(
        amount=5000,
        currency="ARS",
        service_ids=[1, 2],
        allocations=[_alloc(1, 100, "ARS"), _alloc(2, 30), _alloc(3, 999)],
    )
    paid = receipt_paid_for_services(receipt, {1, 2}, {1: "USD", 2: "USD"})
    assert paid == {"USD": 130.0}


def test_legacy_receipt_counts_in_full_with_fee() -> None:
    receipt = _receipt(amount=1000, currency="ars", service_ids=[2, 9], fee=50)
    assert receipt_paid_for_services(receipt, {2}, {2: "ARS"}) == {"ARS": 1050.0}
    assert receipt_paid_for_services(receipt, {7}, {7: "ARS"}) == {}


def test_legacy_receipt_with_base_amount() -> None:
    receipt = _receipt(
        amount=100000,
        currency="ARS",
        service_ids=[1],
        base_amount=100,
        base_currency="USD",
    )
    assert receipt_paid_for_services(receipt, {1}, {1: "USD"}) == {"USD": 100.0}


def test_receipted_service_ids() -> None:
    receipts = [
        _receipt(service_ids=[1, 2]),
        _receipt(service_ids=[3], allocations=[_alloc(4, 10), _alloc(5, 0)]),
    ]
    # allocation rows replace the legacy id list
    assert receipted_service_ids(receipts, {1, 3, 4, 5, 6}) == {1, 4}


def test_debt_balances_from_credit_accounts() -> None:
    accounts = [
        SimpleNamespace(client_id=1, operator_id=None, currency="ARS", balance=-500),
        SimpleNamespace(client_id=2, operator_id=None, currency="ARS", balance=300),
        SimpleNamespace(client_id=3, operator_id=None, currency="USD", balance=40),
        SimpleNamespace(client_id=None, operator_id=9, currency="USD", balance=120.25),
        SimpleNamespace(client_id=None, operator_id=8, currency="USD", balance=-60),
    ]
    balances = debt_balances_from_credit_accounts(accounts)
    assert balances["clientDebtByCurrency"] == [
        {"currency": "ARS", "amount": 500.0},
        {"currency": "USD", "amount": 40.0},
    ]
    assert balances["operatorDebtByCurrency"] == [{"currency": "USD", "amount": 120.25}]
