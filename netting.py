from typing import Any, Iterable, Mapping, Optional

from money import (
    MoneyMap,
    add_money,
    normalize_currency,
    pick_money,
    round2,
    subtract_money_maps,
    to_amount,
)


def service_sale_with_interest(service: Any) -> float:
    sale = to_amount(service.sale_price)
    split = to_amount(getattr(service, "taxable_card_interest", None)) + to_amount(
        getattr(service, "vat_on_card_interest", None)
    )
    # itemised interest wins over the flat card_interest field
    if split > 0:
        interest = split
    else:
        interest = to_amount(getattr(service, "card_interest", None))
    return sale + interest


def sum_sales_with_interest(services: Iterable[Any]) -> MoneyMap:
    totals: MoneyMap = {}
    for svc in services:
        currency = normalize_currency(svc.currency)
        add_money(totals, currency, service_sale_with_interest(svc))
    return totals


def sum_sales(services: Iterable[Any]) -> MoneyMap:
    totals: MoneyMap = {}
    for svc in services:
        add_money(totals, normalize_currency(svc.currency), to_amount(svc.sale_price))
    return totals


def sum_costs(services: Iterable[Any]) -> MoneyMap:
    totals: MoneyMap = {}
    for svc in services:
        add_money(totals, normalize_currency(svc.currency), to_amount(svc.cost_price))
    return totals


def client_debt(sale_with_interest: MoneyMap, paid: MoneyMap) -> MoneyMap:
    """Sale with interest minus what the client paid. Overpayment stays negative."""
    return subtract_money_maps(sale_with_interest, paid)


def operator_debt(cost: MoneyMap, payments: MoneyMap) -> MoneyMap:
    """Operator cost minus what the agency paid. Overpayment stays negative."""
    return subtract_money_maps(cost, payments)


def _positive_allocations(receipt: Any) -> list[tuple[int, float, Optional[str]]]:
    rows = []
    for alloc in receipt.service_allocations or []:
        sid = int(to_amount(alloc.service_id))
        amount = to_amount(alloc.amount_service)
        if sid <= 0 or amount <= 0:
            continue
        rows.append((sid, amount, alloc.service_currency))
    return rows


def receipted_service_ids(receipts: Iterable[Any], service_ids: set[int]) -> set[int]:
    """Selected services that at least one receipt pays for."""
    found: set[int] = set()
    for receipt in receipts:
        if receipt.service_allocations:
            for sid, _amount, _currency in _positive_allocations(receipt):
                if sid in service_ids:
                    found.add(sid)
            continue
        for sid in receipt.service_ids or []:
            if sid in service_ids:
                found.add(sid)
    return found


def receipt_paid_for_services(
    receipt: Any,
    service_ids: set[int],
    service_currency_by_id: Mapping[int, str],
) -> MoneyMap:
    """What a receipt paid towards the given services, per currency.

    Allocation rows are authoritative and are booked in the service's own
    currency. A legacy receipt that references any of the services counts in
    full, fee included.
    """
    paid: MoneyMap = {}
    if receipt.service_allocations:
        for sid, amount, alloc_currency in _positive_allocations(receipt):
            if sid not in service_ids:
                continue
            currency = normalize_currency(
                service_currency_by_id.get(sid) or alloc_currency
            )
            add_money(paid, currency, amount)
        return paid

    if not any(sid in service_ids for sid in receipt.service_ids or []):
        return paid
    currency, amount = pick_money(
        receipt.amount,
        receipt.amount_currency,
        receipt.base_amount,
        receipt.base_currency,
    )
    add_money(paid, currency, amount + to_amount(receipt.payment_fee_amount))
    return paid


def debt_balances_from_credit_accounts(
    accounts: Iterable[Any],
) -> dict[str, list[dict[str, Any]]]:
    """Global debt per currency from credit account balances.

    Client accounts: what clients owe (negative balances) takes precedence;
    when no client owes anything in a currency the positive balances are
    reported instead. Operator accounts: positive balances, what the agency
    owes.
    """
    client_owed: MoneyMap = {}
    client_credit: MoneyMap = {}
    operator_owed: MoneyMap = {}
    for acc in accounts:
        balance = to_amount(acc.balance)
        if acc.client_id is not None:
            if balance < 0:
                add_money(client_owed, acc.currency, abs(balance))
            elif balance > 0:
                add_money(client_credit, acc.currency, balance)
            continue
        if acc.operator_id is not None and balance > 0:
            add_money(operator_owed, acc.currency, balance)

    client_rows = []
    for currency in list(client_owed) + [
        c for c in client_credit if c not in client_owed
    ]:
        owed = client_owed.get(currency, 0.0)
        amount = owed if owed != 0 else client_credit.get(currency, 0.0)
        if amount > 0:
            client_rows.append({"currency": currency, "amount": round2(amount)})

    operator_rows = [
        {"currency": currency, "amount": round2(amount)}
        for currency, amount in operator_owed.items()
    ]
    return {
        "clientDebtByCurrency": client_rows,
        "operatorDebtByCurrency": operator_rows,
    }
