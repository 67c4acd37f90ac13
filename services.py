from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session, contains_eager, joinedload, selectinload

from allocation import LegacyServiceRef, allocate_legacy_amount, parse_service_ids
from cashbox import CashboxMovement, PaymentBreakdown, aggregate_cashbox
from config import get_settings
from ledger import (
    NO_ACCOUNT,
    OpeningBalanceSeed,
    balance_as_of,
    latest_seeds,
    reconstruct_opening_balances,
)
from models import (
    Booking,
    ClientPayment,
    CreditAccount,
    CreditEntry,
    ExcessAction,
    FeeMode,
    FinanceAccount,
    FinanceAccountAdjustment,
    FinanceAccountOpeningBalance,
    FinanceConfig,
    FinancePaymentMethod,
    FinanceTransfer,
    Investment,
    InvestmentPayment,
    InvestmentServiceAllocation,
    MissingAccountAction,
    Operator,
    OperatorDue,
    OtherIncome,
    Receipt,
    Service,
    User,
)
from money import (
    MoneyMap,
    add_money,
    combine_net,
    merge_money_maps,
    normalize_currency,
    pick_investment_amount,
    pick_money,
    round2,
    round_money_map,
    to_amount,
)
from netting import (
    client_debt,
    debt_balances_from_credit_accounts,
    operator_debt,
    receipt_paid_for_services,
    receipted_service_ids,
    sum_costs,
    sum_sales,
    sum_sales_with_interest,
)
from periods import DateMode, Period, month_range
from recurrence import RecurringInvestmentEngine
from schemas import InvestmentFilters, InvestmentIn, InvestmentPaymentIn, OpeningBalanceIn

logger = logging.getLogger(__name__)

CREDIT_METHOD = "Crédito operador"
ASSIGNMENT_TOLERANCE = 0.01
DEFAULT_PAGE_SIZE = 24
MAX_PAGE_SIZE = 100
USER_CATEGORY_NAMES = {"sueldo", "sueldos", "comision", "comisiones"}
# sign a credit entry applies to its account balance
DOC_TYPE_SIGN = {"investment": -1, "receipt": 1}


class ValidationError(ValueError):
    pass


class NotFoundError(ValueError):
    pass


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min)


def _code(value: Any) -> str:
    return normalize_currency(value)


def _iso(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    return value.isoformat()


def norm_soft(value: Any) -> str:
    """Lowercase without diacritics, for lenient category matching."""
    text = unicodedata.normalize("NFD", str(value or ""))
    return "".join(ch for ch in text if not unicodedata.combining(ch)).strip().lower()


def is_operator_category(name: Any, configured: Iterable[str] = ()) -> bool:
    soft = norm_soft(name)
    if not soft:
        return False
    if soft.startswith("operador"):
        return True
    return soft in {norm_soft(n) for n in configured}


def is_user_category(name: Any, configured: Iterable[str] = ()) -> bool:
    soft = norm_soft(name)
    if not soft:
        return False
    if soft in USER_CATEGORY_NAMES:
        return True
    return soft in {norm_soft(n) for n in configured}


def next_agency_counter(
    session: Session, column: Any, agency_column: Any, agency_id: int
) -> int:
    current = session.scalar(
        select(func.max(column)).where(agency_column == agency_id)
    )
    return int(current or 0) + 1


def load_finance_config(session: Session, agency_id: int) -> Optional[FinanceConfig]:
    return session.scalar(
        select(FinanceConfig).where(FinanceConfig.agency_id == agency_id)
    )


class CashboxService:
    def __init__(self, session: Session, agency_id: int) -> None:
        self.session = session
        self.agency_id = agency_id

    def summary(self, year: int, month: int) -> dict[str, Any]:
        period = month_range(year, month)
        movements = self.movements_between(period.start, period.end)
        opening = self.opening_balances(period.start)
        balances = self.debt_balances()
        logger.info(
            f"cashbox_summary: agency={self.agency_id} period={period.slug} "
            f"movements={len(movements)} opening_rows={len(opening)}"
        )
        return aggregate_cashbox(
            year,
            month,
            period.start,
            period.end,
            movements,
            opening_balances=opening,
            balances_override=balances,
        )

    def movements_between(self, start: date, end: date) -> list[CashboxMovement]:
        config = load_finance_config(self.session, self.agency_id)
        hide_operator = bool(config and config.hide_operator_expenses_in_investments)
        accounts = self._names(FinanceAccount)
        methods = self._names(FinancePaymentMethod)

        movements: list[CashboxMovement] = []
        movements.extend(self._receipt_movements(start, end, accounts))
        movements.extend(self._other_income_movements(start, end, accounts, methods))
        movements.extend(self._investment_movements(start, end, hide_operator))
        movements.extend(self._transfer_movements(start, end, accounts, methods))
        movements.extend(self._adjustment_movements(start, end, accounts))
        movements.extend(self._client_payment_movements(start, end))
        movements.extend(self._operator_due_movements(start, end))
        return movements

    def _names(self, model: Any) -> dict[int, str]:
        rows = self.session.execute(
            select(model.id, model.name).where(model.agency_id == self.agency_id)
        ).all()
        return {row.id: row.name for row in rows}

    @staticmethod
    def _receipt_client_name(receipt: Receipt) -> Optional[str]:
        booking = receipt.booking
        if booking is None:
            return None
        people = {}
        if booking.titular is not None:
            people[booking.titular.id] = booking.titular
        for client in booking.clients:
            people.setdefault(client.id, client)
        names: list[str] = []
        for cid in receipt.client_ids or []:
            client = people.get(cid)
            if client is not None and client.full_name not in names:
                names.append(client.full_name)
        if names:
            return ", ".join(names)
        return booking.titular.full_name if booking.titular else None

    def _receipt_movements(
        self, start: date, end: date, accounts: dict[int, str]
    ) -> list[CashboxMovement]:
        stmt = (
            select(Receipt)
            .options(
                joinedload(Receipt.booking).joinedload(Booking.titular),
                joinedload(Receipt.booking).selectinload(Booking.clients),
            )
            .where(
                Receipt.agency_id == self.agency_id,
                Receipt.enabled.is_(True),
                Receipt.issue_date.between(start, end),
            )
            .order_by(Receipt.issue_date, Receipt.id)
        )
        movements = []
        for receipt in self.session.scalars(stmt):
            currency, amount = pick_money(
                receipt.amount,
                receipt.amount_currency,
                receipt.counter_amount,
                receipt.counter_currency,
            )
            movements.append(
                CashboxMovement(
                    id=f"receipt:{receipt.id}",
                    date=receipt.issue_date,
                    type="income",
                    source="receipt",
                    description=receipt.concept or f"Recibo {receipt.receipt_number}",
                    currency=currency,
                    amount=amount,
                    client_name=self._receipt_client_name(receipt),
                    booking_label=receipt.booking.label if receipt.booking else None,
                    payment_method=receipt.payment_method,
                    account=accounts.get(receipt.account_id) or receipt.account,
                )
            )
        return movements

    def _other_income_movements(
        self,
        start: date,
        end: date,
        accounts: dict[int, str],
        methods: dict[int, str],
    ) -> list[CashboxMovement]:
        stmt = (
            select(OtherIncome)
            .options(joinedload(OtherIncome.operator), selectinload(OtherIncome.payments))
            .where(
                OtherIncome.agency_id == self.agency_id,
                OtherIncome.issue_date.between(start, end),
            )
            .order_by(OtherIncome.issue_date, OtherIncome.id)
        )
        movements = []
        for income in self.session.scalars(stmt):
            legs = [
                PaymentBreakdown(
                    amount=to_amount(p.amount),
                    payment_method=methods.get(p.payment_method_id),
                    account=accounts.get(p.account_id),
                )
                for p in income.payments
            ]
            if len(legs) == 1:
                method, account = legs[0].payment_method, legs[0].account
            elif legs:
                method, account = "Varios", None
            else:
                method = methods.get(income.payment_method_id)
                account = accounts.get(income.account_id)
            movements.append(
                CashboxMovement(
                    id=f"other_income:{income.id}",
                    date=income.issue_date,
                    type="income",
                    source="other_income",
                    description=income.description or "Ingresos",
                    currency=_code(income.currency),
                    amount=to_amount(income.amount),
                    operator_name=income.operator.name if income.operator else None,
                    payment_method=method,
                    account=account,
                    category_name=income.category_name,
                    counterparty_name=income.counterparty_name,
                    payments=legs,
                )
            )
        return movements

    def _investment_movements(
        self, start: date, end: date, hide_operator: bool
    ) -> list[CashboxMovement]:
        stmt = (
            select(Investment)
            .options(joinedload(Investment.operator), selectinload(Investment.payments))
            .where(
                Investment.agency_id == self.agency_id,
                or_(
                    Investment.paid_at.between(start, end),
                    and_(
                        Investment.paid_at.is_(None),
                        Investment.created_at >= _day_start(start),
                        Investment.created_at < _day_start(end + timedelta(days=1)),
                    ),
                ),
            )
            .order_by(Investment.id)
        )
        if hide_operator:
            stmt = stmt.where(Investment.operator_id.is_(None))

        movements = []
        for inv in self.session.scalars(stmt):
            description = (inv.description or "").strip()
            if not description:
                parts = [p for p in (inv.category, inv.description) if p]
                description = " • ".join(parts) or "Gasto / inversión"
            legs = []
            if len(inv.payments) > 1:
                legs = [
                    PaymentBreakdown(
                        amount=to_amount(p.amount),
                        payment_method=p.payment_method,
                        account=p.account,
                    )
                    for p in inv.payments
                ]
            movements.append(
                CashboxMovement(
                    id=f"investment:{inv.id}",
                    date=inv.paid_at or inv.created_at.date(),
                    type="expense",
                    source="investment",
                    description=description,
                    currency=_code(inv.currency),
                    amount=to_amount(inv.amount),
                    operator_name=inv.operator.name if inv.operator else None,
                    payment_method=inv.payment_method,
                    account=inv.account,
                    category_name=inv.category,
                    payee_name=inv.counterparty_name,
                    payments=legs,
                )
            )
        return movements

    def _transfer_movements(
        self,
        start: date,
        end: date,
        accounts: dict[int, str],
        methods: dict[int, str],
    ) -> list[CashboxMovement]:
        stmt = (
            select(FinanceTransfer)
            .where(
                FinanceTransfer.agency_id == self.agency_id,
                FinanceTransfer.deleted_at.is_(None),
                FinanceTransfer.transfer_date.between(start, end),
            )
            .order_by(FinanceTransfer.transfer_date, FinanceTransfer.id)
        )
        movements = []
        for transfer in self.session.scalars(stmt):
            note = (transfer.note or "").strip()
            base = (
                f"Transferencia interna • {note}"
                if note
                else f"Transferencia interna #{transfer.id}"
            )
            origin_amount = to_amount(transfer.origin_amount)
            if origin_amount > 0:
                movements.append(
                    CashboxMovement(
                        id=f"finance_transfer:{transfer.id}:origin",
                        date=transfer.transfer_date,
                        type="expense",
                        source="manual",
                        description=f"{base} (origen)",
                        currency=_code(transfer.origin_currency),
                        amount=origin_amount,
                        payment_method=methods.get(transfer.origin_method_id),
                        account=accounts.get(transfer.origin_account_id),
                    )
                )
            destination_amount = to_amount(transfer.destination_amount)
            if destination_amount > 0:
                movements.append(
                    CashboxMovement(
                        id=f"finance_transfer:{transfer.id}:destination",
                        date=transfer.transfer_date,
                        type="income",
                        source="manual",
                        description=f"{base} (destino)",
                        currency=_code(transfer.destination_currency),
                        amount=destination_amount,
                        payment_method=methods.get(transfer.destination_method_id),
                        account=accounts.get(transfer.destination_account_id),
                    )
                )
            fee = to_amount(transfer.fee_amount)
            if fee > 0 and transfer.fee_currency:
                fee_note = (transfer.fee_note or "").strip()
                description = (
                    f"{base} • Comisión ({fee_note})" if fee_note else f"{base} • Comisión"
                )
                fee_method = transfer.fee_method_id or transfer.origin_method_id
                fee_account = transfer.fee_account_id or transfer.origin_account_id
                movements.append(
                    CashboxMovement(
                        id=f"finance_transfer:{transfer.id}:fee",
                        date=transfer.transfer_date,
                        type="expense",
                        source="manual",
                        description=description,
                        currency=_code(transfer.fee_currency),
                        amount=fee,
                        payment_method=methods.get(fee_method),
                        account=accounts.get(fee_account),
                    )
                )
        return movements

    def _adjustment_movements(
        self, start: date, end: date, accounts: dict[int, str]
    ) -> list[CashboxMovement]:
        stmt = (
            select(FinanceAccountAdjustment)
            .where(
                FinanceAccountAdjustment.agency_id == self.agency_id,
                FinanceAccountAdjustment.effective_date.between(start, end),
            )
            .order_by(
                FinanceAccountAdjustment.effective_date, FinanceAccountAdjustment.id
            )
        )
        movements = []
        for adjustment in self.session.scalars(stmt):
            signed = to_amount(adjustment.amount)
            if abs(signed) == 0:
                continue
            reason = (adjustment.reason or "").strip()
            note = (adjustment.note or "").strip()
            description = f"Ajuste de saldo • {reason}"
            if note:
                description = f"{description} • {note}"
            movements.append(
                CashboxMovement(
                    id=f"account_adjustment:{adjustment.id}",
                    date=adjustment.effective_date,
                    type="income" if signed >= 0 else "expense",
                    source="manual",
                    description=description,
                    currency=_code(adjustment.currency),
                    amount=abs(signed),
                    payment_method="Ajuste de saldo",
                    account=accounts.get(adjustment.account_id),
                )
            )
        return movements

    def _client_payment_movements(self, start: date, end: date) -> list[CashboxMovement]:
        stmt = (
            select(ClientPayment)
            .options(joinedload(ClientPayment.booking), joinedload(ClientPayment.client))
            .where(
                ClientPayment.booking.has(Booking.agency_id == self.agency_id),
                func.lower(ClientPayment.status) == "pendiente",
                ClientPayment.due_date.between(start, end),
            )
            .order_by(ClientPayment.due_date, ClientPayment.id)
        )
        return [
            CashboxMovement(
                id=f"client_payment:{payment.id}",
                date=payment.created_at.date(),
                type="client_debt",
                source="client_payment",
                description="Pago de pax pendiente",
                currency=_code(payment.currency),
                amount=to_amount(payment.amount),
                client_name=payment.client.full_name if payment.client else None,
                booking_label=payment.booking.label,
                due_date=payment.due_date,
            )
            for payment in self.session.scalars(stmt)
        ]

    def _operator_due_movements(self, start: date, end: date) -> list[CashboxMovement]:
        stmt = (
            select(OperatorDue)
            .options(
                joinedload(OperatorDue.booking),
                joinedload(OperatorDue.service).joinedload(Service.operator),
            )
            .where(
                OperatorDue.booking.has(Booking.agency_id == self.agency_id),
                OperatorDue.due_date.between(start, end),
            )
            .order_by(OperatorDue.due_date, OperatorDue.id)
        )
        movements = []
        for due in self.session.scalars(stmt):
            service = due.service
            parts = [
                p
                for p in ((due.concept or "").strip(), (service.description or "").strip())
                if p
            ]
            movements.append(
                CashboxMovement(
                    id=f"operator_due:{due.id}",
                    date=due.created_at.date(),
                    type="operator_debt",
                    source="operator_due",
                    description=" • ".join(parts) or "Deuda con operador",
                    currency=_code(due.currency),
                    amount=to_amount(due.amount),
                    operator_name=service.operator.name if service.operator else None,
                    booking_label=due.booking.label,
                    due_date=due.due_date,
                )
            )
        return movements

    def debt_balances(self) -> Optional[dict[str, list[dict[str, Any]]]]:
        """Debt per currency from enabled credit accounts.

        ``None`` when the agency keeps no credit accounts, so the summary
        falls back to the debt movements of the month.
        """
        accounts = self.session.scalars(
            select(CreditAccount).where(
                CreditAccount.agency_id == self.agency_id,
                CreditAccount.enabled.is_(True),
            )
        ).all()
        if not accounts:
            return None
        return debt_balances_from_credit_accounts(accounts)

    def seeds(
        self, account_id: Optional[int] = None, currency: Optional[str] = None
    ) -> list[OpeningBalanceSeed]:
        stmt = (
            select(FinanceAccountOpeningBalance)
            .options(joinedload(FinanceAccountOpeningBalance.account))
            .where(FinanceAccountOpeningBalance.agency_id == self.agency_id)
        )
        if account_id is not None:
            stmt = stmt.where(FinanceAccountOpeningBalance.account_id == account_id)
        seeds = []
        for row in self.session.scalars(stmt):
            code = normalize_currency(row.currency)
            if currency is not None and code != currency:
                continue
            name = (row.account.name if row.account else "").strip() or NO_ACCOUNT
            seeds.append(
                OpeningBalanceSeed(
                    account_id=row.account_id,
                    account=name,
                    currency=code,
                    amount=to_amount(row.amount),
                    effective_date=row.effective_date,
                )
            )
        return seeds

    def opening_balances(self, month_start: date) -> list[dict[str, Any]]:
        settings = get_settings()
        seeds = latest_seeds(self.seeds(), month_start)
        history: list[CashboxMovement] = []
        if month_start > settings.history_start:
            history = self.movements_between(
                settings.history_start, month_start - timedelta(days=1)
            )
        return reconstruct_opening_balances(seeds, history, month_start)


class OperatorInsightsService:
    RECENT_LIMIT = 10
    RECENT_UNLINKED_LIMIT = 8

    def __init__(self, session: Session, agency_id: int) -> None:
        self.session = session
        self.agency_id = agency_id

    def insights(
        self, operator_id: int, period: Period, date_mode: DateMode = "creation"
    ) -> dict[str, Any]:
        operator = self.session.get(Operator, operator_id)
        if not operator or operator.agency_id != self.agency_id:
            raise NotFoundError("Operator not found")

        start = period.start
        end_exclusive = period.end + timedelta(days=1)
        if date_mode == "travel":
            booking_filter = [
                Booking.departure_date < end_exclusive,
                Booking.return_date >= start,
            ]
            service_filter = [
                Service.departure_date < end_exclusive,
                Service.return_date >= start,
            ]
        else:
            booking_filter = [
                Booking.creation_date >= start,
                Booking.creation_date < end_exclusive,
            ]
            service_filter = booking_filter

        services = self.session.scalars(
            select(Service)
            .join(Service.booking)
            .where(
                Service.operator_id == operator_id,
                Booking.agency_id == self.agency_id,
                *service_filter,
            )
            .order_by(Service.id)
        ).all()

        sales = sum_sales(services)
        service_meta: dict[int, Service] = {}
        booking_ids: list[int] = []
        cost_by_booking: dict[int, MoneyMap] = {}
        service_ids_by_booking: dict[int, set[int]] = {}
        for svc in services:
            service_meta[svc.id] = svc
            if svc.booking_id not in cost_by_booking:
                booking_ids.append(svc.booking_id)
            add_money(
                cost_by_booking.setdefault(svc.booking_id, {}),
                _code(svc.currency),
                to_amount(svc.cost_price),
            )
            service_ids_by_booking.setdefault(svc.booking_id, set()).add(svc.id)
        booking_id_set = set(booking_ids)
        service_id_set = set(service_meta)

        receipts = self.session.scalars(
            select(Receipt)
            .join(Receipt.booking)
            .options(contains_eager(Receipt.booking))
            .where(
                Booking.agency_id == self.agency_id,
                *booking_filter,
                Booking.services.any(Service.operator_id == operator_id),
            )
            .order_by(Receipt.issue_date.desc(), Receipt.id.desc())
        ).all()
        incomes: MoneyMap = {}
        receipt_income: MoneyMap = {}
        income_counts: dict[str, int] = {}
        for receipt in receipts:
            currency, amount = pick_money(
                receipt.amount,
                receipt.amount_currency,
                receipt.base_amount,
                receipt.base_currency,
            )
            add_money(incomes, currency, amount)
            add_money(receipt_income, currency, amount)
            income_counts[currency] = income_counts.get(currency, 0) + 1

        other_incomes = self.session.scalars(
            select(OtherIncome)
            .options(joinedload(OtherIncome.operator))
            .where(
                OtherIncome.agency_id == self.agency_id,
                OtherIncome.operator_id == operator_id,
                OtherIncome.issue_date >= start,
                OtherIncome.issue_date < end_exclusive,
            )
            .order_by(OtherIncome.issue_date.desc(), OtherIncome.id.desc())
        ).all()
        for income in other_incomes:
            add_money(incomes, _code(income.currency), to_amount(income.amount))

        payments_by_booking: dict[int, MoneyMap] = {}
        if booking_ids:
            candidates = self.session.scalars(
                select(Investment)
                .options(selectinload(Investment.allocations))
                .where(
                    Investment.agency_id == self.agency_id,
                    Investment.operator_id == operator_id,
                )
            ).all()
            for inv in candidates:
                linked = inv.booking_id in booking_id_set or any(
                    sid in service_id_set for sid in parse_service_ids(inv.service_ids)
                )
                if linked:
                    self._add_operator_payment(
                        inv, payments_by_booking, booking_id_set, service_meta
                    )

        bookings: list[Booking] = []
        if booking_ids:
            bookings = list(
                self.session.scalars(
                    select(Booking)
                    .options(
                        selectinload(Booking.services).joinedload(Service.operator),
                        selectinload(Booking.receipts).selectinload(
                            Receipt.service_allocations
                        ),
                        joinedload(Booking.titular),
                    )
                    .where(Booking.id.in_(booking_ids))
                )
            )

        all_receipts = [r for booking in bookings for r in booking.receipts]
        receipted = receipted_service_ids(all_receipts, service_id_set)
        debt_services = [svc for svc in services if svc.id not in receipted]
        currency_by_id = {sid: _code(svc.currency) for sid, svc in service_meta.items()}

        booking_rows = []
        client_debt_totals: MoneyMap = {}
        operator_debt_totals: MoneyMap = {}
        for booking in bookings:
            operator_service_ids = service_ids_by_booking.get(booking.id, set())
            operator_services = [
                s for s in booking.services if s.id in operator_service_ids
            ]
            sale = sum_sales_with_interest(operator_services)
            paid: MoneyMap = {}
            for receipt in booking.receipts:
                merge_money_maps(
                    paid,
                    receipt_paid_for_services(
                        receipt, operator_service_ids, currency_by_id
                    ),
                )
            debt = client_debt(sale, paid)

            shared: dict[int, dict[str, Any]] = {}
            for svc in booking.services:
                if svc.operator_id != operator_id and svc.operator is not None:
                    shared[svc.operator_id] = {
                        "id_operator": svc.operator_id,
                        "agency_operator_id": svc.operator.agency_operator_id,
                        "name": svc.operator.name,
                    }

            cost = cost_by_booking.get(booking.id) or sum_costs(operator_services)
            payments = payments_by_booking.get(booking.id, {})
            owed = operator_debt(cost, payments)
            merge_money_maps(client_debt_totals, debt)
            merge_money_maps(operator_debt_totals, owed)

            titular = booking.titular
            booking_rows.append(
                {
                    "id_booking": booking.id,
                    "agency_booking_id": booking.agency_booking_id,
                    "details": booking.details,
                    "creation_date": _iso(booking.creation_date),
                    "departure_date": _iso(booking.departure_date),
                    "return_date": _iso(booking.return_date),
                    "titular": (
                        {
                            "id_client": titular.id,
                            "first_name": titular.first_name,
                            "last_name": titular.last_name,
                        }
                        if titular
                        else None
                    ),
                    "shared_operators": list(shared.values()),
                    "debt": round_money_map(debt),
                    "sale_with_interest": round_money_map(sale),
                    "paid": round_money_map(paid),
                    "operator_cost": round_money_map(cost),
                    "operator_payments": round_money_map(payments),
                    "operator_debt": round_money_map(owed),
                    "unreceipted_services": [
                        {
                            "id_service": svc.id,
                            "description": svc.description,
                            "sale_price": to_amount(svc.sale_price),
                            "cost_price": to_amount(svc.cost_price),
                            "currency": _code(svc.currency),
                        }
                        for svc in operator_services
                        if svc.id not in receipted
                    ],
                }
            )

        if date_mode == "travel":
            booking_rows.sort(key=lambda row: row["departure_date"] or "")
        else:
            booking_rows.sort(key=lambda row: row["creation_date"] or "", reverse=True)

        linked_investments = self.session.scalars(
            select(Investment)
            .join(Investment.booking)
            .options(
                contains_eager(Investment.booking), selectinload(Investment.allocations)
            )
            .where(
                Investment.agency_id == self.agency_id,
                Investment.operator_id == operator_id,
                Booking.agency_id == self.agency_id,
                *booking_filter,
            )
            .order_by(Investment.created_at.desc(), Investment.id.desc())
        ).all()
        unlinked_investments = self.session.scalars(
            select(Investment)
            .options(selectinload(Investment.allocations))
            .where(
                Investment.agency_id == self.agency_id,
                Investment.operator_id == operator_id,
                Investment.booking_id.is_(None),
                Investment.created_at >= _day_start(start),
                Investment.created_at < _day_start(end_exclusive),
            )
            .order_by(Investment.created_at.desc(), Investment.id.desc())
        ).all()

        operator_dues = self.session.scalars(
            select(OperatorDue)
            .join(OperatorDue.service)
            .options(contains_eager(OperatorDue.service), joinedload(OperatorDue.booking))
            .where(
                Service.operator_id == operator_id,
                OperatorDue.booking.has(Booking.agency_id == self.agency_id),
                OperatorDue.due_date >= start,
                OperatorDue.due_date < end_exclusive,
            )
            .order_by(OperatorDue.due_date, OperatorDue.id)
        ).all()

        expenses: MoneyMap = {}
        for inv in linked_investments:
            currency, amount = pick_investment_amount(inv)
            add_money(expenses, currency, amount)
        expenses_unlinked: MoneyMap = {}
        for inv in unlinked_investments:
            currency, amount = pick_investment_amount(inv)
            add_money(expenses_unlinked, currency, amount)

        booking_count = len(bookings)
        avg_sale = {}
        if booking_count > 0:
            avg_sale = {cur: total / booking_count for cur, total in sales.items()}
        avg_income = {
            cur: total / income_counts[cur]
            for cur, total in receipt_income.items()
            if income_counts.get(cur)
        }

        logger.info(
            f"operator_insights: agency={self.agency_id} operator={operator_id} "
            f"mode={date_mode} services={len(services)} bookings={booking_count}"
        )
        return {
            "operator": {
                "id_operator": operator.id,
                "agency_operator_id": operator.agency_operator_id,
                "name": operator.name,
            },
            "range": {
                "from": period.start.isoformat(),
                "to": period.end.isoformat(),
                "mode": date_mode,
            },
            "counts": {
                "services": len(services),
                "bookings": booking_count,
                "receipts": len(receipts),
                "otherIncomes": len(other_incomes),
                "investments": len(linked_investments),
                "investmentsUnlinked": len(unlinked_investments),
                "debtServices": len(debt_services),
                "operatorDues": len(operator_dues),
            },
            "totals": {
                "sales": round_money_map(sales),
                "incomes": round_money_map(incomes),
                "expenses": round_money_map(expenses),
                "expensesUnlinked": round_money_map(expenses_unlinked),
                "net": round_money_map(combine_net(incomes, expenses)),
                "operatorDebt": round_money_map(operator_debt_totals),
                "clientDebt": round_money_map(client_debt_totals),
            },
            "averages": {
                "avgSalePerBooking": round_money_map(avg_sale),
                "avgIncomePerReceipt": round_money_map(avg_income),
                "servicesPerBooking": (
                    len(services) / booking_count if booking_count else 0
                ),
            },
            "lists": {
                "bookings": booking_rows,
                "operatorDues": [self._due_row(due) for due in operator_dues],
                "receipts": [
                    self._receipt_row(r) for r in receipts[: self.RECENT_LIMIT]
                ],
                "otherIncomes": [
                    self._other_income_row(i)
                    for i in other_incomes[: self.RECENT_LIMIT]
                ],
                "investments": [
                    self._investment_row(inv)
                    for inv in linked_investments[: self.RECENT_LIMIT]
                ],
                "investmentsUnlinked": [
                    self._investment_row(inv)
                    for inv in unlinked_investments[: self.RECENT_UNLINKED_LIMIT]
                ],
            },
        }

    @staticmethod
    def _add_operator_payment(
        inv: Investment,
        payments_by_booking: dict[int, MoneyMap],
        booking_ids: set[int],
        service_meta: dict[int, Service],
    ) -> None:
        def add(booking_id: Optional[int], currency: Any, amount: float) -> None:
            if booking_id in booking_ids:
                add_money(payments_by_booking.setdefault(booking_id, {}), currency, amount)

        if inv.allocations:
            for alloc in inv.allocations:
                svc = service_meta.get(alloc.service_id)
                booking_id = alloc.booking_id or (svc.booking_id if svc else None)
                add(
                    booking_id,
                    _code(alloc.payment_currency or inv.currency),
                    to_amount(alloc.amount_payment),
                )
            return

        refs = [
            LegacyServiceRef(
                service_id=sid,
                booking_id=service_meta[sid].booking_id,
                currency=_code(service_meta[sid].currency),
                cost_price=to_amount(service_meta[sid].cost_price),
            )
            for sid in parse_service_ids(inv.service_ids)
            if sid in service_meta
        ]
        if refs:
            shares = allocate_legacy_amount(inv.amount, inv.currency, refs)
            if shares:
                for share in shares:
                    add(share.booking_id, share.currency, share.amount)
                return

        if inv.booking_id:
            currency, amount = pick_money(
                inv.amount, inv.currency, inv.base_amount, inv.base_currency
            )
            add(inv.booking_id, currency, amount)

    @staticmethod
    def _receipt_row(receipt: Receipt) -> dict[str, Any]:
        currency, amount = pick_money(
            receipt.amount,
            receipt.amount_currency,
            receipt.base_amount,
            receipt.base_currency,
        )
        return {
            "id_receipt": receipt.id,
            "agency_receipt_id": receipt.agency_receipt_id,
            "issue_date": _iso(receipt.issue_date),
            "concept": receipt.concept,
            "amount": amount,
            "currency": currency,
            "booking_id": receipt.booking_id,
            "booking_agency_id": (
                receipt.booking.agency_booking_id if receipt.booking else None
            ),
        }

    @staticmethod
    def _other_income_row(income: OtherIncome) -> dict[str, Any]:
        return {
            "id_other_income": income.id,
            "agency_other_income_id": income.agency_other_income_id,
            "issue_date": _iso(income.issue_date),
            "concept": income.description or "Ingreso",
            "amount": to_amount(income.amount),
            "currency": _code(income.currency),
            "category_name": income.category_name,
            "operator_name": income.operator.name if income.operator else None,
            "booking_id": None,
        }

    @staticmethod
    def _investment_row(inv: Investment) -> dict[str, Any]:
        currency, amount = pick_investment_amount(inv)
        return {
            "id_investment": inv.id,
            "agency_investment_id": inv.agency_investment_id,
            "created_at": _iso(inv.created_at),
            "description": inv.description,
            "amount": amount,
            "currency": currency,
            "booking_id": inv.booking_id,
            "booking_agency_id": inv.booking.agency_booking_id if inv.booking else None,
        }

    @staticmethod
    def _due_row(due: OperatorDue) -> dict[str, Any]:
        return {
            "id_due": due.id,
            "due_date": _iso(due.due_date),
            "status": due.status,
            "amount": to_amount(due.amount),
            "currency": _code(due.currency),
            "booking_id": due.booking_id,
            "booking_agency_id": due.booking.agency_booking_id if due.booking else None,
            "service_id": due.service_id,
            "service_agency_id": due.service.agency_service_id if due.service else None,
            "concept": due.concept,
        }


@dataclass
class InvestmentPage:
    items: list[Investment]
    next_cursor: Optional[int]
    booking_amounts: dict[int, Optional[float]] = field(default_factory=dict)
    total_count: Optional[int] = None
    filtered_count: Optional[int] = None


@dataclass
class _PaymentLine:
    amount: float
    payment_method: str
    account: Optional[str]
    payment_currency: str
    fee_mode: Optional[FeeMode]
    fee_value: Optional[float]
    fee_amount: float


@dataclass
class _AllocationLine:
    service_id: int
    booking_id: Optional[int]
    payment_currency: str
    service_currency: str
    amount_payment: float
    amount_service: float
    fx_rate: Optional[float]


@dataclass
class _InvestmentDraft:
    """Validated and normalised investment payload, ready to persist."""

    category: str
    description: str
    counterparty_name: Optional[str]
    amount: float
    currency: str
    paid_at: Optional[date]
    operator_id: Optional[int]
    user_id: Optional[int]
    booking_id: Optional[int]
    service_ids: list[int]
    payment_method: Optional[str]
    account: Optional[str]
    payment_fee_amount: Optional[float]
    base_amount: Optional[float]
    base_currency: Optional[str]
    counter_amount: Optional[float]
    counter_currency: Optional[str]
    payments: list[_PaymentLine]
    allocations: list[_AllocationLine]
    credit_amount: float
    assigned_total: float
    has_assignments: bool
    excess_action: Optional[ExcessAction]
    excess_missing_account_action: Optional[MissingAccountAction]


def normalize_fee(line: InvestmentPaymentIn) -> float:
    if line.fee_mode is None:
        return round2(max(0.0, to_amount(line.fee_amount)))
    value = max(0.0, to_amount(line.fee_value))
    if line.fee_mode == FeeMode.percent:
        return round2(max(0.0, line.amount) * value / 100)
    return round2(value)


class InvestmentService:
    def __init__(
        self, session: Session, agency_id: int, user_id: Optional[int] = None
    ) -> None:
        self.session = session
        self.agency_id = agency_id
        self.user_id = user_id
        self._config: Optional[FinanceConfig] = None
        self._config_loaded = False

    @property
    def config(self) -> Optional[FinanceConfig]:
        if not self._config_loaded:
            self._config = load_finance_config(self.session, self.agency_id)
            self._config_loaded = True
        return self._config

    def is_operator_category(self, name: Any) -> bool:
        configured = self.config.operator_category_names if self.config else []
        return is_operator_category(name, configured or [])

    def is_user_category(self, name: Any) -> bool:
        configured = self.config.user_category_names if self.config else []
        return is_user_category(name, configured or [])

    def _operator_category_clause(self) -> Any:
        configured = self.config.operator_category_names if self.config else []
        clauses = [func.lower(Investment.category).like("operador%")]
        if configured:
            clauses.append(Investment.category.in_(configured))
        return or_(*clauses)

    def get(self, investment_id: int) -> Investment:
        inv = self.session.get(Investment, investment_id)
        if not inv or inv.agency_id != self.agency_id:
            raise NotFoundError("Investment not found")
        return inv

    def list(
        self,
        filters: InvestmentFilters,
        take: Optional[int] = None,
        cursor: Optional[int] = None,
    ) -> InvestmentPage:
        if filters.operator_only and filters.exclude_operator:
            raise ValidationError("operator_only and exclude_operator are exclusive")
        if filters.category:
            operator_category = self.is_operator_category(filters.category)
            if filters.operator_only and not operator_category:
                raise ValidationError("Category is not an operator category")
            if filters.exclude_operator and operator_category:
                raise ValidationError("Category is an operator category")

        size = min(max(int(take or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
        conditions = [Investment.agency_id == self.agency_id]
        if filters.category:
            conditions.append(Investment.category == filters.category)
        if filters.currency:
            conditions.append(Investment.currency == normalize_currency(filters.currency))
        if filters.payment_method:
            conditions.append(Investment.payment_method == filters.payment_method)
        if filters.account:
            conditions.append(Investment.account == filters.account)
        if filters.operator_id:
            conditions.append(Investment.operator_id == filters.operator_id)
        if filters.user_id:
            conditions.append(Investment.user_id == filters.user_id)
        if filters.operator_only:
            conditions.append(self._operator_category_clause())
        if filters.exclude_operator:
            conditions.append(~self._operator_category_clause())
        if filters.created_from:
            conditions.append(Investment.created_at >= _day_start(filters.created_from))
        if filters.created_to:
            conditions.append(
                Investment.created_at < _day_start(filters.created_to + timedelta(days=1))
            )
        if filters.paid_from:
            conditions.append(Investment.paid_at >= filters.paid_from)
        if filters.paid_to:
            conditions.append(Investment.paid_at <= filters.paid_to)
        if filters.booking_id:
            conditions.append(self._booking_clause(filters.booking_id))
        if filters.q and filters.q.strip():
            conditions.append(self._search_clause(filters.q.strip()))

        stmt = (
            select(Investment)
            .options(
                joinedload(Investment.operator),
                joinedload(Investment.booking),
                selectinload(Investment.payments),
                selectinload(Investment.allocations),
            )
            .where(*conditions)
            .order_by(Investment.id.desc())
            .limit(size + 1)
        )
        if cursor:
            stmt = stmt.where(Investment.id < cursor)
        rows = list(self.session.scalars(stmt))
        next_cursor = None
        if len(rows) > size:
            rows = rows[:size]
            next_cursor = rows[-1].id

        page = InvestmentPage(items=rows, next_cursor=next_cursor)
        if filters.booking_id:
            page.booking_amounts = {
                inv.id: self.booking_amount(inv, filters.booking_id) for inv in rows
            }
        if filters.include_counts:
            page.total_count = self.session.scalar(
                select(func.count(Investment.id)).where(
                    Investment.agency_id == self.agency_id
                )
            )
            page.filtered_count = self.session.scalar(
                select(func.count(Investment.id)).where(*conditions)
            )
        return page

    def _booking_clause(self, booking_id: int) -> Any:
        booking_service_ids = set(
            self.session.scalars(
                select(Service.id).where(
                    Service.booking_id == booking_id,
                    Service.agency_id == self.agency_id,
                )
            )
        )
        matching_ids: list[int] = []
        if booking_service_ids:
            rows = self.session.execute(
                select(Investment.id, Investment.service_ids).where(
                    Investment.agency_id == self.agency_id
                )
            ).all()
            matching_ids = [
                row.id
                for row in rows
                if booking_service_ids.intersection(parse_service_ids(row.service_ids))
            ]
        if matching_ids:
            return or_(Investment.booking_id == booking_id, Investment.id.in_(matching_ids))
        return Investment.booking_id == booking_id

    def _search_clause(self, q: str) -> Any:
        like = f"%{q}%"
        clauses = [
            Investment.description.ilike(like),
            Investment.counterparty_name.ilike(like),
            Investment.category.ilike(like),
            Investment.currency.ilike(like),
            Investment.operator.has(Operator.name.ilike(like)),
            Investment.user_id.in_(
                select(User.id).where(
                    or_(User.first_name.ilike(like), User.last_name.ilike(like))
                )
            ),
        ]
        if q.isdigit():
            number = int(q)
            clauses.extend(
                [
                    Investment.id == number,
                    Investment.agency_investment_id == number,
                    Investment.booking_id == number,
                    Investment.booking.has(Booking.agency_booking_id == number),
                ]
            )
        return or_(*clauses)

    @staticmethod
    def booking_amount(inv: Investment, booking_id: int) -> Optional[float]:
        allocated = round2(
            sum(
                to_amount(a.amount_payment)
                for a in inv.allocations
                if a.booking_id == booking_id
            )
        )
        if allocated > ASSIGNMENT_TOLERANCE:
            return allocated
        if inv.booking_id == booking_id:
            return to_amount(inv.amount)
        return None

    def create(self, data: InvestmentIn) -> Investment:
        draft = self._prepare(data)
        inv = Investment(
            agency_id=self.agency_id,
            agency_investment_id=next_agency_counter(
                self.session,
                Investment.agency_investment_id,
                Investment.agency_id,
                self.agency_id,
            ),
            created_by=self.user_id,
        )
        try:
            self._apply(inv, draft)
            self.session.add(inv)
            self.session.flush()
            self._post_credit_entries(inv, draft)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(inv)
        logger.info(
            f"investment_created: agency={self.agency_id} id={inv.id} "
            f"category={inv.category} amount={inv.amount} currency={inv.currency}"
        )
        return inv

    def update(self, investment_id: int, data: InvestmentIn) -> Investment:
        inv = self.get(investment_id)
        draft = self._prepare(data)
        # keep the stored excess handling when the payload does not restate it
        if draft.excess_action is None:
            draft.excess_action = inv.excess_action
        if draft.excess_missing_account_action is None:
            draft.excess_missing_account_action = inv.excess_missing_account_action
        try:
            self._remove_credit_entries(inv.id)
            inv.payments.clear()
            inv.allocations.clear()
            self.session.flush()
            self._apply(inv, draft)
            self.session.flush()
            self._post_credit_entries(inv, draft)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(inv)
        logger.info(f"investment_updated: agency={self.agency_id} id={inv.id}")
        return inv

    def delete(self, investment_id: int) -> None:
        inv = self.get(investment_id)
        try:
            self._remove_credit_entries(inv.id)
            self.session.delete(inv)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(f"investment_deleted: agency={self.agency_id} id={investment_id}")

    def _prepare(self, data: InvestmentIn) -> _InvestmentDraft:
        if data.payments is not None and not data.payments:
            raise ValidationError(
                "payments must include at least one line with amount and payment_method"
            )
        payments = [
            _PaymentLine(
                amount=round2(line.amount),
                payment_method=line.payment_method,
                account=line.account or None,
                payment_currency=normalize_currency(
                    line.payment_currency or data.currency
                ),
                fee_mode=line.fee_mode,
                fee_value=line.fee_value,
                fee_amount=normalize_fee(line),
            )
            for line in data.payments or []
        ]
        currencies = {line.payment_currency for line in payments}
        if len(currencies) > 1:
            raise ValidationError("All payment lines must use the same currency")
        currency = payments[0].payment_currency if payments else normalize_currency(data.currency)
        amount = round2(sum(line.amount for line in payments)) if payments else data.amount
        if amount is None or not data.category or not data.description:
            raise ValidationError("category, description, currency and amount are required")
        if amount <= 0:
            raise ValidationError("amount must be positive")

        operator_category = self.is_operator_category(data.category)
        if self.is_user_category(data.category) and not data.user_id:
            raise ValidationError("user_id is required for this category")
        if (
            operator_category
            and not data.operator_id
            and not data.service_ids
            and not data.allocations
        ):
            raise ValidationError("operator_id is required for operator categories")

        booking_id = self._resolve_booking(data)
        operator_id = data.operator_id

        allocations: list[_AllocationLine] = []
        service_ids = list(data.service_ids)
        if data.allocations:
            if not operator_category:
                raise ValidationError("Allocations are only allowed for operator payments")
            allocations, operator_id, booking_id = self._validate_allocations(
                data, currency, operator_id, booking_id
            )
            service_ids = [a.service_id for a in allocations]
        elif service_ids:
            operator_id, booking_id = self._validate_service_ids(
                service_ids, currency, operator_id, booking_id
            )

        assigned_total = round2(sum(a.amount_payment for a in allocations))
        if allocations and assigned_total - amount > ASSIGNMENT_TOLERANCE:
            raise ValidationError("Allocated total exceeds the payment amount")

        if payments:
            credit_amount = round2(
                sum(p.amount for p in payments if p.payment_method == CREDIT_METHOD)
            )
        elif data.payment_method == CREDIT_METHOD:
            credit_amount = round2(amount)
        else:
            credit_amount = 0.0

        first = payments[0] if payments else None
        fee_total = (
            round2(sum(p.fee_amount for p in payments))
            if payments
            else data.payment_fee_amount
        )
        return _InvestmentDraft(
            category=data.category,
            description=data.description,
            counterparty_name=(data.counterparty_name or None),
            amount=round2(amount),
            currency=currency,
            paid_at=data.paid_at,
            operator_id=operator_id,
            user_id=data.user_id,
            booking_id=booking_id,
            service_ids=service_ids,
            payment_method=first.payment_method if first else data.payment_method,
            account=first.account if first else data.account,
            payment_fee_amount=fee_total,
            base_amount=data.base_amount,
            base_currency=(
                normalize_currency(data.base_currency) if data.base_currency else None
            ),
            counter_amount=data.counter_amount,
            counter_currency=(
                normalize_currency(data.counter_currency)
                if data.counter_currency
                else None
            ),
            payments=payments,
            allocations=allocations,
            credit_amount=credit_amount,
            assigned_total=assigned_total,
            has_assignments=bool(allocations),
            excess_action=data.excess_action,
            excess_missing_account_action=data.excess_missing_account_action,
        )

    def _resolve_booking(self, data: InvestmentIn) -> Optional[int]:
        if data.booking_id:
            booking = self.session.get(Booking, data.booking_id)
            if not booking or booking.agency_id != self.agency_id:
                raise ValidationError("Booking does not belong to the agency")
            return booking.id
        if data.booking_agency_id:
            booking_id = self.session.scalar(
                select(Booking.id).where(
                    Booking.agency_id == self.agency_id,
                    Booking.agency_booking_id == data.booking_agency_id,
                )
            )
            if not booking_id:
                raise ValidationError("Booking does not belong to the agency")
            return booking_id
        return None

    def _load_services(self, service_ids: list[int]) -> dict[int, Service]:
        services = self.session.scalars(
            select(Service).where(
                Service.id.in_(service_ids), Service.agency_id == self.agency_id
            )
        ).all()
        found = {svc.id: svc for svc in services}
        if len(found) != len(set(service_ids)):
            raise ValidationError("Some services do not belong to the agency")
        return found

    @staticmethod
    def _single_operator(
        services: Iterable[Service], operator_id: Optional[int]
    ) -> int:
        operators = {svc.operator_id for svc in services}
        if len(operators) != 1:
            raise ValidationError("Services must belong to a single operator")
        only = operators.pop()
        if operator_id and operator_id != only:
            raise ValidationError("Services do not belong to the selected operator")
        return only

    @staticmethod
    def _single_booking(
        services: Iterable[Service], booking_id: Optional[int]
    ) -> Optional[int]:
        bookings = {svc.booking_id for svc in services}
        if len(bookings) == 1:
            only = next(iter(bookings))
            if booking_id and booking_id != only:
                raise ValidationError("Services do not belong to the selected booking")
            return only
        if booking_id:
            raise ValidationError("Services span more than one booking")
        return None

    def _validate_allocations(
        self,
        data: InvestmentIn,
        currency: str,
        operator_id: Optional[int],
        booking_id: Optional[int],
    ) -> tuple[list[_AllocationLine], int, Optional[int]]:
        raw = data.allocations or []
        ids = [a.service_id for a in raw]
        if len(ids) != len(set(ids)):
            raise ValidationError("Allocations repeat a service")
        services = self._load_services(ids)
        operator_id = self._single_operator(services.values(), operator_id)

        lines = []
        for alloc in raw:
            svc = services[alloc.service_id]
            if alloc.amount_payment < 0 or alloc.amount_service < 0:
                raise ValidationError("Allocation amounts must not be negative")
            if alloc.fx_rate is not None and alloc.fx_rate <= 0:
                raise ValidationError("fx_rate must be positive")
            payment_currency = normalize_currency(alloc.payment_currency or currency)
            if payment_currency != currency:
                raise ValidationError("Allocation currency must match the payment currency")
            service_currency = normalize_currency(svc.currency)
            if alloc.service_currency and normalize_currency(alloc.service_currency) != service_currency:
                raise ValidationError("Allocation service currency does not match the service")
            lines.append(
                _AllocationLine(
                    service_id=svc.id,
                    booking_id=svc.booking_id,
                    payment_currency=payment_currency,
                    service_currency=service_currency,
                    amount_payment=round2(alloc.amount_payment),
                    amount_service=round2(alloc.amount_service),
                    fx_rate=alloc.fx_rate,
                )
            )
        booking_id = self._single_booking(services.values(), booking_id)
        return lines, operator_id, booking_id

    def _validate_service_ids(
        self,
        service_ids: list[int],
        currency: str,
        operator_id: Optional[int],
        booking_id: Optional[int],
    ) -> tuple[int, Optional[int]]:
        services = self._load_services(service_ids)
        operator_id = self._single_operator(services.values(), operator_id)
        service_currencies = {normalize_currency(svc.currency) for svc in services.values()}
        if len(service_currencies) != 1:
            raise ValidationError("Services must share a single currency")
        if service_currencies.pop() != currency:
            raise ValidationError("Service currency must match the payment currency")
        booking_id = self._single_booking(services.values(), booking_id)
        return operator_id, booking_id

    def _apply(self, inv: Investment, draft: _InvestmentDraft) -> None:
        inv.category = draft.category
        inv.description = draft.description
        inv.counterparty_name = draft.counterparty_name
        inv.amount = draft.amount
        inv.currency = draft.currency
        inv.paid_at = draft.paid_at
        inv.operator_id = draft.operator_id
        inv.user_id = draft.user_id
        inv.booking_id = draft.booking_id
        inv.service_ids = draft.service_ids
        inv.payment_method = draft.payment_method
        inv.account = draft.account
        inv.payment_fee_amount = draft.payment_fee_amount
        inv.base_amount = draft.base_amount
        inv.base_currency = draft.base_currency
        inv.counter_amount = draft.counter_amount
        inv.counter_currency = draft.counter_currency
        inv.excess_action = draft.excess_action
        inv.excess_missing_account_action = draft.excess_missing_account_action
        inv.payments = [
            InvestmentPayment(
                amount=line.amount,
                payment_method=line.payment_method,
                account=line.account,
                payment_currency=line.payment_currency,
                fee_mode=line.fee_mode,
                fee_value=line.fee_value,
                fee_amount=line.fee_amount,
            )
            for line in draft.payments
        ]
        inv.allocations = [
            InvestmentServiceAllocation(
                service_id=line.service_id,
                booking_id=line.booking_id,
                payment_currency=line.payment_currency,
                service_currency=line.service_currency,
                amount_payment=line.amount_payment,
                amount_service=line.amount_service,
                fx_rate=line.fx_rate,
            )
            for line in draft.allocations
        ]

    def _display_number(self, inv: Investment) -> int:
        return inv.agency_investment_id or inv.id

    def _post_credit_entries(self, inv: Investment, draft: _InvestmentDraft) -> None:
        want_credit = (
            self.is_operator_category(draft.category)
            and draft.operator_id is not None
            and draft.credit_amount > 0
        )
        number = self._display_number(inv)
        if want_credit:
            account = self.find_or_create_operator_account(draft.operator_id, draft.currency)
            self.post_credit_entry(
                account,
                inv,
                amount=draft.credit_amount,
                concept=draft.description or f"Gasto Operador N° {number}",
                reference=f"INV-{inv.id}",
            )
            return

        excess = round2(draft.amount - draft.assigned_total)
        if not draft.has_assignments or excess <= ASSIGNMENT_TOLERANCE:
            return
        action = draft.excess_action or ExcessAction.carry
        if action == ExcessAction.credit_entry:
            if draft.operator_id is None:
                raise ValidationError("An operator is required to post the excess")
            account = self.find_operator_account(draft.operator_id, draft.currency)
            missing = draft.excess_missing_account_action or MissingAccountAction.carry
            if account is None:
                if missing == MissingAccountAction.block:
                    raise ValidationError(
                        "No operator credit account in the payment currency"
                    )
                if missing == MissingAccountAction.create:
                    account = self.find_or_create_operator_account(
                        draft.operator_id, draft.currency
                    )
            if account is not None:
                self.post_credit_entry(
                    account,
                    inv,
                    amount=excess,
                    concept=f"Excedente pago operador N° {number}",
                    reference=f"INV-{inv.id}-EXCESS",
                )
            return

        if draft.operator_id is None:
            return
        account = self.find_operator_account(draft.operator_id, draft.currency)
        if account is not None:
            self.post_credit_entry(
                account,
                inv,
                amount=excess,
                concept=f"Saldo a favor pago operador N° {number}",
                reference=f"INV-{inv.id}-CARRY",
            )

    def find_operator_account(
        self, operator_id: int, currency: str
    ) -> Optional[CreditAccount]:
        return self.session.scalar(
            select(CreditAccount)
            .where(
                CreditAccount.agency_id == self.agency_id,
                CreditAccount.operator_id == operator_id,
                CreditAccount.currency == currency,
            )
            .order_by(CreditAccount.id)
            .limit(1)
        )

    def find_or_create_operator_account(
        self, operator_id: int, currency: str
    ) -> CreditAccount:
        account = self.find_operator_account(operator_id, currency)
        if account is not None:
            return account
        account = CreditAccount(
            agency_id=self.agency_id,
            agency_credit_account_id=next_agency_counter(
                self.session,
                CreditAccount.agency_credit_account_id,
                CreditAccount.agency_id,
                self.agency_id,
            ),
            operator_id=operator_id,
            currency=currency,
            balance=0,
            enabled=True,
        )
        self.session.add(account)
        self.session.flush()
        logger.info(
            f"credit_account_created: agency={self.agency_id} operator={operator_id} "
            f"currency={currency}"
        )
        return account

    def post_credit_entry(
        self,
        account: CreditAccount,
        inv: Investment,
        *,
        amount: float,
        concept: str,
        reference: str,
    ) -> CreditEntry:
        amount = abs(round2(amount))
        entry = CreditEntry(
            agency_id=self.agency_id,
            agency_credit_entry_id=next_agency_counter(
                self.session,
                CreditEntry.agency_credit_entry_id,
                CreditEntry.agency_id,
                self.agency_id,
            ),
            account_id=account.id,
            created_by=self.user_id,
            concept=concept,
            amount=amount,
            currency=account.currency,
            doc_type="investment",
            reference=reference,
            value_date=inv.paid_at,
            investment_id=inv.id,
        )
        self.session.add(entry)
        account.balance = round2(
            to_amount(account.balance) + DOC_TYPE_SIGN["investment"] * amount
        )
        self.session.flush()
        return entry

    def _remove_credit_entries(self, investment_id: int) -> None:
        entries = self.session.scalars(
            select(CreditEntry)
            .options(joinedload(CreditEntry.account))
            .where(
                CreditEntry.agency_id == self.agency_id,
                CreditEntry.investment_id == investment_id,
            )
        ).all()
        for entry in entries:
            sign = DOC_TYPE_SIGN.get(entry.doc_type, 1)
            account = entry.account
            account.balance = round2(
                to_amount(account.balance) - sign * to_amount(entry.amount)
            )
            self.session.delete(entry)
        self.session.flush()


class OpeningBalanceService:
    def __init__(self, session: Session, agency_id: int) -> None:
        self.session = session
        self.agency_id = agency_id

    def list_all(self) -> list[FinanceAccountOpeningBalance]:
        stmt = (
            select(FinanceAccountOpeningBalance)
            .options(joinedload(FinanceAccountOpeningBalance.account))
            .where(FinanceAccountOpeningBalance.agency_id == self.agency_id)
            .order_by(
                FinanceAccountOpeningBalance.effective_date.desc(),
                FinanceAccountOpeningBalance.id.desc(),
            )
        )
        return self.session.scalars(stmt).all()

    def _account(self, account_id: int) -> FinanceAccount:
        account = self.session.get(FinanceAccount, account_id)
        if not account or account.agency_id != self.agency_id:
            raise ValidationError("Account does not belong to the agency")
        return account

    def _get(self, balance_id: int) -> FinanceAccountOpeningBalance:
        row = self.session.get(FinanceAccountOpeningBalance, balance_id)
        if not row or row.agency_id != self.agency_id:
            raise NotFoundError("Opening balance not found")
        return row

    def create(self, data: OpeningBalanceIn) -> FinanceAccountOpeningBalance:
        self._account(data.account_id)
        row = FinanceAccountOpeningBalance(
            agency_id=self.agency_id,
            account_id=data.account_id,
            currency=normalize_currency(data.currency),
            amount=round2(data.amount),
            effective_date=data.effective_date,
            note=data.note or None,
        )
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def update(
        self, balance_id: int, data: OpeningBalanceIn
    ) -> FinanceAccountOpeningBalance:
        row = self._get(balance_id)
        self._account(data.account_id)
        row.account_id = data.account_id
        row.currency = normalize_currency(data.currency)
        row.amount = round2(data.amount)
        row.effective_date = data.effective_date
        row.note = data.note or None
        self.session.commit()
        self.session.refresh(row)
        return row

    def delete(self, balance_id: int) -> None:
        row = self._get(balance_id)
        self.session.delete(row)
        self.session.commit()

    def balance_as_of(self, account_id: int, currency: str, target: date) -> float:
        account = self._account(account_id)
        code = normalize_currency(currency)
        cashbox = CashboxService(self.session, self.agency_id)
        picked = latest_seeds(cashbox.seeds(account_id, code), target)
        seed = picked[0] if picked else None

        settings = get_settings()
        history: list[CashboxMovement] = []
        if target > settings.history_start:
            history = cashbox.movements_between(
                settings.history_start, target - timedelta(days=1)
            )
        return balance_as_of(account.name, code, seed, history, target)


class RecurringInvestmentService:
    def __init__(self, session: Session, agency_id: Optional[int] = None) -> None:
        self.session = session
        self.agency_id = agency_id

    def catch_up_all(self, today: Optional[date] = None) -> int:
        engine = RecurringInvestmentEngine(self.session)
        return engine.post_due_rules(today=today, agency_id=self.agency_id)
