import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Investment, RecurringInvestment
from money import normalize_currency, to_amount
from periods import add_months, clamped_date, local_today

logger = logging.getLogger(__name__)

MAX_RUNS_PER_RULE = 36


def first_due_date(rule: RecurringInvestment) -> date:
    start = rule.start_date
    due = clamped_date(start.year, start.month, rule.day_of_month)
    if due < start:
        due = add_months(due, _interval(rule), desired_day=rule.day_of_month)
    return due


def next_due_date(rule: RecurringInvestment) -> date:
    if rule.last_run:
        return add_months(rule.last_run, _interval(rule), desired_day=rule.day_of_month)
    return first_due_date(rule)


def _interval(rule: RecurringInvestment) -> int:
    return max(int(rule.interval_months or 1), 1)


class RecurringInvestmentEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def catch_up_rule(
        self, rule: RecurringInvestment, today: Optional[date] = None
    ) -> int:
        today = today or local_today()
        posted = 0
        runs = 0
        due = next_due_date(rule)
        while due <= today and runs < MAX_RUNS_PER_RULE:
            if self._post_occurrence(rule, due):
                posted += 1
            rule.last_run = due
            due = add_months(due, _interval(rule), desired_day=rule.day_of_month)
            runs += 1
        return posted

    def post_due_rules(
        self, today: Optional[date] = None, agency_id: Optional[int] = None
    ) -> int:
        today = today or local_today()
        stmt = (
            select(RecurringInvestment)
            .where(RecurringInvestment.active.is_(True))
            .order_by(RecurringInvestment.id)
        )
        if agency_id is not None:
            stmt = stmt.where(RecurringInvestment.agency_id == agency_id)
        rules = self.session.scalars(stmt).all()
        count = 0
        for rule in rules:
            rule_id = rule.id
            try:
                posted = self.catch_up_rule(rule, today)
                self.session.commit()
            except Exception:
                self.session.rollback()
                logger.exception(f"recurring_catch_up_failed: rule={rule_id}")
                continue
            if posted:
                logger.info(f"recurring_catch_up: rule={rule_id} posted={posted}")
            count += posted
        return count

    def _post_occurrence(self, rule: RecurringInvestment, occurrence_date: date) -> bool:
        from services import CREDIT_METHOD, InvestmentService, next_agency_counter

        exists_stmt = (
            select(Investment.id)
            .where(
                Investment.recurring_id == rule.id,
                Investment.paid_at == occurrence_date,
            )
            .limit(1)
        )
        existing = self.session.execute(exists_stmt).scalar_one_or_none()
        if existing:
            return False

        inv = Investment(
            agency_id=rule.agency_id,
            agency_investment_id=next_agency_counter(
                self.session,
                Investment.agency_investment_id,
                Investment.agency_id,
                rule.agency_id,
            ),
            category=rule.category,
            description=rule.description,
            amount=to_amount(rule.amount),
            currency=normalize_currency(rule.currency),
            paid_at=occurrence_date,
            payment_method=rule.payment_method,
            account=rule.account,
            operator_id=rule.operator_id,
            user_id=rule.user_id,
            created_by=rule.created_by,
            service_ids=[],
            recurring_id=rule.id,
        )
        self.session.add(inv)
        self.session.flush()

        service = InvestmentService(self.session, rule.agency_id, rule.created_by)
        if (
            service.is_operator_category(rule.category)
            and rule.operator_id
            and rule.payment_method == CREDIT_METHOD
        ):
            account = service.find_or_create_operator_account(
                rule.operator_id, inv.currency
            )
            number = inv.agency_investment_id or inv.id
            service.post_credit_entry(
                account,
                inv,
                amount=to_amount(rule.amount),
                concept=rule.description or f"Gasto Operador N° {number}",
                reference=f"INV-{inv.id}",
            )
        return True
