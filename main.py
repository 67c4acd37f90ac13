import logging
from datetime import date
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from access import (
    CROSS_AGENCY_ROLES,
    AuthContext,
    AuthError,
    PermissionDenied,
    authenticate,
    can_access_finance_section,
    finance_section_grants,
    plan_allows,
    require_finance_access,
)
from database import get_db
from models import Agency, FinanceAccountOpeningBalance, Investment, as_plain
from money import normalize_currency
from periods import parse_date_mode, resolve_day_range, resolve_month
from scheduler import SchedulerManager
from schemas import InvestmentFilters, InvestmentIn, OpeningBalanceIn
from services import (
    CashboxService,
    InvestmentService,
    NotFoundError,
    OpeningBalanceService,
    OperatorInsightsService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Agency Finance")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400, content={"detail": jsonable_encoder(exc.errors())}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def current_auth(request: Request) -> AuthContext:
    try:
        return authenticate(request)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def ensure_access(
    db: Session, auth: AuthContext, section: str, feature: Optional[str] = None
) -> None:
    try:
        require_finance_access(db, auth, section, feature=feature)
    except PermissionDenied as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc


def operator_payments_only(db: Session, auth: AuthContext) -> bool:
    """Whether the caller is limited to operator payments within investments."""
    grants = finance_section_grants(db, auth.agency_id, auth.user_id)
    full = can_access_finance_section(auth.role, grants, "investments")
    operator = can_access_finance_section(auth.role, grants, "operator_payments")
    if not full and not operator:
        raise HTTPException(status_code=403, detail="Not allowed")
    if not plan_allows(db, auth.agency_id, "investments"):
        return True
    return not full


def _query(request: Request, *names: str) -> Optional[str]:
    for name in names:
        value = request.query_params.get(name)
        if value is not None and value.strip() != "":
            return value.strip()
    return None


def query_int(request: Request, *names: str) -> Optional[int]:
    raw = _query(request, *names)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"{names[0]} must be a number") from exc


def query_date(request: Request, *names: str) -> Optional[date]:
    raw = _query(request, *names)
    if raw is None:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"{names[0]} must be a date") from exc


def query_bool(request: Request, *names: str) -> bool:
    raw = _query(request, *names)
    return (raw or "").lower() in ("1", "true", "yes")


def investment_filters_from_request(request: Request) -> InvestmentFilters:
    return InvestmentFilters(
        category=_query(request, "category"),
        currency=_query(request, "currency"),
        payment_method=_query(request, "payment_method", "paymentMethod"),
        account=_query(request, "account"),
        operator_id=query_int(request, "operatorId", "operator_id"),
        user_id=query_int(request, "userId", "user_id"),
        booking_id=query_int(request, "bookingId", "booking_id"),
        created_from=query_date(request, "createdFrom", "created_from"),
        created_to=query_date(request, "createdTo", "created_to"),
        paid_from=query_date(request, "paidFrom", "paid_from"),
        paid_to=query_date(request, "paidTo", "paid_to"),
        q=_query(request, "q"),
        operator_only=query_bool(request, "operatorOnly", "operator_only"),
        exclude_operator=query_bool(request, "excludeOperator", "exclude_operator"),
        include_counts=query_bool(request, "includeCounts", "include_counts"),
    )


def investment_to_dict(inv: Investment) -> dict[str, Any]:
    return {
        "id_investment": inv.id,
        "agency_investment_id": inv.agency_investment_id,
        "category": inv.category,
        "description": inv.description,
        "counterparty_name": inv.counterparty_name,
        "amount": as_plain(inv.amount),
        "currency": inv.currency,
        "created_at": as_plain(inv.created_at),
        "paid_at": as_plain(inv.paid_at),
        "payment_method": inv.payment_method,
        "account": inv.account,
        "payment_fee_amount": as_plain(inv.payment_fee_amount),
        "base_amount": as_plain(inv.base_amount),
        "base_currency": inv.base_currency,
        "counter_amount": as_plain(inv.counter_amount),
        "counter_currency": inv.counter_currency,
        "excess_action": as_plain(inv.excess_action),
        "excess_missing_account_action": as_plain(inv.excess_missing_account_action),
        "operator_id": inv.operator_id,
        "user_id": inv.user_id,
        "created_by": inv.created_by,
        "booking_id": inv.booking_id,
        "recurring_id": inv.recurring_id,
        "serviceIds": list(inv.service_ids or []),
        "operator": (
            {"id_operator": inv.operator.id, "name": inv.operator.name}
            if inv.operator
            else None
        ),
        "booking": (
            {"id_booking": inv.booking.id, "agency_booking_id": inv.booking.agency_booking_id}
            if inv.booking
            else None
        ),
        "payments": [
            {
                "id": p.id,
                "amount": as_plain(p.amount),
                "payment_method": p.payment_method,
                "account": p.account,
                "payment_currency": p.payment_currency,
                "fee_mode": as_plain(p.fee_mode),
                "fee_value": as_plain(p.fee_value),
                "fee_amount": as_plain(p.fee_amount),
            }
            for p in inv.payments
        ],
        "allocations": [
            {
                "id": a.id,
                "service_id": a.service_id,
                "booking_id": a.booking_id,
                "payment_currency": a.payment_currency,
                "service_currency": a.service_currency,
                "amount_payment": as_plain(a.amount_payment),
                "amount_service": as_plain(a.amount_service),
                "fx_rate": as_plain(a.fx_rate),
            }
            for a in inv.allocations
        ],
    }


def opening_balance_to_dict(row: FinanceAccountOpeningBalance) -> dict[str, Any]:
    return {
        "id": row.id,
        "account_id": row.account_id,
        "account": row.account.name if row.account else None,
        "currency": row.currency,
        "amount": as_plain(row.amount),
        "effective_date": as_plain(row.effective_date),
        "note": row.note,
    }


@app.get("/api/cashbox")
def api_cashbox(
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    ensure_access(db, auth, "cashbox", feature="cashbox")

    agency_id = auth.agency_id
    requested = query_int(request, "agencyId", "agency_id")
    if requested is not None and requested != auth.agency_id:
        if auth.role not in CROSS_AGENCY_ROLES:
            raise HTTPException(status_code=403, detail="Not allowed for this agency")
        if not db.get(Agency, requested):
            raise HTTPException(status_code=404, detail="Agency not found")
        agency_id = requested

    try:
        period = resolve_month(
            request.query_params.get("year"), request.query_params.get("month")
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return CashboxService(db, agency_id).summary(period.start.year, period.start.month)


@app.get("/api/operators/insights")
def api_operator_insights(
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    ensure_access(db, auth, "operators_insights", feature="operators_insights")

    operator_id = query_int(request, "operatorId", "operator_id")
    if not operator_id or operator_id <= 0:
        raise HTTPException(status_code=400, detail="operatorId is required")
    try:
        period = resolve_day_range(
            request.query_params.get("from"), request.query_params.get("to")
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    mode = parse_date_mode(_query(request, "mode", "dateMode"))

    try:
        return OperatorInsightsService(db, auth.agency_id).insights(
            operator_id, period, mode
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/investments")
def api_list_investments(
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    restricted = operator_payments_only(db, auth)
    filters = investment_filters_from_request(request)
    if restricted:
        if filters.exclude_operator:
            raise HTTPException(status_code=403, detail="Only operator payments allowed")
        filters.operator_only = True

    service = InvestmentService(db, auth.agency_id, auth.user_id)
    try:
        page = service.list(
            filters,
            take=query_int(request, "take"),
            cursor=query_int(request, "cursor"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    items = []
    for inv in page.items:
        item = investment_to_dict(inv)
        if filters.booking_id:
            item["booking_amount"] = page.booking_amounts.get(inv.id)
        items.append(item)
    payload: dict[str, Any] = {"items": items, "next_cursor": page.next_cursor}
    if filters.include_counts:
        payload["total_count"] = page.total_count
        payload["filtered_count"] = page.filtered_count
    return payload


@app.post("/api/investments", status_code=201)
def api_create_investment(
    data: InvestmentIn,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    restricted = operator_payments_only(db, auth)
    service = InvestmentService(db, auth.agency_id, auth.user_id)
    if restricted and not service.is_operator_category(data.category):
        raise HTTPException(status_code=403, detail="Only operator payments allowed")
    try:
        inv = service.create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return investment_to_dict(inv)


@app.get("/api/investments/{investment_id}")
def api_get_investment(
    investment_id: int,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    restricted = operator_payments_only(db, auth)
    service = InvestmentService(db, auth.agency_id, auth.user_id)
    try:
        inv = service.get(investment_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if restricted and not service.is_operator_category(inv.category):
        raise HTTPException(status_code=403, detail="Only operator payments allowed")
    return investment_to_dict(inv)


@app.put("/api/investments/{investment_id}")
def api_update_investment(
    investment_id: int,
    data: InvestmentIn,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    restricted = operator_payments_only(db, auth)
    service = InvestmentService(db, auth.agency_id, auth.user_id)
    try:
        current = service.get(investment_id)
        if restricted and not (
            service.is_operator_category(current.category)
            and service.is_operator_category(data.category)
        ):
            raise HTTPException(status_code=403, detail="Only operator payments allowed")
        inv = service.update(investment_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return investment_to_dict(inv)


@app.delete("/api/investments/{investment_id}", status_code=204)
def api_delete_investment(
    investment_id: int,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    restricted = operator_payments_only(db, auth)
    service = InvestmentService(db, auth.agency_id, auth.user_id)
    try:
        inv = service.get(investment_id)
        if restricted and not service.is_operator_category(inv.category):
            raise HTTPException(status_code=403, detail="Only operator payments allowed")
        service.delete(investment_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/opening-balances")
def api_list_opening_balances(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    ensure_access(db, auth, "balances")
    rows = OpeningBalanceService(db, auth.agency_id).list_all()
    return {"items": [opening_balance_to_dict(row) for row in rows]}


@app.post("/api/opening-balances", status_code=201)
def api_create_opening_balance(
    data: OpeningBalanceIn,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    ensure_access(db, auth, "balances")
    try:
        row = OpeningBalanceService(db, auth.agency_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return opening_balance_to_dict(row)


@app.get("/api/opening-balances/balance")
def api_balance_as_of(
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    ensure_access(db, auth, "balances")
    account_id = query_int(request, "accountId", "account_id")
    currency = _query(request, "currency")
    target = query_date(request, "date")
    if not account_id or not currency or not target:
        raise HTTPException(
            status_code=400, detail="accountId, currency and date are required"
        )
    try:
        balance = OpeningBalanceService(db, auth.agency_id).balance_as_of(
            account_id, currency, target
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "account_id": account_id,
        "currency": normalize_currency(currency),
        "date": target.isoformat(),
        "balance": balance,
    }


@app.put("/api/opening-balances/{balance_id}")
def api_update_opening_balance(
    balance_id: int,
    data: OpeningBalanceIn,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    ensure_access(db, auth, "balances")
    try:
        row = OpeningBalanceService(db, auth.agency_id).update(balance_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return opening_balance_to_dict(row)


@app.delete("/api/opening-balances/{balance_id}", status_code=204)
def api_delete_opening_balance(
    balance_id: int,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_auth),
):
    ensure_access(db, auth, "balances")
    try:
        OpeningBalanceService(db, auth.agency_id).delete(balance_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
