from datetime import date
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from access import issue_token
from database import Base, get_db
from main import app
from models import (
    Agency,
    Booking,
    FinanceAccount,
    FinanceSectionGrant,
    Operator,
    Receipt,
    Service,
    User,
    UserRole,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


@pytest.fixture()
def session():
    db = make_session()
    app.dependency_overrides[get_db] = lambda: db
    yield db
    app.dependency_overrides.clear()
    db.close()


@pytest.fixture()
def world(session):
    agency = Agency(name="Viajes Sur")
    limited = Agency(name="Plan básico", plan_features=["investments"])
    session.add_all([agency, limited])
    session.flush()
    users = {
        "gerente": User(
            agency_id=agency.id,
            email="gerente@viajessur.test",
            first_name="Marta",
            last_name="Ríos",
            role=UserRole.gerente,
        ),
        "administrativo": User(
            agency_id=agency.id,
            email="admin@viajessur.test",
            first_name="Laura",
            last_name="Gómez",
            role=UserRole.administrativo,
        ),
        "vendedor": User(
            agency_id=agency.id,
            email="ventas@viajessur.test",
            first_name="Pablo",
            last_name="Sosa",
            role=UserRole.vendedor,
        ),
    }
    session.add_all(users.values())
    operator = Operator(agency_id=agency.id, agency_operator_id=1, name="Mayorista")
    caja = FinanceAccount(agency_id=agency.id, name="Caja")
    session.add_all([operator, caja])
    session.flush()
    booking = Booking(
        agency_id=agency.id,
        agency_booking_id=7,
        details="Mendoza",
        creation_date=date(2025, 1, 10),
    )
    session.add(booking)
    session.flush()
    session.add_all(
        [
            Service(
                agency_id=agency.id,
                booking_id=booking.id,
                operator_id=operator.id,
                description="Bodega",
                currency="ARS",
                sale_price=1000,
                cost_price=600,
            ),
            Receipt(
                agency_id=agency.id,
                booking_id=booking.id,
                receipt_number="0001",
                issue_date=date(2025, 1, 12),
                amount=500,
                amount_currency="ARS",
                payment_method="Efectivo",
                account_id=caja.id,
            ),
        ]
    )
    session.commit()
    return {
        "agency": agency,
        "limited": limited,
        "users": users,
        "operator": operator,
        "caja": caja,
        "booking": booking,
    }


def _headers(user: User, role: Optional[str] = None, agency_id: Optional[int] = None):
    token = issue_token(user.id, agency_id or user.agency_id, role or user.role.value)
    return {"Authorization": f"Bearer {token}"}


def test_requests_without_token_are_rejected(world) -> None:
    client = TestClient(app)
    assert client.get("/api/cashbox").status_code == 401
    bad = client.get("/api/cashbox", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401
    assert bad.json()["detail"] == "Invalid token"


def test_token_cookie_is_accepted(world) -> None:
    client = TestClient(app)
    token = issue_token(world["users"]["gerente"].id, world["agency"].id, "gerente")
    client.cookies.set("token", token)
    assert client.get("/api/cashbox?year=2025&month=1").status_code == 200


def test_cashbox_summary(world) -> None:
    client = TestClient(app)
    res = client.get(
        "/api/cashbox?year=2025&month=1", headers=_headers(world["users"]["gerente"])
    )
    assert res.status_code == 200
    body = res.json()
    assert body["range"]["from"] == "2025-01-01"
    assert body["totalsByCurrency"] == [
        {"currency": "ARS", "income": 500.0, "expenses": 0.0, "net": 500.0}
    ]
    assert body["movements"][0]["bookingLabel"] == "N° 7 • Mendoza"


def test_cashbox_rejects_bad_month(world) -> None:
    client = TestClient(app)
    headers = _headers(world["users"]["gerente"])
    assert client.get("/api/cashbox?year=2025&month=13", headers=headers).status_code == 400
    assert client.get("/api/cashbox?year=abc", headers=headers).status_code == 400


def test_cashbox_section_grants(world, session) -> None:
    client = TestClient(app)
    seller = world["users"]["vendedor"]
    assert client.get("/api/cashbox", headers=_headers(seller)).status_code == 403

    session.add(
        FinanceSectionGrant(
            agency_id=world["agency"].id, user_id=seller.id, sections=["cashbox"]
        )
    )
    session.commit()
    res = client.get("/api/cashbox?year=2025&month=1", headers=_headers(seller))
    assert res.status_code == 200


def test_cashbox_respects_plan_features(world, session) -> None:
    client = TestClient(app)
    manager = User(
        agency_id=world["limited"].id,
        email="gerente@basico.test",
        first_name="Rosa",
        last_name="Paz",
        role=UserRole.gerente,
    )
    session.add(manager)
    session.commit()
    res = client.get("/api/cashbox", headers=_headers(manager))
    assert res.status_code == 403
    assert res.json()["detail"] == "Plan does not include this feature"


def test_cashbox_other_agency(world) -> None:
    client = TestClient(app)
    limited_id = world["limited"].id
    admin = _headers(world["users"]["administrativo"])
    manager = _headers(world["users"]["gerente"])

    query = f"/api/cashbox?year=2025&month=1&agencyId={limited_id}"
    assert client.get(query, headers=admin).status_code == 403
    res = client.get(query, headers=manager)
    assert res.status_code == 200
    assert res.json()["movements"] == []
    missing = client.get("/api/cashbox?agencyId=9999", headers=manager)
    assert missing.status_code == 404


def test_operator_insights_endpoint(world) -> None:
    client = TestClient(app)
    headers = _headers(world["users"]["administrativo"])
    operator_id = world["operator"].id

    assert client.get("/api/operators/insights", headers=headers).status_code == 400
    no_range = client.get(
        f"/api/operators/insights?operatorId={operator_id}", headers=headers
    )
    assert no_range.status_code == 400
    backwards = client.get(
        f"/api/operators/insights?operatorId={operator_id}&from=2025-02-01&to=2025-01-01",
        headers=headers,
    )
    assert backwards.status_code == 400
    unknown = client.get(
        "/api/operators/insights?operatorId=999&from=2025-01-01&to=2025-01-31",
        headers=headers,
    )
    assert unknown.status_code == 404

    res = client.get(
        f"/api/operators/insights?operatorId={operator_id}"
        "&from=2025-01-01&to=2025-01-31&mode=creation",
        headers=headers,
    )
    assert res.status_code == 200
    body = res.json()
    assert body["counts"]["services"] == 1
    assert body["totals"]["sales"] == {"ARS": 1000.0}
    assert body["totals"]["clientDebt"] == {"ARS": 1000.0}
    assert body["totals"]["operatorDebt"] == {"ARS": 600.0}


def test_investment_crud(world) -> None:
    client = TestClient(app)
    headers = _headers(world["users"]["administrativo"])

    created = client.post(
        "/api/investments",
        json={
            "category": "Alquiler",
            "description": "Oficina",
            "amount": 1500,
            "currency": "ARS",
            "paid_at": "2025-01-05",
            "payment_method": "Transferencia",
        },
        headers=headers,
    )
    assert created.status_code == 201
    inv = created.json()
    assert inv["agency_investment_id"] == 1
    assert inv["amount"] == 1500.0

    listing = client.get("/api/investments?includeCounts=1", headers=headers).json()
    assert [item["id_investment"] for item in listing["items"]] == [inv["id_investment"]]
    assert listing["total_count"] == 1
    assert listing["next_cursor"] is None

    url = f"/api/investments/{inv['id_investment']}"
    assert client.get(url, headers=headers).json()["description"] == "Oficina"

    updated = client.put(
        url,
        json={"category": "Alquiler", "description": "Oficina centro", "amount": 1600},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["amount"] == 1600.0

    assert client.delete(url, headers=headers).status_code == 204
    assert client.get(url, headers=headers).status_code == 404


def test_investment_validation_errors(world) -> None:
    client = TestClient(app)
    headers = _headers(world["users"]["administrativo"])

    missing = client.post("/api/investments", json={"amount": 10}, headers=headers)
    assert missing.status_code == 400
    zero = client.post(
        "/api/investments",
        json={"category": "Alquiler", "description": "Cero", "amount": 0},
        headers=headers,
    )
    assert zero.status_code == 400
    assert zero.json()["detail"] == "amount must be positive"


def test_operator_payments_grant_is_limited_to_operator_categories(world, session) -> None:
    client = TestClient(app)
    seller = world["users"]["vendedor"]
    assert client.get("/api/investments", headers=_headers(seller)).status_code == 403

    session.add(
        FinanceSectionGrant(
            agency_id=world["agency"].id,
            user_id=seller.id,
            sections=["operator_payments"],
        )
    )
    session.commit()
    headers = _headers(seller)

    rent = client.post(
        "/api/investments",
        json={"category": "Alquiler", "description": "Oficina", "amount": 10},
        headers=headers,
    )
    assert rent.status_code == 403
    payment = client.post(
        "/api/investments",
        json={
            "category": "Operador",
            "description": "Pago Mayorista",
            "amount": 300,
            "currency": "ARS",
            "operator_id": world["operator"].id,
        },
        headers=headers,
    )
    assert payment.status_code == 201
    assert (
        client.get("/api/investments?excludeOperator=1", headers=headers).status_code
        == 403
    )
    listing = client.get("/api/investments", headers=headers).json()
    assert [item["category"] for item in listing["items"]] == ["Operador"]


def test_opening_balance_endpoints(world) -> None:
    client = TestClient(app)
    headers = _headers(world["users"]["gerente"])
    caja_id = world["caja"].id

    created = client.post(
        "/api/opening-balances",
        json={
            "account_id": caja_id,
            "currency": "ars",
            "amount": 1000,
            "effective_date": "2025-01-01",
        },
        headers=headers,
    )
    assert created.status_code == 201
    row = created.json()
    assert row["currency"] == "ARS"
    assert row["account"] == "Caja"

    items = client.get("/api/opening-balances", headers=headers).json()["items"]
    assert [item["id"] for item in items] == [row["id"]]

    balance = client.get(
        f"/api/opening-balances/balance?accountId={caja_id}&currency=$&date=2025-02-01",
        headers=headers,
    )
    assert balance.status_code == 200
    assert balance.json() == {
        "account_id": caja_id,
        "currency": "ARS",
        "date": "2025-02-01",
        "balance": 1500.0,
    }
    assert (
        client.get("/api/opening-balances/balance", headers=headers).status_code == 400
    )

    url = f"/api/opening-balances/{row['id']}"
    updated = client.put(
        url,
        json={
            "account_id": caja_id,
            "currency": "ARS",
            "amount": 1200,
            "effective_date": "2025-01-01",
        },
        headers=headers,
    )
    assert updated.json()["amount"] == 1200.0
    assert client.delete(url, headers=headers).status_code == 204
    assert client.delete(url, headers=headers).status_code == 404
