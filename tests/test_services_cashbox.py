from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import (
    Agency,
    Booking,
    Client,
    ClientPayment,
    CreditAccount,
    FinanceAccount,
    FinanceAccountAdjustment,
    FinanceAccountOpeningBalance,
    FinanceConfig,
    FinancePaymentMethod,
    FinanceTransfer,
    Investment,
    InvestmentPayment,
    Operator,
    OperatorDue,
    OtherIncome,
    OtherIncomePayment,
    Receipt,
    Service,
)
from services import CashboxService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _seed_agency(session):
    agency = Agency(name="Viajes Sur")
    session.add(agency)
    session.flush()
    caja = FinanceAccount(agency_id=agency.id, name="Caja")
    banco = FinanceAccount(agency_id=agency.id, name="Banco")
    efectivo = FinancePaymentMethod(agency_id=agency.id, name="Efectivo")
    transferencia = FinancePaymentMethod(agency_id=agency.id, name="Transferencia")
    session.add_all([caja, banco, efectivo, transferencia])
    session.flush()
    return agency, caja, banco, efectivo, transferencia


def test_cashbox_month_with_transfers_adjustments_and_opening() -> None:
    session = make_session()
    agency, caja, banco, efectivo, transferencia = _seed_agency(session)
    session.add_all(
        [
            FinanceAccountOpeningBalance(
                agency_id=agency.id,
                account_id=caja.id,
                currency="ARS",
                amount=1000,
                effective_date=date(2024, 12, 15),
            ),
            Receipt(
                agency_id=agency.id,
                receipt_number="0001",
                issue_date=date(2024, 12, 20),
                amount=250,
                amount_currency="ARS",
                payment_method="Efectivo",
                account_id=caja.id,
            ),
            Receipt(
                agency_id=agency.id,
                receipt_number="0002",
                issue_date=date(2025, 1, 3),
                amount=500,
                amount_currency="ARS",
                payment_method="Efectivo",
                account_id=caja.id,
            ),
            Receipt(
                agency_id=agency.id,
                receipt_number="0003",
                issue_date=date(2025, 1, 4),
                amount=9999,
                amount_currency="ARS",
                enabled=False,
            ),
            Investment(
                agency_id=agency.id,
                category="Alquiler",
                description="Alquiler oficina",
                amount=200,
                currency="ARS",
                paid_at=date(2025, 1, 5),
                payment_method="Transferencia",
                account="Banco",
            ),
            FinanceTransfer(
                agency_id=agency.id,
                transfer_date=date(2025, 1, 10),
                origin_account_id=caja.id,
                origin_method_id=efectivo.id,
                origin_currency="ARS",
                origin_amount=100,
                destination_account_id=banco.id,
                destination_method_id=transferencia.id,
                destination_currency="ARS",
                destination_amount=100,
                fee_amount=5,
                fee_currency="ARS",
            ),
            FinanceAccountAdjustment(
                agency_id=agency.id,
                account_id=banco.id,
                currency="ARS",
                amount=-30,
                effective_date=date(2025, 1, 15),
                reason="Comisión bancaria",
            ),
        ]
    )
    session.commit()

    summary = CashboxService(session, agency.id).summary(2025, 1)

    assert summary["totalsByCurrency"] == [
        {"currency": "ARS", "income": 600.0, "expenses": 335.0, "net": 1515.0}
    ]
    accounts = {row["account"]: row for row in summary["totalsByAccount"]}
    assert accounts["Caja"]["income"] == 500.0
    assert accounts["Caja"]["expenses"] == 105.0
    assert accounts["Caja"]["opening"] == 1250.0
    assert accounts["Caja"]["closing"] == 1645.0
    assert accounts["Banco"]["income"] == 100.0
    assert accounts["Banco"]["expenses"] == 230.0
    assert accounts["Banco"]["opening"] is None

    ids = {m["id"] for m in summary["movements"]}
    assert "finance_transfer:1:fee" in ids
    fee = next(m for m in summary["movements"] if m["id"] == "finance_transfer:1:fee")
    assert fee["account"] == "Caja"
    assert fee["paymentMethod"] == "Efectivo"
    adjustment = next(
        m for m in summary["movements"] if m["source"] == "manual" and m["type"] == "expense"
        and m["id"].startswith("account_adjustment")
    )
    assert adjustment["amount"] == 30.0
    assert adjustment["description"] == "Ajuste de saldo • Comisión bancaria"
    assert not any(m["amount"] == 9999 for m in summary["movements"])


def test_cashbox_hides_operator_expenses_when_configured() -> None:
    session = make_session()
    agency, *_ = _seed_agency(session)
    operator = Operator(agency_id=agency.id, name="Mayorista")
    session.add(operator)
    session.flush()
    session.add_all(
        [
            FinanceConfig(
                agency_id=agency.id,
                hide_operator_expenses_in_investments=True,
                operator_category_names=[],
                user_category_names=[],
            ),
            Investment(
                agency_id=agency.id,
                category="Operador",
                description="Pago mayorista",
                amount=700,
                currency="USD",
                paid_at=date(2025, 1, 8),
                operator_id=operator.id,
            ),
            Investment(
                agency_id=agency.id,
                category="Servicios",
                description="Internet",
                amount=40,
                currency="USD",
                paid_at=date(2025, 1, 8),
            ),
        ]
    )
    session.commit()

    summary = CashboxService(session, agency.id).summary(2025, 1)
    assert [m["description"] for m in summary["movements"]] == ["Internet"]


def test_cashbox_split_investment_and_other_income_payments() -> None:
    session = make_session()
    agency, caja, banco, efectivo, transferencia = _seed_agency(session)
    inv = Investment(
        agency_id=agency.id,
        category="Operador",
        description="Pago hotel",
        amount=300,
        currency="USD",
        paid_at=date(2025, 1, 12),
        payment_method="Transferencia",
        account="Banco",
    )
    inv.payments = [
        InvestmentPayment(
            amount=200,
            payment_method="Transferencia",
            account="Banco",
            payment_currency="USD",
        ),
        InvestmentPayment(
            amount=100, payment_method="Efectivo", account="Caja", payment_currency="USD"
        ),
    ]
    income = OtherIncome(
        agency_id=agency.id,
        issue_date=date(2025, 1, 14),
        description="Comisión mayorista",
        currency="USD",
        amount=80,
    )
    income.payments = [
        OtherIncomePayment(amount=50, payment_method_id=efectivo.id, account_id=caja.id),
        OtherIncomePayment(
            amount=30, payment_method_id=transferencia.id, account_id=banco.id
        ),
    ]
    session.add_all([inv, income])
    session.commit()

    summary = CashboxService(session, agency.id).summary(2025, 1)

    rows = {
        (row["account"], row["currency"]): row for row in summary["totalsByAccount"]
    }
    assert rows[("Banco", "USD")]["expenses"] == 200.0
    assert rows[("Banco", "USD")]["income"] == 30.0
    assert rows[("Caja", "USD")]["expenses"] == 100.0
    assert rows[("Caja", "USD")]["income"] == 50.0
    other = next(m for m in summary["movements"] if m["source"] == "other_income")
    assert other["paymentMethod"] == "Varios"
    assert len(other["payments"]) == 2


def test_cashbox_debts_come_from_credit_accounts_and_due_dates() -> None:
    session = make_session()
    agency, *_ = _seed_agency(session)
    operator = Operator(agency_id=agency.id, name="Mayorista")
    client = Client(agency_id=agency.id, first_name="Ana", last_name="Pérez")
    session.add_all([operator, client])
    session.flush()
    booking = Booking(
        agency_id=agency.id,
        agency_booking_id=12,
        details="Bariloche",
        creation_date=date(2024, 12, 1),
        titular_id=client.id,
    )
    session.add(booking)
    session.flush()
    service = Service(
        agency_id=agency.id,
        booking_id=booking.id,
        operator_id=operator.id,
        description="Hotel",
        currency="USD",
        sale_price=1000,
        cost_price=700,
    )
    session.add(service)
    session.flush()
    session.add_all(
        [
            ClientPayment(
                booking_id=booking.id,
                client_id=client.id,
                amount=800,
                currency="ARS",
                due_date=date(2025, 1, 20),
            ),
            ClientPayment(
                booking_id=booking.id,
                client_id=client.id,
                amount=50,
                currency="ARS",
                due_date=date(2025, 1, 21),
                status="pagado",
            ),
            OperatorDue(
                booking_id=booking.id,
                service_id=service.id,
                concept="Saldo",
                amount=700,
                currency="USD",
                due_date=date(2025, 1, 10),
            ),
            CreditAccount(
                agency_id=agency.id, client_id=client.id, currency="ARS", balance=-800
            ),
            CreditAccount(
                agency_id=agency.id, operator_id=operator.id, currency="USD", balance=700
            ),
            CreditAccount(
                agency_id=agency.id,
                operator_id=operator.id,
                currency="EUR",
                balance=90,
                enabled=False,
            ),
        ]
    )
    session.commit()

    summary = CashboxService(session, agency.id).summary(2025, 1)

    assert summary["balances"] == {
        "clientDebtByCurrency": [{"currency": "ARS", "amount": 800.0}],
        "operatorDebtByCurrency": [{"currency": "USD", "amount": 700.0}],
    }
    due = summary["upcomingDue"]
    assert [m["source"] for m in due] == ["operator_due", "client_payment"]
    assert due[0]["description"] == "Saldo • Hotel"
    assert due[0]["operatorName"] == "Mayorista"
    assert due[0]["bookingLabel"] == "N° 12 • Bariloche"
    assert due[1]["clientName"] == "Ana Pérez"


def test_cashbox_debts_fall_back_to_movements_without_credit_accounts() -> None:
    session = make_session()
    agency, *_ = _seed_agency(session)
    operator = Operator(agency_id=agency.id, name="Mayorista")
    session.add(operator)
    session.flush()
    booking = Booking(
        agency_id=agency.id,
        agency_booking_id=15,
        details="Salta",
        creation_date=date(2024, 12, 1),
    )
    session.add(booking)
    session.flush()
    service = Service(
        agency_id=agency.id,
        booking_id=booking.id,
        operator_id=operator.id,
        description="Excursión",
        currency="USD",
        sale_price=900,
        cost_price=700,
    )
    session.add(service)
    session.flush()
    session.add(
        OperatorDue(
            booking_id=booking.id,
            service_id=service.id,
            concept="Saldo",
            amount=700,
            currency="USD",
            due_date=date(2025, 1, 10),
        )
    )
    session.commit()

    summary = CashboxService(session, agency.id).summary(2025, 1)

    assert summary["balances"] == {
        "clientDebtByCurrency": [],
        "operatorDebtByCurrency": [{"currency": "USD", "amount": 700.0}],
    }


def test_cashbox_currency_aliases_share_rows_with_opening_balances() -> None:
    session = make_session()
    agency, caja, *_ = _seed_agency(session)
    session.add_all(
        [
            FinanceAccountOpeningBalance(
                agency_id=agency.id,
                account_id=caja.id,
                currency="USD",
                amount=100,
                effective_date=date(2024, 12, 31),
            ),
            Receipt(
                agency_id=agency.id,
                receipt_number="0100",
                issue_date=date(2025, 1, 5),
                amount=50,
                amount_currency="U$S",
                payment_method="Efectivo",
                account_id=caja.id,
            ),
        ]
    )
    session.commit()

    summary = CashboxService(session, agency.id).summary(2025, 1)

    assert summary["totalsByCurrency"] == [
        {"currency": "USD", "income": 50.0, "expenses": 0.0, "net": 150.0}
    ]
    [row] = summary["totalsByAccount"]
    assert (row["account"], row["currency"]) == ("Caja", "USD")
    assert row["opening"] == 100.0
    assert row["closing"] == 150.0


def test_cashbox_ignores_other_agencies() -> None:
    session = make_session()
    agency, caja, *_ = _seed_agency(session)
    other = Agency(name="Otra")
    session.add(other)
    session.flush()
    session.add(
        Receipt(
            agency_id=other.id,
            receipt_number="9",
            issue_date=date(2025, 1, 3),
            amount=500,
            amount_currency="ARS",
        )
    )
    session.commit()

    summary = CashboxService(session, agency.id).summary(2025, 1)
    assert summary["movements"] == []
    assert summary["totalsByCurrency"] == []
