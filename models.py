from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


MONEY = Numeric(18, 2)


class UserRole(str, Enum):
    gerente = "gerente"
    lider = "lider"
    administrativo = "administrativo"
    desarrollador = "desarrollador"
    vendedor = "vendedor"


class DuePaymentStatus(str, Enum):
    pendiente = "pendiente"
    pagado = "pagado"


class FeeMode(str, Enum):
    fixed = "FIXED"
    percent = "PERCENT"


FEE_MODE_ENUM = SAEnum(
    FeeMode,
    name="feemode",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class ExcessAction(str, Enum):
    credit_entry = "credit_entry"
    carry = "carry"


class MissingAccountAction(str, Enum):
    carry = "carry"
    block = "block"
    create = "create"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Agency(Base, TimestampMixin):
    __tablename__ = "agencies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    # None means the plan carries every feature.
    plan_features: Mapped[Optional[list[str]]] = mapped_column(JSON)


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole), nullable=False)


class FinanceSectionGrant(Base, TimestampMixin):
    __tablename__ = "finance_section_grants"
    __table_args__ = (
        UniqueConstraint("agency_id", "user_id", name="uq_grant_agency_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    sections: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)


class FinanceConfig(Base, TimestampMixin):
    __tablename__ = "finance_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id"), nullable=False, unique=True
    )
    hide_operator_expenses_in_investments: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    operator_category_names: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )
    user_category_names: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )


class Operator(Base, TimestampMixin):
    __tablename__ = "operators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    agency_operator_id: Mapped[Optional[int]] = mapped_column(Integer)
    name: Mapped[Optional[str]] = mapped_column(String(160))


class Client(Base, TimestampMixin):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


booking_clients = Table(
    "booking_clients",
    Base.metadata,
    Column("booking_id", Integer, ForeignKey("bookings.id"), primary_key=True),
    Column("client_id", Integer, ForeignKey("clients.id"), primary_key=True),
)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    agency_booking_id: Mapped[Optional[int]] = mapped_column(Integer)
    details: Mapped[Optional[str]] = mapped_column(Text)
    creation_date: Mapped[date] = mapped_column(Date, nullable=False)
    departure_date: Mapped[Optional[date]] = mapped_column(Date)
    return_date: Mapped[Optional[date]] = mapped_column(Date)
    titular_id: Mapped[Optional[int]] = mapped_column(ForeignKey("clients.id"))

    titular: Mapped[Optional["Client"]] = relationship("Client")
    clients: Mapped[list["Client"]] = relationship(
        "Client", secondary="booking_clients"
    )
    services: Mapped[list["Service"]] = relationship(
        "Service", back_populates="booking", order_by="Service.id"
    )
    receipts: Mapped[list["Receipt"]] = relationship(
        "Receipt", back_populates="booking", order_by="Receipt.id"
    )

    @property
    def label(self) -> str:
        number = self.agency_booking_id or self.id
        return f"N° {number} • {self.details or ''}".strip()

    __table_args__ = (
        Index("ix_bookings_agency_creation", "agency_id", "creation_date"),
    )


class Service(Base, TimestampMixin):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    agency_service_id: Mapped[Optional[int]] = mapped_column(Integer)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    operator_id: Mapped[int] = mapped_column(ForeignKey("operators.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    sale_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    cost_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    card_interest: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    taxable_card_interest: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    vat_on_card_interest: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    departure_date: Mapped[Optional[date]] = mapped_column(Date)
    return_date: Mapped[Optional[date]] = mapped_column(Date)

    booking: Mapped["Booking"] = relationship("Booking", back_populates="services")
    operator: Mapped["Operator"] = relationship("Operator")

    __table_args__ = (
        Index("ix_services_operator_booking", "operator_id", "booking_id"),
    )


class FinanceAccount(Base, TimestampMixin):
    __tablename__ = "finance_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)


class FinancePaymentMethod(Base, TimestampMixin):
    __tablename__ = "finance_payment_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)


class Receipt(Base, TimestampMixin):
    __tablename__ = "receipts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    agency_receipt_id: Mapped[Optional[int]] = mapped_column(Integer)
    booking_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bookings.id"))
    receipt_number: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    concept: Mapped[Optional[str]] = mapped_column(String(300))
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    amount_currency: Mapped[Optional[str]] = mapped_column(String(8))
    base_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    base_currency: Mapped[Optional[str]] = mapped_column(String(8))
    counter_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    counter_currency: Mapped[Optional[str]] = mapped_column(String(8))
    payment_fee_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    payment_method: Mapped[Optional[str]] = mapped_column(String(80))
    account: Mapped[Optional[str]] = mapped_column(String(120))
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("finance_accounts.id"))
    # Legacy schema: receipts referenced services and clients only by id.
    service_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    client_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    booking: Mapped[Optional["Booking"]] = relationship(
        "Booking", back_populates="receipts"
    )
    service_allocations: Mapped[list["ReceiptServiceAllocation"]] = relationship(
        "ReceiptServiceAllocation",
        back_populates="receipt",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("ix_receipts_agency_issue", "agency_id", "issue_date"),)


class ReceiptServiceAllocation(Base):
    __tablename__ = "receipt_service_allocations"
    __table_args__ = (
        UniqueConstraint("receipt_id", "service_id", name="uq_receipt_alloc_service"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    receipt_id: Mapped[int] = mapped_column(ForeignKey("receipts.id"), nullable=False)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), nullable=False)
    amount_service: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    service_currency: Mapped[Optional[str]] = mapped_column(String(8))

    receipt: Mapped["Receipt"] = relationship(
        "Receipt", back_populates="service_allocations"
    )


class OtherIncome(Base, TimestampMixin):
    __tablename__ = "other_incomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    agency_other_income_id: Mapped[Optional[int]] = mapped_column(Integer)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(300))
    counterparty_name: Mapped[Optional[str]] = mapped_column(String(160))
    category_name: Mapped[Optional[str]] = mapped_column(String(120))
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_method_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("finance_payment_methods.id")
    )
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("finance_accounts.id"))
    operator_id: Mapped[Optional[int]] = mapped_column(ForeignKey("operators.id"))

    operator: Mapped[Optional["Operator"]] = relationship("Operator")
    payments: Mapped[list["OtherIncomePayment"]] = relationship(
        "OtherIncomePayment",
        back_populates="other_income",
        cascade="all, delete-orphan",
        order_by="OtherIncomePayment.id",
    )


class OtherIncomePayment(Base):
    __tablename__ = "other_income_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    other_income_id: Mapped[int] = mapped_column(
        ForeignKey("other_incomes.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_method_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("finance_payment_methods.id")
    )
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("finance_accounts.id"))

    other_income: Mapped["OtherIncome"] = relationship(
        "OtherIncome", back_populates="payments"
    )


class Investment(Base, TimestampMixin):
    __tablename__ = "investments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    agency_investment_id: Mapped[Optional[int]] = mapped_column(Integer)
    category: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str] = mapped_column(String(300), nullable=False)
    counterparty_name: Mapped[Optional[str]] = mapped_column(String(160))
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    paid_at: Mapped[Optional[date]] = mapped_column(Date)
    payment_method: Mapped[Optional[str]] = mapped_column(String(80))
    account: Mapped[Optional[str]] = mapped_column(String(120))
    payment_fee_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    base_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    base_currency: Mapped[Optional[str]] = mapped_column(String(8))
    counter_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    counter_currency: Mapped[Optional[str]] = mapped_column(String(8))
    excess_action: Mapped[Optional[ExcessAction]] = mapped_column(SAEnum(ExcessAction))
    excess_missing_account_action: Mapped[Optional[MissingAccountAction]] = (
        mapped_column(SAEnum(MissingAccountAction))
    )
    operator_id: Mapped[Optional[int]] = mapped_column(ForeignKey("operators.id"))
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    booking_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bookings.id"))
    # Legacy schema: operator payments referenced services only by id.
    service_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    recurring_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_investments.id")
    )

    operator: Mapped[Optional["Operator"]] = relationship("Operator")
    booking: Mapped[Optional["Booking"]] = relationship("Booking")
    payments: Mapped[list["InvestmentPayment"]] = relationship(
        "InvestmentPayment",
        back_populates="investment",
        cascade="all, delete-orphan",
        order_by="InvestmentPayment.id",
    )
    allocations: Mapped[list["InvestmentServiceAllocation"]] = relationship(
        "InvestmentServiceAllocation",
        back_populates="investment",
        cascade="all, delete-orphan",
        order_by="InvestmentServiceAllocation.id",
    )

    __table_args__ = (
        Index("ix_investments_agency_paid", "agency_id", "paid_at"),
        Index("ix_investments_agency_operator", "agency_id", "operator_id"),
    )


class InvestmentPayment(Base):
    __tablename__ = "investment_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    investment_id: Mapped[int] = mapped_column(
        ForeignKey("investments.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(80), nullable=False)
    account: Mapped[Optional[str]] = mapped_column(String(120))
    payment_currency: Mapped[str] = mapped_column(String(8), nullable=False)
    fee_mode: Mapped[Optional[FeeMode]] = mapped_column(FEE_MODE_ENUM)
    fee_value: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    fee_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)

    investment: Mapped["Investment"] = relationship(
        "Investment", back_populates="payments"
    )


class InvestmentServiceAllocation(Base):
    __tablename__ = "investment_service_allocations"
    __table_args__ = (
        UniqueConstraint(
            "investment_id", "service_id", name="uq_investment_alloc_service"
        ),
        CheckConstraint("amount_payment >= 0", name="ck_alloc_payment_positive"),
        CheckConstraint("amount_service >= 0", name="ck_alloc_service_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    investment_id: Mapped[int] = mapped_column(
        ForeignKey("investments.id"), nullable=False
    )
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), nullable=False)
    booking_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bookings.id"))
    payment_currency: Mapped[str] = mapped_column(String(8), nullable=False)
    service_currency: Mapped[str] = mapped_column(String(8), nullable=False)
    amount_payment: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    amount_service: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    fx_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 6))

    investment: Mapped["Investment"] = relationship(
        "Investment", back_populates="allocations"
    )


class RecurringInvestment(Base, TimestampMixin):
    __tablename__ = "recurring_investments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    category: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str] = mapped_column(String(300), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False)
    interval_months: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_run: Mapped[Optional[date]] = mapped_column(Date)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    operator_id: Mapped[Optional[int]] = mapped_column(ForeignKey("operators.id"))
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    payment_method: Mapped[Optional[str]] = mapped_column(String(80))
    account: Mapped[Optional[str]] = mapped_column(String(120))

    __table_args__ = (
        CheckConstraint(
            "day_of_month >= 1 AND day_of_month <= 31", name="ck_recurring_day"
        ),
        CheckConstraint("interval_months > 0", name="ck_recurring_interval_positive"),
    )


class FinanceAccountOpeningBalance(Base, TimestampMixin):
    __tablename__ = "finance_account_opening_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("finance_accounts.id"), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)

    account: Mapped["FinanceAccount"] = relationship("FinanceAccount")

    __table_args__ = (
        Index(
            "ix_opening_balance_account_currency_date",
            "agency_id",
            "account_id",
            "currency",
            "effective_date",
        ),
    )


class FinanceTransfer(Base, TimestampMixin):
    __tablename__ = "finance_transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    transfer_date: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    origin_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("finance_accounts.id")
    )
    origin_method_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("finance_payment_methods.id")
    )
    origin_currency: Mapped[str] = mapped_column(String(8), nullable=False)
    origin_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    destination_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("finance_accounts.id")
    )
    destination_method_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("finance_payment_methods.id")
    )
    destination_currency: Mapped[str] = mapped_column(String(8), nullable=False)
    destination_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    fee_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    fee_currency: Mapped[Optional[str]] = mapped_column(String(8))
    fee_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("finance_accounts.id")
    )
    fee_method_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("finance_payment_methods.id")
    )
    fee_note: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class FinanceAccountAdjustment(Base, TimestampMixin):
    __tablename__ = "finance_account_adjustments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("finance_accounts.id"))
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    # Signed: positive raises the account balance, negative lowers it.
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(String(120), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)


class ClientPayment(Base, TimestampMixin):
    __tablename__ = "client_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DuePaymentStatus.pendiente.value
    )

    booking: Mapped["Booking"] = relationship("Booking")
    client: Mapped["Client"] = relationship("Client")


class OperatorDue(Base, TimestampMixin):
    __tablename__ = "operator_dues"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), nullable=False)
    concept: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DuePaymentStatus.pendiente.value
    )

    booking: Mapped["Booking"] = relationship("Booking")
    service: Mapped["Service"] = relationship("Service")


class CreditAccount(Base, TimestampMixin):
    """Running balance per client or operator and currency.

    Sign convention: a negative client balance is money the client owes the
    agency; a positive operator balance is money the agency owes the operator.
    """

    __tablename__ = "credit_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    agency_credit_account_id: Mapped[Optional[int]] = mapped_column(Integer)
    client_id: Mapped[Optional[int]] = mapped_column(ForeignKey("clients.id"))
    operator_id: Mapped[Optional[int]] = mapped_column(ForeignKey("operators.id"))
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CreditEntry(Base, TimestampMixin):
    __tablename__ = "credit_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)
    agency_credit_entry_id: Mapped[Optional[int]] = mapped_column(Integer)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("credit_accounts.id"), nullable=False
    )
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    concept: Mapped[str] = mapped_column(String(300), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    doc_type: Mapped[str] = mapped_column(String(40), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(80))
    value_date: Mapped[Optional[date]] = mapped_column(Date)
    investment_id: Mapped[Optional[int]] = mapped_column(ForeignKey("investments.id"))

    account: Mapped["CreditAccount"] = relationship("CreditAccount")


def as_plain(value: Any) -> Any:
    """JSON-friendly rendering of column values."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value
