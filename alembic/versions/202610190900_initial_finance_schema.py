"""initial finance schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


MONEY = sa.Numeric(18, 2)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "agencies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("plan_features", sa.JSON()),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column(
            "role",
            sa.Enum(
                "gerente",
                "lider",
                "administrativo",
                "desarrollador",
                "vendedor",
                name="userrole",
            ),
            nullable=False,
        ),
        *_timestamps(),
    )

    op.create_table(
        "finance_section_grants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("sections", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("agency_id", "user_id", name="uq_grant_agency_user"),
    )

    op.create_table(
        "finance_configs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "agency_id",
            sa.Integer(),
            sa.ForeignKey("agencies.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "hide_operator_expenses_in_investments",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("operator_category_names", sa.JSON(), nullable=False),
        sa.Column("user_category_names", sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "operators",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("agency_operator_id", sa.Integer()),
        sa.Column("name", sa.String(length=160)),
        *_timestamps(),
    )

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("agency_booking_id", sa.Integer()),
        sa.Column("details", sa.Text()),
        sa.Column("creation_date", sa.Date(), nullable=False),
        sa.Column("departure_date", sa.Date()),
        sa.Column("return_date", sa.Date()),
        sa.Column("titular_id", sa.Integer(), sa.ForeignKey("clients.id")),
        *_timestamps(),
    )
    op.create_index(
        "ix_bookings_agency_creation", "bookings", ["agency_id", "creation_date"]
    )

    op.create_table(
        "booking_clients",
        sa.Column(
            "booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), primary_key=True
        ),
        sa.Column(
            "client_id", sa.Integer(), sa.ForeignKey("clients.id"), primary_key=True
        ),
    )

    op.create_table(
        "services",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("agency_service_id", sa.Integer()),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column(
            "operator_id", sa.Integer(), sa.ForeignKey("operators.id"), nullable=False
        ),
        sa.Column("description", sa.String(length=300), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("sale_price", MONEY, nullable=False),
        sa.Column("cost_price", MONEY, nullable=False),
        sa.Column("card_interest", MONEY),
        sa.Column("taxable_card_interest", MONEY),
        sa.Column("vat_on_card_interest", MONEY),
        sa.Column("departure_date", sa.Date()),
        sa.Column("return_date", sa.Date()),
        *_timestamps(),
    )
    op.create_index(
        "ix_services_operator_booking", "services", ["operator_id", "booking_id"]
    )

    for table in ("finance_accounts", "finance_payment_methods"):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False
            ),
            sa.Column("name", sa.String(length=120), nullable=False),
            *_timestamps(),
        )

    op.create_table(
        "receipts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("agency_receipt_id", sa.Integer()),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id")),
        sa.Column("receipt_number", sa.String(length=40), nullable=False),
        sa.Column("concept", sa.String(length=300)),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("amount_currency", sa.String(length=8)),
        sa.Column("base_amount", MONEY),
        sa.Column("base_currency", sa.String(length=8)),
        sa.Column("counter_amount", MONEY),
        sa.Column("counter_currency", sa.String(length=8)),
        sa.Column("payment_fee_amount", MONEY),
        sa.Column("payment_method", sa.String(length=80)),
        sa.Column("account", sa.String(length=120)),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("finance_accounts.id")),
        sa.Column("service_ids", sa.JSON(), nullable=False),
        sa.Column("client_ids", sa.JSON(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_receipts_agency_issue", "receipts", ["agency_id", "issue_date"])

    op.create_table(
        "receipt_service_allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("receipt_id", sa.Integer(), sa.ForeignKey("receipts.id"), nullable=False),
        sa.Column("service_id", sa.Integer(), sa.ForeignKey("services.id"), nullable=False),
        sa.Column("amount_service", MONEY, nullable=False),
        sa.Column("service_currency", sa.String(length=8)),
        sa.UniqueConstraint("receipt_id", "service_id", name="uq_receipt_alloc_service"),
    )

    op.create_table(
        "other_incomes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("agency_other_income_id", sa.Integer()),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=300)),
        sa.Column("counterparty_name", sa.String(length=160)),
        sa.Column("category_name", sa.String(length=120)),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column(
            "payment_method_id", sa.Integer(), sa.ForeignKey("finance_payment_methods.id")
        ),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("finance_accounts.id")),
        sa.Column("operator_id", sa.Integer(), sa.ForeignKey("operators.id")),
        *_timestamps(),
    )

    op.create_table(
        "other_income_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "other_income_id",
            sa.Integer(),
            sa.ForeignKey("other_incomes.id"),
            nullable=False,
        ),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column(
            "payment_method_id", sa.Integer(), sa.ForeignKey("finance_payment_methods.id")
        ),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("finance_accounts.id")),
    )

    op.create_table(
        "recurring_investments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("category", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=300), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column("interval_months", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_run", sa.Date()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("operator_id", sa.Integer(), sa.ForeignKey("operators.id")),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("payment_method", sa.String(length=80)),
        sa.Column("account", sa.String(length=120)),
        *_timestamps(),
        sa.CheckConstraint(
            "day_of_month >= 1 AND day_of_month <= 31", name="ck_recurring_day"
        ),
        sa.CheckConstraint("interval_months > 0", name="ck_recurring_interval_positive"),
    )

    op.create_table(
        "investments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("agency_investment_id", sa.Integer()),
        sa.Column("category", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=300), nullable=False),
        sa.Column("counterparty_name", sa.String(length=160)),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("paid_at", sa.Date()),
        sa.Column("payment_method", sa.String(length=80)),
        sa.Column("account", sa.String(length=120)),
        sa.Column("payment_fee_amount", MONEY),
        sa.Column("base_amount", MONEY),
        sa.Column("base_currency", sa.String(length=8)),
        sa.Column("counter_amount", MONEY),
        sa.Column("counter_currency", sa.String(length=8)),
        sa.Column(
            "excess_action",
            sa.Enum("credit_entry", "carry", name="excessaction"),
        ),
        sa.Column(
            "excess_missing_account_action",
            sa.Enum("carry", "block", "create", name="missingaccountaction"),
        ),
        sa.Column("operator_id", sa.Integer(), sa.ForeignKey("operators.id")),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id")),
        sa.Column("service_ids", sa.JSON(), nullable=False),
        sa.Column(
            "recurring_id", sa.Integer(), sa.ForeignKey("recurring_investments.id")
        ),
        *_timestamps(),
    )
    op.create_index("ix_investments_agency_paid", "investments", ["agency_id", "paid_at"])
    op.create_index(
        "ix_investments_agency_operator", "investments", ["agency_id", "operator_id"]
    )

    op.create_table(
        "investment_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "investment_id", sa.Integer(), sa.ForeignKey("investments.id"), nullable=False
        ),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("payment_method", sa.String(length=80), nullable=False),
        sa.Column("account", sa.String(length=120)),
        sa.Column("payment_currency", sa.String(length=8), nullable=False),
        sa.Column("fee_mode", sa.Enum("FIXED", "PERCENT", name="feemode")),
        sa.Column("fee_value", MONEY),
        sa.Column("fee_amount", MONEY, nullable=False, server_default="0"),
    )

    op.create_table(
        "investment_service_allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "investment_id", sa.Integer(), sa.ForeignKey("investments.id"), nullable=False
        ),
        sa.Column("service_id", sa.Integer(), sa.ForeignKey("services.id"), nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id")),
        sa.Column("payment_currency", sa.String(length=8), nullable=False),
        sa.Column("service_currency", sa.String(length=8), nullable=False),
        sa.Column("amount_payment", MONEY, nullable=False),
        sa.Column("amount_service", MONEY, nullable=False),
        sa.Column("fx_rate", sa.Numeric(18, 6)),
        sa.UniqueConstraint(
            "investment_id", "service_id", name="uq_investment_alloc_service"
        ),
        sa.CheckConstraint("amount_payment >= 0", name="ck_alloc_payment_positive"),
        sa.CheckConstraint("amount_service >= 0", name="ck_alloc_service_positive"),
    )

    op.create_table(
        "finance_account_opening_balances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("finance_accounts.id"), nullable=False
        ),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("note", sa.Text()),
        *_timestamps(),
    )
    op.create_index(
        "ix_opening_balance_account_currency_date",
        "finance_account_opening_balances",
        ["agency_id", "account_id", "currency", "effective_date"],
    )

    op.create_table(
        "finance_transfers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("transfer_date", sa.Date(), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column("origin_account_id", sa.Integer(), sa.ForeignKey("finance_accounts.id")),
        sa.Column(
            "origin_method_id", sa.Integer(), sa.ForeignKey("finance_payment_methods.id")
        ),
        sa.Column("origin_currency", sa.String(length=8), nullable=False),
        sa.Column("origin_amount", MONEY, nullable=False),
        sa.Column(
            "destination_account_id", sa.Integer(), sa.ForeignKey("finance_accounts.id")
        ),
        sa.Column(
            "destination_method_id",
            sa.Integer(),
            sa.ForeignKey("finance_payment_methods.id"),
        ),
        sa.Column("destination_currency", sa.String(length=8), nullable=False),
        sa.Column("destination_amount", MONEY, nullable=False),
        sa.Column("fee_amount", MONEY),
        sa.Column("fee_currency", sa.String(length=8)),
        sa.Column("fee_account_id", sa.Integer(), sa.ForeignKey("finance_accounts.id")),
        sa.Column(
            "fee_method_id", sa.Integer(), sa.ForeignKey("finance_payment_methods.id")
        ),
        sa.Column("fee_note", sa.Text()),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
    )

    op.create_table(
        "finance_account_adjustments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("finance_accounts.id")),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(length=120), nullable=False),
        sa.Column("note", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "client_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column(
            "status", sa.String(length=20), nullable=False, server_default="pendiente"
        ),
        *_timestamps(),
    )

    op.create_table(
        "operator_dues",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("service_id", sa.Integer(), sa.ForeignKey("services.id"), nullable=False),
        sa.Column("concept", sa.String(length=300), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column(
            "status", sa.String(length=20), nullable=False, server_default="pendiente"
        ),
        *_timestamps(),
    )

    op.create_table(
        "credit_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("agency_credit_account_id", sa.Integer()),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id")),
        sa.Column("operator_id", sa.Integer(), sa.ForeignKey("operators.id")),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("balance", MONEY, nullable=False, server_default="0"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "credit_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("agency_credit_entry_id", sa.Integer()),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("credit_accounts.id"), nullable=False
        ),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("concept", sa.String(length=300), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("doc_type", sa.String(length=40), nullable=False),
        sa.Column("reference", sa.String(length=80)),
        sa.Column("value_date", sa.Date()),
        sa.Column("investment_id", sa.Integer(), sa.ForeignKey("investments.id")),
        *_timestamps(),
    )


def downgrade():
    for table in (
        "credit_entries",
        "credit_accounts",
        "operator_dues",
        "client_payments",
        "finance_account_adjustments",
        "finance_transfers",
        "finance_account_opening_balances",
        "investment_service_allocations",
        "investment_payments",
        "investments",
        "recurring_investments",
        "other_income_payments",
        "other_incomes",
        "receipt_service_allocations",
        "receipts",
        "finance_payment_methods",
        "finance_accounts",
        "services",
        "booking_clients",
        "bookings",
        "clients",
        "operators",
        "finance_configs",
        "finance_section_grants",
        "users",
        "agencies",
    ):
        op.drop_table(table)
