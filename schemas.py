from datetime import date
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from allocation import parse_service_ids
from models import ExcessAction, FeeMode, MissingAccountAction


class InvestmentPaymentIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: float = Field(..., gt=0)
    payment_method: str = Field(..., min_length=1, max_length=80)
    account: Optional[str] = Field(default=None, max_length=120)
    payment_currency: Optional[str] = Field(default=None, max_length=8)
    fee_mode: Optional[FeeMode] = None
    fee_value: Optional[float] = None
    fee_amount: Optional[float] = None

    @field_validator("fee_mode", mode="before")
    @classmethod
    def _fee_mode(cls, value: Any) -> Optional[str]:
        # unknown modes fall back to an explicit fee_amount
        if not isinstance(value, str):
            return None
        mode = value.strip().upper()
        return mode if mode in {m.value for m in FeeMode} else None


class AllocationIn(BaseModel):
    """One service share of an operator payment.

    Older clients post camelCase keys, accepted here as aliases.
    """

    service_id: int = Field(
        ...,
        gt=0,
        validation_alias=AliasChoices("service_id", "serviceId", "id_service", "idService"),
    )
    booking_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("booking_id", "bookingId")
    )
    payment_currency: Optional[str] = Field(
        default=None,
        max_length=8,
        validation_alias=AliasChoices("payment_currency", "paymentCurrency"),
    )
    service_currency: Optional[str] = Field(
        default=None,
        max_length=8,
        validation_alias=AliasChoices("service_currency", "serviceCurrency"),
    )
    amount_payment: float = Field(
        default=0, validation_alias=AliasChoices("amount_payment", "amountPayment")
    )
    amount_service: float = Field(
        default=0, validation_alias=AliasChoices("amount_service", "amountService")
    )
    fx_rate: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("fx_rate", "fxRate")
    )


class InvestmentIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    category: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1, max_length=300)
    counterparty_name: Optional[str] = Field(default=None, max_length=160)
    amount: Optional[float] = None
    currency: Optional[str] = Field(default=None, max_length=8)
    payments: Optional[list[InvestmentPaymentIn]] = None
    paid_at: Optional[date] = None
    operator_id: Optional[int] = None
    user_id: Optional[int] = None
    booking_id: Optional[int] = None
    booking_agency_id: Optional[int] = None
    service_ids: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("service_ids", "serviceIds"),
    )
    allocations: Optional[list[AllocationIn]] = None
    payment_method: Optional[str] = Field(default=None, max_length=80)
    account: Optional[str] = Field(default=None, max_length=120)
    payment_fee_amount: Optional[float] = Field(default=None, ge=0)
    base_amount: Optional[float] = None
    base_currency: Optional[str] = Field(default=None, max_length=8)
    counter_amount: Optional[float] = None
    counter_currency: Optional[str] = Field(default=None, max_length=8)
    excess_action: Optional[ExcessAction] = None
    excess_missing_account_action: Optional[MissingAccountAction] = None

    @field_validator("service_ids", mode="before")
    @classmethod
    def _service_ids(cls, value: Any) -> list[int]:
        return parse_service_ids(value)


class InvestmentFilters(BaseModel):
    category: Optional[str] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    account: Optional[str] = None
    operator_id: Optional[int] = None
    user_id: Optional[int] = None
    booking_id: Optional[int] = None
    created_from: Optional[date] = None
    created_to: Optional[date] = None
    paid_from: Optional[date] = None
    paid_to: Optional[date] = None
    q: Optional[str] = None
    operator_only: bool = False
    exclude_operator: bool = False
    include_counts: bool = False


class OpeningBalanceIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: int
    currency: str = Field(..., min_length=1, max_length=8)
    amount: float
    effective_date: date
    note: Optional[str] = Field(default=None, max_length=200)
