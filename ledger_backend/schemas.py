from __future__ import annotations

import math
import re
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from .models import TransactionType
from .timezone_utils import LOCAL_TZ, ensure_local_datetime, parse_datetime_value

PHONE_RE = re.compile(r"^\+?[\d\s\-().]+$")
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15

# same range as a NUMERIC(10, 2) money column
AMOUNT_MAX = 99_999_999.99
AMOUNT_DECIMAL_PLACES = 2


def normalize_required_name(value: Optional[str]) -> str:
    if value is not None and not isinstance(value, str):
        raise ValueError("Name must be text")
    trimmed = (value or "").strip()
    if not trimmed:
        raise ValueError("Name is required")
    return trimmed


def normalize_optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not isinstance(value, str):
        raise ValueError("Value must be text")
    trimmed = value.strip()
    return trimmed or None


def normalize_optional_phone(value: Optional[str]) -> Optional[str]:
    trimmed = normalize_optional_text(value)
    if trimmed is None:
        return None
    digits = sum(1 for ch in trimmed if ch.isdigit())
    if not PHONE_RE.match(trimmed) or not PHONE_MIN_DIGITS <= digits <= PHONE_MAX_DIGITS:
        raise ValueError("Invalid phone")
    return trimmed


def validate_positive_amount(value: float) -> float:
    if value is None or not math.isfinite(value) or value <= 0:
        raise ValueError("Amount must be > 0")
    if value > AMOUNT_MAX:
        raise ValueError(f"Amount must be at most {AMOUNT_MAX:.2f}")
    if Decimal(str(value)).as_tuple().exponent < -AMOUNT_DECIMAL_PLACES:
        raise ValueError("Amount must have at most 2 decimal places")
    return value


def parse_optional_datetime(value):
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return ensure_local_datetime(value)
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time(), tzinfo=LOCAL_TZ)
    if isinstance(value, str):
        try:
            return parse_datetime_value(value)
        except ValueError as exc:
            raise ValueError("date must be ISO 8601 date/datetime") from exc
    raise ValueError("Unsupported date value")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CustomerCreate(CamelModel):
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, value):
        return normalize_required_name(value)

    @field_validator("phone", mode="before")
    @classmethod
    def validate_phone(cls, value):
        return normalize_optional_phone(value)

    @field_validator("address", mode="before")
    @classmethod
    def validate_address(cls, value):
        return normalize_optional_text(value)


class CustomerUpdate(CustomerCreate):
    """Full replacement: omitted optional fields are cleared."""


class CustomerRead(CamelModel):
    id: int
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    current_balance: float = 0.0
    balance_status: str = "neutral"
    balance_label: str = ""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    @field_validator("created_at", "updated_at")
    @classmethod
    def localize(cls, value: datetime) -> datetime:
        return ensure_local_datetime(value)


class CustomerResponse(CamelModel):
    success: bool = True
    customer: CustomerRead


class CustomerListResponse(CamelModel):
    success: bool = True
    customers: List[CustomerRead]


class DeleteResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None


class TransactionUpdate(CamelModel):
    type: TransactionType
    amount: float
    description: Optional[str] = None
    date: Optional[datetime] = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, value: float) -> float:
        return validate_positive_amount(value)

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, value):
        return normalize_optional_text(value)

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, value):
        return parse_optional_datetime(value)


class TransactionCreate(TransactionUpdate):
    customer_id: int

    @field_validator("customer_id")
    @classmethod
    def validate_customer_id(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Valid customerId required")
        return value


class TransactionRead(CamelModel):
    id: int
    customer_id: int
    type: TransactionType
    amount: float
    description: Optional[str] = None
    date: datetime
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    @field_validator("date", "created_at", "updated_at")
    @classmethod
    def localize(cls, value: datetime) -> datetime:
        return ensure_local_datetime(value)


class TransactionMutationResponse(TransactionRead):
    success: bool = True
    current_balance: float


class TransactionDeleteResponse(CamelModel):
    success: bool = True
    current_balance: float
    message: Optional[str] = None


class TransactionListResponse(CamelModel):
    success: bool = True
    txns: List[TransactionRead]


class LoginRequest(CamelModel):
    username: str
    password: str


class UserRead(CamelModel):
    id: int
    username: str
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class LoginResponse(CamelModel):
    success: bool = True
    token: str
    token_type: str = "bearer"
    user: UserRead


class UserResponse(CamelModel):
    success: bool = True
    user: UserRead


class HealthResponse(CamelModel):
    success: bool = True
    status: str = "ok"
