from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from .timezone_utils import now_local


class TransactionType(str, Enum):
    DEBT = "debt"
    PAYMENT = "payment"


class Customer(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime = Field(default_factory=now_local)
    updated_at: datetime = Field(default_factory=now_local)


class Transaction(SQLModel, table=True):
    __tablename__ = "ledger_transaction"

    id: Optional[int] = Field(default=None, primary_key=True)
    # plain indexed reference: deleting a customer leaves its transactions in place
    customer_id: int = Field(index=True)
    type: TransactionType
    amount: float
    description: Optional[str] = None
    date: datetime = Field(default_factory=now_local, index=True)
    created_at: datetime = Field(default_factory=now_local)
    updated_at: datetime = Field(default_factory=now_local)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_local)
    updated_at: datetime = Field(default_factory=now_local)
