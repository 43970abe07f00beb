from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .balance import compute_balance, compute_balances_by_customer
from .errors import NotFoundError, StorageError, ValidationError
from .models import Customer, Transaction, TransactionType
from .schemas import (
    normalize_optional_phone,
    normalize_optional_text,
    normalize_required_name,
    validate_positive_amount,
)
from .timezone_utils import ensure_local_datetime, now_local

logger = logging.getLogger(__name__)


@contextmanager
def _write_guard(session: Session, action: str) -> Iterator[None]:
    """Commit on success, roll back on any failure.

    Database failures are logged with their stack trace and re-raised as
    StorageError so callers only ever see the generic message.
    """
    try:
        yield
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Storage failure during %s", action)
        raise StorageError() from exc
    except Exception:
        session.rollback()
        raise


def _clean_field(normalizer: Callable[[Any], Any], value: Any, field: str) -> Any:
    try:
        return normalizer(value)
    except ValueError as exc:
        message = str(exc)
        raise ValidationError(message, errors=[{"field": field, "message": message}]) from exc


def _validate_type(value: Union[TransactionType, str]) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError as exc:
        raise ValidationError(
            "Type must be debt or payment",
            errors=[{"field": "type", "message": "Type must be debt or payment"}],
        ) from exc


def _validate_amount(value: Any) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Amount must be a number", errors=[{"field": "amount", "message": "Amount must be a number"}]) from exc
    return _clean_field(validate_positive_amount, amount, "amount")


def _customer_fields(name: Optional[str], phone: Optional[str], address: Optional[str]) -> Dict[str, Optional[str]]:
    return {
        "name": _clean_field(normalize_required_name, name, "name"),
        "phone": _clean_field(normalize_optional_phone, phone, "phone"),
        "address": _clean_field(normalize_optional_text, address, "address"),
    }


# --------------------------------------------------------------------------
# Customers
# --------------------------------------------------------------------------


def get_customer(session: Session, customer_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError("Customer not found")
    return customer


def list_customers(session: Session) -> List[Customer]:
    return session.exec(select(Customer).order_by(func.lower(Customer.name), Customer.id)).all()


def list_customers_with_balances(session: Session) -> List[Tuple[Customer, float]]:
    customers = list_customers(session)
    ids = [customer.id for customer in customers]
    if not ids:
        return []
    rows = session.exec(select(Transaction).where(Transaction.customer_id.in_(ids))).all()
    balances = compute_balances_by_customer(rows)
    return [(customer, balances.get(customer.id, 0.0)) for customer in customers]


def create_customer(
    session: Session,
    *,
    name: str,
    phone: Optional[str] = None,
    address: Optional[str] = None,
) -> Customer:
    fields = _customer_fields(name, phone, address)
    now = now_local()
    customer = Customer(**fields, created_at=now, updated_at=now)
    with _write_guard(session, "create_customer"):
        session.add(customer)
    session.refresh(customer)
    logger.info("Created customer %s", customer.id)
    return customer


def update_customer(
    session: Session,
    customer_id: int,
    *,
    name: str,
    phone: Optional[str] = None,
    address: Optional[str] = None,
) -> Customer:
    """Replace every mutable customer field; omitted optional fields are cleared."""
    customer = get_customer(session, customer_id)
    fields = _customer_fields(name, phone, address)
    for key, value in fields.items():
        setattr(customer, key, value)
    customer.updated_at = now_local()
    with _write_guard(session, "update_customer"):
        session.add(customer)
    session.refresh(customer)
    logger.info("Updated customer %s", customer.id)
    return customer


def delete_customer(session: Session, customer_id: int) -> None:
    customer = get_customer(session, customer_id)
    # transactions are intentionally left in place, see scripts/audit_consistency.py
    remaining = session.exec(
        select(func.count(Transaction.id)).where(Transaction.customer_id == customer_id)
    ).one()
    with _write_guard(session, "delete_customer"):
        session.delete(customer)
    if remaining:
        logger.warning("Deleted customer %s leaving %s orphaned transactions", customer_id, remaining)
    else:
        logger.info("Deleted customer %s", customer_id)


# --------------------------------------------------------------------------
# Transactions
# --------------------------------------------------------------------------


def get_customer_balance(session: Session, customer_id: int) -> float:
    """Recompute a customer's balance from every stored transaction."""
    rows = session.exec(select(Transaction).where(Transaction.customer_id == customer_id)).all()
    return compute_balance(rows)


def get_transaction(session: Session, transaction_id: int) -> Transaction:
    txn = session.get(Transaction, transaction_id)
    if not txn:
        raise NotFoundError("Transaction not found")
    return txn


def list_transactions_by_customer(session: Session, customer_id: int) -> List[Transaction]:
    stmt = (
        select(Transaction)
        .where(Transaction.customer_id == customer_id)
        .order_by(Transaction.date.desc(), Transaction.id.desc())
    )
    return session.exec(stmt).all()


def create_transaction(
    session: Session,
    customer_id: int,
    type: Union[TransactionType, str],
    amount: float,
    description: Optional[str] = None,
    date: Optional[datetime] = None,
) -> Tuple[Transaction, float]:
    txn_type = _validate_type(type)
    txn_amount = _validate_amount(amount)
    get_customer(session, customer_id)
    now = now_local()
    txn = Transaction(
        customer_id=customer_id,
        type=txn_type,
        amount=txn_amount,
        description=_clean_field(normalize_optional_text, description, "description"),
        date=ensure_local_datetime(date) or now,
        created_at=now,
        updated_at=now,
    )
    with _write_guard(session, "create_transaction"):
        session.add(txn)
        session.flush()
        balance = get_customer_balance(session, customer_id)
    session.refresh(txn)
    logger.info(
        "Created %s transaction %s of %.2f for customer %s; balance %.2f",
        txn_type.value,
        txn.id,
        txn_amount,
        customer_id,
        balance,
    )
    return txn, balance


def update_transaction(
    session: Session,
    transaction_id: int,
    type: Union[TransactionType, str],
    amount: float,
    description: Optional[str] = None,
    date: Optional[datetime] = None,
) -> Tuple[Transaction, float]:
    """Replace type, amount, description and date of a transaction.

    The owning customer never changes. An omitted description is cleared and an
    omitted date falls back to the transaction's creation time. The returned
    balance is recomputed from the post-update transaction set.
    """
    txn = get_transaction(session, transaction_id)
    txn_type = _validate_type(type)
    txn_amount = _validate_amount(amount)
    txn_description = _clean_field(normalize_optional_text, description, "description")
    txn.type = txn_type
    txn.amount = txn_amount
    txn.description = txn_description
    txn.date = ensure_local_datetime(date) or ensure_local_datetime(txn.created_at)
    txn.updated_at = now_local()
    customer_id = txn.customer_id
    with _write_guard(session, "update_transaction"):
        session.add(txn)
        session.flush()
        balance = get_customer_balance(session, customer_id)
    session.refresh(txn)
    logger.info("Updated transaction %s for customer %s; balance %.2f", txn.id, customer_id, balance)
    return txn, balance


def delete_transaction(session: Session, transaction_id: int) -> Tuple[int, float]:
    """Remove a transaction and return ``(customer_id, balance)`` for the remaining set."""
    txn = get_transaction(session, transaction_id)
    customer_id = txn.customer_id
    with _write_guard(session, "delete_transaction"):
        session.delete(txn)
        session.flush()
        balance = get_customer_balance(session, customer_id)
    logger.info("Deleted transaction %s for customer %s; balance %.2f", transaction_id, customer_id, balance)
    return customer_id, balance
