"""Balance derivation for customer ledgers.

A customer's balance is never stored. It is always derived from the full set
of that customer's transactions::

    balance = sum(debt amounts) - sum(payment amounts)

Positive means the customer owes the shop, negative means the shop holds a
credit for the customer, zero means settled. Everything here is pure: no
database access, no clock, no I/O.
"""

from __future__ import annotations

import os
from collections import defaultdict
from decimal import Decimal, localcontext
from typing import Any, Dict, Iterable, NamedTuple, Union

from .models import TransactionType

CURRENCY_SYMBOL = os.getenv("LEDGER_CURRENCY_SYMBOL", "₹")
CENT = Decimal("0.01")

AmountLike = Union[int, float, Decimal]


class BalanceEntry(NamedTuple):
    type: TransactionType
    amount: AmountLike


def _to_decimal(amount: AmountLike) -> Decimal:
    # str() keeps the shortest repr of a float, so 0.1 stays 0.1 instead of its binary expansion
    return amount if isinstance(amount, Decimal) else Decimal(str(amount))


def signed_amount(txn_type: Union[TransactionType, str], amount: AmountLike) -> Decimal:
    """Contribution of a single transaction to its customer's balance."""
    value = _to_decimal(amount)
    if TransactionType(txn_type) == TransactionType.PAYMENT:
        return -value
    return value


def _sum_entries(transactions: Iterable[Any]) -> Decimal:
    total = Decimal("0")
    for txn in transactions:
        total += signed_amount(txn.type, txn.amount)
    return total


def _as_float(total: Decimal) -> float:
    with localcontext() as ctx:
        # enough digits for the integer part plus cents
        ctx.prec = max(ctx.prec, total.adjusted() + 3)
        quantized = total.quantize(CENT)
    # normalise -0.00 to 0.0
    return float(quantized) + 0.0


def compute_balance(transactions: Iterable[Any]) -> float:
    """Balance of one customer's transactions.

    Accepts any iterable of objects exposing ``type`` and ``amount``. Order is
    irrelevant and an empty iterable yields ``0.0``.
    """
    return _as_float(_sum_entries(transactions))


def compute_balances_by_customer(transactions: Iterable[Any]) -> Dict[int, float]:
    grouped: Dict[int, list] = defaultdict(list)
    for txn in transactions:
        grouped[txn.customer_id].append(txn)
    return {customer_id: compute_balance(rows) for customer_id, rows in grouped.items()}


def balance_status(balance: float) -> str:
    if balance > 0:
        return "debt"
    if balance < 0:
        return "credit"
    return "neutral"


def format_balance(balance: float, currency_symbol: str = CURRENCY_SYMBOL) -> str:
    """Human label for a balance, e.g. ``Owes ₹400.00``."""
    amount = f"{currency_symbol}{abs(balance):.2f}"
    status = balance_status(balance)
    if status == "debt":
        return f"Owes {amount}"
    if status == "credit":
        return f"Credit {amount}"
    return f"Clear {amount}"
