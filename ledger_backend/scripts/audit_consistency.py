from __future__ import annotations

import argparse
import json
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import String, cast
from sqlmodel import Session, select

from ..balance import compute_balance, format_balance
from ..database import engine
from ..logging_config import setup_logging
from ..models import Customer, Transaction, TransactionType

# the Enum column stores member names; accept values too for rows written by hand
KNOWN_TYPES = {member.name for member in TransactionType} | {member.value for member in TransactionType}


@dataclass
class AuditIssue:
    severity: str
    category: str
    entity: str
    entity_id: Optional[int]
    message: str
    details: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "severity": self.severity,
            "category": self.category,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass
class AuditReport:
    stats: Dict[str, int]
    issues: List[AuditIssue]
    balances: Dict[int, float] = field(default_factory=dict)

    @property
    def issue_count(self) -> int:
        return len(self.issues)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stats": self.stats,
            "issue_count": self.issue_count,
            "issues": [issue.as_dict() for issue in self.issues],
            "balances": {str(key): value for key, value in self.balances.items()},
        }


def run_audit(session: Session) -> AuditReport:
    customers = session.exec(select(Customer)).all()
    customer_ids = {customer.id for customer in customers}
    issues: List[AuditIssue] = []

    # raw strings so rows with an unreadable type can still be reported
    raw_types = session.exec(select(Transaction.id, cast(Transaction.type, String))).all()
    bad_type_ids = []
    for txn_id, raw_type in raw_types:
        if raw_type not in KNOWN_TYPES:
            bad_type_ids.append(txn_id)
            issues.append(
                AuditIssue(
                    severity="error",
                    category="transaction_type",
                    entity="transaction",
                    entity_id=txn_id,
                    message="type is neither debt nor payment",
                    details={"type": raw_type},
                )
            )

    stmt = select(Transaction)
    if bad_type_ids:
        stmt = stmt.where(Transaction.id.not_in(bad_type_ids))
    transactions = session.exec(stmt).all()

    valid_by_customer: Dict[int, List[Transaction]] = defaultdict(list)
    orphan_count = 0

    for txn in transactions:
        well_formed = True
        amount = txn.amount
        if amount is None or not math.isfinite(amount) or amount <= 0:
            well_formed = False
            issues.append(
                AuditIssue(
                    severity="error",
                    category="transaction_amount",
                    entity="transaction",
                    entity_id=txn.id,
                    message="amount is not strictly positive",
                    details={"amount": amount},
                )
            )
        if txn.customer_id not in customer_ids:
            orphan_count += 1
            issues.append(
                AuditIssue(
                    severity="warning",
                    category="orphaned_transaction",
                    entity="transaction",
                    entity_id=txn.id,
                    message="customer no longer exists",
                    details={"customer_id": txn.customer_id},
                )
            )
            continue
        if well_formed:
            valid_by_customer[txn.customer_id].append(txn)

    balances = {
        customer.id: compute_balance(valid_by_customer.get(customer.id, [])) for customer in customers
    }
    stats = {
        "customers": len(customers),
        "transactions": len(raw_types),
        "orphaned_transactions": orphan_count,
    }
    return AuditReport(stats=stats, issues=issues, balances=balances)


def format_issue(issue: AuditIssue) -> str:
    prefix = f"[{issue.severity.upper()}] {issue.entity}#{issue.entity_id or '-'} {issue.category}"
    if issue.details:
        return f"{prefix}: {issue.message} | {json.dumps(issue.details, ensure_ascii=False)}"
    return f"{prefix}: {issue.message}"


def print_report(report: AuditReport, *, show_balances: bool = False) -> None:
    stats = report.stats
    print(
        "Audited customers={customers}, transactions={transactions}, orphaned={orphaned_transactions}".format(
            **stats
        )
    )
    if show_balances:
        for customer_id, balance in sorted(report.balances.items()):
            print(f"  customer#{customer_id}: {format_balance(balance)}")
    if not report.issues:
        print("No consistency issues detected.")
        return
    print(f"Found {report.issue_count} issues:")
    for idx, issue in enumerate(report.issues, start=1):
        print(f"{idx:02d}. {format_issue(issue)}")


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Audit data consistency for the ledger backend")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the audit report as JSON",
    )
    parser.add_argument(
        "--balances",
        action="store_true",
        help="Also print every customer's recomputed balance",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging("WARNING")
    with Session(engine) as session:
        report = run_audit(session)
    if args.json:
        print(json.dumps(report.as_dict(), ensure_ascii=False, indent=2))
    else:
        print_report(report, show_balances=args.balances)
    return 1 if report.issue_count else 0


if __name__ == "__main__":
    raise SystemExit(main())
