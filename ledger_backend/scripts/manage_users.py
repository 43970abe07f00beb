from __future__ import annotations

import argparse
import getpass
from typing import Iterable, Optional

from sqlmodel import Session

from .. import auth
from ..database import engine, init_db
from ..errors import LedgerError
from ..logging_config import setup_logging


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage login users for the ledger backend")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", help="Create a new user")
    create.add_argument("username")
    create.add_argument("--password", help="Password (prompted when omitted)")

    reset = subparsers.add_parser("reset-password", help="Set a new password for a user")
    reset.add_argument("username")
    reset.add_argument("--password", help="Password (prompted when omitted)")

    for name, help_text in (("disable", "Block a user from logging in"), ("enable", "Allow a user to log in again")):
        toggle = subparsers.add_parser(name, help=help_text)
        toggle.add_argument("username")

    subparsers.add_parser("list", help="List users")
    return parser.parse_args(list(argv) if argv is not None else None)


def _password(value: Optional[str]) -> str:
    return value if value else getpass.getpass("Password: ")


def run(session: Session, args: argparse.Namespace) -> str:
    if args.command == "list":
        users = auth.list_users(session)
        if not users:
            return "No users."
        return "\n".join(f"{user.id:>4} {user.username} {'active' if user.is_active else 'disabled'}" for user in users)
    if args.command == "create":
        user = auth.create_user(session, username=args.username, password=_password(args.password))
        return f"Created user '{user.username}' (id {user.id})"

    user = auth.get_user_by_username(session, args.username)
    if not user:
        raise LedgerError(f"User '{args.username}' not found")
    if args.command == "reset-password":
        auth.reset_user_password(session, user.id, _password(args.password))
        return f"Password updated for '{user.username}'"
    is_active = args.command == "enable"
    auth.set_user_active(session, user.id, is_active)
    return f"User '{user.username}' {'enabled' if is_active else 'disabled'}"


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    init_db()
    with Session(engine) as session:
        try:
            print(run(session, args))
        except LedgerError as exc:
            print(f"Error: {exc.message}")
            return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
