from __future__ import annotations

import logging
import os
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .errors import AuthError, NotFoundError, ValidationError
from .models import User
from .security import TokenExpired, create_access_token, decode_token, hash_password, verify_password
from .timezone_utils import now_local

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_USERNAME = os.getenv("LEDGER_ADMIN_USERNAME", "admin")
DEFAULT_ADMIN_PASSWORD = os.getenv("LEDGER_ADMIN_PASSWORD", "password123")


def _normalize_username(username: str) -> str:
    return (username or "").strip().lower()


def ensure_default_admin(session: Session) -> User:
    existing = session.exec(select(User)).first()
    if existing:
        return existing
    username = _normalize_username(DEFAULT_ADMIN_USERNAME)
    if not username:
        raise RuntimeError("Default admin username is empty; set LEDGER_ADMIN_USERNAME")
    password = DEFAULT_ADMIN_PASSWORD.strip()
    if not password:
        raise RuntimeError("Default admin password is empty; set LEDGER_ADMIN_PASSWORD")
    admin = create_user(session, username=username, password=password)
    logger.warning("Created default admin '%s'. Please change the password immediately.", username)
    return admin


def list_users(session: Session) -> List[User]:
    return session.exec(select(User).order_by(User.created_at.asc())).all()


def get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def get_user_by_username(session: Session, username: str) -> Optional[User]:
    normalized = _normalize_username(username)
    if not normalized:
        return None
    return session.exec(select(User).where(User.username == normalized)).first()


def create_user(session: Session, *, username: str, password: str, is_active: bool = True) -> User:
    normalized = _normalize_username(username)
    if not normalized:
        raise ValidationError("Username is required")
    if not password:
        raise ValidationError("Password is required")
    if get_user_by_username(session, normalized):
        raise ValidationError("Username already exists")
    now = now_local()
    user = User(
        username=normalized,
        password_hash=hash_password(password),
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ValidationError("Username already exists") from exc
    session.refresh(user)
    return user


def set_user_active(session: Session, user_id: int, is_active: bool) -> User:
    user = get_user(session, user_id)
    user.is_active = is_active
    user.updated_at = now_local()
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def reset_user_password(session: Session, user_id: int, new_password: str) -> User:
    if not new_password:
        raise ValidationError("Password is required")
    user = get_user(session, user_id)
    user.password_hash = hash_password(new_password)
    user.updated_at = now_local()
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def authenticate_user(session: Session, *, username: str, password: str) -> Optional[User]:
    user = get_user_by_username(session, username)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def issue_access_token(user: User) -> str:
    return create_access_token({"sub": str(user.id)})


def get_user_by_token(session: Session, token: Optional[str]) -> User:
    """Resolve a bearer token to an active user or raise AuthError."""
    if not token:
        raise AuthError("No token provided")
    try:
        payload = decode_token(token)
    except TokenExpired as exc:
        raise AuthError("Token expired") from exc
    except ValueError as exc:
        raise AuthError("Invalid token") from exc
    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise AuthError("Invalid token subject") from exc
    user = session.get(User, user_id)
    if not user or not user.is_active:
        raise AuthError("Invalid token")
    return user
