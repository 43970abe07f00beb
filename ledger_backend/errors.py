"""Error taxonomy shared by the ledger service and the API layer."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_payload(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message}


class ValidationError(LedgerError):
    """Raised when a field is malformed, missing or out of range."""

    status_code = 400
    default_message = "Invalid data"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    def as_payload(self) -> Dict[str, Any]:
        payload = super().as_payload()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class NotFoundError(LedgerError):
    """Raised when an id does not resolve to a stored record."""

    status_code = 404
    default_message = "Not found"


class AuthError(LedgerError):
    """Raised for missing, invalid or expired tokens and bad credentials."""

    status_code = 401
    default_message = "Not authenticated"


class StorageError(LedgerError):
    """Raised when the database fails unexpectedly."""

    status_code = 500
    default_message = "Server error"
