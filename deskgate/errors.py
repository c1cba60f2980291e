"""deskgate error types.

Every error carries a stable ``code``, an HTTP ``status_code`` and optional
``details``; the API layer renders them as::

    {"error": {"code": ..., "message": ..., "details": {...}}}
"""

from __future__ import annotations

from typing import Any


class DeskgateError(Exception):
    """Base class for all deskgate errors."""

    code: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str = "", *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message or self.code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(DeskgateError):
    """Session (or container) does not exist."""

    code = "not_found"
    status_code = 404


class UnauthorizedError(DeskgateError):
    """No valid principal session cookie."""

    code = "unauthorized"
    status_code = 401


class ForbiddenError(DeskgateError):
    """Principal is not the owner, or not an admin."""

    code = "forbidden"
    status_code = 403


class ProvisioningError(DeskgateError):
    """A step of session creation failed; resources were rolled back."""

    code = "provisioning_failed"
    status_code = 500
