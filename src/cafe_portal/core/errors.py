# src/cafe_portal/core/errors.py

"""
Error types surfaced by the portal core.

Every operation either fully applies its effect or raises one of these with no
observable mutation. The API layer maps `code` onto its own status codes.
"""

from __future__ import annotations

from typing import Any


class PortalError(Exception):
    """Base class for all typed portal failures."""

    code = "error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = dict(details or {})
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            out["details"] = dict(self.details)
        return out


class ValidationError(PortalError):
    """Malformed input. Not retryable."""

    code = "validation"


class NotFoundError(PortalError):
    code = "not_found"


class ConflictError(PortalError):
    """
    State precondition violated (e.g. task already claimed).

    Callers may retry against a different entity, but must not blindly retry
    the same operation.
    """

    code = "conflict"


class InvalidTransitionError(PortalError):
    code = "invalid_transition"


class ExpiredError(PortalError):
    """Session or verification code is past its expiry."""

    code = "expired"


class ForbiddenError(PortalError):
    """The session's role does not allow the operation."""

    code = "forbidden"
