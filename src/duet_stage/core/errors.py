"""Typed error hierarchy shared by the state machines and the transports.

Every error carries a stable ``code`` for clients, a ``category`` from the
taxonomy below and the HTTP status used when it surfaces through REST.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """High-level error categories."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"


class DuetError(Exception):
    """Base exception for all rejected operations."""

    code = "ERROR"
    category = ErrorCategory.VALIDATION
    http_status = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_event(self) -> dict[str, Any]:
        """Return the payload of an outbound ``error`` event."""
        return {
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
        }

    def to_response(self) -> dict[str, Any]:
        """Return the REST error envelope."""
        return {"error": self.to_event()}


class ValidationFailedError(DuetError):
    """Malformed input rejected before it reaches the core."""

    code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION
    http_status = 400


class ConflictError(DuetError):
    """Self-action, duplicate request, already-friends or wrong actor."""

    code = "CONFLICT"
    category = ErrorCategory.CONFLICT
    http_status = 409


class NotFoundError(DuetError):
    """Unknown identifier."""

    code = "NOT_FOUND"
    category = ErrorCategory.NOT_FOUND
    http_status = 404


class UnauthorizedError(DuetError):
    """Caller is not a participant, or the pair is blocked."""

    code = "UNAUTHORIZED"
    category = ErrorCategory.UNAUTHORIZED
    http_status = 403
