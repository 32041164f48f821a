"""Application-level exception types.

This module defines domain errors used across the store, the HTTP
integration and the exception handlers, enabling consistent error handling,
logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional so each error only carries what is relevant.
    """

    code: str
    message: str
    hint: str
    field: str
    min_value: int
    actual_value: Any
    http_status: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidConfigError(ValidationAppError):
    """Raised when a rate limit config has a non-positive window or quota."""

    @classmethod
    def for_field(cls, field: str, value: Any) -> "InvalidConfigError":
        return cls(
            code="invalid_config",
            message=f"{field} must be a positive integer",
            details={"field": field, "min_value": 1, "actual_value": value},
        )
