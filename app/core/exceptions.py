"""
Base exception classes for application-wide error handling.

Every domain exception carries a machine-readable error code that the API
layer maps to an HTTP status, so clients can branch on the code rather
than on the message.

Exception Hierarchy:
    BaseApplicationError (base)
    └── ConflictError - Operation conflicts with current state

Usage:
    from core.exceptions import BaseApplicationError

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=400)

Note:
    These exceptions are for domain/business logic errors.
    DRF handles API-layer exceptions (serialization, authentication, etc.).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, current state, etc.)

    Example:
        try:
            ...
        except PaymentNotFoundError as e:
            logger.warning(f"Payment not found: {e.error_code}")
            return Response(e.to_dict(), status=404)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Payment 7c1e... not found",
                "error_code": "PAYMENT_NOT_FOUND",
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Invalid state transitions
    - Concurrent modification conflicts

    Example:
        if payment.status != PaymentStatus.COMPLETED:
            raise ConflictError(
                f"Cannot release payment in {payment.status} status",
                error_code="INVALID_STATE_TRANSITION",
                details={"current_status": payment.status},
            )
    """

    default_error_code: str = "CONFLICT"
