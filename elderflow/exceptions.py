"""Exceptions raised by the billing core."""

from typing import Any, Dict, Optional

__all__ = [
    "BillingError",
    "InvalidRateError",
    "MalformedInvoiceError",
    "InvalidTransitionError",
    "NoBillableActivityError",
]


class BillingError(Exception):
    """Base exception for billing computations.

    Attributes:
        detail: Human readable message
        extra: Optional data for the caller (ids, offending values)
    """

    def __init__(self, detail: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self.detail = detail
        self.extra = extra or {}
        super().__init__(detail)


class InvalidRateError(BillingError, ValueError):
    """Effective hourly rate is not a positive finite number."""


class MalformedInvoiceError(BillingError, ValueError):
    """Invoice record fails structural validation."""


class InvalidTransitionError(BillingError):
    """Invoice status change not allowed by the lifecycle."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move invoice from '{current}' to '{target}'",
            extra={"current": current, "target": target},
        )


class NoBillableActivityError(BillingError):
    """No billable activities in the requested period."""
