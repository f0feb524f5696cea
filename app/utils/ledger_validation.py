"""Ledger validation utilities."""
import math
from numbers import Real
from typing import Any, Optional

from app.models.ledger import PaymentMethod


class LedgerValidationError(Exception):
    """Rejected input for a ledger write. Raised before any I/O happens."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Invalid {field}")


class UpstreamError(Exception):
    """The ledger store failed to answer a fetch or write."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Ledger store {operation} failed: {message}")


def validate_amount(amount: Any, field: str = "amount") -> float:
    """
    Validate a payment amount.

    Rules:
    - must be a real number (bools and strings are rejected)
    - must be finite
    - must be strictly positive
    """
    if isinstance(amount, bool) or not isinstance(amount, Real):
        raise LedgerValidationError(field, f"{field} must be a number, got {amount!r}")

    value = float(amount)
    if not math.isfinite(value):
        raise LedgerValidationError(field, f"{field} must be finite, got {value}")
    if value <= 0:
        raise LedgerValidationError(field, f"{field} must be positive, got {value}")
    return value


def validate_method(method: Any) -> PaymentMethod:
    """Payment method must be cash or bank."""
    try:
        return PaymentMethod(str(getattr(method, "value", method)).strip().lower())
    except ValueError:
        raise LedgerValidationError(
            "method",
            f"Payment method must be one of {[m.value for m in PaymentMethod]}, got {method!r}"
        )


def validate_counterparty(counterparty_id: Any) -> str:
    if counterparty_id is None or not str(counterparty_id).strip():
        raise LedgerValidationError("counterparty", "A counterparty is required")
    return str(counterparty_id).strip()
