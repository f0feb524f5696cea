import pytest
from app.models.ledger import PaymentMethod
from app.utils.ledger_validation import (
    LedgerValidationError,
    UpstreamError,
    validate_amount,
    validate_counterparty,
    validate_method,
)


def test_validate_amount_accepts_positive_numbers():
    assert validate_amount(100) == 100.0
    assert validate_amount(0.01) == 0.01


@pytest.mark.parametrize("amount", [0, -1, float("nan"), float("-inf"), "50", None, False])
def test_validate_amount_rejects(amount):
    with pytest.raises(LedgerValidationError) as exc_info:
        validate_amount(amount)
    assert exc_info.value.field == "amount"


def test_validate_amount_custom_field():
    with pytest.raises(LedgerValidationError) as exc_info:
        validate_amount(-3, field="cashAmount")
    assert exc_info.value.field == "cashAmount"
    assert "cashAmount" in str(exc_info.value)


def test_validate_method_normalizes_case():
    assert validate_method("Cash") == PaymentMethod.CASH
    assert validate_method(" bank ") == PaymentMethod.BANK
    assert validate_method(PaymentMethod.BANK) == PaymentMethod.BANK


def test_validate_method_rejects_unknown():
    with pytest.raises(LedgerValidationError) as exc_info:
        validate_method("cheque")
    assert exc_info.value.field == "method"


def test_validate_counterparty():
    assert validate_counterparty(" sup-1 ") == "sup-1"
    with pytest.raises(LedgerValidationError):
        validate_counterparty(None)


def test_upstream_error_message():
    exc = UpstreamError("fetch", "timed out")
    assert exc.operation == "fetch"
    assert str(exc) == "Ledger store fetch failed: timed out"
