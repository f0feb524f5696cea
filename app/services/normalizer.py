"""
Entry normalizer.

Turns raw ledger entries (whatever shape the store returned) into
NormalizedTransaction records. Data-shape problems are absorbed with
deterministic defaults and recorded on the record, never raised.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from app.models.base import _utcnow
from app.models.ledger import (
    LedgerEntry,
    NormalizedTransaction,
    PaymentMethod,
    Ref,
    SETTLEMENT_TYPES,
    TransactionType,
)

logger = logging.getLogger(__name__)

UNKNOWN_COUNTERPARTY = "Unknown"
NO_REFERENCE = "-"

RawEntry = Union[LedgerEntry, Mapping[str, Any]]

_TRANSACTION_TYPES = {t.value for t in TransactionType}


def _as_entry(raw: RawEntry) -> LedgerEntry:
    if isinstance(raw, LedgerEntry):
        return raw
    return LedgerEntry.model_validate(dict(raw))


def _transaction_type(entry: LedgerEntry) -> str:
    if entry.transaction_type:
        return entry.transaction_type
    # Older entries carry the transaction type in ``type``
    legacy = (entry.ledger_type or "").lower()
    return legacy if legacy in _TRANSACTION_TYPES else "unknown"


def _ledger_type(entry: LedgerEntry) -> Optional[str]:
    if entry.ledger_type and entry.ledger_type.lower() not in _TRANSACTION_TYPES:
        return entry.ledger_type.lower()
    return None


def resolve_counterparty(ref: Optional[Ref]) -> tuple:
    """(id, name) for an entityId. Bare ids leave the name for the caller."""
    if ref is None:
        return None, None
    if ref.is_embedded:
        return ref.id, str(ref.first("name", "company") or UNKNOWN_COUNTERPARTY)
    return ref.id, None


def resolve_reference(ref: Optional[Ref]) -> tuple:
    """(id, label) for a referenceId."""
    if ref is None:
        return None, NO_REFERENCE
    if ref.is_embedded:
        label = ref.first("orderNumber", "purchaseNumber") or ref.id or NO_REFERENCE
        return ref.id, str(label)
    return ref.id, ref.id


def split_payment(entry: LedgerEntry, tx_type: str) -> tuple:
    """
    Attribute a settlement entry to cash and bank.

    With a payment method the whole credit goes to that method; without one
    the paymentDetails breakdown is used, each side defaulting to 0.
    """
    if tx_type not in SETTLEMENT_TYPES:
        return 0.0, 0.0

    if entry.payment_method == PaymentMethod.CASH.value:
        return entry.credit, 0.0
    if entry.payment_method == PaymentMethod.BANK.value:
        return 0.0, entry.credit

    details = entry.payment_details
    if details is None:
        return 0.0, 0.0
    return details.cash_payment, details.bank_payment


def _discount(ref: Optional[Ref], tx_type: str, entry: LedgerEntry) -> float:
    if tx_type == TransactionType.DISCOUNT.value:
        return entry.credit
    if tx_type != TransactionType.PURCHASE.value or ref is None or not ref.is_embedded:
        return 0.0
    value = ref.first("totalDiscount", "discount") or 0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def normalize(raw: RawEntry, sequence: int = 0, now: Optional[datetime] = None) -> NormalizedTransaction:
    """Normalize a single raw entry. The input is never mutated."""
    entry = _as_entry(raw)
    anomalies: List[str] = []

    tx_type = _transaction_type(entry)

    date = entry.date or entry.created_at
    date_missing = date is None
    if date_missing:
        date = now or _utcnow()
        anomalies.append("missing_date")

    counterparty = Ref.from_raw(entry.entity_id)
    counterparty_id, counterparty_name = resolve_counterparty(counterparty)
    if counterparty_id is None:
        anomalies.append("missing_counterparty")

    reference = Ref.from_raw(entry.reference_id)
    reference_id, reference_label = resolve_reference(reference)

    if entry.invalid_amounts:
        anomalies.append("invalid_amount")
    if entry.debit < 0 or entry.credit < 0:
        anomalies.append("negative_amount")

    cash_paid, bank_paid = split_payment(entry, tx_type)

    if anomalies:
        logger.debug(
            "Ledger entry normalized with defaults",
            extra={"entry_id": entry.id, "anomalies": anomalies},
        )

    return NormalizedTransaction(
        id=entry.id,
        date=date,
        created_at=entry.created_at,
        sequence=sequence,
        date_missing=date_missing,
        anomalies=anomalies,
        type=tx_type,
        ledger_type=_ledger_type(entry),
        counterparty_id=counterparty_id,
        counterparty_name=counterparty_name,
        reference_id=reference_id,
        reference_label=reference_label,
        reference_model=entry.reference_model,
        debit=entry.debit,
        credit=entry.credit,
        cash_paid=cash_paid,
        bank_paid=bank_paid,
        return_amount=entry.credit if tx_type == TransactionType.RETURN.value else 0.0,
        discount=_discount(reference, tx_type, entry),
        payment_method=entry.payment_method,
        description=entry.description or entry.notes or "-",
    )


def normalize_entries(raws: Iterable[RawEntry], now: Optional[datetime] = None) -> List[NormalizedTransaction]:
    """Normalize a fetched array, remembering each entry's position in it."""
    # One "now" for the whole batch keeps missing dates tied to input order
    now = now or _utcnow()
    return [normalize(raw, sequence=index, now=now) for index, raw in enumerate(raws)]


def fill_counterparty_names(
    txns: Iterable[NormalizedTransaction],
    names: Dict[str, str],
) -> List[NormalizedTransaction]:
    """Fill names left empty for bare-id counterparties from a side lookup."""
    filled = []
    for txn in txns:
        if txn.counterparty_name is None and txn.counterparty_id in names:
            txn = txn.model_copy(update={"counterparty_name": names[txn.counterparty_id]})
        filled.append(txn)
    return filled
