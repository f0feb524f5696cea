"""
Per-reference pending balance resolver.

Groups normalized transactions by the order / purchase / invoice they
relate to and works out what is owed, what has been paid (cash vs bank)
and what remains.

Per group:
- total_amount   = debits of non-settlement entries (the charge itself)
- total_paid     = credits of settlement entries (payments, receipts)
- total_credited = credits of other entries (returns, discounts)
- amount         = total_amount - total_paid - total_credited, never clamped
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from app.models.ledger import (
    NormalizedTransaction,
    PaymentMethod,
    PendingBalanceRecord,
    PendingStatus,
)
from app.schemas.ledger import PendingTotals

logger = logging.getLogger(__name__)

SCOPE_SINGLE = "single"
SCOPE_ALL = "all"


def derive_status(total_paid: float, amount: float) -> PendingStatus:
    if amount <= 0:
        return PendingStatus.PAID
    if total_paid > 0:
        return PendingStatus.PARTIAL
    return PendingStatus.PENDING


def predominant_method(cash_paid: float, bank_paid: float) -> Optional[PaymentMethod]:
    """Method carrying most of what was paid; None until something is paid."""
    if cash_paid <= 0 and bank_paid <= 0:
        return None
    return PaymentMethod.CASH if cash_paid >= bank_paid else PaymentMethod.BANK


def _group_key(txn: NormalizedTransaction, scope: str) -> Tuple[Optional[str], str]:
    if scope == SCOPE_ALL:
        return txn.counterparty_id, txn.reference_id
    return None, txn.reference_id


def _first(values: Iterable, skip=(None, "-")):
    for value in values:
        if value not in skip:
            return value
    return None


def _resolve_group(group: List[NormalizedTransaction]) -> PendingBalanceRecord:
    charges = [txn for txn in group if not txn.is_settlement]
    settlements = [txn for txn in group if txn.is_settlement]

    total_amount = sum(txn.debit for txn in charges)
    total_paid = sum(txn.credit for txn in settlements)
    total_credited = sum(txn.credit for txn in charges)
    cash_paid = sum(txn.cash_paid for txn in settlements)
    bank_paid = sum(txn.bank_paid for txn in settlements)

    # Remaining is taken from exact sums, then every figure is rounded once
    amount = round(total_amount - total_paid - total_credited, 2)

    # Charges describe the reference better than the payments against it
    preferred = charges + settlements
    dates = [txn.date for txn in (charges or settlements)]

    return PendingBalanceRecord(
        reference_id=group[0].reference_id,
        reference_label=_first(txn.reference_label for txn in preferred) or group[0].reference_id,
        reference_model=_first(txn.reference_model for txn in preferred),
        counterparty_id=_first(txn.counterparty_id for txn in preferred),
        counterparty_name=_first(txn.counterparty_name for txn in preferred),
        date=min(dates),
        total_amount=round(total_amount, 2),
        total_paid=round(total_paid, 2),
        cash_paid=round(cash_paid, 2),
        bank_paid=round(bank_paid, 2),
        total_credited=round(total_credited, 2),
        amount=amount,
        payment_type=predominant_method(cash_paid, bank_paid),
        status=derive_status(total_paid, amount),
    )


def resolve_pending_balances(
    txns: Iterable[NormalizedTransaction],
    scope: str = SCOPE_SINGLE,
) -> List[PendingBalanceRecord]:
    """
    One record per reference ("single") or per (counterparty, reference)
    pair ("all"). Entries without a reference are general transactions and
    are left out. Output is sorted oldest reference first.
    """
    if scope not in (SCOPE_SINGLE, SCOPE_ALL):
        raise ValueError(f"Unknown pending balance scope: {scope!r}")

    groups: Dict[Tuple[Optional[str], str], List[NormalizedTransaction]] = {}
    for txn in txns:
        if not txn.has_reference:
            continue
        groups.setdefault(_group_key(txn, scope), []).append(txn)

    records = []
    for group in groups.values():
        group.sort(key=lambda txn: (txn.date, txn.sequence))
        record = _resolve_group(group)
        if record.total_amount == 0:
            logger.warning(
                "Reference has no charge recorded against it",
                extra={"reference_id": record.reference_id, "total_paid": record.total_paid},
            )
        records.append(record)

    records.sort(key=_record_order)
    return records


def _record_order(record: PendingBalanceRecord) -> Tuple[datetime, str, str]:
    return (record.date, record.counterparty_id or "", record.reference_id)


def pending_totals(records: Iterable[PendingBalanceRecord]) -> PendingTotals:
    """
    Totals for the summary cards above the pending table.

    total_pending is the sum of each record's own remaining amount, so an
    "all counterparties" view never nets one counterparty against another
    through a single fold.
    """
    records = list(records)
    return PendingTotals(
        total_pending=round(sum(r.amount for r in records), 2),
        total_paid=round(sum(r.total_paid for r in records), 2),
        cash_paid=round(sum(r.cash_paid for r in records), 2),
        bank_paid=round(sum(r.bank_paid for r in records), 2),
        count=len(records),
        outstanding_count=sum(1 for r in records if r.status != PendingStatus.PAID),
    )


def outstanding_for(records: Iterable[PendingBalanceRecord], counterparty_id: str) -> float:
    """Remaining amount across one counterparty's references."""
    return round(
        sum(r.amount for r in records if str(r.counterparty_id) == str(counterparty_id)),
        2,
    )
