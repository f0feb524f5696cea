"""
Aggregate / filter view.

Filtering is a plain predicate composition and totals are reduced from the
filtered records only, so summary cards always agree with the table
underneath them.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from app.models.base import _utcnow, as_utc
from app.models.ledger import NormalizedTransaction, TransactionType
from app.schemas.ledger import LedgerFilters, LedgerSummary, SummaryTotals
from app.services.balance_service import compute_running_balances, newest_first
from app.utils.ledger_validation import LedgerValidationError

Predicate = Callable[[NormalizedTransaction], bool]


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _ledger_filter_predicate(value: str) -> Optional[Predicate]:
    """The consolidated "filter by" dropdown of the ledger table."""
    value = value.lower()
    if value == "all":
        return None
    if value in ("cash", "bank"):
        return lambda txn: txn.is_settlement and txn.payment_method == value
    if value == TransactionType.RETURN.value:
        return lambda txn: txn.type == TransactionType.RETURN.value
    if value == TransactionType.DISCOUNT.value:
        return lambda txn: txn.discount > 0
    raise LedgerValidationError("ledgerFilter", f"Unknown ledger filter: {value!r}")


def build_predicates(filters: LedgerFilters) -> List[Predicate]:
    predicates: List[Predicate] = []

    if filters.date_from is not None:
        start = _start_of_day(filters.date_from)
        predicates.append(lambda txn: txn.date >= start)

    if filters.date_to is not None:
        # Inclusive of the whole calendar day
        end = _start_of_day(filters.date_to) + timedelta(days=1)
        predicates.append(lambda txn: txn.date < end)

    if filters.method is not None:
        method = filters.method.value
        predicates.append(lambda txn: txn.payment_method == method)

    if filters.transaction_type and filters.transaction_type.lower() != "all":
        tx_type = filters.transaction_type.lower()
        predicates.append(lambda txn: txn.type == tx_type)

    if filters.counterparty_id and filters.counterparty_id != "all":
        counterparty_id = str(filters.counterparty_id)
        predicates.append(lambda txn: txn.counterparty_id == counterparty_id)

    if filters.ledger_filter:
        predicate = _ledger_filter_predicate(filters.ledger_filter)
        if predicate is not None:
            predicates.append(predicate)

    return predicates


def apply_filters(
    txns: Iterable[NormalizedTransaction],
    filters: LedgerFilters,
) -> List[NormalizedTransaction]:
    predicates = build_predicates(filters)
    return [txn for txn in txns if all(predicate(txn) for predicate in predicates)]


def totals_from_records(
    records: Iterable[NormalizedTransaction],
    now: Optional[datetime] = None,
) -> SummaryTotals:
    records = list(records)
    now = as_utc(now or _utcnow())
    month_start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)

    settlements = [txn for txn in records if txn.is_settlement]
    total_debit = round(sum(txn.debit for txn in records), 2)
    total_credit = round(sum(txn.credit for txn in records), 2)

    return SummaryTotals(
        total_debit=total_debit,
        total_credit=total_credit,
        total_paid=round(sum(txn.credit for txn in settlements), 2),
        cash_paid=round(sum(txn.cash_paid for txn in settlements), 2),
        bank_paid=round(sum(txn.bank_paid for txn in settlements), 2),
        total_returned=round(sum(txn.return_amount for txn in records), 2),
        total_pending=round(total_debit - total_credit, 2),
        count=len(records),
        count_this_month=sum(1 for txn in settlements if txn.date >= month_start),
    )


def summarize(
    txns: Iterable[NormalizedTransaction],
    filters: Optional[LedgerFilters] = None,
    now: Optional[datetime] = None,
) -> LedgerSummary:
    """
    Filtered records (newest first, with running balances) and their totals.

    Balances are folded over the full set before filtering, so a row keeps
    the balance it has in the unfiltered ledger.
    """
    balanced = compute_running_balances(txns)
    records = newest_first(apply_filters(balanced, filters or LedgerFilters()))
    return LedgerSummary(records=records, totals=totals_from_records(records, now=now))
