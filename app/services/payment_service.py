import logging
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple

from app.models.ledger import (
    ENTITY_MODELS,
    LedgerType,
    NewLedgerEntry,
    PaymentDetails,
    PaymentMethod,
    PendingBalanceRecord,
    TransactionType,
)
from app.repositories.ledger_repo import LedgerRepository
from app.utils.ledger_validation import (
    LedgerValidationError,
    validate_amount,
    validate_counterparty,
    validate_method,
)

logger = logging.getLogger(__name__)

# Allocations smaller than this are rounding noise
CENT = 0.005
FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def _ledger_type(value: Any) -> Optional[LedgerType]:
    if value is None:
        return None
    try:
        return LedgerType(getattr(value, "value", value))
    except ValueError:
        raise LedgerValidationError("type", f"Unknown ledger type: {value!r}")


def build_payment_entry(
    counterparty_id: Any,
    amount: Any,
    method: Any,
    reference_id: Optional[str] = None,
    reference_model: Optional[str] = None,
    ledger_type: Any = None,
    remaining_balance: Optional[float] = None,
    date: Optional[datetime] = None,
    description: Optional[str] = None,
) -> NewLedgerEntry:
    """
    Validate and build a payment entry without touching the store.

    There is no cap against remaining_balance: paying more than
    is owed is recorded in full and shows up as credit (a negative remaining
    amount) on the next read.
    """
    counterparty_id = validate_counterparty(counterparty_id)
    value = validate_amount(amount)
    payment_method = validate_method(method)
    kind = _ledger_type(ledger_type)

    details = PaymentDetails(
        cash_payment=value if payment_method == PaymentMethod.CASH else 0.0,
        bank_payment=value if payment_method == PaymentMethod.BANK else 0.0,
    )
    if remaining_balance is not None:
        details.remaining_balance = round(remaining_balance - value, 2)
        if value > remaining_balance:
            logger.warning(
                "Overpayment recorded as credit",
                extra={
                    "counterparty_id": counterparty_id,
                    "reference_id": reference_id,
                    "amount": value,
                    "remaining_balance": remaining_balance,
                },
            )

    target = reference_id or "account"
    entry = NewLedgerEntry(
        ledger_type=kind,
        entity_id=counterparty_id,
        entity_model=ENTITY_MODELS.get(kind) if kind else None,
        transaction_type=TransactionType.PAYMENT,
        reference_id=reference_id,
        reference_model=reference_model,
        debit=0.0,
        credit=value,
        payment_method=payment_method,
        payment_details=details,
        description=description or f"Payment for {target} - {payment_method.value}",
        **({"date": date} if date is not None else {}),
    )
    return entry


def allocate_payment(
    amount: float,
    records: Iterable[PendingBalanceRecord],
) -> List[Tuple[Optional[PendingBalanceRecord], float]]:
    """
    Split a bulk payment over outstanding references, oldest first.

    Returns (record, allocated) pairs; a trailing (None, excess) pair holds
    whatever is left once every reference is covered.
    """
    outstanding = sorted(
        (r for r in records if r.amount > CENT),
        key=lambda r: (r.date or FAR_FUTURE, r.reference_id),
    )

    allocations: List[Tuple[Optional[PendingBalanceRecord], float]] = []
    left = round(amount, 2)
    for record in outstanding:
        if left <= CENT:
            break
        share = round(min(left, record.amount), 2)
        allocations.append((record, share))
        left = round(left - share, 2)

    if left > CENT:
        allocations.append((None, left))
    return allocations


class PaymentService:
    """The only write path into the ledger: payments and adjustments."""

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    async def record_payment(
        self,
        counterparty_id: Any,
        amount: Any,
        method: Any,
        reference_id: Optional[str] = None,
        **options: Any,
    ) -> dict:
        """
        Mark-as-paid. Validation failures raise LedgerValidationError before
        any write. Balances are not touched here; callers refetch and re-run
        the resolver once the write is acknowledged.
        """
        entry = build_payment_entry(counterparty_id, amount, method, reference_id, **options)
        return await self.repository.create_entry(entry)

    async def record_split_payment(
        self,
        counterparty_id: Any,
        cash_amount: float = 0.0,
        bank_amount: float = 0.0,
        ledger_type: Any = None,
        date: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> List[dict]:
        """One payment entry per method that has a positive amount."""
        parts = [
            (PaymentMethod.CASH, cash_amount),
            (PaymentMethod.BANK, bank_amount),
        ]
        parts = [(method, value) for method, value in parts if value]
        if not parts:
            raise LedgerValidationError("amount", "Enter a cash or bank amount")

        # Validate everything before the first write
        entries = [
            build_payment_entry(
                counterparty_id,
                value,
                method,
                ledger_type=ledger_type,
                date=date,
                description=description,
            )
            for method, value in parts
        ]
        return [await self.repository.create_entry(entry) for entry in entries]

    async def distribute_payment(
        self,
        counterparty_id: Any,
        amount: Any,
        method: Any,
        pending_records: Iterable[PendingBalanceRecord],
        ledger_type: Any = None,
        date: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> List[dict]:
        """
        Spread one payment across the counterparty's outstanding references,
        oldest first. Any excess is recorded unlinked, as account credit.
        """
        counterparty_id = validate_counterparty(counterparty_id)
        value = validate_amount(amount)
        own = [r for r in pending_records if str(r.counterparty_id) == counterparty_id]

        entries = []
        for record, share in allocate_payment(value, own):
            entries.append(build_payment_entry(
                counterparty_id,
                share,
                method,
                reference_id=record.reference_id if record else None,
                reference_model=record.reference_model if record else None,
                ledger_type=ledger_type,
                remaining_balance=record.amount if record else None,
                date=date,
                description=description or (
                    f"Payment for {record.reference_label}" if record else "Advance payment"
                ),
            ))

        logger.info(
            "Distributing payment",
            extra={"counterparty_id": counterparty_id, "amount": value, "entries": len(entries)},
        )
        return [await self.repository.create_entry(entry) for entry in entries]

    async def create_debit_adjustment(
        self,
        counterparty_id: Any,
        amount: Any,
        ledger_type: Any = None,
        date: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> dict:
        """Manual debit: increases what is owed to the counterparty."""
        counterparty_id = validate_counterparty(counterparty_id)
        value = validate_amount(amount)
        kind = _ledger_type(ledger_type)

        entry = NewLedgerEntry(
            ledger_type=kind,
            entity_id=counterparty_id,
            entity_model=ENTITY_MODELS.get(kind) if kind else None,
            transaction_type=TransactionType.ADJUSTMENT,
            debit=value,
            credit=0.0,
            description=description or "Debit adjustment",
            **({"date": date} if date is not None else {}),
        )
        return await self.repository.create_entry(entry)
