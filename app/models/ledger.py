"""
Ledger models - raw entries as stored, and the records derived from them.

Design principles:
- Raw entries are immutable once created upstream; this service only
  reads them and appends new ones (payments, adjustments)
- Debit increases what the counterparty is owed / owes, credit decreases it
- entityId / referenceId arrive either as bare ids or as embedded documents;
  both are folded into a single Ref shape before anything else looks at them
- Overpayment is never clamped: a negative remaining amount is credit
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.models.base import _utcnow, as_utc


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    PAYMENT = "payment"
    RETURN = "return"
    CHARGE = "charge"
    RECEIPT = "receipt"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    DISCOUNT = "discount"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK = "bank"


class LedgerType(str, Enum):
    SUPPLIER = "supplier"
    BUYER = "buyer"
    LOGISTICS = "logistics"


class PendingStatus(str, Enum):
    PAID = "paid"
    PARTIAL = "partial"
    PENDING = "pending"


# Entries that pay down a reference. Buyers settle with receipts.
SETTLEMENT_TYPES = frozenset({TransactionType.PAYMENT.value, TransactionType.RECEIPT.value})

ENTITY_MODELS = {
    LedgerType.SUPPLIER: "Supplier",
    LedgerType.BUYER: "Buyer",
    LedgerType.LOGISTICS: "LogisticsCompany",
}


def _parse_amount(value: Any) -> Optional[float]:
    """Finite float for a usable amount, 0 for a missing one, None otherwise."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        else:
            number = float(str(value).strip() or 0)
    except (OverflowError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _coerce_amount(value: Any) -> float:
    parsed = _parse_amount(value)
    return 0.0 if parsed is None else parsed


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    if isinstance(value, (int, float)):
        # Epoch milliseconds, as the JS clients send them
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return None


class PaymentDetails(BaseModel):
    """Cash/bank breakdown attached to payment entries."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    cash_payment: float = 0.0
    bank_payment: float = 0.0
    remaining_balance: Optional[float] = None

    @field_validator("cash_payment", "bank_payment", mode="before")
    @classmethod
    def _amounts(cls, value: Any) -> float:
        return _coerce_amount(value)


class RefKind(str, Enum):
    ID = "id"
    EMBEDDED = "embedded"


class Ref(BaseModel):
    """
    Tagged union over the two shapes a link can take in a raw entry:

    - Id: a bare identifier (string or ObjectId)
    - Embedded: a populated document; ``fields`` keeps its contents
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: RefKind
    id: Optional[str] = None
    fields: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, value: Any) -> Optional["Ref"]:
        if value is None or value == "":
            return None
        if isinstance(value, Ref):
            return value
        if isinstance(value, dict):
            raw_id = value.get("_id", value.get("id"))
            return cls(
                kind=RefKind.EMBEDDED,
                id=str(raw_id) if raw_id is not None else None,
                fields=dict(value),
            )
        return cls(kind=RefKind.ID, id=str(value))

    @property
    def is_embedded(self) -> bool:
        return self.kind == RefKind.EMBEDDED

    def first(self, *keys: str) -> Any:
        """First non-empty field among ``keys`` on an embedded document."""
        for key in keys:
            value = self.fields.get(key)
            if value not in (None, ""):
                return value
        return None


class LedgerEntry(BaseModel):
    """
    A ledger entry exactly as the store hands it over.

    Nothing here is trusted: amounts may be strings or null, dates may be
    missing or unparseable, links may be ids or documents. Validators coerce
    rather than reject, since the data source is not under our control.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow", arbitrary_types_allowed=True)

    id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("_id", "id"),
        serialization_alias="_id",
    )
    date: Optional[datetime] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    transaction_type: Optional[str] = Field(default=None, alias="transactionType")
    ledger_type: Optional[str] = Field(default=None, alias="type")

    entity_id: Any = Field(default=None, alias="entityId")
    entity_model: Optional[str] = Field(default=None, alias="entityModel")
    reference_id: Any = Field(default=None, alias="referenceId")
    reference_model: Optional[str] = Field(default=None, alias="referenceModel")

    debit: float = 0.0
    credit: float = 0.0

    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    payment_details: Optional[PaymentDetails] = Field(default=None, alias="paymentDetails")

    description: Optional[str] = None
    notes: Optional[str] = None

    # Amount fields whose stored value was unusable and read as 0
    invalid_amounts: List[str] = Field(default_factory=list, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _flag_invalid_amounts(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        invalid = [key for key in ("debit", "credit") if _parse_amount(data.get(key)) is None]
        if invalid:
            data = {**data, "invalid_amounts": invalid}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)

    @field_validator("date", "created_at", mode="before")
    @classmethod
    def _dates(cls, value: Any) -> Optional[datetime]:
        return _coerce_datetime(value)

    @field_validator("debit", "credit", mode="before")
    @classmethod
    def _amounts(cls, value: Any) -> float:
        return _coerce_amount(value)

    @field_validator("transaction_type", "payment_method", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value).strip().lower()

    @field_validator("payment_details", mode="before")
    @classmethod
    def _details(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, PaymentDetails)) else None


class NormalizedTransaction(BaseModel):
    """
    Canonical transaction record.

    ``balance`` stays None until the running balance fold has run.
    ``sequence`` is the position in the fetched array and is the last
    tie-breaker when two entries share both date and creation time.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: Optional[str] = None
    date: datetime
    created_at: Optional[datetime] = None
    sequence: int = 0
    date_missing: bool = False
    anomalies: List[str] = Field(default_factory=list)

    type: str
    ledger_type: Optional[str] = None

    counterparty_id: Optional[str] = None
    counterparty_name: Optional[str] = None

    reference_id: Optional[str] = None
    reference_label: str = "-"
    reference_model: Optional[str] = None

    debit: float = 0.0
    credit: float = 0.0
    cash_paid: float = 0.0
    bank_paid: float = 0.0
    return_amount: float = 0.0
    discount: float = 0.0

    payment_method: Optional[str] = None
    description: str = "-"

    balance: Optional[float] = None

    @property
    def is_settlement(self) -> bool:
        return self.type in SETTLEMENT_TYPES

    @property
    def has_reference(self) -> bool:
        return self.reference_id is not None


class PendingBalanceRecord(BaseModel):
    """
    Outstanding position of one reference (order / purchase / invoice).

    Invariants:
    - amount = total_amount - total_paid - total_credited, never clamped
    - status = paid iff amount <= 0
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    reference_id: str
    reference_label: str = "-"
    reference_model: Optional[str] = None
    counterparty_id: Optional[str] = None
    counterparty_name: Optional[str] = None
    date: Optional[datetime] = None

    total_amount: float = 0.0
    total_paid: float = 0.0
    cash_paid: float = 0.0
    bank_paid: float = 0.0
    total_credited: float = 0.0
    amount: float = 0.0

    payment_type: Optional[PaymentMethod] = None
    status: PendingStatus = PendingStatus.PENDING


class NewLedgerEntry(BaseModel):
    """An entry built by this service, ready to hand to the ledger store."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    ledger_type: Optional[LedgerType] = Field(default=None, alias="type")
    entity_id: str
    entity_model: Optional[str] = None
    transaction_type: TransactionType
    reference_id: Optional[str] = None
    reference_model: Optional[str] = None

    debit: float = 0.0
    credit: float = 0.0

    payment_method: Optional[PaymentMethod] = None
    payment_details: Optional[PaymentDetails] = None

    date: datetime = Field(default_factory=_utcnow)
    description: str = ""
