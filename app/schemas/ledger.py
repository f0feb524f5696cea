from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.config import settings
from app.models.ledger import (
    LedgerType,
    NormalizedTransaction,
    PaymentMethod,
    PendingBalanceRecord,
    TransactionType,
)


class CamelModel(BaseModel):
    """Bodies use the camelCase keys the dashboard already speaks."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LedgerFilters(CamelModel):
    """Filters for the ledger table; every supplied filter must pass."""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    method: Optional[PaymentMethod] = None
    transaction_type: Optional[str] = None
    counterparty_id: Optional[str] = None
    # Consolidated dropdown: all | cash | bank | return | discount
    ledger_filter: Optional[str] = None


class PendingTotals(CamelModel):
    total_pending: float = 0.0
    total_paid: float = 0.0
    cash_paid: float = 0.0
    bank_paid: float = 0.0
    count: int = 0
    outstanding_count: int = 0


class SummaryTotals(CamelModel):
    total_debit: float = 0.0
    total_credit: float = 0.0
    total_paid: float = 0.0
    cash_paid: float = 0.0
    bank_paid: float = 0.0
    total_returned: float = 0.0
    total_pending: float = 0.0
    count: int = 0
    count_this_month: int = 0


class LedgerSummary(CamelModel):
    records: List[NormalizedTransaction] = []
    totals: SummaryTotals = Field(default_factory=SummaryTotals)


class LedgerResponse(CamelModel):
    """One counterparty's ledger, newest first."""
    entries: List[NormalizedTransaction] = []
    current_balance: float = 0.0


class BalanceResponse(CamelModel):
    entity_id: str
    ledger_type: LedgerType
    current_balance: float = 0.0


class AllLedgersResponse(CamelModel):
    """Every counterparty of one ledger type, newest first."""
    entries: List[NormalizedTransaction] = []
    total_balance: float = 0.0
    counterparty_count: int = 0


class PendingBalancesResponse(CamelModel):
    balances: List[PendingBalanceRecord] = []
    totals: PendingTotals = Field(default_factory=PendingTotals)


class PaymentCreate(CamelModel):
    """Mark-as-paid request. Amount and method are validated by the service."""
    ledger_type: Optional[LedgerType] = Field(default=None, alias="type")
    entity_id: str
    amount: Any
    payment_method: str = settings.DEFAULT_PAYMENT_METHOD
    reference_id: Optional[str] = None
    reference_model: Optional[str] = None
    remaining_balance: Optional[float] = None
    date: Optional[datetime] = None
    description: Optional[str] = None


class SplitPaymentCreate(CamelModel):
    cash_amount: Any = 0.0
    bank_amount: Any = 0.0
    date: Optional[datetime] = None
    description: Optional[str] = None


class DistributePaymentRequest(CamelModel):
    amount: Any
    payment_method: str = settings.DEFAULT_PAYMENT_METHOD
    date: Optional[datetime] = None
    description: Optional[str] = None


class DebitAdjustmentRequest(CamelModel):
    amount: Any
    date: Optional[datetime] = None
    description: Optional[str] = None


class LedgerEntryResponse(CamelModel):
    """A freshly written entry as echoed back by the ledger store."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    ledger_type: Optional[LedgerType] = Field(default=None, alias="type")
    entity_id: str
    transaction_type: TransactionType
    reference_id: Optional[str] = None
    debit: float = 0.0
    credit: float = 0.0
    payment_method: Optional[PaymentMethod] = None
    date: datetime
    created_at: Optional[datetime] = None
    description: str = ""
