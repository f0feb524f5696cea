from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app.db.mongo import get_db
from app.models.ledger import LedgerType, NormalizedTransaction
from app.repositories.ledger_repo import LedgerRepository
from app.schemas.ledger import (
    AllLedgersResponse,
    BalanceResponse,
    DebitAdjustmentRequest,
    DistributePaymentRequest,
    LedgerEntryResponse,
    LedgerFilters,
    LedgerResponse,
    LedgerSummary,
    PaymentCreate,
    SplitPaymentCreate,
)
from app.services.balance_service import (
    closing_balance,
    compute_running_balances,
    current_balances,
    newest_first,
)
from app.services.normalizer import normalize_entries
from app.services.payment_service import PaymentService
from app.services.pending_service import resolve_pending_balances
from app.services.summary_service import summarize
from app.utils.ledger_validation import validate_method

router = APIRouter()


def get_ledger_repository(db=Depends(get_db)) -> LedgerRepository:
    return LedgerRepository(db)


def get_payment_service(
    repository: LedgerRepository = Depends(get_ledger_repository),
) -> PaymentService:
    return PaymentService(repository)


def ledger_filters(
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    method: Optional[str] = Query(None),
    transaction_type: Optional[str] = Query(None, alias="transactionType"),
    ledger_filter: Optional[str] = Query(None, alias="ledgerFilter"),
    filter_entity_id: Optional[str] = Query(None, alias="entityId"),
) -> LedgerFilters:
    return LedgerFilters(
        date_from=date_from,
        date_to=date_to,
        method=validate_method(method) if method and method != "all" else None,
        transaction_type=transaction_type,
        ledger_filter=ledger_filter,
        counterparty_id=filter_entity_id,
    )


async def load_transactions(
    repository: LedgerRepository,
    ledger_type: LedgerType,
    entity_id: Optional[str] = None,
) -> List[NormalizedTransaction]:
    raws = await repository.fetch_entries(entity_id=entity_id, ledger_type=ledger_type.value)
    return normalize_entries(raws)


@router.get("/balance/{ledger_type}/{entity_id}", response_model=BalanceResponse)
async def get_balance(
    ledger_type: LedgerType,
    entity_id: str,
    repository: LedgerRepository = Depends(get_ledger_repository),
):
    """Current balance of one counterparty, without the entries"""
    txns = await load_transactions(repository, ledger_type, entity_id)
    return BalanceResponse(
        entity_id=entity_id,
        ledger_type=ledger_type,
        current_balance=current_balances(txns).get(entity_id, 0.0),
    )


@router.get("/{ledger_type}", response_model=AllLedgersResponse)
async def get_all_ledgers(
    ledger_type: LedgerType,
    repository: LedgerRepository = Depends(get_ledger_repository),
):
    """Every counterparty of a ledger type, each with its own running balance"""
    txns = await load_transactions(repository, ledger_type)
    counterparties = {txn.counterparty_id for txn in txns if txn.counterparty_id}
    return AllLedgersResponse(
        entries=newest_first(compute_running_balances(txns)),
        total_balance=closing_balance(txns),
        counterparty_count=len(counterparties),
    )


@router.get("/{ledger_type}/summary", response_model=LedgerSummary)
async def get_all_ledgers_summary(
    ledger_type: LedgerType,
    filters: LedgerFilters = Depends(ledger_filters),
    repository: LedgerRepository = Depends(get_ledger_repository),
):
    """Filtered entries and totals across all counterparties"""
    txns = await load_transactions(repository, ledger_type)
    return summarize(txns, filters)


@router.get("/{ledger_type}/{entity_id}", response_model=LedgerResponse)
async def get_ledger(
    ledger_type: LedgerType,
    entity_id: str,
    repository: LedgerRepository = Depends(get_ledger_repository),
):
    """One counterparty's ledger, newest first"""
    txns = await load_transactions(repository, ledger_type, entity_id)
    return LedgerResponse(
        entries=newest_first(compute_running_balances(txns)),
        current_balance=closing_balance(txns),
    )


@router.get("/{ledger_type}/{entity_id}/summary", response_model=LedgerSummary)
async def get_ledger_summary(
    ledger_type: LedgerType,
    entity_id: str,
    filters: LedgerFilters = Depends(ledger_filters),
    repository: LedgerRepository = Depends(get_ledger_repository),
):
    """Filtered entries and totals for one counterparty"""
    txns = await load_transactions(repository, ledger_type, entity_id)
    return summarize(txns, filters)


@router.post("/entry", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_payment_entry(
    payment_in: PaymentCreate,
    service: PaymentService = Depends(get_payment_service),
):
    """Mark as paid: record a cash or bank payment, optionally against a reference"""
    created = await service.record_payment(
        payment_in.entity_id,
        payment_in.amount,
        payment_in.payment_method,
        payment_in.reference_id,
        reference_model=payment_in.reference_model,
        ledger_type=payment_in.ledger_type,
        remaining_balance=payment_in.remaining_balance,
        date=payment_in.date,
        description=payment_in.description,
    )
    return LedgerEntryResponse.model_validate(created)


@router.post(
    "/{ledger_type}/{entity_id}/split-payment",
    response_model=List[LedgerEntryResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_split_payment(
    ledger_type: LedgerType,
    entity_id: str,
    payment_in: SplitPaymentCreate,
    service: PaymentService = Depends(get_payment_service),
):
    """Cash and bank parts of one payment, written as separate entries"""
    created = await service.record_split_payment(
        entity_id,
        cash_amount=payment_in.cash_amount,
        bank_amount=payment_in.bank_amount,
        ledger_type=ledger_type,
        date=payment_in.date,
        description=payment_in.description,
    )
    return [LedgerEntryResponse.model_validate(doc) for doc in created]


@router.post(
    "/{ledger_type}/{entity_id}/distribute-payment",
    response_model=List[LedgerEntryResponse],
    status_code=status.HTTP_201_CREATED,
)
async def distribute_payment(
    ledger_type: LedgerType,
    entity_id: str,
    payment_in: DistributePaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """Spread a bulk payment over outstanding references, oldest first"""
    txns = await load_transactions(service.repository, ledger_type, entity_id)
    pending = resolve_pending_balances(txns, scope="all")
    created = await service.distribute_payment(
        entity_id,
        payment_in.amount,
        payment_in.payment_method,
        pending,
        ledger_type=ledger_type,
        date=payment_in.date,
        description=payment_in.description,
    )
    return [LedgerEntryResponse.model_validate(doc) for doc in created]


@router.post(
    "/{ledger_type}/{entity_id}/debit-adjustment",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_debit_adjustment(
    ledger_type: LedgerType,
    entity_id: str,
    adjustment_in: DebitAdjustmentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """Manual debit against a counterparty"""
    created = await service.create_debit_adjustment(
        entity_id,
        adjustment_in.amount,
        ledger_type=ledger_type,
        date=adjustment_in.date,
        description=adjustment_in.description,
    )
    return LedgerEntryResponse.model_validate(created)
