from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.v1.endpoints.ledger import get_ledger_repository, load_transactions
from app.models.ledger import LedgerType
from app.repositories.ledger_repo import LedgerRepository
from app.schemas.ledger import PendingBalancesResponse
from app.services.normalizer import fill_counterparty_names
from app.services.pending_service import (
    SCOPE_ALL,
    SCOPE_SINGLE,
    pending_totals,
    resolve_pending_balances,
)

router = APIRouter()


@router.get("/pending", response_model=PendingBalancesResponse)
async def get_pending_balances(
    entity_id: Optional[str] = Query(None, alias="entityId"),
    ledger_type: LedgerType = Query(LedgerType.SUPPLIER, alias="ledgerType"),
    repository: LedgerRepository = Depends(get_ledger_repository),
):
    """Outstanding orders / purchases for one counterparty, or all of them"""
    single = bool(entity_id) and entity_id != "all"
    txns = await load_transactions(repository, ledger_type, entity_id if single else None)

    # Borrow names from populated entries for any bare-id siblings
    names = {
        txn.counterparty_id: txn.counterparty_name
        for txn in txns
        if txn.counterparty_id and txn.counterparty_name
    }
    txns = fill_counterparty_names(txns, names)

    balances = resolve_pending_balances(txns, scope=SCOPE_SINGLE if single else SCOPE_ALL)
    return PendingBalancesResponse(balances=balances, totals=pending_totals(balances))
