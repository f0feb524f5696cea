"""
Running balance calculator.

Every balance figure shown anywhere (table rows, the summary card above
them, per-counterparty balances in payment dialogs) comes from the single
sort + fold in this module.

Ordering rule, oldest first:
1. entry date
2. creation timestamp; entries without one sort after those that have one
3. position in the fetched array
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from app.models.ledger import NormalizedTransaction

SCOPE_COUNTERPARTY = "counterparty"
SCOPE_COMBINED = "combined"


def chronological_key(txn: NormalizedTransaction) -> Tuple[datetime, int, float, int]:
    created = txn.created_at
    return (
        txn.date,
        0 if created is not None else 1,
        created.timestamp() if created is not None else 0.0,
        txn.sequence,
    )


def sort_chronologically(txns: Iterable[NormalizedTransaction]) -> List[NormalizedTransaction]:
    return sorted(txns, key=chronological_key)


def compute_running_balances(
    txns: Iterable[NormalizedTransaction],
    scope: str = SCOPE_COUNTERPARTY,
) -> List[NormalizedTransaction]:
    """
    Attach running balances, returning new records oldest first.

    - scope="counterparty": the fold restarts at 0 for each counterparty,
      so independent balances are never mixed
    - scope="combined": one fold over everything; only when a combined
      figure is explicitly wanted
    """
    if scope not in (SCOPE_COUNTERPARTY, SCOPE_COMBINED):
        raise ValueError(f"Unknown balance scope: {scope!r}")

    running: Dict[Optional[str], float] = {}
    balanced = []
    for txn in sort_chronologically(txns):
        key = txn.counterparty_id if scope == SCOPE_COUNTERPARTY else None
        # Fold exact values; only the attached balance is rounded
        running[key] = running.get(key, 0.0) + txn.debit - txn.credit
        balanced.append(txn.model_copy(update={"balance": round(running[key], 2)}))
    return balanced


def newest_first(txns: List[NormalizedTransaction]) -> List[NormalizedTransaction]:
    """Display order. Balances were attached before reversing and stay put."""
    return list(reversed(txns))


def current_balances(txns: Iterable[NormalizedTransaction]) -> Dict[Optional[str], float]:
    """Closing balance per counterparty, from the same fold as the rows."""
    balances: Dict[Optional[str], float] = {}
    for txn in compute_running_balances(txns):
        balances[txn.counterparty_id] = txn.balance
    return balances


def closing_balance(txns: Iterable[NormalizedTransaction]) -> float:
    """
    Total of each counterparty's closing balance.

    For a single counterparty this is its current balance; for "all" it is
    a sum of independent balances, not one fold across counterparties.
    """
    return round(sum(current_balances(txns).values()), 2)
