from __future__ import annotations

from datetime import datetime
from typing import Iterable, List

from moneymate.budget_engine import (
    STATUS_DANGER,
    STATUS_OVER,
    STATUS_WARNING,
    BudgetStatus,
    budget_statuses,
)
from moneymate.currency_conversion import RateTable
from moneymate.ledger_store import LedgerStore

WATCHLIST_STATUSES = frozenset({STATUS_WARNING, STATUS_DANGER, STATUS_OVER})


def select_watchlist(statuses: Iterable[BudgetStatus]) -> List[BudgetStatus]:
    """Budgets at or past the warning threshold, fullest first."""
    selected = [status for status in statuses if status.status in WATCHLIST_STATUSES]
    selected.sort(key=lambda status: (-status.percentage, status.category_name))
    return selected


def watchlist(
    store: LedgerStore,
    rate_table: RateTable,
    owner_id: int,
    now: datetime,
) -> List[BudgetStatus]:
    return select_watchlist(budget_statuses(store, rate_table, owner_id, now))
