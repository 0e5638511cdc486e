"""
Dashboard composition.

The independent aggregations run concurrently, each in a worker thread
because store reads are blocking SQLAlchemy calls. A failing branch leaves
its field empty and records its error; the others still complete.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from moneymate.analytics import (
    CategorySpend,
    MonthlyTrend,
    MonthStats,
    NetWorthPoint,
    category_breakdown,
    current_month_stats,
    monthly_trends,
    net_worth_progression,
    recent_transactions,
)
from moneymate.balance_engine import total_balance
from moneymate.budget_engine import BudgetStatus, budget_statuses
from moneymate.currency_conversion import RateTable
from moneymate.ledger_store import LedgerStore
from moneymate.logger import get_logger
from moneymate.models import Transaction, TransactionType
from moneymate.time_windows import month_window
from moneymate.watchlist import select_watchlist

logger = get_logger(__name__)


@dataclass(frozen=True)
class DashboardView:
    owner_id: int
    currency: str
    generated_at: datetime
    total_balance: Optional[int] = None
    month_stats: Optional[MonthStats] = None
    monthly_trends: Optional[List[MonthlyTrend]] = None
    net_worth: Optional[List[NetWorthPoint]] = None
    category_breakdown: Optional[List[CategorySpend]] = None
    recent_transactions: Optional[List[Transaction]] = None
    budget_statuses: Optional[List[BudgetStatus]] = None
    watchlist: Optional[List[BudgetStatus]] = None
    errors: Dict[str, str] = field(default_factory=dict)


async def build_dashboard(
    store: LedgerStore,
    rate_table: RateTable,
    owner_id: int,
    now: datetime,
    months: int = 6,
) -> DashboardView:
    currency = await asyncio.to_thread(store.get_base_currency, owner_id)
    window = month_window(now)

    branches: Dict[str, Callable[[], Any]] = {
        "total_balance": partial(total_balance, store, rate_table, owner_id, now),
        "month_stats": partial(current_month_stats, store, rate_table, owner_id, now),
        "monthly_trends": partial(monthly_trends, store, rate_table, owner_id, now, months),
        "net_worth": partial(net_worth_progression, store, rate_table, owner_id, now, months),
        "category_breakdown": partial(
            category_breakdown,
            store,
            rate_table,
            owner_id,
            TransactionType.EXPENSE,
            window.start,
            window.end,
        ),
        "recent_transactions": partial(recent_transactions, store, owner_id),
        "budget_statuses": partial(budget_statuses, store, rate_table, owner_id, now),
    }

    results = await asyncio.gather(
        *(asyncio.to_thread(branch) for branch in branches.values()),
        return_exceptions=True,
    )

    values: Dict[str, Any] = {}
    errors: Dict[str, str] = {}
    for name, result in zip(branches, results):
        if isinstance(result, Exception):
            logger.warning(f"Dashboard branch {name} failed for user {owner_id}: {result}")
            errors[name] = str(result)
            values[name] = None
        elif isinstance(result, BaseException):
            raise result
        else:
            values[name] = result

    statuses = values["budget_statuses"]
    if statuses is not None:
        values["watchlist"] = select_watchlist(statuses)
    else:
        errors["watchlist"] = errors["budget_statuses"]

    return DashboardView(
        owner_id=owner_id,
        currency=currency,
        generated_at=now,
        errors=errors,
        **values,
    )
