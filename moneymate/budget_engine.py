from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from moneymate.currency_conversion import RateTable, convert_transaction
from moneymate.ledger_store import LedgerStore
from moneymate.models import Category, CategoryType, Transaction, TransactionFilter, TransactionType
from moneymate.time_windows import MonthWindow, month_window

STATUS_SAFE = "safe"
STATUS_WARNING = "warning"
STATUS_DANGER = "danger"
STATUS_OVER = "over"

WARNING_THRESHOLD = 75
DANGER_THRESHOLD = 90
OVER_THRESHOLD = 100


@dataclass(frozen=True)
class BudgetStatus:
    category_id: int
    category_name: str
    color: str
    icon: Optional[str]
    budget: int
    spent: int
    remaining: int
    percentage: float
    status: str


def classify_budget(percentage: float) -> str:
    if percentage < WARNING_THRESHOLD:
        return STATUS_SAFE
    if percentage < DANGER_THRESHOLD:
        return STATUS_WARNING
    if percentage < OVER_THRESHOLD:
        return STATUS_DANGER
    return STATUS_OVER


def evaluate_budget(category: Category, spent: int) -> BudgetStatus:
    """Compare one category's spending with its monthly budget."""
    if category.monthly_budget is None:
        raise ValueError("Category has no monthly budget.")
    budget = category.monthly_budget
    percentage = (spent / budget * 100) if budget else 0.0
    return BudgetStatus(
        category_id=category.id,
        category_name=category.name,
        color=category.color,
        icon=category.icon,
        budget=budget,
        spent=spent,
        remaining=budget - spent,
        percentage=percentage,
        status=classify_budget(percentage),
    )


def budget_statuses(
    store: LedgerStore,
    rate_table: RateTable,
    owner_id: int,
    now: datetime,
) -> List[BudgetStatus]:
    """Status of every active expense category that carries a budget, fullest first."""
    budgeted = [
        category
        for category in store.list_categories(
            owner_id, include_inactive=False, category_type=CategoryType.EXPENSE
        )
        if category.monthly_budget is not None
    ]
    if not budgeted:
        return []

    base_currency = store.get_base_currency(owner_id)
    expenses = _window_expenses(store, owner_id, month_window(now))
    statuses = [
        evaluate_budget(
            category,
            _sum_expenses(expenses, base_currency, rate_table, category_id=category.id),
        )
        for category in budgeted
    ]
    statuses.sort(key=lambda status: (-status.percentage, status.category_name))
    return statuses


def budget_status(
    store: LedgerStore,
    rate_table: RateTable,
    owner_id: int,
    category_id: int,
    now: datetime,
) -> Optional[BudgetStatus]:
    category = store.get_category(owner_id, category_id)
    if category.type != CategoryType.EXPENSE or category.monthly_budget is None:
        return None

    base_currency = store.get_base_currency(owner_id)
    window = month_window(now)
    expenses = store.list_transactions(
        owner_id,
        TransactionFilter(
            types=frozenset({TransactionType.EXPENSE}),
            category_id=category_id,
            start=window.start,
            end=window.end,
        ),
    )
    return evaluate_budget(category, _sum_expenses(expenses, base_currency, rate_table))


def _window_expenses(store: LedgerStore, owner_id: int, window: MonthWindow) -> List[Transaction]:
    return store.list_transactions(
        owner_id,
        TransactionFilter(
            types=frozenset({TransactionType.EXPENSE}),
            start=window.start,
            end=window.end,
        ),
    )


def _sum_expenses(
    transactions: Iterable[Transaction],
    base_currency: str,
    rate_table: RateTable,
    *,
    category_id: Optional[int] = None,
) -> int:
    total = 0
    for txn in transactions:
        if txn.type != TransactionType.EXPENSE:
            continue
        if category_id is not None and txn.category_id != category_id:
            continue
        total += convert_transaction(txn, base_currency, rate_table)
    return total
