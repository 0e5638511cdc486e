"""
Calendar-month aggregations over the ledger: month statistics with trend
deltas, dense monthly series, net-worth progression and category breakdowns.

Every amount is converted to the owner's base currency per transaction
before it is summed. Transfers move money between the owner's own accounts
and never count as income or expense.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Optional

from moneymate.balance_engine import balances_for_owner
from moneymate.currency_conversion import RateTable, convert_amount, convert_transaction
from moneymate.ledger_store import LedgerStore
from moneymate.models import Transaction, TransactionFilter, TransactionType
from moneymate.time_windows import MonthWindow, month_end, month_window, trailing_month_windows

UNCATEGORIZED_NAME = "Uncategorized"
UNCATEGORIZED_COLOR = "#94a3b8"

_FLOW_TYPES = frozenset({TransactionType.INCOME, TransactionType.EXPENSE})


@dataclass(frozen=True)
class MonthStats:
    month: str
    currency: str
    income: int
    expenses: int
    net: int
    savings_rate: float
    transaction_count: int
    income_trend: float
    expense_trend: float
    savings_rate_trend: float


@dataclass(frozen=True)
class MonthlyTrend:
    month: str
    income: int
    expense: int
    net: int


@dataclass(frozen=True)
class NetWorthPoint:
    month: str
    date: date
    net_worth: int
    change: int
    change_percent: float


@dataclass(frozen=True)
class CategorySpend:
    category_id: Optional[int]
    name: str
    color: str
    icon: Optional[str]
    total: int
    count: int
    percentage: float


def trend_percent(current: int | float, previous: int | float) -> float:
    if previous == 0:
        return 0.0
    return (current - previous) / abs(previous) * 100


def savings_rate(income: int, expenses: int) -> float:
    if income == 0:
        return 0.0
    return (income - expenses) / income


def sum_flows(
    transactions: Iterable[Transaction],
    base_currency: str,
    rate_table: RateTable,
) -> tuple[int, int]:
    """Income and expense totals in the base currency."""
    income = 0
    expenses = 0
    for txn in transactions:
        if txn.type == TransactionType.INCOME:
            income += convert_transaction(txn, base_currency, rate_table)
        elif txn.type == TransactionType.EXPENSE:
            expenses += convert_transaction(txn, base_currency, rate_table)
    return income, expenses


def _window_transactions(
    store: LedgerStore, owner_id: int, window: MonthWindow
) -> List[Transaction]:
    return store.list_transactions(
        owner_id,
        TransactionFilter(types=_FLOW_TYPES, start=window.start, end=window.end),
    )


def current_month_stats(
    store: LedgerStore,
    rate_table: RateTable,
    owner_id: int,
    now: datetime,
) -> MonthStats:
    base_currency = store.get_base_currency(owner_id)
    current_window = month_window(now)
    previous_window = month_window(now, -1)

    current_txns = _window_transactions(store, owner_id, current_window)
    income, expenses = sum_flows(current_txns, base_currency, rate_table)
    prev_income, prev_expenses = sum_flows(
        _window_transactions(store, owner_id, previous_window), base_currency, rate_table
    )

    rate = savings_rate(income, expenses)
    return MonthStats(
        month=current_window.key,
        currency=base_currency,
        income=income,
        expenses=expenses,
        net=income - expenses,
        savings_rate=rate,
        transaction_count=len(current_txns),
        income_trend=trend_percent(income, prev_income),
        expense_trend=trend_percent(expenses, prev_expenses),
        savings_rate_trend=trend_percent(rate, savings_rate(prev_income, prev_expenses)),
    )


def monthly_trends(
    store: LedgerStore,
    rate_table: RateTable,
    owner_id: int,
    now: datetime,
    months: int = 6,
) -> List[MonthlyTrend]:
    """One row per trailing month, oldest first, months without events zero-filled."""
    base_currency = store.get_base_currency(owner_id)
    windows = trailing_month_windows(now, months)
    txns = store.list_transactions(
        owner_id,
        TransactionFilter(types=_FLOW_TYPES, start=windows[0].start, end=windows[-1].end),
    )

    by_month: dict[str, list[Transaction]] = defaultdict(list)
    for txn in txns:
        by_month[txn.date.strftime("%Y-%m")].append(txn)

    trends = []
    for window in windows:
        income, expense = sum_flows(by_month.get(window.key, []), base_currency, rate_table)
        trends.append(
            MonthlyTrend(month=window.key, income=income, expense=expense, net=income - expense)
        )
    return trends


def net_worth_progression(
    store: LedgerStore,
    rate_table: RateTable,
    owner_id: int,
    now: datetime,
    months: int = 6,
) -> List[NetWorthPoint]:
    """Net worth at each trailing month end, converted at that month-end date."""
    base_currency = store.get_base_currency(owner_id)
    currencies = {account.id: account.currency for account in store.list_accounts(owner_id)}

    points: List[NetWorthPoint] = []
    for window in trailing_month_windows(now, months):
        cutoff_date = month_end(window.start.date())
        balances = balances_for_owner(store, owner_id, as_of=window.end)
        net_worth = sum(
            convert_amount(balance, currencies[account_id], base_currency, rate_table, cutoff_date)
            for account_id, balance in balances.items()
        )
        if points:
            previous = points[-1].net_worth
            change = net_worth - previous
            change_percent = trend_percent(net_worth, previous)
        else:
            change = 0
            change_percent = 0.0
        points.append(
            NetWorthPoint(
                month=window.key,
                date=cutoff_date,
                net_worth=net_worth,
                change=change,
                change_percent=change_percent,
            )
        )
    return points


def category_breakdown(
    store: LedgerStore,
    rate_table: RateTable,
    owner_id: int,
    txn_type: str = TransactionType.EXPENSE,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[CategorySpend]:
    txn_type = TransactionType.validate(txn_type)
    if txn_type == TransactionType.TRANSFER:
        raise ValueError("Category breakdown requires income or expense.")
    base_currency = store.get_base_currency(owner_id)
    txns = store.list_transactions(
        owner_id,
        TransactionFilter(types=frozenset({txn_type}), start=start, end=end),
    )
    lookup = {category.id: category for category in store.list_categories(owner_id)}

    totals: dict[Optional[int], int] = defaultdict(int)
    counts: dict[Optional[int], int] = defaultdict(int)
    for txn in txns:
        totals[txn.category_id] += convert_transaction(txn, base_currency, rate_table)
        counts[txn.category_id] += 1

    grand_total = sum(totals.values())
    rows = []
    for category_id, total in totals.items():
        category = lookup.get(category_id)
        rows.append(
            CategorySpend(
                category_id=category_id if category else None,
                name=category.name if category else UNCATEGORIZED_NAME,
                color=category.color if category else UNCATEGORIZED_COLOR,
                icon=category.icon if category else None,
                total=total,
                count=counts[category_id],
                percentage=(total / grand_total * 100) if grand_total else 0.0,
            )
        )
    rows.sort(key=lambda row: (-row.total, row.name))
    return rows


def recent_transactions(store: LedgerStore, owner_id: int, limit: int = 5) -> List[Transaction]:
    if limit < 1:
        raise ValueError("limit must be at least 1.")
    return store.list_transactions(owner_id, TransactionFilter(limit=limit, newest_first=True))
