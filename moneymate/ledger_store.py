"""
Data access layer for the ledger: users, accounts, categories, goals,
transactions and exchange-rate snapshots.

Every read is scoped by owner id. Every write runs inside a single
``engine.begin()`` block so concurrent readers see either the state before
or after it, never a partial one.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Mapping, Optional

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.engine import Connection, Engine

from moneymate import config
from moneymate.currency_conversion import (
    IDENTITY_RATE,
    RateTable,
    StoreRateTable,
    coerce_rate,
    normalize_currency,
)
from moneymate.errors import LedgerIntegrityError, NotFoundError, RateUnavailable
from moneymate.logger import get_logger
from moneymate.models import (
    Account,
    AccountFlows,
    AccountType,
    Category,
    CategoryType,
    Goal,
    RecordState,
    Transaction,
    TransactionFilter,
    TransactionType,
    User,
    check_transaction_shape,
)
from moneymate.schema import (
    categories,
    exchange_rates,
    finance_accounts,
    goals,
    transactions,
    users,
)
from moneymate.time_windows import as_date, as_datetime

logger = get_logger(__name__)

UNSET = object()

DEFAULT_CATEGORY_COLOR = "#6366f1"

DEFAULT_CATEGORIES = [
    {"name": "Salary", "type": "income", "color": "#22c55e", "icon": "💼"},
    {"name": "Freelance", "type": "income", "color": "#10b981", "icon": "💻"},
    {"name": "Investment", "type": "income", "color": "#14b8a6", "icon": "📈"},
    {"name": "Gift", "type": "income", "color": "#06b6d4", "icon": "🎁"},
    {"name": "Other Income", "type": "income", "color": "#0ea5e9", "icon": "💰"},
    {"name": "Food & Dining", "type": "expense", "color": "#f97316", "icon": "🍔"},
    {"name": "Transportation", "type": "expense", "color": "#ef4444", "icon": "🚗"},
    {"name": "Shopping", "type": "expense", "color": "#ec4899", "icon": "🛒"},
    {"name": "Entertainment", "type": "expense", "color": "#a855f7", "icon": "🎮"},
    {"name": "Bills & Utilities", "type": "expense", "color": "#8b5cf6", "icon": "📄"},
    {"name": "Healthcare", "type": "expense", "color": "#6366f1", "icon": "🏥"},
    {"name": "Education", "type": "expense", "color": "#3b82f6", "icon": "📚"},
    {"name": "Other Expense", "type": "expense", "color": "#64748b", "icon": "📦"},
]


def _state_clause(table, include_inactive: bool) -> list:
    """The one place record state turns into SQL."""
    if include_inactive:
        return []
    return [table.c.is_active.is_(True)]


def _malformed_transaction_clause():
    income_with_source = and_(
        transactions.c.type == TransactionType.INCOME,
        transactions.c.from_account_id.is_not(None),
    )
    expense_with_destination = and_(
        transactions.c.type == TransactionType.EXPENSE,
        transactions.c.to_account_id.is_not(None),
    )
    bad_transfer = and_(
        transactions.c.type == TransactionType.TRANSFER,
        or_(
            transactions.c.category_id.is_not(None),
            transactions.c.from_account_id == transactions.c.to_account_id,
        ),
    )
    return or_(
        transactions.c.type.not_in(sorted(TransactionType.values)),
        transactions.c.amount <= 0,
        income_with_source,
        expense_with_destination,
        bad_transfer,
    )


def _validate_budget(category_type: str, monthly_budget: Optional[int]) -> Optional[int]:
    if monthly_budget is None:
        return None
    if category_type != CategoryType.EXPENSE:
        raise ValueError("Only expense categories can have a monthly budget.")
    if isinstance(monthly_budget, bool) or not isinstance(monthly_budget, int) or monthly_budget <= 0:
        raise ValueError("Monthly budget must be a positive integer of minor units.")
    return monthly_budget


def _positive_minor_units(value: int, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{label} must be a positive integer of minor units.")
    return value


class LedgerStore:
    """Owner-scoped reads and atomic writes over the ledger tables."""

    def __init__(self, engine: Engine, rate_table: RateTable | None = None) -> None:
        self.engine = engine
        self.rate_table = rate_table or StoreRateTable(engine)

    # ── USERS ─────────────────────────────────────────────

    def create_user(self, name: str | None = None, base_currency: str | None = None) -> User:
        currency = normalize_currency(base_currency or config.SYSTEM_DEFAULT_CURRENCY)
        with self.engine.begin() as conn:
            row = conn.execute(
                insert(users)
                .values(name=name, base_currency=currency)
                .returning(users.c.id, users.c.name, users.c.base_currency, users.c.created_at)
            ).mappings().first()
        logger.info(f"Created user #{row['id']} with base currency {currency}")
        return self._row_to_user(row)

    def get_user(self, user_id: int) -> User:
        with self.engine.connect() as conn:
            row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
        if not row:
            raise NotFoundError("User", user_id)
        return self._row_to_user(row)

    def get_base_currency(self, user_id: int) -> str:
        return self.get_user(user_id).base_currency

    def update_base_currency(self, user_id: int, base_currency: str) -> User:
        currency = normalize_currency(base_currency)
        with self.engine.begin() as conn:
            row = conn.execute(
                update(users)
                .where(users.c.id == user_id)
                .values(base_currency=currency)
                .returning(users.c.id, users.c.name, users.c.base_currency, users.c.created_at)
            ).mappings().first()
        if not row:
            raise NotFoundError("User", user_id)
        return self._row_to_user(row)

    # ── ACCOUNTS ──────────────────────────────────────────

    def create_account(
        self,
        owner_id: int,
        name: str,
        account_type: str,
        initial_balance: int = 0,
        currency: str | None = None,
        icon: str | None = None,
    ) -> Account:
        name = name.strip()
        if not name:
            raise ValueError("Account name required.")
        if isinstance(initial_balance, bool) or not isinstance(initial_balance, int):
            raise ValueError("Initial balance must be an integer of minor units.")
        account_type = AccountType.validate(account_type)
        with self.engine.begin() as conn:
            resolved_currency = (
                normalize_currency(currency) if currency else self._base_currency(conn, owner_id)
            )
            row = conn.execute(
                insert(finance_accounts)
                .values(
                    user_id=owner_id,
                    name=name,
                    type=account_type,
                    initial_balance=initial_balance,
                    currency=resolved_currency,
                    icon=icon,
                )
                .returning(*finance_accounts.c)
            ).mappings().first()
        logger.info(f"Created account #{row['id']} for user {owner_id}")
        return self._row_to_account(row)

    def get_account(self, owner_id: int, account_id: int) -> Account:
        with self.engine.connect() as conn:
            return self._fetch_account(conn, owner_id, account_id)

    def list_accounts(self, owner_id: int, include_inactive: bool = True) -> list[Account]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(finance_accounts)
                .where(
                    finance_accounts.c.user_id == owner_id,
                    *_state_clause(finance_accounts, include_inactive),
                )
                .order_by(finance_accounts.c.name.asc(), finance_accounts.c.id.asc())
            ).mappings().all()
        return [self._row_to_account(row) for row in rows]

    def update_account(
        self,
        owner_id: int,
        account_id: int,
        *,
        name: str | None = None,
        account_type: str | None = None,
        icon=UNSET,
        currency: str | None = None,
        initial_balance: int | None = None,
    ) -> Account:
        values: dict = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise ValueError("Account name required.")
            values["name"] = name
        if account_type is not None:
            values["type"] = AccountType.validate(account_type)
        if icon is not UNSET:
            values["icon"] = icon
        with self.engine.begin() as conn:
            existing = self._fetch_account(conn, owner_id, account_id)
            if currency is not None and normalize_currency(currency) != existing.currency:
                raise ValueError("Account currency cannot be changed after creation.")
            if initial_balance is not None and initial_balance != existing.initial_balance:
                raise ValueError("Initial balance cannot be changed after creation.")
            if not values:
                return existing
            row = conn.execute(
                update(finance_accounts)
                .where(finance_accounts.c.id == account_id, finance_accounts.c.user_id == owner_id)
                .values(**values, updated_at=func.now())
                .returning(*finance_accounts.c)
            ).mappings().first()
        return self._row_to_account(row)

    def set_account_state(self, owner_id: int, account_id: int, state: RecordState) -> Account:
        with self.engine.begin() as conn:
            row = conn.execute(
                update(finance_accounts)
                .where(finance_accounts.c.id == account_id, finance_accounts.c.user_id == owner_id)
                .values(is_active=state.is_active, updated_at=func.now())
                .returning(*finance_accounts.c)
            ).mappings().first()
        if not row:
            raise NotFoundError("Account", account_id)
        logger.info(f"Account #{account_id} is now {state.value}")
        return self._row_to_account(row)

    def delete_account(self, owner_id: int, account_id: int) -> str:
        """Remove an account, or deactivate it while transactions still reference it.

        Returns ``"deleted"`` or ``"deactivated"``.
        """
        with self.engine.begin() as conn:
            self._fetch_account(conn, owner_id, account_id)
            referenced = conn.execute(
                select(transactions.c.id)
                .where(
                    transactions.c.user_id == owner_id,
                    or_(
                        transactions.c.from_account_id == account_id,
                        transactions.c.to_account_id == account_id,
                    ),
                )
                .limit(1)
            ).first()
            if referenced:
                conn.execute(
                    update(finance_accounts)
                    .where(finance_accounts.c.id == account_id)
                    .values(is_active=False, updated_at=func.now())
                )
                outcome = "deactivated"
            else:
                conn.execute(delete(finance_accounts).where(finance_accounts.c.id == account_id))
                outcome = "deleted"
        logger.info(f"Account #{account_id} {outcome} for user {owner_id}")
        return outcome

    # ── CATEGORIES ────────────────────────────────────────

    def create_category(
        self,
        owner_id: int,
        name: str,
        category_type: str,
        color: str | None = None,
        icon: str | None = None,
        monthly_budget: int | None = None,
    ) -> Category:
        name = name.strip()
        if not name:
            raise ValueError("Category name required.")
        category_type = CategoryType.validate(category_type)
        monthly_budget = _validate_budget(category_type, monthly_budget)
        with self.engine.begin() as conn:
            self._base_currency(conn, owner_id)
            row = conn.execute(
                insert(categories)
                .values(
                    user_id=owner_id,
                    name=name,
                    type=category_type,
                    color=color or DEFAULT_CATEGORY_COLOR,
                    icon=icon,
                    monthly_budget=monthly_budget,
                )
                .returning(*categories.c)
            ).mappings().first()
        logger.info(f"Created {category_type} category #{row['id']} for user {owner_id}")
        return self._row_to_category(row)

    def seed_default_categories(self, owner_id: int) -> list[Category]:
        """Create the starter categories for an owner who has none yet."""
        with self.engine.begin() as conn:
            self._base_currency(conn, owner_id)
            existing = conn.execute(
                select(categories.c.id).where(categories.c.user_id == owner_id).limit(1)
            ).first()
            if existing:
                return []
            conn.execute(
                insert(categories),
                [{**entry, "user_id": owner_id} for entry in DEFAULT_CATEGORIES],
            )
        return self.list_categories(owner_id)

    def get_category(self, owner_id: int, category_id: int) -> Category:
        with self.engine.connect() as conn:
            return self._fetch_category(conn, owner_id, category_id)

    def list_categories(
        self,
        owner_id: int,
        include_inactive: bool = True,
        category_type: str | None = None,
    ) -> list[Category]:
        clauses = [categories.c.user_id == owner_id, *_state_clause(categories, include_inactive)]
        if category_type is not None:
            clauses.append(categories.c.type == CategoryType.validate(category_type))
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(categories)
                .where(*clauses)
                .order_by(categories.c.type.asc(), categories.c.name.asc(), categories.c.id.asc())
            ).mappings().all()
        return [self._row_to_category(row) for row in rows]

    def update_category(
        self,
        owner_id: int,
        category_id: int,
        *,
        name: str | None = None,
        category_type: str | None = None,
        color: str | None = None,
        icon=UNSET,
        monthly_budget=UNSET,
    ) -> Category:
        """Apply a partial update. Pass ``monthly_budget=None`` to clear the budget."""
        values: dict = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise ValueError("Category name required.")
            values["name"] = name
        if color is not None:
            values["color"] = color
        if icon is not UNSET:
            values["icon"] = icon
        with self.engine.begin() as conn:
            existing = self._fetch_category(conn, owner_id, category_id)
            resolved_type = existing.type
            if category_type is not None:
                resolved_type = CategoryType.validate(category_type)
                if resolved_type != existing.type:
                    in_use = conn.execute(
                        select(transactions.c.id)
                        .where(transactions.c.category_id == category_id)
                        .limit(1)
                    ).first()
                    if in_use:
                        raise ValueError("Cannot change the type of a category in use.")
                    values["type"] = resolved_type
            if monthly_budget is not UNSET:
                values["monthly_budget"] = _validate_budget(resolved_type, monthly_budget)
            elif resolved_type != CategoryType.EXPENSE and existing.monthly_budget is not None:
                values["monthly_budget"] = None
            if not values:
                return existing
            row = conn.execute(
                update(categories)
                .where(categories.c.id == category_id, categories.c.user_id == owner_id)
                .values(**values, updated_at=func.now())
                .returning(*categories.c)
            ).mappings().first()
        return self._row_to_category(row)

    def set_category_state(self, owner_id: int, category_id: int, state: RecordState) -> Category:
        with self.engine.begin() as conn:
            row = conn.execute(
                update(categories)
                .where(categories.c.id == category_id, categories.c.user_id == owner_id)
                .values(is_active=state.is_active, updated_at=func.now())
                .returning(*categories.c)
            ).mappings().first()
        if not row:
            raise NotFoundError("Category", category_id)
        return self._row_to_category(row)

    def delete_category(self, owner_id: int, category_id: int) -> int:
        """Delete a category and uncategorize its transactions.

        Returns the number of transactions that lost their category.
        """
        with self.engine.begin() as conn:
            self._fetch_category(conn, owner_id, category_id)
            cleared = conn.execute(
                update(transactions)
                .where(
                    transactions.c.user_id == owner_id,
                    transactions.c.category_id == category_id,
                )
                .values(category_id=None, updated_at=func.now())
            ).rowcount
            conn.execute(
                delete(categories).where(
                    categories.c.id == category_id, categories.c.user_id == owner_id
                )
            )
        logger.info(f"Deleted category #{category_id}; {cleared} transactions uncategorized")
        return cleared

    # ── TRANSACTIONS ──────────────────────────────────────

    def record_transaction(
        self,
        owner_id: int,
        *,
        amount: int,
        txn_type: str,
        date: date | datetime,
        currency: str | None = None,
        category_id: int | None = None,
        from_account_id: int | None = None,
        to_account_id: int | None = None,
        description: str | None = None,
        exchange_rate: Decimal | str | None = None,
    ) -> Transaction:
        with self.engine.begin() as conn:
            values = self._prepare_transaction(
                conn,
                owner_id,
                amount=amount,
                txn_type=txn_type,
                date=date,
                currency=currency,
                category_id=category_id,
                from_account_id=from_account_id,
                to_account_id=to_account_id,
                description=description,
                exchange_rate=exchange_rate,
            )
            row = conn.execute(
                insert(transactions)
                .values(user_id=owner_id, **values)
                .returning(*transactions.c)
            ).mappings().first()
        logger.info(f"Recorded {row['type']} #{row['id']} for user {owner_id}")
        return self._row_to_transaction(row)

    def update_transaction(
        self,
        owner_id: int,
        transaction_id: int,
        *,
        amount: int,
        txn_type: str,
        date: date | datetime,
        currency: str | None = None,
        category_id: int | None = None,
        from_account_id: int | None = None,
        to_account_id: int | None = None,
        description: str | None = None,
        exchange_rate: Decimal | str | None = None,
    ) -> Transaction:
        """Replace a transaction with a new authoritative version."""
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(transactions.c.id).where(
                    transactions.c.id == transaction_id,
                    transactions.c.user_id == owner_id,
                )
            ).first()
            if not existing:
                raise NotFoundError("Transaction", transaction_id)
            values = self._prepare_transaction(
                conn,
                owner_id,
                amount=amount,
                txn_type=txn_type,
                date=date,
                currency=currency,
                category_id=category_id,
                from_account_id=from_account_id,
                to_account_id=to_account_id,
                description=description,
                exchange_rate=exchange_rate,
            )
            row = conn.execute(
                update(transactions)
                .where(transactions.c.id == transaction_id, transactions.c.user_id == owner_id)
                .values(**values, updated_at=func.now())
                .returning(*transactions.c)
            ).mappings().first()
        logger.info(f"Updated transaction #{transaction_id} for user {owner_id}")
        return self._row_to_transaction(row)

    def delete_transaction(self, owner_id: int, transaction_id: int) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(transactions).where(
                    transactions.c.id == transaction_id,
                    transactions.c.user_id == owner_id,
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("Transaction", transaction_id)
        logger.info(f"Deleted transaction #{transaction_id} for user {owner_id}")

    def get_transaction(self, owner_id: int, transaction_id: int) -> Transaction:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(transactions).where(
                    transactions.c.id == transaction_id,
                    transactions.c.user_id == owner_id,
                )
            ).mappings().first()
        if not row:
            raise NotFoundError("Transaction", transaction_id)
        return self._row_to_transaction(row)

    def list_transactions(
        self, owner_id: int, txn_filter: TransactionFilter | None = None
    ) -> list[Transaction]:
        txn_filter = txn_filter or TransactionFilter()
        clauses = [transactions.c.user_id == owner_id]
        if txn_filter.types:
            clauses.append(transactions.c.type.in_(sorted(txn_filter.types)))
        if txn_filter.category_id is not None:
            clauses.append(transactions.c.category_id == txn_filter.category_id)
        if txn_filter.account_id is not None:
            clauses.append(
                or_(
                    transactions.c.from_account_id == txn_filter.account_id,
                    transactions.c.to_account_id == txn_filter.account_id,
                )
            )
        if txn_filter.start is not None:
            clauses.append(transactions.c.date >= txn_filter.start)
        if txn_filter.end is not None:
            clauses.append(transactions.c.date <= txn_filter.end)
        if txn_filter.search:
            clauses.append(transactions.c.description.ilike(f"%{txn_filter.search.strip()}%"))

        if txn_filter.newest_first:
            ordering = (transactions.c.date.desc(), transactions.c.id.desc())
        else:
            ordering = (transactions.c.date.asc(), transactions.c.id.asc())
        stmt = select(transactions).where(*clauses).order_by(*ordering)
        if txn_filter.limit is not None:
            stmt = stmt.limit(txn_filter.limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [self._row_to_transaction(row) for row in rows]

    # ── GOALS ─────────────────────────────────────────────

    def create_goal(
        self,
        owner_id: int,
        name: str,
        target_amount: int,
        target_date: date | datetime,
        currency: str | None = None,
        icon: str | None = None,
    ) -> Goal:
        name = name.strip()
        if not name:
            raise ValueError("Goal name required.")
        target_amount = _positive_minor_units(target_amount, "Target amount")
        with self.engine.begin() as conn:
            resolved_currency = (
                normalize_currency(currency) if currency else self._base_currency(conn, owner_id)
            )
            row = conn.execute(
                insert(goals)
                .values(
                    user_id=owner_id,
                    name=name,
                    currency=resolved_currency,
                    target_amount=target_amount,
                    target_date=as_date(target_date),
                    icon=icon,
                )
                .returning(*goals.c)
            ).mappings().first()
        logger.info(f"Created goal #{row['id']} for user {owner_id}")
        return self._row_to_goal(row)

    def get_goal(self, owner_id: int, goal_id: int) -> Goal:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(goals).where(goals.c.id == goal_id, goals.c.user_id == owner_id)
            ).mappings().first()
        if not row:
            raise NotFoundError("Goal", goal_id)
        return self._row_to_goal(row)

    def list_goals(self, owner_id: int) -> list[Goal]:
        """Goals ordered by target date, nearest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(goals)
                .where(goals.c.user_id == owner_id)
                .order_by(goals.c.target_date, goals.c.id)
            ).mappings().all()
        return [self._row_to_goal(row) for row in rows]

    def add_money_to_goal(self, owner_id: int, goal_id: int, amount: int) -> Goal:
        """Increment the saved amount in one SQL update, never read-modify-write."""
        amount = _positive_minor_units(amount, "Amount")
        with self.engine.begin() as conn:
            row = conn.execute(
                update(goals)
                .where(goals.c.id == goal_id, goals.c.user_id == owner_id)
                .values(current_amount=goals.c.current_amount + amount, updated_at=func.now())
                .returning(*goals.c)
            ).mappings().first()
        if not row:
            raise NotFoundError("Goal", goal_id)
        logger.info(f"Added {amount} to goal #{goal_id} for user {owner_id}")
        return self._row_to_goal(row)

    def delete_goal(self, owner_id: int, goal_id: int) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(goals).where(goals.c.id == goal_id, goals.c.user_id == owner_id)
            )
            if result.rowcount == 0:
                raise NotFoundError("Goal", goal_id)
        logger.info(f"Deleted goal #{goal_id} for user {owner_id}")

    # ── AGGREGATES ────────────────────────────────────────

    def account_flows(
        self,
        owner_id: int,
        as_of: datetime | None = None,
        account_id: int | None = None,
    ) -> dict[int, AccountFlows]:
        """Sum inbound and outbound flows per account with two grouped queries."""
        total_expr = func.coalesce(func.sum(transactions.c.amount), 0).label("total")
        base_clauses = [transactions.c.user_id == owner_id]
        if as_of is not None:
            base_clauses.append(transactions.c.date <= as_of)

        inbound_clauses = [
            *base_clauses,
            transactions.c.to_account_id.is_not(None),
            transactions.c.type.in_((TransactionType.INCOME, TransactionType.TRANSFER)),
        ]
        outbound_clauses = [
            *base_clauses,
            transactions.c.from_account_id.is_not(None),
            transactions.c.type.in_((TransactionType.EXPENSE, TransactionType.TRANSFER)),
        ]
        if account_id is not None:
            inbound_clauses.append(transactions.c.to_account_id == account_id)
            outbound_clauses.append(transactions.c.from_account_id == account_id)

        with self.engine.connect() as conn:
            inbound = conn.execute(
                select(transactions.c.to_account_id.label("account_id"), transactions.c.type, total_expr)
                .where(*inbound_clauses)
                .group_by(transactions.c.to_account_id, transactions.c.type)
            ).mappings().all()
            outbound = conn.execute(
                select(transactions.c.from_account_id.label("account_id"), transactions.c.type, total_expr)
                .where(*outbound_clauses)
                .group_by(transactions.c.from_account_id, transactions.c.type)
            ).mappings().all()

        sums: dict[int, dict[str, int]] = {}
        for row in inbound:
            key = "income_in" if row["type"] == TransactionType.INCOME else "transfer_in"
            sums.setdefault(row["account_id"], {})[key] = int(row["total"])
        for row in outbound:
            key = "expense_out" if row["type"] == TransactionType.EXPENSE else "transfer_out"
            sums.setdefault(row["account_id"], {})[key] = int(row["total"])
        return {account: AccountFlows(**values) for account, values in sums.items()}

    def assert_ledger_integrity(self, owner_id: int) -> None:
        """Raise if any of the owner's transactions contradicts its type."""
        with self.engine.connect() as conn:
            bad_ids = conn.execute(
                select(transactions.c.id)
                .where(transactions.c.user_id == owner_id, _malformed_transaction_clause())
                .order_by(transactions.c.id.asc())
                .limit(10)
            ).scalars().all()
        if bad_ids:
            logger.error(f"Malformed transactions for user {owner_id}: {list(bad_ids)}")
            raise LedgerIntegrityError(f"Malformed transactions in ledger: {list(bad_ids)}")

    # ── EXCHANGE RATES ────────────────────────────────────

    def record_exchange_rates(
        self,
        base_currency: str,
        rates: Mapping[str, Decimal | str | int],
        effective_date: date,
    ) -> int:
        """Store one snapshot per target currency, replacing same-day snapshots."""
        base = normalize_currency(base_currency)
        parsed = {
            normalize_currency(target): coerce_rate(rate)
            for target, rate in rates.items()
        }
        parsed.pop(base, None)
        effective = as_date(effective_date)
        with self.engine.begin() as conn:
            for target, rate in parsed.items():
                existing_id = conn.execute(
                    select(exchange_rates.c.id).where(
                        exchange_rates.c.base_currency == base,
                        exchange_rates.c.target_currency == target,
                        exchange_rates.c.effective_date == effective,
                    )
                ).scalar_one_or_none()
                if existing_id is None:
                    conn.execute(
                        insert(exchange_rates).values(
                            base_currency=base,
                            target_currency=target,
                            rate=str(rate),
                            effective_date=effective,
                        )
                    )
                else:
                    conn.execute(
                        update(exchange_rates)
                        .where(exchange_rates.c.id == existing_id)
                        .values(rate=str(rate))
                    )
        logger.info(f"Stored {len(parsed)} {base} exchange rates for {effective.isoformat()}")
        return len(parsed)

    # ── HELPERS ───────────────────────────────────────────

    def _prepare_transaction(
        self,
        conn: Connection,
        owner_id: int,
        *,
        amount: int,
        txn_type: str,
        date: date | datetime,
        currency: str | None,
        category_id: int | None,
        from_account_id: int | None,
        to_account_id: int | None,
        description: str | None,
        exchange_rate: Decimal | str | None,
    ) -> dict:
        txn_type = TransactionType.validate(txn_type)
        check_transaction_shape(txn_type, amount, from_account_id, to_account_id, category_id)
        base_currency = self._base_currency(conn, owner_id)

        accounts = [
            self._fetch_account(conn, owner_id, account_id)
            for account_id in (from_account_id, to_account_id)
            if account_id is not None
        ]
        if category_id is not None:
            category = self._fetch_category(conn, owner_id, category_id)
            if category.type != txn_type:
                raise LedgerIntegrityError(
                    f"A {category.type} category cannot be used on a {txn_type} transaction."
                )

        # Balances fold amounts unconverted, so every leg shares the account currency.
        account_currency = accounts[0].currency
        if any(account.currency != account_currency for account in accounts[1:]):
            raise LedgerIntegrityError(
                "Transfers between accounts of different currencies are not supported."
            )
        resolved_currency = normalize_currency(currency) if currency else account_currency
        if resolved_currency != account_currency:
            raise LedgerIntegrityError(
                f"Transaction currency {resolved_currency} does not match account currency {account_currency}."
            )
        occurred_at = as_datetime(date)
        if exchange_rate is not None:
            stored_rate = coerce_rate(exchange_rate)
        elif resolved_currency == base_currency:
            stored_rate = IDENTITY_RATE
        else:
            try:
                stored_rate = self.rate_table.get_rate(resolved_currency, base_currency, occurred_at.date())
            except RateUnavailable:
                logger.info(
                    f"No {resolved_currency}->{base_currency} rate to record for user {owner_id}"
                )
                stored_rate = None

        return {
            "amount": amount,
            "currency": resolved_currency,
            "type": txn_type,
            "date": occurred_at,
            "category_id": category_id,
            "from_account_id": from_account_id,
            "to_account_id": to_account_id,
            "description": description.strip() if description else None,
            "exchange_rate": str(stored_rate) if stored_rate is not None else None,
            "exchange_rate_currency": base_currency if stored_rate is not None else None,
        }

    def _base_currency(self, conn: Connection, owner_id: int) -> str:
        currency = conn.execute(
            select(users.c.base_currency).where(users.c.id == owner_id)
        ).scalar_one_or_none()
        if currency is None:
            raise NotFoundError("User", owner_id)
        return currency

    def _fetch_account(self, conn: Connection, owner_id: int, account_id: int) -> Account:
        row = conn.execute(
            select(finance_accounts).where(
                finance_accounts.c.id == account_id,
                finance_accounts.c.user_id == owner_id,
            )
        ).mappings().first()
        if not row:
            raise NotFoundError("Account", account_id)
        return self._row_to_account(row)

    def _fetch_category(self, conn: Connection, owner_id: int, category_id: int) -> Category:
        row = conn.execute(
            select(categories).where(
                categories.c.id == category_id,
                categories.c.user_id == owner_id,
            )
        ).mappings().first()
        if not row:
            raise NotFoundError("Category", category_id)
        return self._row_to_category(row)

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            base_currency=row["base_currency"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_account(row) -> Account:
        return Account(
            id=row["id"],
            owner_id=row["user_id"],
            name=row["name"],
            type=row["type"],
            initial_balance=int(row["initial_balance"]),
            currency=row["currency"],
            state=RecordState.from_flag(bool(row["is_active"])),
            icon=row["icon"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_category(row) -> Category:
        return Category(
            id=row["id"],
            owner_id=row["user_id"],
            name=row["name"],
            type=row["type"],
            color=row["color"],
            icon=row["icon"],
            monthly_budget=row["monthly_budget"],
            state=RecordState.from_flag(bool(row["is_active"])),
        )

    @staticmethod
    def _row_to_goal(row) -> Goal:
        return Goal(
            id=row["id"],
            owner_id=row["user_id"],
            name=row["name"],
            currency=row["currency"],
            target_amount=int(row["target_amount"]),
            current_amount=int(row["current_amount"]),
            target_date=row["target_date"],
            icon=row["icon"],
        )

    @staticmethod
    def _row_to_transaction(row) -> Transaction:
        try:
            check_transaction_shape(
                row["type"],
                int(row["amount"]),
                row["from_account_id"],
                row["to_account_id"],
                row["category_id"],
                require_accounts=False,
            )
        except LedgerIntegrityError as exc:
            logger.error(f"Transaction #{row['id']} is malformed: {exc}")
            raise LedgerIntegrityError(f"Transaction {row['id']} is malformed: {exc}") from exc
        return Transaction(
            id=row["id"],
            owner_id=row["user_id"],
            amount=int(row["amount"]),
            currency=row["currency"],
            type=row["type"],
            date=row["date"],
            category_id=row["category_id"],
            from_account_id=row["from_account_id"],
            to_account_id=row["to_account_id"],
            exchange_rate=Decimal(row["exchange_rate"]) if row["exchange_rate"] else None,
            exchange_rate_currency=row["exchange_rate_currency"],
            description=row["description"],
        )
