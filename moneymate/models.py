from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from moneymate.errors import LedgerIntegrityError


class RecordState(str, Enum):
    """Lifecycle of accounts and categories.

    Inactive records are hidden from pickers but still take part in
    balance math for every event that references them.
    """

    ACTIVE = "active"
    INACTIVE = "inactive"

    @classmethod
    def from_flag(cls, is_active: bool) -> "RecordState":
        return cls.ACTIVE if is_active else cls.INACTIVE

    @property
    def is_active(self) -> bool:
        return self is RecordState.ACTIVE


class TransactionType:
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    values = {INCOME, EXPENSE, TRANSFER}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid transaction type.")
        return normalized


class AccountType:
    values = {"bank", "cash", "e-wallet", "investment", "other"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid account type.")
        return normalized


class CategoryType:
    INCOME = "income"
    EXPENSE = "expense"
    values = {INCOME, EXPENSE}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid category type.")
        return normalized


@dataclass(frozen=True)
class User:
    id: int
    name: Optional[str]
    base_currency: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Account:
    id: int
    owner_id: int
    name: str
    type: str
    initial_balance: int
    currency: str
    state: RecordState = RecordState.ACTIVE
    icon: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Category:
    id: int
    owner_id: int
    name: str
    type: str
    color: str = "#6366f1"
    icon: Optional[str] = None
    monthly_budget: Optional[int] = None
    state: RecordState = RecordState.ACTIVE


@dataclass(frozen=True)
class Transaction:
    id: int
    owner_id: int
    amount: int
    currency: str
    type: str
    date: datetime
    category_id: Optional[int] = None
    from_account_id: Optional[int] = None
    to_account_id: Optional[int] = None
    exchange_rate: Optional[Decimal] = None
    exchange_rate_currency: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Goal:
    """A savings target tracked apart from account balances."""

    id: int
    owner_id: int
    name: str
    currency: str
    target_amount: int
    current_amount: int
    target_date: date
    icon: Optional[str] = None

    @property
    def remaining(self) -> int:
        return max(self.target_amount - self.current_amount, 0)

    @property
    def progress_percent(self) -> float:
        return min(self.current_amount / self.target_amount * 100, 100)


@dataclass(frozen=True)
class ExchangeRateSnapshot:
    base_currency: str
    target_currency: str
    rate: Decimal
    effective_date: date


@dataclass(frozen=True)
class TransactionFilter:
    """Declarative predicate for owner-scoped transaction reads.

    `start` and `end` are inclusive instants; `search` matches the
    description case-insensitively.
    """

    types: Optional[frozenset[str]] = None
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    search: Optional[str] = None
    limit: Optional[int] = None
    newest_first: bool = False


def check_transaction_shape(
    txn_type: str,
    amount: int,
    from_account_id: Optional[int],
    to_account_id: Optional[int],
    category_id: Optional[int],
    *,
    require_accounts: bool = True,
) -> None:
    """Validate the account/category fields a transaction type allows.

    With ``require_accounts=False`` a missing account reference is accepted,
    which is how rows look after their account was removed.
    """
    if txn_type not in TransactionType.values:
        raise LedgerIntegrityError(f"Unknown transaction type: {txn_type!r}.")
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise LedgerIntegrityError("Amount must be a positive integer of minor units.")

    if txn_type == TransactionType.INCOME:
        if from_account_id is not None:
            raise LedgerIntegrityError("Income cannot have a source account.")
        if require_accounts and to_account_id is None:
            raise LedgerIntegrityError("Income requires a destination account.")
    elif txn_type == TransactionType.EXPENSE:
        if to_account_id is not None:
            raise LedgerIntegrityError("Expense cannot have a destination account.")
        if require_accounts and from_account_id is None:
            raise LedgerIntegrityError("Expense requires a source account.")
    else:
        if category_id is not None:
            raise LedgerIntegrityError("Transfers cannot have a category.")
        if require_accounts and (from_account_id is None or to_account_id is None):
            raise LedgerIntegrityError(
                "Transfer requires both source and destination accounts."
            )
        if from_account_id is not None and from_account_id == to_account_id:
            raise LedgerIntegrityError("Cannot transfer to the same account.")


@dataclass(frozen=True)
class AccountFlows:
    """Per-account sums of the four event shapes that move a balance."""

    income_in: int = 0
    expense_out: int = 0
    transfer_in: int = 0
    transfer_out: int = 0

    @property
    def net(self) -> int:
        return self.income_in - self.expense_out + self.transfer_in - self.transfer_out
