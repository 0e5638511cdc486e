from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional

from moneymate.currency_conversion import RateTable, convert_amount
from moneymate.ledger_store import LedgerStore
from moneymate.models import Account, AccountFlows, Transaction, TransactionType


def derive_balance(
    account: Account,
    transactions: Iterable[Transaction],
    as_of: Optional[datetime] = None,
) -> int:
    """Fold ledger events into an account's balance, in the account's own currency.

    This is the reference definition of a balance. The grouped SQL path in
    `balances_for_owner` must agree with it for every account and cutoff.
    """
    balance = account.initial_balance
    for txn in transactions:
        if as_of is not None and txn.date > as_of:
            continue
        if txn.type == TransactionType.INCOME and txn.to_account_id == account.id:
            balance += txn.amount
        elif txn.type == TransactionType.EXPENSE and txn.from_account_id == account.id:
            balance -= txn.amount
        elif txn.type == TransactionType.TRANSFER:
            if txn.to_account_id == account.id:
                balance += txn.amount
            if txn.from_account_id == account.id:
                balance -= txn.amount
    return balance


def current_balance(
    store: LedgerStore,
    owner_id: int,
    account_id: int,
    as_of: Optional[datetime] = None,
) -> int:
    account = store.get_account(owner_id, account_id)
    store.assert_ledger_integrity(owner_id)
    flows = store.account_flows(owner_id, as_of=as_of, account_id=account_id)
    return account.initial_balance + flows.get(account_id, AccountFlows()).net


def balances_for_owner(
    store: LedgerStore,
    owner_id: int,
    as_of: Optional[datetime] = None,
) -> dict[int, int]:
    """Balances of every account the owner has, active or not, keyed by account id."""
    store.assert_ledger_integrity(owner_id)
    flows = store.account_flows(owner_id, as_of=as_of)
    return {
        account.id: account.initial_balance + flows.get(account.id, AccountFlows()).net
        for account in store.list_accounts(owner_id)
    }


def total_balance(
    store: LedgerStore,
    rate_table: RateTable,
    owner_id: int,
    on_date: date | datetime,
) -> int:
    """Sum of active account balances in the owner's base currency."""
    base_currency = store.get_base_currency(owner_id)
    balances = balances_for_owner(store, owner_id)
    total = 0
    for account in store.list_accounts(owner_id, include_inactive=False):
        total += convert_amount(
            balances[account.id],
            account.currency,
            base_currency,
            rate_table,
            on_date,
        )
    return total
