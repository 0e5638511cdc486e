from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from moneymate.currency_conversion import StaticRateTable
from moneymate.ledger_store import LedgerStore
from moneymate.schema import init_db


def make_memory_store(rate_table=None, base_currency: str = "IDR"):
    """A store over a private in-memory database plus one user."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    store = LedgerStore(engine, rate_table=rate_table or StaticRateTable())
    user = store.create_user(name="Ayu", base_currency=base_currency)
    return store, user.id


def make_file_store(directory: str, rate_table=None, base_currency: str = "IDR"):
    """A store over a database file, safe to read from several threads."""
    engine = create_engine(
        f"sqlite:///{directory}/ledger.db",
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    store = LedgerStore(engine, rate_table=rate_table or StaticRateTable())
    user = store.create_user(name="Ayu", base_currency=base_currency)
    return store, user.id


def record_income(store, owner_id, account_id, amount, when: datetime, **extra):
    return store.record_transaction(
        owner_id,
        amount=amount,
        txn_type="income",
        date=when,
        to_account_id=account_id,
        **extra,
    )


def record_expense(store, owner_id, account_id, amount, when: datetime, **extra):
    return store.record_transaction(
        owner_id,
        amount=amount,
        txn_type="expense",
        date=when,
        from_account_id=account_id,
        **extra,
    )


def record_transfer(store, owner_id, from_account_id, to_account_id, amount, when: datetime, **extra):
    return store.record_transaction(
        owner_id,
        amount=amount,
        txn_type="transfer",
        date=when,
        from_account_id=from_account_id,
        to_account_id=to_account_id,
        **extra,
    )
