from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    true,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255)),
    Column("base_currency", String(3), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

finance_accounts = Table(
    "finance_accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("type", String(20), nullable=False),
    Column("initial_balance", BigInteger, nullable=False, server_default="0"),
    Column("currency", String(3), nullable=False),
    Column("icon", String(50)),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("type", String(20), nullable=False),
    Column("color", String(20), nullable=False, server_default="#6366f1"),
    Column("icon", String(50)),
    Column("monthly_budget", BigInteger),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("amount", BigInteger, nullable=False),
    Column("currency", String(3), nullable=False),
    # String-encoded so the recorded rate keeps its full precision.
    Column("exchange_rate", String(40)),
    Column("exchange_rate_currency", String(3)),
    Column("type", String(20), nullable=False),
    Column("description", String(500)),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="SET NULL")),
    Column("from_account_id", Integer, ForeignKey("finance_accounts.id", ondelete="SET NULL")),
    Column("to_account_id", Integer, ForeignKey("finance_accounts.id", ondelete="SET NULL")),
    Column("date", DateTime, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_transactions_user_date", "user_id", "date"),
)

goals = Table(
    "goals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("target_amount", BigInteger, nullable=False),
    Column("current_amount", BigInteger, nullable=False, server_default="0"),
    Column("target_date", Date, nullable=False),
    Column("icon", String(50)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

exchange_rates = Table(
    "exchange_rates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("base_currency", String(3), nullable=False),
    Column("target_currency", String(3), nullable=False),
    Column("rate", String(40), nullable=False),
    Column("effective_date", Date, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_exchange_rates_pair_date", "base_currency", "target_currency", "effective_date"),
)


def create_ledger_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args)


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)
