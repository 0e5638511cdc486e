from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from moneymate.errors import RateUnavailable
from moneymate.models import ExchangeRateSnapshot, Transaction
from moneymate.schema import exchange_rates

MINOR_UNIT = Decimal("1")
IDENTITY_RATE = Decimal("1")


class RateTable(Protocol):
    """Read-only source of dated base->target exchange rates."""

    def get_rate(self, base_currency: str, target_currency: str, on_date: date) -> Decimal:
        ...


def select_snapshot_rate(
    snapshots: Iterable[ExchangeRateSnapshot], on_date: date
) -> Decimal | None:
    """Pick the rate effective on `on_date` from one pair's snapshots.

    The latest snapshot on or before the date wins; when every snapshot is
    later, the earliest one is used. Snapshots sharing a date resolve to the
    last one supplied.
    """
    on_or_before: ExchangeRateSnapshot | None = None
    earliest: ExchangeRateSnapshot | None = None
    for snapshot in snapshots:
        if snapshot.effective_date <= on_date:
            if on_or_before is None or snapshot.effective_date >= on_or_before.effective_date:
                on_or_before = snapshot
        if earliest is None or snapshot.effective_date <= earliest.effective_date:
            earliest = snapshot
    chosen = on_or_before or earliest
    return chosen.rate if chosen else None


@dataclass
class StaticRateTable:
    """In-memory rate snapshots keyed by currency pair."""

    snapshots: list[ExchangeRateSnapshot] = field(default_factory=list)

    def add(
        self,
        base_currency: str,
        target_currency: str,
        rate: Decimal | str | int,
        effective_date: date | str,
    ) -> None:
        self.snapshots.append(
            ExchangeRateSnapshot(
                base_currency=normalize_currency(base_currency),
                target_currency=normalize_currency(target_currency),
                rate=coerce_rate(rate),
                effective_date=_normalize_rate_date(effective_date),
            )
        )

    def get_rate(self, base_currency: str, target_currency: str, on_date: date) -> Decimal:
        base = normalize_currency(base_currency)
        target = normalize_currency(target_currency)
        lookup_date = _normalize_rate_date(on_date)
        rate = select_snapshot_rate(self._pair(base, target), lookup_date)
        if rate is not None:
            return rate
        inverse = select_snapshot_rate(self._pair(target, base), lookup_date)
        if inverse is None:
            raise RateUnavailable(base, target)
        return invert_rate(inverse)

    def _pair(self, base: str, target: str) -> list[ExchangeRateSnapshot]:
        return [
            snapshot
            for snapshot in self.snapshots
            if snapshot.base_currency == base and snapshot.target_currency == target
        ]


@dataclass(frozen=True)
class StoreRateTable:
    """Rate snapshots read from the `exchange_rates` table."""

    engine: Engine

    def get_rate(self, base_currency: str, target_currency: str, on_date: date) -> Decimal:
        base = normalize_currency(base_currency)
        target = normalize_currency(target_currency)
        lookup_date = _normalize_rate_date(on_date)
        with self.engine.connect() as conn:
            rate = self._lookup(conn, base, target, lookup_date)
            if rate is not None:
                return coerce_rate(rate)
            inverse = self._lookup(conn, target, base, lookup_date)
        if inverse is None:
            raise RateUnavailable(base, target)
        return invert_rate(coerce_rate(inverse))

    @staticmethod
    def _lookup(conn: Connection, base: str, target: str, lookup_date: date) -> str | None:
        pair_clause = (
            exchange_rates.c.base_currency == base,
            exchange_rates.c.target_currency == target,
        )
        rate = conn.execute(
            select(exchange_rates.c.rate)
            .where(*pair_clause, exchange_rates.c.effective_date <= lookup_date)
            .order_by(exchange_rates.c.effective_date.desc(), exchange_rates.c.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        if rate is None:
            rate = conn.execute(
                select(exchange_rates.c.rate)
                .where(*pair_clause)
                .order_by(exchange_rates.c.effective_date.asc(), exchange_rates.c.id.desc())
                .limit(1)
            ).scalar_one_or_none()
        return rate


def convert_amount(
    amount: int,
    source_currency: str,
    target_currency: str,
    rate_table: RateTable,
    on_date: date | datetime,
) -> int:
    """Convert minor units between currencies using the rate effective on `on_date`."""
    normalized_source = normalize_currency(source_currency)
    normalized_target = normalize_currency(target_currency)
    if normalized_source == normalized_target:
        return amount

    rate = rate_table.get_rate(
        normalized_source, normalized_target, _normalize_rate_date(on_date)
    )
    return apply_rate(amount, rate)


def convert_transaction(
    txn: Transaction,
    target_currency: str,
    rate_table: RateTable,
    on_date: date | datetime | None = None,
) -> int:
    """Convert one transaction's amount, preferring the rate stored when it was recorded."""
    normalized_target = normalize_currency(target_currency)
    if normalize_currency(txn.currency) == normalized_target:
        return txn.amount
    if txn.exchange_rate is not None and txn.exchange_rate_currency == normalized_target:
        return apply_rate(txn.amount, txn.exchange_rate)
    return convert_amount(
        txn.amount,
        txn.currency,
        normalized_target,
        rate_table,
        on_date or txn.date,
    )


def apply_rate(amount: int, rate: Decimal) -> int:
    converted = (Decimal(amount) * rate).quantize(MINOR_UNIT, rounding=ROUND_HALF_EVEN)
    return int(converted)


def invert_rate(rate: Decimal) -> Decimal:
    """Turn a target->base rate into the base->target rate it implies."""
    return IDENTITY_RATE / rate


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def coerce_rate(rate: Decimal | str | int) -> Decimal:
    if isinstance(rate, Decimal):
        value = rate
    else:
        try:
            value = Decimal(str(rate))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid exchange rate: {rate!r}") from exc
    if not value.is_finite() or value <= 0:
        raise ValueError("Exchange rate must be a positive number.")
    return value


def _normalize_rate_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValueError("Date must be in YYYY-MM-DD format.") from exc
    return parsed
