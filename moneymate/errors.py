from __future__ import annotations


class MoneyMateError(Exception):
    """Base class for ledger engine failures."""


class NotFoundError(MoneyMateError, LookupError):
    """Raised when a record does not exist or belongs to another owner."""

    def __init__(self, kind: str, record_id: object) -> None:
        super().__init__(f"{kind} {record_id} not found.")
        self.kind = kind
        self.record_id = record_id


class RateUnavailable(MoneyMateError, RuntimeError):
    """Raised when no exchange-rate snapshot exists for a currency pair."""

    def __init__(self, base_currency: str, target_currency: str) -> None:
        super().__init__(f"No exchange rate available for {base_currency}->{target_currency}.")
        self.base_currency = base_currency
        self.target_currency = target_currency


class LedgerIntegrityError(MoneyMateError, ValueError):
    """Raised when a transaction's shape contradicts its type."""
