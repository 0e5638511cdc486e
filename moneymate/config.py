"""
Runtime configuration read from environment variables.
"""

import os

from moneymate.currency_conversion import normalize_currency

FALLBACK_CURRENCY = "IDR"


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", FALLBACK_CURRENCY)
    try:
        return normalize_currency(raw)
    except ValueError:
        return FALLBACK_CURRENCY


DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./moneymate.db")
FRONTEND_ORIGIN: str = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
SYSTEM_DEFAULT_CURRENCY: str = get_system_default_currency()

# Shared secret expected from the external exchange-rate job. Empty disables the check.
RATES_SECRET: str = os.getenv("RATES_SECRET", "")

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
DEFAULT_TREND_MONTHS: int = int(os.getenv("DEFAULT_TREND_MONTHS", "6"))
