from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from recr_monkey.payments import (
    EVERY_4_WEEKS,
    MONTHLY,
    WEEKLY,
    YEARLY,
    PaymentSource,
    normalize_frequency,
)

FREQUENCY_LABELS = {
    WEEKLY: "Weekly",
    MONTHLY: "Monthly",
    EVERY_4_WEEKS: "Every 4 Weeks",
    YEARLY: "Yearly",
}
SOURCE_TYPE_LABELS = {
    "bank_account": "Bank Account",
    "debit_card": "Debit Card",
    "credit_card": "Credit Card",
}
CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
    "CAD": "CA$",
    "AUD": "A$",
    "NZD": "NZ$",
    "CHF": "CHF\u00a0",
    "SEK": "SEK\u00a0",
}
ZERO_DECIMAL_CURRENCIES = {"JPY"}
UNKNOWN_SOURCE = "Unknown source"


def format_currency(amount: Decimal | int | float | str, currency: str) -> str:
    """Render an amount en-US style, e.g. ``$1,234,567.89``.

    An empty currency falls back to USD; unknown codes prefix the ISO code.
    """
    code = (currency or "USD").strip().upper() or "USD"
    digits = 0 if code in ZERO_DECIMAL_CURRENCIES else 2
    value = Decimal(str(amount)).quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    symbol = CURRENCY_SYMBOLS.get(code, f"{code}\u00a0")
    return f"{sign}{symbol}{abs(value):,.{digits}f}"


def format_frequency(frequency: str) -> str:
    return FREQUENCY_LABELS.get(normalize_frequency(frequency), "Unknown")


def format_source(source: Optional[PaymentSource]) -> str:
    if source is None:
        return UNKNOWN_SOURCE
    type_label = SOURCE_TYPE_LABELS.get(source.type, "Card")
    return f"{source.name} ({type_label} •••• {source.identifier})"


def is_today(value: date, today: Optional[date] = None) -> bool:
    return value == (today or date.today())
