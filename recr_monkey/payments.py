from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

WEEKLY = "weekly"
MONTHLY = "monthly"
EVERY_4_WEEKS = "every_4_weeks"
YEARLY = "yearly"
SUPPORTED_FREQUENCIES = (WEEKLY, MONTHLY, EVERY_4_WEEKS, YEARLY)
FREQUENCY_ALIASES = {
    "4weeks": EVERY_4_WEEKS,
    "every4weeks": EVERY_4_WEEKS,
    "fourweeks": EVERY_4_WEEKS,
}

SOURCE_TYPES = ("bank_account", "debit_card", "credit_card")
UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class PaymentSource:
    id: int
    name: str
    type: str
    identifier: str


@dataclass(frozen=True)
class RecurringPayment:
    id: int
    name: str
    amount: Decimal
    currency: str
    frequency: str
    payment_source_id: int
    start_date: date
    category: Optional[str] = None

    @property
    def category_label(self) -> str:
        if self.category and self.category.strip():
            return self.category.strip()
        return UNCATEGORIZED


@dataclass(frozen=True)
class Occurrence:
    date: date
    payment: RecurringPayment
    payment_source: Optional[PaymentSource] = None


def normalize_frequency(value: str) -> str:
    """Map user input onto one of the supported frequency names.

    Unknown values are returned lower-cased rather than rejected; callers that
    need strictness use :func:`validate_frequency`.
    """
    normalized = value.strip().lower()
    if normalized in SUPPORTED_FREQUENCIES:
        return normalized
    compact = "".join(ch for ch in normalized if ch.isalnum())
    return FREQUENCY_ALIASES.get(compact, normalized)


def validate_frequency(value: str) -> str:
    normalized = normalize_frequency(value)
    if normalized not in SUPPORTED_FREQUENCIES:
        raise ValueError("Only weekly, monthly, every 4 weeks, or yearly payments are supported.")
    return normalized


def validate_source_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in SOURCE_TYPES:
        raise ValueError("Invalid payment source type.")
    return normalized


def validate_identifier(value: str) -> str:
    normalized = value.strip()
    if len(normalized) != 4 or not normalized.isdigit():
        raise ValueError("Identifier must be exactly 4 digits.")
    return normalized


def find_payment_source(
    source_id: int, sources: Iterable[PaymentSource]
) -> Optional[PaymentSource]:
    for source in sources:
        if source.id == source_id:
            return source
    return None


def is_used_by_payments(source_id: int, payments: Iterable[RecurringPayment]) -> bool:
    return any(payment.payment_source_id == source_id for payment in payments)
