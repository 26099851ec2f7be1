from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Hashable, Iterable, List, Optional, Sequence

from recr_monkey.calendar_grid import CalendarDay
from recr_monkey.currency_conversion import BASE_CURRENCY, CurrencyNormalizer
from recr_monkey.payments import (
    EVERY_4_WEEKS,
    MONTHLY,
    WEEKLY,
    YEARLY,
    PaymentSource,
    RecurringPayment,
    find_payment_source,
    normalize_frequency,
)
from recr_monkey.recurrence import occurrences_between

ZERO = Decimal("0")

# Average-frequency approximations, not occurrence counts.
MONTHLY_FACTORS = {
    MONTHLY: Decimal("1"),
    WEEKLY: Decimal("4.33"),
    EVERY_4_WEEKS: Decimal("1.08"),
    YEARLY: Decimal("1") / Decimal("12"),
}
YEARLY_FACTORS = {
    MONTHLY: Decimal("12"),
    WEEKLY: Decimal("52"),
    EVERY_4_WEEKS: Decimal("13"),
    YEARLY: Decimal("1"),
}
YEARLY_OCCURRENCES = {MONTHLY: 12, WEEKLY: 52, EVERY_4_WEEKS: 13, YEARLY: 1}


@dataclass(frozen=True)
class PaymentGroup:
    key: Hashable
    payments: List[RecurringPayment]
    count: int
    monthly_total: Decimal
    yearly_total: Decimal
    currency: str = BASE_CURRENCY
    source: Optional[PaymentSource] = None

    def in_currency(self, normalizer: CurrencyNormalizer, currency: str) -> "PaymentGroup":
        return replace(
            self,
            monthly_total=normalizer.convert(self.monthly_total, self.currency, currency),
            yearly_total=normalizer.convert(self.yearly_total, self.currency, currency),
            currency=currency,
        )


@dataclass(frozen=True)
class PaymentSummary:
    count: int
    monthly_total: Decimal
    yearly_total: Decimal
    currency: str = BASE_CURRENCY

    def in_currency(self, normalizer: CurrencyNormalizer, currency: str) -> "PaymentSummary":
        return replace(
            self,
            monthly_total=normalizer.convert(self.monthly_total, self.currency, currency),
            yearly_total=normalizer.convert(self.yearly_total, self.currency, currency),
            currency=currency,
        )


@dataclass(frozen=True)
class MonthTotal:
    month_start: date
    total: Decimal


@dataclass(frozen=True)
class ExpenseTrend:
    months: List[MonthTotal]
    total: Decimal
    average_monthly: Decimal
    currency: str = BASE_CURRENCY

    def in_currency(self, normalizer: CurrencyNormalizer, currency: str) -> "ExpenseTrend":
        return ExpenseTrend(
            months=[
                MonthTotal(
                    month_start=item.month_start,
                    total=normalizer.convert(item.total, self.currency, currency),
                )
                for item in self.months
            ],
            total=normalizer.convert(self.total, self.currency, currency),
            average_monthly=normalizer.convert(self.average_monthly, self.currency, currency),
            currency=currency,
        )


@dataclass(frozen=True)
class CategoryHighlights:
    highest_spend: PaymentGroup
    most_frequent: PaymentGroup
    yearly_occurrences: int


def monthly_equivalent(amount: Decimal, frequency: str) -> Decimal:
    factor = MONTHLY_FACTORS.get(normalize_frequency(frequency))
    if factor is None:
        return ZERO
    return _coerce_amount(amount) * factor


def yearly_equivalent(amount: Decimal, frequency: str) -> Decimal:
    factor = YEARLY_FACTORS.get(normalize_frequency(frequency))
    if factor is None:
        return ZERO
    return _coerce_amount(amount) * factor


def summarize(
    payments: Iterable[RecurringPayment], normalizer: CurrencyNormalizer
) -> PaymentSummary:
    payment_list = list(payments)
    monthly_total, yearly_total = _sum_equivalents(payment_list, normalizer)
    return PaymentSummary(
        count=len(payment_list),
        monthly_total=monthly_total,
        yearly_total=yearly_total,
    )


def group_by_category(
    payments: Iterable[RecurringPayment], normalizer: CurrencyNormalizer
) -> List[PaymentGroup]:
    grouped: Dict[str, List[RecurringPayment]] = {}
    for payment in payments:
        grouped.setdefault(payment.category_label, []).append(payment)
    return _build_groups(grouped, normalizer)


def group_by_payment_source(
    payments: Iterable[RecurringPayment],
    sources: Iterable[PaymentSource],
    normalizer: CurrencyNormalizer,
) -> List[PaymentGroup]:
    """Group payments by the source they are charged to.

    Payments whose source no longer exists still form a group, with
    ``source`` set to ``None``.
    """
    source_list = list(sources)
    grouped: Dict[int, List[RecurringPayment]] = {}
    for payment in payments:
        grouped.setdefault(payment.payment_source_id, []).append(payment)
    return _build_groups(
        grouped,
        normalizer,
        resolve_source=lambda key: find_payment_source(key, source_list),
    )


def category_highlights(groups: Sequence[PaymentGroup]) -> Optional[CategoryHighlights]:
    if not groups:
        return None
    highest_spend = max(groups, key=lambda group: group.yearly_total)
    most_frequent = max(groups, key=lambda group: group.count)
    yearly_occurrences = sum(
        YEARLY_OCCURRENCES.get(normalize_frequency(payment.frequency), 0)
        for payment in most_frequent.payments
    )
    return CategoryHighlights(
        highest_spend=highest_spend,
        most_frequent=most_frequent,
        yearly_occurrences=yearly_occurrences,
    )


def grid_total(cells: Iterable[CalendarDay], normalizer: CurrencyNormalizer) -> Decimal:
    """Sum every occurrence shown in a month grid, in USD."""
    total = ZERO
    for cell in cells:
        for occurrence in cell.occurrences:
            payment = occurrence.payment
            total += normalizer.to_usd(payment.amount, payment.currency)
    return total


def year_grid_total(
    months: Iterable[Iterable[CalendarDay]], normalizer: CurrencyNormalizer
) -> Decimal:
    return sum((grid_total(cells, normalizer) for cells in months), ZERO)


def expense_trend(
    payments: Iterable[RecurringPayment],
    normalizer: CurrencyNormalizer,
    today: date,
    months_before: int = 6,
    months_after: int = 6,
) -> ExpenseTrend:
    """Actual occurrence totals per month around ``today``.

    The average divides the window total by 12 regardless of window size.
    """
    if months_before < 0 or months_after < 0:
        raise ValueError("months_before and months_after must not be negative.")
    payment_list = list(payments)
    amounts_in_usd = [
        normalizer.to_usd(payment.amount, payment.currency) for payment in payment_list
    ]

    months: List[MonthTotal] = []
    for offset in range(-months_before, months_after + 1):
        month_start = _shift_month(today.replace(day=1), offset)
        month_end = _shift_month(month_start, 1) - timedelta(days=1)
        total = ZERO
        for payment, amount_in_usd in zip(payment_list, amounts_in_usd):
            count = len(occurrences_between(payment, month_start, month_end))
            total += amount_in_usd * count
        months.append(MonthTotal(month_start=month_start, total=total))

    window_total = sum((item.total for item in months), ZERO)
    return ExpenseTrend(
        months=months,
        total=window_total,
        average_monthly=window_total / Decimal("12"),
    )


def _build_groups(
    grouped: Dict[Hashable, List[RecurringPayment]],
    normalizer: CurrencyNormalizer,
    resolve_source=None,
) -> List[PaymentGroup]:
    groups: List[PaymentGroup] = []
    for key, members in grouped.items():
        monthly_total, yearly_total = _sum_equivalents(members, normalizer)
        groups.append(
            PaymentGroup(
                key=key,
                payments=members,
                count=len(members),
                monthly_total=monthly_total,
                yearly_total=yearly_total,
                source=resolve_source(key) if resolve_source else None,
            )
        )
    return sorted(groups, key=lambda group: group.yearly_total, reverse=True)


def _sum_equivalents(
    payments: Iterable[RecurringPayment], normalizer: CurrencyNormalizer
) -> tuple[Decimal, Decimal]:
    monthly_total = ZERO
    yearly_total = ZERO
    for payment in payments:
        amount_in_usd = normalizer.to_usd(payment.amount, payment.currency)
        monthly_total += monthly_equivalent(amount_in_usd, payment.frequency)
        yearly_total += yearly_equivalent(amount_in_usd, payment.frequency)
    return monthly_total, yearly_total


def _shift_month(month_start: date, months: int) -> date:
    total_month = month_start.month - 1 + months
    return date(month_start.year + total_month // 12, total_month % 12 + 1, 1)


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
