from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Optional, Sequence

from recr_monkey.payments import (
    Occurrence,
    PaymentSource,
    RecurringPayment,
    find_payment_source,
)
from recr_monkey.recurrence import occurrences_on_date

MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class CalendarDay:
    date: Optional[date]
    occurrences: List[Occurrence] = field(default_factory=list)

    @property
    def is_blank(self) -> bool:
        return self.date is None


def build_month_grid(
    year: int,
    month: int,
    payments: Iterable[RecurringPayment],
    sources: Iterable[PaymentSource],
) -> List[CalendarDay]:
    """Lay out one month as calendar cells, Sunday in the first column.

    Leading blank cells pad the first week so day 1 sits under its weekday.
    Each real day lists the occurrences falling on it, largest amount first.
    """
    if not 1 <= month <= MONTHS_PER_YEAR:
        raise ValueError("month must be between 1 and 12.")
    payment_list = list(payments)
    source_list = list(sources)

    first_weekday, days_in_month = monthrange(year, month)
    leading_blanks = (first_weekday + 1) % 7

    days: List[CalendarDay] = [CalendarDay(date=None) for _ in range(leading_blanks)]
    for day in range(1, days_in_month + 1):
        current = date(year, month, day)
        days.append(
            CalendarDay(
                date=current,
                occurrences=_occurrences_for_day(current, payment_list, source_list),
            )
        )
    return days


def build_year_grid(
    year: int,
    payments: Iterable[RecurringPayment],
    sources: Iterable[PaymentSource],
) -> List[List[CalendarDay]]:
    payment_list = list(payments)
    source_list = list(sources)
    return [
        build_month_grid(year, month, payment_list, source_list)
        for month in range(1, MONTHS_PER_YEAR + 1)
    ]


def _occurrences_for_day(
    day: date,
    payments: Sequence[RecurringPayment],
    sources: Sequence[PaymentSource],
) -> List[Occurrence]:
    occurrences: List[Occurrence] = []
    for payment in payments:
        for occurrence_date in occurrences_on_date(payment, day):
            occurrences.append(
                Occurrence(
                    date=occurrence_date,
                    payment=payment,
                    payment_source=find_payment_source(payment.payment_source_id, sources),
                )
            )
    # sorted() is stable, so equal amounts keep payment order.
    return sorted(occurrences, key=lambda item: item.payment.amount, reverse=True)
