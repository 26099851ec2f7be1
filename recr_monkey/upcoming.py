from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional

from recr_monkey.payments import PaymentSource, RecurringPayment, find_payment_source
from recr_monkey.recurrence import DEFAULT_HORIZON_DAYS, days_until_due, next_occurrence

URGENT = "urgent"
WARNING = "warning"
NORMAL = "normal"

URGENT_DAYS = 3
WARNING_DAYS = 7


@dataclass(frozen=True)
class UpcomingPayment:
    payment: RecurringPayment
    source: Optional[PaymentSource]
    due_date: date
    days_until_due: int

    @property
    def urgency(self) -> str:
        return urgency(self.days_until_due)

    @property
    def label(self) -> str:
        return due_label(self.days_until_due)


def upcoming_payments(
    payments: Iterable[RecurringPayment],
    sources: Iterable[PaymentSource],
    today: date,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> List[UpcomingPayment]:
    source_list = list(sources)
    upcoming: List[UpcomingPayment] = []
    for payment in payments:
        due_date = next_occurrence(payment, today, horizon_days)
        if due_date is None:
            continue
        upcoming.append(
            UpcomingPayment(
                payment=payment,
                source=find_payment_source(payment.payment_source_id, source_list),
                due_date=due_date,
                days_until_due=days_until_due(due_date, today),
            )
        )
    return sorted(upcoming, key=lambda item: item.due_date)


def urgency(days: int) -> str:
    if days <= URGENT_DAYS:
        return URGENT
    if days <= WARNING_DAYS:
        return WARNING
    return NORMAL


def due_label(days: int) -> str:
    if days == 0:
        return "Due today"
    if days == 1:
        return "Due tomorrow"
    return f"Due in {days} days"
