from __future__ import annotations

from calendar import monthrange
from datetime import date, timedelta
from typing import List, Optional

from recr_monkey.payments import (
    EVERY_4_WEEKS,
    MONTHLY,
    WEEKLY,
    YEARLY,
    RecurringPayment,
    normalize_frequency,
)

WEEKLY_DAYS = 7
FOUR_WEEKS_DAYS = 28
INTERVAL_DAYS = {WEEKLY: WEEKLY_DAYS, EVERY_4_WEEKS: FOUR_WEEKS_DAYS}
MONTH_STEPS = {MONTHLY: 1, YEARLY: 12}
# A Feb 29 anchor can go eight years without a match (e.g. 2096 -> 2104).
MAX_ANCHOR_STEPS = 12 * 9

DEFAULT_HORIZON_DAYS = 28


def occurrences_on_date(payment: RecurringPayment, target: date) -> List[date]:
    """Return the occurrence of ``payment`` that falls on ``target``, if any.

    The result holds zero or one date. Unknown frequencies never match.
    """
    start = payment.start_date
    if start.year > target.year or (
        start.year == target.year and start.month > target.month
    ):
        return []

    frequency = normalize_frequency(payment.frequency)
    if frequency in INTERVAL_DAYS:
        if _on_lattice(start, target, INTERVAL_DAYS[frequency]):
            return [target]
        return []
    if frequency == MONTHLY:
        if start.day == target.day and target >= start:
            return [date(target.year, target.month, target.day)]
        return []
    if frequency == YEARLY:
        if start.day == target.day and start.month == target.month and target >= start:
            return [date(target.year, target.month, target.day)]
        return []
    return []


def occurrences_between(
    payment: RecurringPayment, range_start: date, range_end: date
) -> List[date]:
    if range_start > range_end:
        raise ValueError("range_start must be on or before range_end.")
    occurrences: List[date] = []
    current = first_occurrence_on_or_after(payment, range_start)
    while current is not None and current <= range_end:
        occurrences.append(current)
        if current == date.max:
            break
        current = first_occurrence_on_or_after(payment, current + timedelta(days=1))
    return occurrences


def first_occurrence_on_or_after(
    payment: RecurringPayment, minimum_date: date
) -> Optional[date]:
    frequency = normalize_frequency(payment.frequency)
    if frequency in INTERVAL_DAYS:
        return _first_interval_on_or_after(
            payment.start_date, minimum_date, INTERVAL_DAYS[frequency]
        )
    if frequency in MONTH_STEPS:
        return _first_anchored_on_or_after(
            payment.start_date, minimum_date, MONTH_STEPS[frequency]
        )
    return None


def next_occurrence(
    payment: RecurringPayment,
    today: date,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> Optional[date]:
    """Next due date on or after ``today`` within ``horizon_days``.

    A payment that has not started yet is next due on its start date.
    """
    if horizon_days < 0:
        raise ValueError("horizon_days must not be negative.")
    if horizon_days > (date.max - today).days:
        limit = date.max
    else:
        limit = today + timedelta(days=horizon_days)
    if payment.start_date > limit:
        return None
    candidate = first_occurrence_on_or_after(payment, today)
    if candidate is None or candidate > limit:
        return None
    return candidate


def days_until_due(due_date: date, today: date) -> int:
    return (due_date - today).days


def _on_lattice(start: date, target: date, interval_days: int) -> bool:
    if target < start:
        return False
    return (target - start).days % interval_days == 0


def _first_interval_on_or_after(
    start_date: date, minimum_date: date, interval_days: int
) -> Optional[date]:
    if start_date >= minimum_date:
        return start_date
    days_between = (minimum_date - start_date).days
    intervals = (days_between + interval_days - 1) // interval_days
    offset_days = interval_days * intervals
    if offset_days > (date.max - start_date).days:
        return None
    return start_date + timedelta(days=offset_days)


def _first_anchored_on_or_after(
    start_date: date, minimum_date: date, month_step: int
) -> Optional[date]:
    if start_date >= minimum_date:
        return start_date
    months_between = (minimum_date.year - start_date.year) * 12 + (
        minimum_date.month - start_date.month
    )
    month_offset = (months_between // month_step) * month_step
    for _ in range(MAX_ANCHOR_STEPS):
        candidate = _anchored_date(start_date, month_offset)
        if candidate is not None and candidate >= minimum_date:
            return candidate
        month_offset += month_step
    return None


def _anchored_date(start_date: date, months: int) -> Optional[date]:
    # Months without the anchor day are skipped rather than clamped.
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    if year > date.max.year:
        return None
    if start_date.day > monthrange(year, month)[1]:
        return None
    return date(year, month, start_date.day)
