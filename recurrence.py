from datetime import date, timedelta
from typing import Optional, Union

from models import RecurrenceInterval
from periods import days_in_month, shift_month
from schemas import RecurringTransactionIn


MONTHLY_FACTORS = {
    RecurrenceInterval.daily: 30.0,
    RecurrenceInterval.weekly: 4.33,
    RecurrenceInterval.biweekly: 2.17,
    RecurrenceInterval.monthly: 1.0,
    RecurrenceInterval.quarterly: 1 / 3,
    RecurrenceInterval.yearly: 1 / 12,
}


def monthly_equivalent(
    amount: float, interval: Union[RecurrenceInterval, str]
) -> float:
    return abs(amount) * MONTHLY_FACTORS[RecurrenceInterval(interval)]


def yearly_equivalent(
    amount: float, interval: Union[RecurrenceInterval, str]
) -> float:
    return monthly_equivalent(amount, interval) * 12


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Shift ``base`` by whole months, snapping to the end of short months."""
    year, month = shift_month(base.year, base.month, months)
    day = desired_day or base.day
    return date(year, month, min(day, days_in_month(year, month)))


def calculate_next_due_date(
    definition: RecurringTransactionIn, payment_date: date
) -> date:
    base = definition.due_date or payment_date
    interval = definition.interval
    if interval == RecurrenceInterval.daily:
        return base + timedelta(days=1)
    if interval == RecurrenceInterval.weekly:
        return base + timedelta(weeks=1)
    if interval == RecurrenceInterval.biweekly:
        return base + timedelta(weeks=2)
    if interval == RecurrenceInterval.quarterly:
        return add_months(base, 3)
    if interval == RecurrenceInterval.yearly:
        return add_months(base, 12)
    return add_months(base, 1)
