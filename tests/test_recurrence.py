from datetime import date

import pytest

from models import RecurrenceInterval
from recurrence import (
    add_months,
    calculate_next_due_date,
    monthly_equivalent,
    yearly_equivalent,
)
from schemas import RecurringTransactionIn


def _definition(interval: str, due_date=None) -> RecurringTransactionIn:
    return RecurringTransactionIn(
        name="Rent", amount=-700, interval=interval, due_date=due_date
    )


def test_monthly_equivalent_uses_absolute_amount() -> None:
    assert monthly_equivalent(-120, RecurrenceInterval.yearly) == pytest.approx(10)
    assert monthly_equivalent(10, "weekly") == pytest.approx(43.3)
    assert yearly_equivalent(45, "monthly") == pytest.approx(540)


def test_add_months_snaps_to_month_end() -> None:
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)
    assert add_months(date(2024, 2, 29), 1, desired_day=31) == date(2024, 3, 31)


def test_next_due_date_per_interval() -> None:
    due = date(2024, 1, 31)

    assert calculate_next_due_date(_definition("daily", due), due) == date(2024, 2, 1)
    assert calculate_next_due_date(_definition("weekly", due), due) == date(2024, 2, 7)
    assert calculate_next_due_date(_definition("biweekly", due), due) == date(2024, 2, 14)
    assert calculate_next_due_date(_definition("monthly", due), due) == date(2024, 2, 29)
    assert calculate_next_due_date(_definition("quarterly", due), due) == date(2024, 4, 30)
    assert calculate_next_due_date(_definition("yearly", due), due) == date(2025, 1, 31)


def test_next_due_date_without_due_date_uses_payment_date() -> None:
    paid = date(2024, 5, 10)

    assert calculate_next_due_date(_definition("monthly"), paid) == date(2024, 6, 10)
