from datetime import date, datetime

import pytest

from periods import (
    calendar_month_period,
    payday_period,
    resolve_period,
    shift_month,
    week_period,
)
from schemas import PeriodSettings


def test_calendar_months_tile_the_year() -> None:
    periods = [calendar_month_period(date(2024, month, 15)) for month in range(1, 13)]

    assert periods[0].start == datetime(2024, 1, 1)
    assert periods[-1].end == datetime(2025, 1, 1)
    for previous, current in zip(periods, periods[1:]):
        assert previous.end == current.start


def test_calendar_month_is_half_open() -> None:
    period = calendar_month_period(datetime(2024, 2, 10))

    assert period.label == "2024-02"
    assert period.contains(datetime(2024, 2, 1))
    assert period.contains(datetime(2024, 2, 29, 23, 59))
    assert not period.contains(datetime(2024, 3, 1))
    assert not period.contains(None)


def test_payday_cutoff_splits_the_start_day() -> None:
    before = payday_period(datetime(2024, 3, 25, 13, 59), 25)
    after = payday_period(datetime(2024, 3, 25, 14, 1), 25)

    assert before.start == datetime(2024, 2, 25, 14)
    assert before.end == datetime(2024, 3, 25, 14)
    assert after.start == datetime(2024, 3, 25, 14)
    assert after.end == datetime(2024, 4, 25, 14)
    assert before.end == after.start


def test_payday_period_with_end_day_uses_end_cutoff() -> None:
    period = payday_period(
        datetime(2024, 1, 30), 25, 24, start_cutoff_hour=14, end_cutoff_hour=13
    )

    assert period.start == datetime(2024, 1, 25, 14)
    assert period.end == datetime(2024, 2, 24, 13)


def test_payday_end_day_snaps_to_short_month() -> None:
    period = payday_period(datetime(2023, 1, 20), 15, 31)

    assert period.start == datetime(2023, 1, 15, 14)
    assert period.end == datetime(2023, 1, 31, 13)

    february = payday_period(datetime(2023, 2, 20), 15, 31)
    assert february.end == datetime(2023, 2, 28, 13)


def test_payday_period_rejects_bad_start_day() -> None:
    with pytest.raises(ValueError, match="between 1 and 28, got 31"):
        payday_period(datetime(2024, 1, 1), 31)
    with pytest.raises(ValueError, match="payday_cutoff_hour"):
        payday_period(datetime(2024, 1, 1), 1, end_cutoff_hour=24)


def test_resolve_period_falls_back_to_calendar_month() -> None:
    disabled = PeriodSettings(use_payday_period=False, period_start_day=25)
    assert resolve_period(datetime(2024, 5, 26), disabled).label == "2024-05"

    enabled = PeriodSettings(use_payday_period=True, period_start_day=25)
    period = resolve_period(datetime(2024, 5, 26), enabled)
    assert period.start == datetime(2024, 5, 25, 14)


def test_week_period_starts_on_monday() -> None:
    period = week_period(date(2024, 1, 4))

    assert period.start == datetime(2024, 1, 1)
    assert period.end == datetime(2024, 1, 8)
    assert period.label == "2024-W01"


def test_shift_month_crosses_years() -> None:
    assert shift_month(2024, 1, -1) == (2023, 12)
    assert shift_month(2024, 12, 1) == (2025, 1)
    assert shift_month(2024, 3, -15) == (2022, 12)
