from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Union

from schemas import PeriodSettings


@dataclass(frozen=True)
class Period:
    start: datetime
    end: datetime
    label: str

    def contains(self, moment: Optional[datetime]) -> bool:
        """Half-open membership: ``start <= moment < end``."""
        if moment is None:
            return False
        return self.start <= moment < self.end


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def shift_month(year: int, month: int, months: int) -> tuple[int, int]:
    total_months = month - 1 + months
    return year + total_months // 12, total_months % 12 + 1


def month_key(moment: Union[date, datetime]) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def _as_datetime(reference: Union[date, datetime]) -> datetime:
    if isinstance(reference, datetime):
        return reference.replace(tzinfo=None)
    return datetime(reference.year, reference.month, reference.day)


def calendar_month_period(reference: Union[date, datetime]) -> Period:
    ref = _as_datetime(reference)
    start = datetime(ref.year, ref.month, 1)
    next_year, next_month = shift_month(ref.year, ref.month, 1)
    return Period(start, datetime(next_year, next_month, 1), month_key(start))


def week_period(reference: Union[date, datetime]) -> Period:
    """ISO week containing the reference, Monday 00:00 to the next Monday."""
    ref = _as_datetime(reference)
    start = datetime(ref.year, ref.month, ref.day) - timedelta(days=ref.weekday())
    iso_year, iso_week, _ = start.isocalendar()
    return Period(start, start + timedelta(days=7), f"{iso_year}-W{iso_week:02d}")


def payday_period(
    reference: Union[date, datetime],
    period_start_day: int,
    period_end_day: Optional[int] = None,
    *,
    start_cutoff_hour: int = 14,
    end_cutoff_hour: int = 13,
) -> Period:
    """Resolve the paycheck-aligned period containing ``reference``.

    The period opens on ``period_start_day`` at ``start_cutoff_hour``. It
    closes on ``period_end_day`` at ``end_cutoff_hour`` in the following month
    (same month when the end day is later than the start day). Without an end
    day the period is exactly one month long, so consecutive periods tile.
    """
    if not 1 <= period_start_day <= 28:
        raise ValueError(
            f"period_start_day must be between 1 and 28, got {period_start_day}"
        )
    if period_end_day is not None and not 1 <= period_end_day <= 31:
        raise ValueError(
            f"period_end_day must be between 1 and 31, got {period_end_day}"
        )
    for name, hour in (
        ("payday_start_cutoff_hour", start_cutoff_hour),
        ("payday_cutoff_hour", end_cutoff_hour),
    ):
        if not 0 <= hour <= 23:
            raise ValueError(f"{name} must be between 0 and 23, got {hour}")

    ref = _as_datetime(reference)
    year, month = ref.year, ref.month
    start = datetime(year, month, period_start_day, start_cutoff_hour)
    if ref < start:
        year, month = shift_month(year, month, -1)
        start = datetime(year, month, period_start_day, start_cutoff_hour)

    if period_end_day is None:
        end_year, end_month = shift_month(year, month, 1)
        end = datetime(end_year, end_month, period_start_day, start_cutoff_hour)
    else:
        offset = 0 if period_end_day > period_start_day else 1
        end_year, end_month = shift_month(year, month, offset)
        end_day = min(period_end_day, days_in_month(end_year, end_month))
        end = datetime(end_year, end_month, end_day, end_cutoff_hour)

    label = f"{start.date().isoformat()}..{end.date().isoformat()}"
    return Period(start, end, label)


def resolve_period(
    reference: Union[date, datetime],
    settings: Optional[PeriodSettings] = None,
) -> Period:
    if settings is None or not settings.use_payday_period:
        return calendar_month_period(reference)
    return payday_period(
        reference,
        settings.period_start_day,
        settings.period_end_day,
        start_cutoff_hour=settings.payday_start_cutoff_hour,
        end_cutoff_hour=settings.payday_cutoff_hour,
    )
