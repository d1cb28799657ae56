from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from periods import month_key, shift_month
from schemas import TransactionRecord


@dataclass(frozen=True)
class MonthlySavings:
    month: str
    income: float
    expenses: float
    savings: float
    date: date


@dataclass(frozen=True)
class SavingsStreak:
    current_streak: int = 0
    longest_streak: int = 0
    streak_start_date: Optional[date] = None
    monthly_savings: list[MonthlySavings] = field(default_factory=list)


def _month_range(first: date, last: date) -> list[date]:
    months = []
    year, month = first.year, first.month
    while (year, month) <= (last.year, last.month):
        months.append(date(year, month, 1))
        year, month = shift_month(year, month, 1)
    return months


def monthly_savings(transactions: Sequence[TransactionRecord]) -> list[MonthlySavings]:
    """Income, expenses and net savings per calendar month, oldest first.

    Months between the first and last dated transaction that have no activity
    are included with zero savings.
    """
    buckets: dict[str, list[float]] = {}
    for txn in transactions:
        if txn.date is None:
            continue
        totals = buckets.setdefault(month_key(txn.date), [0.0, 0.0])
        if txn.is_expense:
            totals[1] += abs(txn.amount)
        else:
            totals[0] += abs(txn.amount)
    if not buckets:
        return []

    keys = sorted(buckets)
    first = date(int(keys[0][:4]), int(keys[0][5:]), 1)
    last = date(int(keys[-1][:4]), int(keys[-1][5:]), 1)
    result = []
    for month_start in _month_range(first, last):
        key = month_key(month_start)
        income, expenses = buckets.get(key, (0.0, 0.0))
        result.append(
            MonthlySavings(
                month=key,
                income=income,
                expenses=expenses,
                savings=income - expenses,
                date=month_start,
            )
        )
    return result


def calculate_savings_streak(transactions: Sequence[TransactionRecord]) -> SavingsStreak:
    months = monthly_savings(transactions)

    longest = 0
    run = 0
    for entry in months:
        run = run + 1 if entry.savings > 0 else 0
        longest = max(longest, run)

    current = 0
    for entry in reversed(months):
        if entry.savings <= 0:
            break
        current += 1

    start = months[len(months) - current].date if current else None
    return SavingsStreak(
        current_streak=current,
        longest_streak=longest,
        streak_start_date=start,
        monthly_savings=months,
    )
