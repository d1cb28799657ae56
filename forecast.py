import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Sequence, Union

from categorizer import DEFAULT_RULES, CategoryRule, resolve_category
from models import Confidence, ForecastPeriod
from periods import month_key, shift_month
from schemas import TransactionRecord


logger = logging.getLogger(__name__)

PERIOD_MONTHS = {
    ForecastPeriod.month: 1,
    ForecastPeriod.quarter: 3,
    ForecastPeriod.year: 12,
}
TREND_TOLERANCE = 0.05


@dataclass(frozen=True)
class MonthlyTotal:
    month: str
    amount: float


@dataclass(frozen=True)
class CategoryForecast:
    category: str
    average_amount: float
    predicted_amount: float
    trend: str


@dataclass(frozen=True)
class ExpenseForecast:
    period: ForecastPeriod
    predicted_expenses: float
    predicted_income: float
    predicted_savings: float
    average_monthly_expenses: float
    monthly_trend: float
    trend: str
    confidence: int
    confidence_level: Confidence
    based_on_months: int
    monthly_totals: list[MonthlyTotal] = field(default_factory=list)
    breakdown: list[CategoryForecast] = field(default_factory=list)


def linear_trend(values: Sequence[float]) -> tuple[float, float]:
    """Least-squares ``(slope, intercept)`` over x = 0..n-1."""
    n = len(values)
    if n == 0:
        return 0.0, 0.0
    if n == 1:
        return 0.0, float(values[0])
    x_mean = (n - 1) / 2
    y_mean = sum(values) / n
    numerator = sum((x - x_mean) * (y - y_mean) for x, y in enumerate(values))
    denominator = sum((x - x_mean) ** 2 for x in range(n))
    slope = numerator / denominator
    return slope, y_mean - slope * x_mean


def project(values: Sequence[float], months: int) -> float:
    """Sum of the trend line over the next ``months`` buckets, each floored at 0."""
    slope, intercept = linear_trend(values)
    last_x = len(values) - 1
    return sum(
        max(0.0, intercept + slope * (last_x + step)) for step in range(1, months + 1)
    )


def trend_label(values: Sequence[float]) -> str:
    if not values:
        return "stable"
    mean = sum(values) / len(values)
    if mean <= 0:
        return "stable"
    slope, _ = linear_trend(values)
    ratio = slope / mean
    if ratio > TREND_TOLERANCE:
        return "increasing"
    if ratio < -TREND_TOLERANCE:
        return "decreasing"
    return "stable"


def _confidence_level(confidence: int) -> Confidence:
    if confidence >= 80:
        return Confidence.high
    if confidence >= 50:
        return Confidence.medium
    return Confidence.low


def forecast_expenses(
    transactions: Sequence[TransactionRecord],
    period: Union[ForecastPeriod, str] = ForecastPeriod.month,
    months_of_history: int = 6,
    today: Optional[Union[date, datetime]] = None,
    *,
    rules: Sequence[CategoryRule] = DEFAULT_RULES,
) -> ExpenseForecast:
    """Project expenses for the period following ``today``'s month.

    History is the ``months_of_history`` complete calendar months before the
    current one. Months without transactions count as zero, so young
    accounts get pessimistic trends.
    """
    target = ForecastPeriod(period)
    if isinstance(months_of_history, bool) or not isinstance(months_of_history, int):
        raise ValueError(
            f"months_of_history must be an integer, got {months_of_history!r}"
        )
    if months_of_history <= 0:
        raise ValueError(
            f"months_of_history must be positive, got {months_of_history}"
        )

    today = today or datetime.now()
    months = [
        "%04d-%02d" % shift_month(today.year, today.month, -offset)
        for offset in range(months_of_history, 0, -1)
    ]
    window = set(months)

    expenses: dict[str, float] = {key: 0.0 for key in months}
    income: dict[str, float] = {key: 0.0 for key in months}
    by_category: dict[str, dict[str, float]] = defaultdict(
        lambda: {key: 0.0 for key in months}
    )
    months_with_data: set[str] = set()

    for txn in transactions:
        if txn.date is None:
            continue
        key = month_key(txn.date)
        if key not in window:
            continue
        amount = abs(txn.amount)
        if txn.is_expense:
            expenses[key] += amount
            by_category[resolve_category(txn, rules=rules)][key] += amount
            months_with_data.add(key)
        else:
            income[key] += amount

    horizon = PERIOD_MONTHS[target]
    expense_series = [expenses[key] for key in months]
    predicted_expenses = project(expense_series, horizon)
    predicted_income = sum(income.values()) / months_of_history * horizon
    slope, _ = linear_trend(expense_series)

    breakdown = []
    for category, buckets in by_category.items():
        series = [buckets[key] for key in months]
        breakdown.append(
            CategoryForecast(
                category=category,
                average_amount=sum(series) / months_of_history,
                predicted_amount=project(series, horizon),
                trend=trend_label(series),
            )
        )
    breakdown.sort(key=lambda c: (-c.predicted_amount, c.category))

    confidence = round(len(months_with_data) / months_of_history * 100)
    logger.debug(
        "forecast: period=%s months=%d predicted=%.2f",
        target.value,
        months_of_history,
        predicted_expenses,
    )
    return ExpenseForecast(
        period=target,
        predicted_expenses=predicted_expenses,
        predicted_income=predicted_income,
        predicted_savings=predicted_income - predicted_expenses,
        average_monthly_expenses=sum(expense_series) / months_of_history,
        monthly_trend=slope,
        trend=trend_label(expense_series),
        confidence=confidence,
        confidence_level=_confidence_level(confidence),
        based_on_months=len(months_with_data),
        monthly_totals=[MonthlyTotal(key, expenses[key]) for key in months],
        breakdown=breakdown,
    )
