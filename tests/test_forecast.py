from datetime import date, datetime

import pytest

from forecast import forecast_expenses, linear_trend, project, trend_label
from models import Confidence, ForecastPeriod
from schemas import TransactionRecord


TODAY = date(2024, 4, 10)


def _expense(txn_id: str, when: datetime, amount: float, category: str = "Groceries"):
    return TransactionRecord(
        id=txn_id, date=when, amount=-amount, type="expense", category=category
    )


def _rising_history() -> list[TransactionRecord]:
    return [
        _expense("jan", datetime(2024, 1, 10), 1000),
        _expense("feb", datetime(2024, 2, 10), 1100),
        _expense("mar", datetime(2024, 3, 10), 1200),
        TransactionRecord(id="salary", date=datetime(2024, 3, 1), amount=3000),
    ]


def test_linear_trend_extrapolates_next_month() -> None:
    forecast = forecast_expenses(_rising_history(), "month", 3, today=TODAY)

    assert forecast.predicted_expenses == pytest.approx(1300)
    assert forecast.monthly_trend == pytest.approx(100)
    assert forecast.trend == "increasing"
    assert forecast.confidence == 100
    assert forecast.confidence_level == Confidence.high
    assert [m.month for m in forecast.monthly_totals] == ["2024-01", "2024-02", "2024-03"]


def test_quarter_sums_three_projected_months() -> None:
    forecast = forecast_expenses(
        _rising_history(), ForecastPeriod.quarter, 3, today=TODAY
    )

    assert forecast.predicted_expenses == pytest.approx(1300 + 1400 + 1500)
    assert forecast.predicted_income == pytest.approx(3000)
    assert forecast.predicted_savings == pytest.approx(3000 - 4200)


def test_current_month_is_excluded() -> None:
    history = _rising_history() + [_expense("apr", datetime(2024, 4, 2), 9999)]

    forecast = forecast_expenses(history, "month", 3, today=TODAY)

    assert forecast.predicted_expenses == pytest.approx(1300)


def test_missing_months_lower_confidence() -> None:
    history = [_expense("mar", datetime(2024, 3, 10), 600)]

    forecast = forecast_expenses(history, "month", 6, today=TODAY)

    assert forecast.based_on_months == 1
    assert forecast.confidence == 17
    assert forecast.confidence_level == Confidence.low


def test_category_breakdown() -> None:
    history = [
        _expense("a", datetime(2024, 1, 5), 100, "Dining"),
        _expense("b", datetime(2024, 2, 5), 100, "Dining"),
        _expense("c", datetime(2024, 3, 5), 100, "Dining"),
        _expense("d", datetime(2024, 3, 6), 30, "Transport"),
    ]

    forecast = forecast_expenses(history, "month", 3, today=TODAY)

    dining = forecast.breakdown[0]
    assert dining.category == "Dining"
    assert dining.average_amount == pytest.approx(100)
    assert dining.predicted_amount == pytest.approx(100)
    assert dining.trend == "stable"


def test_empty_history_forecasts_zero() -> None:
    forecast = forecast_expenses([], "year", 6, today=TODAY)

    assert forecast.predicted_expenses == 0
    assert forecast.confidence == 0
    assert forecast.breakdown == []


def test_invalid_history_length() -> None:
    with pytest.raises(ValueError, match="positive"):
        forecast_expenses([], "month", 0, today=TODAY)
    with pytest.raises(ValueError, match="integer"):
        forecast_expenses([], "month", 2.5, today=TODAY)
    with pytest.raises(ValueError):
        forecast_expenses([], "fortnight", 3, today=TODAY)


def test_projection_never_goes_negative() -> None:
    assert project([300, 200, 100], 3) == pytest.approx(0)
    assert linear_trend([]) == (0.0, 0.0)
    assert trend_label([100, 100, 100]) == "stable"
    assert trend_label([300, 200, 100]) == "decreasing"
