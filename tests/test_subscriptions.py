from datetime import date, datetime, timedelta

import pytest

from models import SuggestionPriority
from schemas import RecurringTransactionIn, TransactionRecord
from subscriptions import SuggestionKind, analyze_subscriptions, matches_definition


TODAY = date(2024, 7, 19)


def _charge(txn_id: str, when: date, amount: float, description: str) -> TransactionRecord:
    return TransactionRecord(
        id=txn_id,
        date=datetime(when.year, when.month, when.day, 10, 0),
        amount=-amount,
        type="expense",
        description=description,
    )


def test_unused_subscription_is_high_priority() -> None:
    gym = RecurringTransactionIn(name="Gym", amount=45, interval="monthly")
    last_visit = TODAY - timedelta(days=200)
    transactions = [_charge("1", last_visit, 45, "MyFitness Gym Tartu")]

    analysis = analyze_subscriptions([gym], transactions, today=TODAY)

    (suggestion,) = analysis.suggestions
    assert suggestion.kind == SuggestionKind.unused
    assert suggestion.priority == SuggestionPriority.high
    assert suggestion.potential_savings_per_year == pytest.approx(540)
    assert suggestion.reason == "Not used in 6 months"
    assert analysis.unused_subscriptions == [gym]
    assert analysis.total_potential_savings == pytest.approx(540)


def test_low_usage_subscription() -> None:
    streaming = RecurringTransactionIn(name="Netflix", amount=35)
    transactions = [
        _charge("1", date(2024, 5, 3), 35, "NETFLIX.COM"),
        _charge("2", date(2024, 6, 3), 35, "NETFLIX.COM"),
    ]

    analysis = analyze_subscriptions([streaming], transactions, today=TODAY)

    (suggestion,) = analysis.suggestions
    assert suggestion.kind == SuggestionKind.low_usage
    assert suggestion.priority == SuggestionPriority.high
    assert suggestion.usage_frequency_per_month == pytest.approx(2 / 6)
    assert analysis.unused_subscriptions == []


def test_expensive_yearly_plan_with_regular_use() -> None:
    insurance = RecurringTransactionIn(name="Insurance", amount=60, is_paid=False)
    transactions = [
        _charge(str(month), date(2024, month, 5), 60, "If Insurance")
        for month in range(2, 8)
    ]

    analysis = analyze_subscriptions([insurance], transactions, today=TODAY)

    (suggestion,) = analysis.suggestions
    assert suggestion.kind == SuggestionKind.high_cost_low_usage
    assert suggestion.potential_savings_per_year == pytest.approx(720)


def test_cheap_regular_subscription_has_no_suggestion() -> None:
    music = RecurringTransactionIn(name="Spotify", amount=9.99)
    transactions = [
        _charge(str(month), date(2024, month, 5), 9.99, "Spotify AB")
        for month in range(2, 8)
    ]

    analysis = analyze_subscriptions([music], transactions, today=TODAY)

    assert analysis.suggestions == []
    assert analysis.total_potential_savings == 0


def test_suggestions_sorted_by_priority_then_savings() -> None:
    cheap = RecurringTransactionIn(name="Magazine", amount=12)
    pricey = RecurringTransactionIn(name="Club", amount=40)
    dearer = RecurringTransactionIn(name="Golf", amount=80)

    analysis = analyze_subscriptions([cheap, pricey, dearer], [], today=TODAY)

    assert [s.subscription.name for s in analysis.suggestions] == [
        "Golf",
        "Club",
        "Magazine",
    ]


def test_zero_amount_definitions_are_skipped() -> None:
    free = RecurringTransactionIn(name="Free tier", amount=0)

    analysis = analyze_subscriptions([free], [], today=TODAY)

    assert analysis.suggestions == []
    assert analysis.unused_subscriptions == []


def test_matching_needs_close_amount_and_text() -> None:
    gym = RecurringTransactionIn(name="Gym", amount=45, recipient_name="MyFitness")

    assert matches_definition(gym, _charge("1", TODAY, 46, "Gym visit"))
    assert not matches_definition(gym, _charge("2", TODAY, 50, "Gym visit"))
    assert not matches_definition(gym, _charge("3", TODAY, 45, "Coffee"))
    by_recipient = TransactionRecord(
        id="4", date=datetime(2024, 7, 1), amount=-45, recipient_name="MyFitness AS"
    )
    assert matches_definition(gym, by_recipient)


def _weekly_padel(is_paid: bool):
    padel = RecurringTransactionIn(
        name="Padel", amount=15, interval="weekly", is_paid=is_paid
    )
    transactions = [
        _charge(str(week), TODAY - timedelta(weeks=week), 15, "Padel Club Tartu")
        for week in range(1, 21)
    ]
    return padel, transactions


def test_expensive_unconfirmed_subscription_with_regular_use() -> None:
    padel, transactions = _weekly_padel(is_paid=False)

    analysis = analyze_subscriptions([padel], transactions, today=TODAY)

    (suggestion,) = analysis.suggestions
    assert suggestion.kind == SuggestionKind.expensive_unconfirmed
    assert suggestion.priority == SuggestionPriority.medium
    assert suggestion.usage_frequency_per_month == pytest.approx(20 / 6)
    assert suggestion.potential_savings_per_year == pytest.approx(15 * 4.33 * 12)


def test_confirmed_expensive_subscription_has_no_suggestion() -> None:
    padel, transactions = _weekly_padel(is_paid=True)

    analysis = analyze_subscriptions([padel], transactions, today=TODAY)

    assert analysis.suggestions == []
    assert analysis.unused_subscriptions == []
