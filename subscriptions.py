import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Sequence, Union

from models import SuggestionPriority
from periods import shift_month, days_in_month
from recurrence import monthly_equivalent
from schemas import RecurringTransactionIn, TransactionRecord


logger = logging.getLogger(__name__)

USAGE_WINDOW_MONTHS = 6
AMOUNT_TOLERANCE = 0.05
PRIORITY_RANK = {
    SuggestionPriority.high: 3,
    SuggestionPriority.medium: 2,
    SuggestionPriority.low: 1,
}


class SuggestionKind(str, Enum):
    unused = "unused"
    low_usage = "low_usage"
    high_cost_low_usage = "high_cost_low_usage"
    expensive_unconfirmed = "expensive_unconfirmed"


@dataclass(frozen=True)
class SubscriptionSuggestion:
    subscription: RecurringTransactionIn
    kind: SuggestionKind
    reason: str
    priority: SuggestionPriority
    potential_savings_per_year: float
    monthly_cost: float
    last_used_date: Optional[datetime] = None
    usage_frequency_per_month: Optional[float] = None


@dataclass(frozen=True)
class SubscriptionAnalysis:
    suggestions: list[SubscriptionSuggestion] = field(default_factory=list)
    total_potential_savings: float = 0.0
    unused_subscriptions: list[RecurringTransactionIn] = field(default_factory=list)


def _contains(haystack: Optional[str], needle: Optional[str]) -> bool:
    if not haystack or not needle or not needle.strip():
        return False
    return needle.strip().lower() in haystack.lower()


def matches_definition(
    definition: RecurringTransactionIn, txn: TransactionRecord
) -> bool:
    """Amount within 5% and a name, recipient or description substring hit."""
    amount = abs(definition.amount)
    if amount == 0:
        return False
    if abs(abs(txn.amount) - amount) / amount >= AMOUNT_TOLERANCE:
        return False
    return (
        _contains(txn.description, definition.name)
        or _contains(txn.recipient_name, definition.recipient_name)
        or _contains(txn.description, definition.description)
    )


def _window_start(today: datetime) -> datetime:
    year, month = shift_month(today.year, today.month, -USAGE_WINDOW_MONTHS)
    day = min(today.day, days_in_month(year, month))
    return today.replace(year=year, month=month, day=day)


def _suggest(
    definition: RecurringTransactionIn,
    monthly_cost: float,
    recent_count: int,
    last_used: Optional[datetime],
    today: datetime,
) -> Optional[SubscriptionSuggestion]:
    yearly_cost = monthly_cost * 12
    usage = recent_count / USAGE_WINDOW_MONTHS

    def build(kind, reason, priority, frequency):
        return SubscriptionSuggestion(
            subscription=definition,
            kind=kind,
            reason=reason,
            priority=priority,
            potential_savings_per_year=yearly_cost,
            monthly_cost=monthly_cost,
            last_used_date=last_used,
            usage_frequency_per_month=frequency,
        )

    if recent_count == 0 and last_used is not None:
        days_unused = (today.date() - last_used.date()).days
        return build(
            SuggestionKind.unused,
            f"Not used in {days_unused // 30} months",
            SuggestionPriority.high if days_unused > 180 else SuggestionPriority.medium,
            0.0,
        )
    if usage < 0.5 and monthly_cost > 10:
        return build(
            SuggestionKind.low_usage,
            f"Low usage ({recent_count} times in {USAGE_WINDOW_MONTHS} months)",
            SuggestionPriority.high if monthly_cost > 30 else SuggestionPriority.medium,
            usage,
        )
    if yearly_cost > 500 and usage < 2:
        return build(
            SuggestionKind.high_cost_low_usage,
            f"High cost (€{yearly_cost:.0f}/year) with low usage",
            SuggestionPriority.high,
            usage,
        )
    if monthly_cost > 50 and not definition.is_paid:
        return build(
            SuggestionKind.expensive_unconfirmed,
            f"Expensive subscription (€{monthly_cost:.0f}/month)",
            SuggestionPriority.medium,
            usage,
        )
    return None


def analyze_subscriptions(
    definitions: Sequence[RecurringTransactionIn],
    transactions: Sequence[TransactionRecord],
    today: Optional[Union[date, datetime]] = None,
) -> SubscriptionAnalysis:
    """Recommend cancellations by comparing recurring definitions with usage.

    Only the first applicable rule fires per definition: unused, low usage,
    high cost with low usage, expensive and unconfirmed.
    """
    if today is None:
        now = datetime.now()
    elif isinstance(today, datetime):
        now = today
    else:
        now = datetime(today.year, today.month, today.day)
    window_start = _window_start(now)

    suggestions: list[SubscriptionSuggestion] = []
    unused: list[RecurringTransactionIn] = []
    for definition in definitions:
        if abs(definition.amount) == 0:
            continue
        matched = [
            txn
            for txn in transactions
            if txn.date is not None and matches_definition(definition, txn)
        ]
        recent = [txn for txn in matched if window_start <= txn.date <= now]
        last_used = max((txn.date for txn in matched), default=None)
        if not recent:
            unused.append(definition)

        monthly_cost = monthly_equivalent(definition.amount, definition.interval)
        suggestion = _suggest(definition, monthly_cost, len(recent), last_used, now)
        if suggestion is not None:
            logger.debug(
                "subscription_suggestion: name=%r kind=%s priority=%s",
                definition.name,
                suggestion.kind.value,
                suggestion.priority.value,
            )
            suggestions.append(suggestion)

    suggestions.sort(
        key=lambda s: (-PRIORITY_RANK[s.priority], -s.potential_savings_per_year)
    )
    return SubscriptionAnalysis(
        suggestions=suggestions,
        total_potential_savings=sum(s.potential_savings_per_year for s in suggestions),
        unused_subscriptions=unused,
    )
