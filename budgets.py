import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Sequence, Union

from categorizer import DEFAULT_RULES, CategoryRule, resolve_category
from models import AlertLevel, BudgetPeriod
from periods import Period, resolve_period, week_period
from schemas import CategoryLimitIn, PeriodSettings, TransactionRecord


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetAnalysis:
    category: str
    period: Period
    limit: Optional[float]
    spent: float
    remaining: Optional[float]
    percentage_used: Optional[float]
    remaining_percent: Optional[float]
    is_over_limit: bool
    alert_level: AlertLevel
    alert_threshold: Optional[float] = None


@dataclass(frozen=True)
class PeriodSummary:
    period: Period
    income: float
    expenses: float
    balance: float
    transaction_count: int


def budget_period(
    period: Union[BudgetPeriod, str],
    reference_date: Union[date, datetime],
    settings: Optional[PeriodSettings] = None,
) -> Period:
    granularity = BudgetPeriod(period)
    if granularity == BudgetPeriod.weekly:
        return week_period(reference_date)
    return resolve_period(reference_date, settings)


def spending_by_category(
    transactions: Sequence[TransactionRecord],
    period: Period,
    *,
    rules: Sequence[CategoryRule] = DEFAULT_RULES,
) -> dict[str, float]:
    spent: dict[str, float] = defaultdict(float)
    for txn in transactions:
        if not txn.is_expense or not period.contains(txn.date):
            continue
        spent[resolve_category(txn, rules=rules)] += abs(txn.amount)
    return dict(spent)


def _alert_level(percentage_used: float, threshold: float) -> AlertLevel:
    if percentage_used > 100:
        return AlertLevel.critical
    if percentage_used >= threshold:
        return AlertLevel.warning
    return AlertLevel.info


def analyze_budget(
    transactions: Sequence[TransactionRecord],
    limits: Sequence[CategoryLimitIn],
    period: Union[BudgetPeriod, str] = BudgetPeriod.monthly,
    reference_date: Optional[Union[date, datetime]] = None,
    *,
    period_settings: Optional[PeriodSettings] = None,
    rules: Sequence[CategoryRule] = DEFAULT_RULES,
) -> list[BudgetAnalysis]:
    """Compare per-category spending in the active period against limits.

    Every configured limit gets a row, as does every category with spending
    but no limit (``limit=None``, never alerting). Rows are ordered by amount
    spent, largest first.
    """
    granularity = BudgetPeriod(period)
    resolved = budget_period(
        granularity, reference_date or datetime.now(), period_settings
    )
    spent_by_category = spending_by_category(transactions, resolved, rules=rules)
    spent_lower: dict[str, float] = defaultdict(float)
    for category, amount in spent_by_category.items():
        spent_lower[category.lower()] += amount

    analyses: list[BudgetAnalysis] = []
    seen: set[str] = set()
    for limit in limits:
        key = limit.category.lower()
        if key in seen:
            continue
        seen.add(key)
        spent = spent_lower.get(key, 0.0)
        amount = (
            limit.monthly_limit
            if granularity == BudgetPeriod.monthly
            else limit.weekly_limit
        )
        if amount is None:
            analyses.append(_unbudgeted(limit.category, resolved, spent))
            continue
        percentage_used = spent / amount * 100
        analyses.append(
            BudgetAnalysis(
                category=limit.category,
                period=resolved,
                limit=amount,
                spent=spent,
                remaining=max(0.0, amount - spent),
                percentage_used=percentage_used,
                remaining_percent=max(0.0, 100 - percentage_used),
                is_over_limit=spent > amount,
                alert_level=_alert_level(percentage_used, limit.alert_threshold),
                alert_threshold=limit.alert_threshold,
            )
        )

    for category, spent in spent_by_category.items():
        if category.lower() in seen:
            continue
        analyses.append(_unbudgeted(category, resolved, spent))

    logger.debug(
        "budget_analysis: period=%s rows=%d", resolved.label, len(analyses)
    )
    return sorted(analyses, key=lambda a: (-a.spent, a.category))


def _unbudgeted(category: str, period: Period, spent: float) -> BudgetAnalysis:
    return BudgetAnalysis(
        category=category,
        period=period,
        limit=None,
        spent=spent,
        remaining=None,
        percentage_used=None,
        remaining_percent=None,
        is_over_limit=False,
        alert_level=AlertLevel.info,
    )


def budget_alerts(analyses: Sequence[BudgetAnalysis]) -> list[BudgetAnalysis]:
    return [
        analysis
        for analysis in analyses
        if analysis.alert_level in (AlertLevel.warning, AlertLevel.critical)
    ]


def summarize_period(
    transactions: Sequence[TransactionRecord], period: Period
) -> PeriodSummary:
    income = 0.0
    expenses = 0.0
    count = 0
    for txn in transactions:
        if not period.contains(txn.date):
            continue
        count += 1
        if txn.is_expense:
            expenses += abs(txn.amount)
        else:
            income += abs(txn.amount)
    return PeriodSummary(
        period=period,
        income=income,
        expenses=expenses,
        balance=income - expenses,
        transaction_count=count,
    )
