from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from config import get_settings
from database import Base
from models import RuleMatchType, TransactionType
from schemas import (
    CategoryLimitIn,
    CategoryRuleIn,
    PeriodSettings,
    RecurringTransactionIn,
    TransactionIn,
)
from services import (
    AnalyticsService,
    CSVService,
    CategoryLimitService,
    CategoryRuleService,
    FinanceSettingsService,
    RecurringTransactionService,
    TransactionService,
)


@pytest.fixture(autouse=True)
def finance_env(monkeypatch):
    monkeypatch.setenv("FINANCE_DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("FINANCE_ALERT_THRESHOLD", "70")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


def _expense(when: datetime, amount: float, description: str, **extra) -> TransactionIn:
    return TransactionIn(
        occurred_at=when,
        amount=-amount,
        type=TransactionType.expense,
        description=description,
        **extra,
    )


def test_create_suggests_category_from_user_rules(session) -> None:
    CategoryRuleService(session).create(
        CategoryRuleIn(
            name="Streaming",
            match_type=RuleMatchType.contains,
            match_value="netflix",
            category="Subscriptions",
        )
    )
    service = TransactionService(session)

    ruled = service.create(_expense(datetime(2024, 3, 5), 12.99, "NETFLIX.COM"))
    builtin = service.create(_expense(datetime(2024, 3, 6), 20, "Selver Tartu"))
    explicit = service.create(
        _expense(datetime(2024, 3, 7), 5, "Selver", category="Snacks")
    )

    assert ruled.category == "Subscriptions"
    assert ruled.amount_cents == -1299
    assert builtin.category == "Groceries"
    assert explicit.category == "Snacks"


def test_soft_delete_hides_transaction(session) -> None:
    service = TransactionService(session)
    txn = service.create(_expense(datetime(2024, 3, 5), 10, "Coffee"))

    service.soft_delete(txn.id)

    assert not service.has_any()
    assert service.records() == []
    service.restore(txn.id)
    assert [r.id for r in service.records()] == [txn.id]
    with pytest.raises(ValueError, match="Transaction not found"):
        service.get("missing")


def test_category_limit_upsert_uses_configured_threshold(session) -> None:
    service = CategoryLimitService(session)

    created = service.upsert(CategoryLimitIn(category="Dining", monthly_limit=150))
    updated = service.upsert(
        CategoryLimitIn(category="dining", monthly_limit=200, alert_threshold=90)
    )

    assert created.id == updated.id
    assert updated.monthly_limit_cents == 20000
    assert updated.alert_threshold == 90
    assert service.upsert(
        CategoryLimitIn(category="Travel", monthly_limit=100)
    ).alert_threshold == 70
    with pytest.raises(ValueError, match="not found"):
        service.delete("Nothing")


def test_finance_settings_default_and_update(session) -> None:
    service = FinanceSettingsService(session)

    assert service.get().use_payday_period is False
    saved = service.update(PeriodSettings(use_payday_period=True, period_start_day=25))

    assert saved.use_payday_period
    assert saved.period_start_day == 25


def test_mark_paid_advances_due_date(session) -> None:
    service = RecurringTransactionService(session)
    rent = service.create(
        RecurringTransactionIn(
            name="Rent", amount=700, interval="monthly", due_date=date(2024, 1, 31)
        )
    )

    paid = service.mark_paid(rent.id, date(2024, 1, 30))

    assert paid.is_paid
    assert paid.last_paid_date == date(2024, 1, 30)
    assert paid.due_date == date(2024, 2, 29)


def test_csv_commit_skips_known_archive_ids(session) -> None:
    content = (
        "Date,Amount,Description,Archive ID\n"
        "2024-03-05,-4.20,Coffee,A1\n"
        "2024-03-06,-8.00,Lunch,A2\n"
    )
    service = CSVService(session)

    assert service.commit(content) == 2
    assert service.commit(content) == 0
    assert "Coffee" in service.export()
    with pytest.raises(ValueError, match="Row 1"):
        service.commit("Date,Amount\nnope,1\n")


def test_stored_type_wins_over_amount_sign(session) -> None:
    TransactionService(session).create(
        TransactionIn(
            occurred_at=datetime(2024, 3, 5),
            amount=50,
            type=TransactionType.expense,
            description="Rimi Tartu",
        )
    )

    summary = AnalyticsService(session).summary(datetime(2024, 3, 10))

    assert summary.expenses == pytest.approx(50)
    assert summary.income == 0
    assert summary.balance == pytest.approx(-50)


def test_analytics_service_end_to_end(session) -> None:
    transactions = TransactionService(session)
    transactions.create(
        TransactionIn(occurred_at=datetime(2024, 3, 1), amount=2000, description="Palk")
    )
    transactions.create(_expense(datetime(2024, 3, 5), 90, "Wolt order"))
    transactions.create(_expense(datetime(2024, 3, 5), 90, "Wolt order"))
    CategoryLimitService(session).upsert(
        CategoryLimitIn(category="Dining", monthly_limit=200)
    )
    RecurringTransactionService(session).create(
        RecurringTransactionIn(name="Gym", amount=45)
    )
    analytics = AnalyticsService(session)

    (dining,) = analytics.budget_analysis(reference_date=datetime(2024, 3, 20))
    assert dining.spent == pytest.approx(180)
    alerts = analytics.budget_alerts(reference_date=datetime(2024, 3, 20))
    assert [a.category for a in alerts] == ["Dining"]

    summary = analytics.summary(datetime(2024, 3, 20))
    assert summary.balance == pytest.approx(1820)

    assert analytics.duplicates().total_duplicates == 1
    assert analytics.savings_streak().current_streak == 1
    subscriptions = analytics.subscriptions(today=date(2024, 3, 20))
    assert subscriptions.unused_subscriptions[0].name == "Gym"
    forecast = analytics.forecast(months_of_history=3, today=datetime(2024, 4, 2))
    assert forecast.based_on_months == 1
    assert analytics.bill_matches() == []
    assert analytics.normalized_transactions("EUR")[0].currency == "EUR"
