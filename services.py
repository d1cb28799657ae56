from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Optional, Sequence, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bill_matching import BillMatch, find_bill_matches
from budgets import (
    BudgetAnalysis,
    PeriodSummary,
    analyze_budget,
    budget_alerts,
    summarize_period,
)
from categorizer import CategoryRule as CompiledRule, build_rules, suggest_category
from config import get_settings
from csv_utils import export_transactions, parse_csv
from duplicates import DuplicateDetectionResult, detect_duplicates
from forecast import ExpenseForecast, forecast_expenses
from fx_rates import normalize_to_base_currency
from models import (
    BudgetPeriod,
    CategoryLimit,
    CategoryRule,
    FinanceSettings,
    ForecastPeriod,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from periods import resolve_period
from recurrence import calculate_next_due_date
from savings import SavingsStreak, calculate_savings_streak
from schemas import (
    BillMatchingSettings,
    CategoryLimitIn,
    CategoryRuleIn,
    PeriodSettings,
    RecurringTransactionIn,
    TransactionIn,
    TransactionRecord,
)
from subscriptions import SubscriptionAnalysis, analyze_subscriptions


logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


def cents_to_euros(cents: int) -> float:
    return cents / 100


def euros_to_cents(amount: float) -> int:
    return int(round(amount * 100))


def transaction_to_record(txn: Transaction) -> TransactionRecord:
    tags: list[str] = []
    if txn.tags_json:
        tags = json.loads(txn.tags_json) or []
    return TransactionRecord(
        id=txn.id,
        date=txn.occurred_at,
        amount=cents_to_euros(txn.amount_cents),
        type=txn.type,
        category=txn.category,
        description=txn.description,
        recipient_name=txn.recipient_name,
        reference_number=txn.reference_number,
        archive_id=txn.archive_id,
        account=txn.account,
        currency=txn.currency,
        tags=tags,
    )


def recurring_to_input(row: RecurringTransaction) -> RecurringTransactionIn:
    return RecurringTransactionIn(
        id=row.id,
        name=row.name,
        amount=cents_to_euros(row.amount_cents),
        category=row.category,
        interval=row.interval,
        recipient_name=row.recipient_name,
        description=row.description,
        is_paid=row.is_paid,
        due_date=row.due_date,
        last_paid_date=row.last_paid_date,
    )


def limit_to_input(row: CategoryLimit) -> CategoryLimitIn:
    return CategoryLimitIn(
        category=row.category,
        monthly_limit=cents_to_euros(row.monthly_limit_cents),
        weekly_limit=(
            cents_to_euros(row.weekly_limit_cents)
            if row.weekly_limit_cents is not None
            else None
        ),
        alert_threshold=row.alert_threshold,
    )


class CategoryRuleService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[CategoryRule]:
        stmt = (
            select(CategoryRule)
            .where(CategoryRule.user_id == self.user_id)
            .order_by(CategoryRule.priority.asc(), CategoryRule.id.asc())
        )
        return self.session.scalars(stmt).all()

    def get(self, rule_id: int) -> CategoryRule:
        rule = self.session.get(CategoryRule, rule_id)
        if not rule or rule.user_id != self.user_id:
            raise ValueError("Rule not found")
        return rule

    def create(self, data: CategoryRuleIn) -> CategoryRule:
        rule = CategoryRule(
            user_id=self.user_id,
            name=data.name.strip(),
            enabled=data.enabled,
            priority=data.priority,
            match_type=data.match_type,
            match_value=data.match_value.strip(),
            category=data.category.strip(),
        )
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def update(self, rule_id: int, data: CategoryRuleIn) -> CategoryRule:
        rule = self.get(rule_id)
        rule.name = data.name.strip()
        rule.enabled = data.enabled
        rule.priority = data.priority
        rule.match_type = data.match_type
        rule.match_value = data.match_value.strip()
        rule.category = data.category.strip()
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def toggle(self, rule_id: int, enabled: bool) -> None:
        rule = self.get(rule_id)
        rule.enabled = enabled
        self.session.commit()

    def delete(self, rule_id: int) -> None:
        rule = self.get(rule_id)
        self.session.delete(rule)
        self.session.commit()

    def compiled_rules(self) -> tuple[CompiledRule, ...]:
        """Built-in categorization rules with this user's keyword rules spliced in."""
        custom = [
            CategoryRuleIn(
                name=rule.name,
                enabled=rule.enabled,
                priority=rule.priority,
                match_type=rule.match_type,
                match_value=rule.match_value,
                category=rule.category,
            )
            for rule in self.list_all()
        ]
        return build_rules(custom)


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def has_any(self) -> bool:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id,
            Transaction.deleted_at.is_(None),
        )
        return (self.session.execute(stmt).scalar_one() or 0) > 0

    def _build(
        self, data: TransactionIn, rules: Sequence[CompiledRule]
    ) -> Transaction:
        category = (data.category or "").strip() or None
        is_expense = (
            data.type == TransactionType.expense
            if data.type is not None
            else data.amount < 0
        )
        if category is None and is_expense:
            category = suggest_category(
                data.description or "",
                data.reference_number,
                data.recipient_name,
                data.amount,
                rules=rules,
            )
        return Transaction(
            user_id=self.user_id,
            occurred_at=data.occurred_at.replace(tzinfo=None),
            type=data.type,
            amount_cents=euros_to_cents(data.amount),
            category=category,
            description=data.description,
            recipient_name=data.recipient_name,
            reference_number=data.reference_number,
            archive_id=data.archive_id,
            account=data.account,
            currency=data.currency.upper() if data.currency else None,
            tags_json=json.dumps([t.strip() for t in data.tags if t.strip()]),
        )

    def create(self, data: TransactionIn) -> Transaction:
        rules = CategoryRuleService(self.session, self.user_id).compiled_rules()
        txn = self._build(data, rules)
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: str, *, include_deleted: bool = False) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id, Transaction.id == transaction_id
        )
        if not include_deleted:
            stmt = stmt.where(Transaction.deleted_at.is_(None))
        txn = self.session.scalar(stmt)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def list(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.deleted_at.is_(None),
            )
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if start is not None:
            stmt = stmt.where(Transaction.occurred_at >= start)
        if end is not None:
            stmt = stmt.where(Transaction.occurred_at < end)
        return self.session.scalars(stmt).all()

    def records(self) -> list[TransactionRecord]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.deleted_at.is_(None),
            )
            .order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
        )
        return [transaction_to_record(txn) for txn in self.session.scalars(stmt)]

    def soft_delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id, include_deleted=True)
        if txn.deleted_at is not None:
            return
        txn.deleted_at = datetime.utcnow()
        self.session.commit()

    def restore(self, transaction_id: str) -> None:
        txn = self.get(transaction_id, include_deleted=True)
        if txn.deleted_at is None:
            return
        txn.deleted_at = None
        self.session.commit()

    def import_records(self, records: Sequence[TransactionRecord]) -> int:
        """Store parsed records, skipping archive ids already on file."""
        existing = set(
            self.session.scalars(
                select(Transaction.archive_id).where(
                    Transaction.user_id == self.user_id,
                    Transaction.archive_id.isnot(None),
                )
            )
        )
        rules = CategoryRuleService(self.session, self.user_id).compiled_rules()
        imported = 0
        for record in records:
            if record.date is None:
                continue
            if record.archive_id and record.archive_id in existing:
                continue
            data = TransactionIn(
                occurred_at=record.date,
                amount=record.amount,
                type=record.type,
                category=record.category,
                description=record.description,
                recipient_name=record.recipient_name,
                reference_number=record.reference_number,
                archive_id=record.archive_id,
                account=record.account,
                currency=record.currency,
                tags=list(record.tags),
            )
            self.session.add(self._build(data, rules))
            if record.archive_id:
                existing.add(record.archive_id)
            imported += 1
        self.session.commit()
        logger.info(
            "transactions_imported: user_id=%s imported=%d skipped=%d",
            self.user_id,
            imported,
            len(records) - imported,
        )
        return imported


class CSVService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def preview(self, content: str) -> tuple[list[TransactionRecord], list[str]]:
        return parse_csv(content)

    def commit(self, content: str) -> int:
        records, errors = self.preview(content)
        if errors:
            raise ValueError("; ".join(errors))
        return TransactionService(self.session, self.user_id).import_records(records)

    def export(self) -> str:
        return export_transactions(
            TransactionService(self.session, self.user_id).records()
        )


class CategoryLimitService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[CategoryLimit]:
        stmt = (
            select(CategoryLimit)
            .where(CategoryLimit.user_id == self.user_id)
            .order_by(CategoryLimit.category)
        )
        return self.session.scalars(stmt).all()

    def _find(self, category: str) -> Optional[CategoryLimit]:
        stmt = select(CategoryLimit).where(
            CategoryLimit.user_id == self.user_id,
            func.lower(CategoryLimit.category) == category.strip().lower(),
        )
        return self.session.scalar(stmt)

    def upsert(self, data: CategoryLimitIn) -> CategoryLimit:
        threshold = data.alert_threshold
        if "alert_threshold" not in data.model_fields_set:
            threshold = get_settings().alert_threshold

        limit = self._find(data.category)
        if limit is None:
            limit = CategoryLimit(user_id=self.user_id, category=data.category.strip())
            self.session.add(limit)
        limit.monthly_limit_cents = euros_to_cents(data.monthly_limit)
        limit.weekly_limit_cents = (
            euros_to_cents(data.weekly_limit) if data.weekly_limit is not None else None
        )
        limit.alert_threshold = int(round(threshold))
        self.session.commit()
        self.session.refresh(limit)
        return limit

    def delete(self, category: str) -> None:
        limit = self._find(category)
        if not limit:
            raise ValueError("Category limit not found")
        self.session.delete(limit)
        self.session.commit()

    def inputs(self) -> list[CategoryLimitIn]:
        return [limit_to_input(row) for row in self.list_all()]


class RecurringTransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, recurring_id: str) -> RecurringTransaction:
        row = self.session.get(RecurringTransaction, recurring_id)
        if not row or row.user_id != self.user_id:
            raise ValueError("Recurring transaction not found")
        return row

    def list(self) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .where(RecurringTransaction.user_id == self.user_id)
            .order_by(RecurringTransaction.name, RecurringTransaction.id)
        )
        return self.session.scalars(stmt).all()

    def _apply(self, row: RecurringTransaction, data: RecurringTransactionIn) -> None:
        row.name = data.name.strip()
        row.amount_cents = euros_to_cents(abs(data.amount))
        row.category = data.category
        row.interval = data.interval
        row.recipient_name = data.recipient_name
        row.description = data.description
        row.is_paid = data.is_paid
        row.due_date = data.due_date
        row.last_paid_date = data.last_paid_date

    def create(self, data: RecurringTransactionIn) -> RecurringTransaction:
        row = RecurringTransaction(user_id=self.user_id)
        self._apply(row, data)
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def update(
        self, recurring_id: str, data: RecurringTransactionIn
    ) -> RecurringTransaction:
        row = self.get(recurring_id)
        self._apply(row, data)
        self.session.commit()
        self.session.refresh(row)
        return row

    def delete(self, recurring_id: str) -> None:
        row = self.get(recurring_id)
        self.session.delete(row)
        self.session.commit()

    def mark_paid(
        self, recurring_id: str, payment_date: Optional[date] = None
    ) -> RecurringTransaction:
        row = self.get(recurring_id)
        payment_date = payment_date or date.today()
        row.due_date = calculate_next_due_date(recurring_to_input(row), payment_date)
        row.is_paid = True
        row.last_paid_date = payment_date
        self.session.commit()
        self.session.refresh(row)
        return row

    def inputs(self) -> list[RecurringTransactionIn]:
        return [recurring_to_input(row) for row in self.list()]


class FinanceSettingsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self) -> PeriodSettings:
        row = self.session.get(FinanceSettings, self.user_id)
        if row is None:
            settings = get_settings()
            return PeriodSettings(
                payday_start_cutoff_hour=settings.payday_start_cutoff_hour,
                payday_cutoff_hour=settings.payday_cutoff_hour,
            )
        return PeriodSettings(
            use_payday_period=row.use_payday_period,
            period_start_day=row.period_start_day,
            period_end_day=row.period_end_day,
            payday_start_cutoff_hour=row.payday_start_cutoff_hour,
            payday_cutoff_hour=row.payday_cutoff_hour,
        )

    def update(self, data: PeriodSettings) -> PeriodSettings:
        row = self.session.get(FinanceSettings, self.user_id)
        if row is None:
            row = FinanceSettings(user_id=self.user_id)
            self.session.add(row)
        row.use_payday_period = data.use_payday_period
        row.period_start_day = data.period_start_day
        row.period_end_day = data.period_end_day
        row.payday_start_cutoff_hour = data.payday_start_cutoff_hour
        row.payday_cutoff_hour = data.payday_cutoff_hour
        self.session.commit()
        return self.get()


class AnalyticsService:
    """Loads a user's rows and hands them to the pure analytics functions."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.settings = get_settings()

    def _records(self) -> list[TransactionRecord]:
        return TransactionService(self.session, self.user_id).records()

    def _rules(self) -> tuple[CompiledRule, ...]:
        return CategoryRuleService(self.session, self.user_id).compiled_rules()

    def _period_settings(self) -> PeriodSettings:
        return FinanceSettingsService(self.session, self.user_id).get()

    def budget_analysis(
        self,
        period: Union[BudgetPeriod, str] = BudgetPeriod.monthly,
        reference_date: Optional[datetime] = None,
    ) -> list[BudgetAnalysis]:
        limits = CategoryLimitService(self.session, self.user_id).inputs()
        return analyze_budget(
            self._records(),
            limits,
            period,
            reference_date,
            period_settings=self._period_settings(),
            rules=self._rules(),
        )

    def budget_alerts(
        self,
        period: Union[BudgetPeriod, str] = BudgetPeriod.monthly,
        reference_date: Optional[datetime] = None,
    ) -> list[BudgetAnalysis]:
        return budget_alerts(self.budget_analysis(period, reference_date))

    def summary(self, reference_date: Optional[datetime] = None) -> PeriodSummary:
        period = resolve_period(
            reference_date or datetime.now(), self._period_settings()
        )
        return summarize_period(self._records(), period)

    def forecast(
        self,
        period: Union[ForecastPeriod, str] = ForecastPeriod.month,
        months_of_history: Optional[int] = None,
        today: Optional[datetime] = None,
    ) -> ExpenseForecast:
        if months_of_history is None:
            months_of_history = self.settings.forecast_months
        return forecast_expenses(
            self._records(),
            period,
            months_of_history,
            today,
            rules=self._rules(),
        )

    def duplicates(
        self,
        similarity_threshold: Optional[float] = None,
        transactions: Optional[Sequence[TransactionRecord]] = None,
    ) -> DuplicateDetectionResult:
        if similarity_threshold is None:
            similarity_threshold = self.settings.duplicate_threshold
        if transactions is None:
            transactions = self._records()
        return detect_duplicates(transactions, similarity_threshold)

    def subscriptions(self, today: Optional[date] = None) -> SubscriptionAnalysis:
        definitions = RecurringTransactionService(self.session, self.user_id).inputs()
        return analyze_subscriptions(definitions, self._records(), today)

    def bill_matches(
        self, settings: Optional[BillMatchingSettings] = None
    ) -> list[BillMatch]:
        bills = RecurringTransactionService(self.session, self.user_id).inputs()
        return find_bill_matches(
            self._records(), bills, settings or BillMatchingSettings()
        )

    def savings_streak(self) -> SavingsStreak:
        return calculate_savings_streak(self._records())

    def normalized_transactions(
        self, base_currency: Optional[str] = None
    ) -> list[TransactionRecord]:
        return normalize_to_base_currency(
            self._records(), base_currency or self.settings.base_currency
        )
