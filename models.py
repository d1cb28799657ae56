import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class RecurrenceInterval(str, Enum):
    daily = "daily"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class RuleMatchType(str, Enum):
    contains = "contains"
    equals = "equals"
    starts_with = "starts_with"
    regex = "regex"


class BudgetPeriod(str, Enum):
    monthly = "monthly"
    weekly = "weekly"


class ForecastPeriod(str, Enum):
    month = "month"
    quarter = "quarter"
    year = "year"


class AlertLevel(str, Enum):
    info = "info"
    warning = "warning"
    critical = "critical"


class SuggestionPriority(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class Confidence(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


def _new_id() -> str:
    return uuid.uuid4().hex


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    type: Mapped[Optional[TransactionType]] = mapped_column(SAEnum(TransactionType))
    # Signed: negative amounts are expenses when no type is stored.
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text)
    recipient_name: Mapped[Optional[str]] = mapped_column(String(200))
    reference_number: Mapped[Optional[str]] = mapped_column(String(50))
    archive_id: Mapped[Optional[str]] = mapped_column(String(100))
    account: Mapped[Optional[str]] = mapped_column(String(50))
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    tags_json: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_transactions_user_occurred", "user_id", "occurred_at"),
        Index("ix_transactions_user_category", "user_id", "category"),
    )


class CategoryLimit(Base, TimestampMixin):
    __tablename__ = "category_limits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    monthly_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    weekly_limit_cents: Mapped[Optional[int]] = mapped_column(Integer)
    alert_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=80)

    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_limit_user_category"),
    )


class RecurringTransaction(Base, TimestampMixin):
    __tablename__ = "recurring_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    interval: Mapped[RecurrenceInterval] = mapped_column(
        SAEnum(RecurrenceInterval), nullable=False, default=RecurrenceInterval.monthly
    )
    recipient_name: Mapped[Optional[str]] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    last_paid_date: Mapped[Optional[date]] = mapped_column(Date)


class CategoryRule(Base, TimestampMixin):
    __tablename__ = "category_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    match_type: Mapped[RuleMatchType] = mapped_column(
        SAEnum(RuleMatchType), nullable=False
    )
    match_value: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)

    __table_args__ = (
        Index("ix_category_rules_user_enabled_priority", "user_id", "enabled", "priority"),
    )


class FinanceSettings(Base, TimestampMixin):
    __tablename__ = "finance_settings"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    use_payday_period: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    period_start_day: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    period_end_day: Mapped[Optional[int]] = mapped_column(Integer)
    payday_start_cutoff_hour: Mapped[int] = mapped_column(
        Integer, default=14, nullable=False
    )
    payday_cutoff_hour: Mapped[int] = mapped_column(
        Integer, default=13, nullable=False
    )
