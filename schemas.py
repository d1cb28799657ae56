import datetime as dt
import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from csv_utils import parse_amount, parse_datetime
from models import RecurrenceInterval, RuleMatchType, TransactionType


logger = logging.getLogger(__name__)

_INTERVAL_ALIASES = {
    "bi-weekly": RecurrenceInterval.biweekly,
    "annually": RecurrenceInterval.yearly,
    "annual": RecurrenceInterval.yearly,
}


class TransactionRecord(BaseModel):
    """A bank-style transaction as seen by the analytics core.

    Validation happens once, here. A malformed date becomes ``None`` and a
    malformed amount becomes ``0.0`` so a single bad row never fails a batch.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    date: Optional[dt.datetime] = None
    amount: float = 0.0
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    description: Optional[str] = None
    recipient_name: Optional[str] = Field(default=None, alias="recipientName")
    reference_number: Optional[str] = Field(default=None, alias="referenceNumber")
    archive_id: Optional[str] = Field(default=None, alias="archiveId")
    account: Optional[str] = None
    currency: Optional[str] = None
    tags: tuple[str, ...] = ()

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> Optional[dt.datetime]:
        if value is None or value == "":
            return None
        try:
            return parse_datetime(value)
        except (TypeError, ValueError):
            logger.warning("transaction_date_unparseable: value=%r", value)
            return None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float:
        if value is None or value == "":
            return 0.0
        try:
            return parse_amount(value)
        except (TypeError, ValueError):
            logger.warning("transaction_amount_unparseable: value=%r", value)
            return 0.0

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, TransactionType):
            return value.value
        clean = str(value).strip().lower()
        if clean in (TransactionType.income.value, TransactionType.expense.value):
            return clean
        return None

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> tuple[str, ...]:
        if not value:
            return ()
        return tuple(str(tag) for tag in value)

    @property
    def is_expense(self) -> bool:
        if self.type is not None:
            return self.type == TransactionType.expense
        return self.amount < 0

    @property
    def is_income(self) -> bool:
        return not self.is_expense


class TransactionIn(BaseModel):
    occurred_at: dt.datetime
    amount: float
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    recipient_name: Optional[str] = Field(default=None, max_length=200)
    reference_number: Optional[str] = Field(default=None, max_length=50)
    archive_id: Optional[str] = Field(default=None, max_length=100)
    account: Optional[str] = Field(default=None, max_length=50)
    currency: Optional[str] = Field(default=None, max_length=3)
    tags: list[str] = Field(default_factory=list)


class CategoryLimitIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    monthly_limit: float = Field(..., gt=0)
    weekly_limit: Optional[float] = Field(default=None, gt=0)
    alert_threshold: float = Field(default=80, ge=0, le=100)


class RecurringTransactionIn(BaseModel):
    id: str = ""
    name: str = Field(..., min_length=1, max_length=120)
    amount: float
    category: Optional[str] = Field(default=None, max_length=100)
    interval: RecurrenceInterval = RecurrenceInterval.monthly
    recipient_name: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    is_paid: bool = False
    due_date: Optional[dt.date] = None
    last_paid_date: Optional[dt.date] = None

    @field_validator("interval", mode="before")
    @classmethod
    def _normalize_interval(cls, value: Any) -> Any:
        if value is None or value == "":
            return RecurrenceInterval.monthly
        if isinstance(value, str):
            clean = value.strip().lower()
            return _INTERVAL_ALIASES.get(clean, clean)
        return value


class PeriodSettings(BaseModel):
    use_payday_period: bool = False
    period_start_day: int = Field(default=1, ge=1, le=28)
    period_end_day: Optional[int] = Field(default=None, ge=1, le=31)
    payday_start_cutoff_hour: int = Field(default=14, ge=0, le=23)
    payday_cutoff_hour: int = Field(default=13, ge=0, le=23)


class CategoryRuleIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    enabled: bool = True
    priority: int = Field(default=100, ge=0, le=10_000)
    match_type: RuleMatchType
    match_value: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)


class BillMatchingSettings(BaseModel):
    enabled: bool = True
    amount_tolerance: float = Field(default=10, ge=0)
    date_tolerance_days: int = Field(default=7, ge=0)
    min_match_score: float = Field(default=50, ge=0)


class DuplicateCheckIn(BaseModel):
    transactions: list[TransactionRecord]
    similarity_threshold: float = Field(default=150, gt=0)
