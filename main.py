import logging
from dataclasses import asdict
from datetime import date, datetime
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from categorizer import categorize_transaction
from config import get_settings
from database import get_sessionmaker, init_db
from models import BudgetPeriod, ForecastPeriod, Transaction
from schemas import (
    BillMatchingSettings,
    CategoryLimitIn,
    CategoryRuleIn,
    DuplicateCheckIn,
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
    cents_to_euros,
    recurring_to_input,
)


settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Analytics")


def get_db():
    db = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    init_db()


def _serialize(result):
    """Dataclass results to plain JSON-friendly dicts."""
    if isinstance(result, list):
        return [_serialize(item) for item in result]
    data = asdict(result)
    return _jsonable(data)


def _jsonable(value):
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "value") and isinstance(value.value, str):
        return value.value
    return value


def transaction_payload(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.occurred_at.isoformat(),
        "type": txn.type.value if txn.type else None,
        "amount": cents_to_euros(txn.amount_cents),
        "category": txn.category,
        "description": txn.description,
        "recipient_name": txn.recipient_name,
        "reference_number": txn.reference_number,
        "archive_id": txn.archive_id,
        "currency": txn.currency,
    }


def _parse_reference(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid date: {value}") from exc


@app.get("/api/finance/transactions")
def api_transactions(
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    offset = (page - 1) * limit
    items = TransactionService(db).list(limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    return {
        "items": [transaction_payload(txn) for txn in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/api/finance/transactions", status_code=201)
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return transaction_payload(txn)


@app.delete("/api/finance/transactions/{transaction_id}", status_code=204)
def api_delete_transaction(transaction_id: str, db: Session = Depends(get_db)):
    try:
        TransactionService(db).soft_delete(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/finance/transactions/normalized")
def api_normalized_transactions(
    currency: Optional[str] = None, db: Session = Depends(get_db)
):
    records = AnalyticsService(db).normalized_transactions(currency)
    return [record.model_dump(mode="json") for record in records]


@app.get("/api/finance/categorize")
def api_categorize(
    description: str = "",
    reference_number: Optional[str] = None,
    recipient_name: Optional[str] = None,
    db: Session = Depends(get_db),
):
    rules = CategoryRuleService(db).compiled_rules()
    result = categorize_transaction(
        description, reference_number, recipient_name, rules=rules
    )
    return _serialize(result)


@app.get("/api/finance/budget-analysis")
def api_budget_analysis(
    period: BudgetPeriod = BudgetPeriod.monthly,
    date: Optional[str] = None,
    db: Session = Depends(get_db),
):
    try:
        analyses = AnalyticsService(db).budget_analysis(
            period, _parse_reference(date)
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize(analyses)


@app.get("/api/finance/budget-alerts")
def api_budget_alerts(
    period: BudgetPeriod = BudgetPeriod.monthly,
    date: Optional[str] = None,
    db: Session = Depends(get_db),
):
    try:
        alerts = AnalyticsService(db).budget_alerts(period, _parse_reference(date))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize(alerts)


@app.get("/api/finance/summary")
def api_summary(date: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        summary = AnalyticsService(db).summary(_parse_reference(date))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize(summary)


@app.get("/api/finance/forecast")
def api_forecast(
    period: ForecastPeriod = ForecastPeriod.month,
    months: Optional[int] = None,
    db: Session = Depends(get_db),
):
    try:
        forecast = AnalyticsService(db).forecast(period, months)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize(forecast)


@app.get("/api/finance/check-duplicates")
def api_duplicates(
    threshold: Optional[float] = None, db: Session = Depends(get_db)
):
    try:
        result = AnalyticsService(db).duplicates(threshold)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize(result)


@app.post("/api/finance/check-duplicates")
def api_check_duplicates(data: DuplicateCheckIn, db: Session = Depends(get_db)):
    result = AnalyticsService(db).duplicates(
        data.similarity_threshold, data.transactions
    )
    return _serialize(result)


@app.get("/api/finance/subscriptions")
def api_subscriptions(db: Session = Depends(get_db)):
    return _serialize(AnalyticsService(db).subscriptions())


@app.post("/api/finance/bill-matches")
def api_bill_matches(
    data: Optional[BillMatchingSettings] = None, db: Session = Depends(get_db)
):
    return _serialize(AnalyticsService(db).bill_matches(data))


@app.get("/api/finance/savings-streak")
def api_savings_streak(db: Session = Depends(get_db)):
    return _serialize(AnalyticsService(db).savings_streak())


@app.get("/api/finance/category-limits")
def api_category_limits(db: Session = Depends(get_db)):
    return [
        limit.model_dump() for limit in CategoryLimitService(db).inputs()
    ]


@app.put("/api/finance/category-limits")
def api_upsert_category_limit(data: CategoryLimitIn, db: Session = Depends(get_db)):
    limit = CategoryLimitService(db).upsert(data)
    return {
        "category": limit.category,
        "monthly_limit": cents_to_euros(limit.monthly_limit_cents),
        "alert_threshold": limit.alert_threshold,
    }


@app.delete("/api/finance/category-limits/{category}", status_code=204)
def api_delete_category_limit(category: str, db: Session = Depends(get_db)):
    try:
        CategoryLimitService(db).delete(category)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/finance/recurring")
def api_recurring(db: Session = Depends(get_db)):
    return [
        item.model_dump(mode="json")
        for item in RecurringTransactionService(db).inputs()
    ]


@app.post("/api/finance/recurring", status_code=201)
def api_create_recurring(data: RecurringTransactionIn, db: Session = Depends(get_db)):
    row = RecurringTransactionService(db).create(data)
    return recurring_to_input(row).model_dump(mode="json")


@app.post("/api/finance/recurring/{recurring_id}/paid")
def api_mark_recurring_paid(
    recurring_id: str,
    payment_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    try:
        row = RecurringTransactionService(db).mark_paid(recurring_id, payment_date)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return recurring_to_input(row).model_dump(mode="json")


@app.delete("/api/finance/recurring/{recurring_id}", status_code=204)
def api_delete_recurring(recurring_id: str, db: Session = Depends(get_db)):
    try:
        RecurringTransactionService(db).delete(recurring_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/finance/rules", status_code=201)
def api_create_rule(data: CategoryRuleIn, db: Session = Depends(get_db)):
    rule = CategoryRuleService(db).create(data)
    return {"id": rule.id, "name": rule.name, "category": rule.category}


@app.get("/api/finance/settings")
def api_settings(db: Session = Depends(get_db)):
    return FinanceSettingsService(db).get().model_dump()


@app.put("/api/finance/settings")
def api_update_settings(data: PeriodSettings, db: Session = Depends(get_db)):
    return FinanceSettingsService(db).update(data).model_dump()


async def _read_upload(file: UploadFile) -> str:
    try:
        return (await file.read()).decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(
            status_code=400, detail="CSV file must be UTF-8 encoded"
        ) from exc


@app.post("/api/finance/import/preview")
async def api_import_preview(
    file: UploadFile = File(...), db: Session = Depends(get_db)
):
    content = await _read_upload(file)
    records, errors = CSVService(db).preview(content)
    return {
        "rows": [record.model_dump(mode="json") for record in records],
        "errors": errors,
    }


@app.post("/api/finance/import/commit")
async def api_import_commit(
    file: UploadFile = File(...), db: Session = Depends(get_db)
):
    content = await _read_upload(file)
    try:
        count = CSVService(db).commit(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info("csv_import: rows=%d", count)
    return {"imported": count}


@app.get("/api/finance/export.csv")
def api_export(db: Session = Depends(get_db)):
    csv_text = CSVService(db).export()
    filename = f"transactions_{date.today().isoformat()}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
