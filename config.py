import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        log_level: str,
        base_currency: str,
        duplicate_threshold: float,
        forecast_months: int,
        alert_threshold: float,
        payday_start_cutoff_hour: int,
        payday_cutoff_hour: int,
    ) -> None:
        self.database_url = database_url
        self.log_level = log_level
        self.base_currency = base_currency
        self.duplicate_threshold = duplicate_threshold
        self.forecast_months = forecast_months
        self.alert_threshold = alert_threshold
        self.payday_start_cutoff_hour = payday_start_cutoff_hour
        self.payday_cutoff_hour = payday_cutoff_hour


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'finance.db'}"
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    base_currency = os.getenv("FINANCE_BASE_CURRENCY", "EUR").upper()
    duplicate_threshold = float(os.getenv("FINANCE_DUPLICATE_THRESHOLD", "150"))
    forecast_months = int(os.getenv("FINANCE_FORECAST_MONTHS", "6"))
    alert_threshold = float(os.getenv("FINANCE_ALERT_THRESHOLD", "80"))
    payday_start_cutoff_hour = int(os.getenv("FINANCE_PAYDAY_START_CUTOFF_HOUR", "14"))
    payday_cutoff_hour = int(os.getenv("FINANCE_PAYDAY_CUTOFF_HOUR", "13"))
    return Settings(
        database_url=database_url,
        log_level=log_level,
        base_currency=base_currency,
        duplicate_threshold=duplicate_threshold,
        forecast_months=forecast_months,
        alert_threshold=alert_threshold,
        payday_start_cutoff_hour=payday_start_cutoff_hour,
        payday_cutoff_hour=payday_cutoff_hour,
    )
