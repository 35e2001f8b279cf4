import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        recurring_horizon_months: int,
        history_months: int,
        log_level: str,
        report_session_limit: int = 256,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.recurring_horizon_months = recurring_horizon_months
        self.history_months = history_months
        self.log_level = log_level
        self.report_session_limit = report_session_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "America/Sao_Paulo")
    csrf_secret = os.getenv(
        "FINANCE_CSRF_SECRET",
        "5d0c7e1f0b9a4c2e8f3a6b1d9e7c4a2f0b8d6e3c1a9f7e5d3b1c9a7e5f3d1b0c",
    )
    horizon = int(os.getenv("FINANCE_RECURRING_HORIZON_MONTHS", "24"))
    if horizon < 0:
        raise ValueError("FINANCE_RECURRING_HORIZON_MONTHS must not be negative")
    history_months = int(os.getenv("FINANCE_HISTORY_MONTHS", "12"))
    if history_months < 1:
        raise ValueError("FINANCE_HISTORY_MONTHS must be at least 1")
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    report_session_limit = int(os.getenv("FINANCE_REPORT_SESSIONS", "256"))
    if report_session_limit < 1:
        raise ValueError("FINANCE_REPORT_SESSIONS must be at least 1")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        recurring_horizon_months=horizon,
        history_months=history_months,
        log_level=log_level,
        report_session_limit=report_session_limit,
    )
