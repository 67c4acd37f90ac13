import os
from datetime import date
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        auth_secret: str,
        token_max_age_hours: int,
        default_currency: str,
        history_start: date,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.auth_secret = auth_secret
        self.token_max_age_hours = token_max_age_hours
        self.default_currency = default_currency
        self.history_start = history_start


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("AGENCY_FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "agency_finance.db"
    database_url = os.getenv("AGENCY_FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv(
        "AGENCY_FINANCE_TIMEZONE", "America/Argentina/Buenos_Aires"
    )
    auth_secret = os.getenv(
        "AGENCY_FINANCE_AUTH_SECRET",
        "5c0e1f7a9b3d42e6a18f0c7d2b94e35f61a8c0d9e7b2f4a6c3d1e8f09b7a6c52",
    )
    token_max_age_hours = int(os.getenv("AGENCY_FINANCE_TOKEN_MAX_AGE_HOURS", "12"))
    default_currency = (
        os.getenv("AGENCY_FINANCE_DEFAULT_CURRENCY", "ARS").strip().upper() or "ARS"
    )
    history_start = date.fromisoformat(
        os.getenv("AGENCY_FINANCE_HISTORY_START", "2000-01-01")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        auth_secret=auth_secret,
        token_max_age_hours=token_max_age_hours,
        default_currency=default_currency,
        history_start=history_start,
    )
