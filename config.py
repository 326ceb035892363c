import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_days: int,
        webhook_secret: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_days = session_max_age_days
        self.webhook_secret = webhook_secret


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FAMILY_FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "family_finance.db"
    database_url = os.getenv("FAMILY_FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FAMILY_FINANCE_TIMEZONE", "America/Sao_Paulo")
    session_secret = os.getenv(
        "FAMILY_FINANCE_SESSION_SECRET",
        "5f0c7d1e9b2a44c3a8e61f7d0b9c2e4a6d8f1a3c5e7b9d0f2a4c6e8b1d3f5a7c",
    )
    session_max_age_days = int(os.getenv("FAMILY_FINANCE_SESSION_MAX_AGE_DAYS", "7"))
    webhook_secret = os.getenv("FAMILY_FINANCE_WEBHOOK_SECRET", "")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_days=session_max_age_days,
        webhook_secret=webhook_secret,
    )
