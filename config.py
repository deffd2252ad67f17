import os
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_currency: str,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_currency = default_currency
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "America/Port_of_Spain")
    default_currency = os.getenv("LEDGER_DEFAULT_CURRENCY", "TTD").upper()
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_currency=default_currency,
        log_level=log_level,
    )


@lru_cache(maxsize=1)
def get_timezone() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)
