import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_path: Path,
        credentials_dir: Path,
        timezone: str,
        device_key: Optional[str],
        billing_history_months: int,
        billing_max_age: Optional[timedelta],
        menu_max_age: timedelta,
        billing_refresh_minutes: int,
        menu_refresh_minutes: int,
        log_level: str,
    ) -> None:
        self.data_dir = data_dir
        self.database_path = database_path
        self.credentials_dir = credentials_dir
        self.timezone = timezone
        self.device_key = device_key
        self.billing_history_months = billing_history_months
        self.billing_max_age = billing_max_age
        self.menu_max_age = menu_max_age
        self.billing_refresh_minutes = billing_refresh_minutes
        self.menu_refresh_minutes = menu_refresh_minutes
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("CANTEEN_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _optional_hours(name: str) -> Optional[timedelta]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    return timedelta(hours=float(raw))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    database_path = Path(
        os.getenv("CANTEEN_DATABASE_PATH", str(data_dir / "cache.db"))
    ).resolve()
    credentials_dir = Path(
        os.getenv("CANTEEN_CREDENTIALS_DIR", str(data_dir / "credentials"))
    ).resolve()
    timezone = os.getenv("CANTEEN_TIMEZONE", "Europe/Vienna")
    device_key = os.getenv("CANTEEN_DEVICE_KEY") or None
    billing_history_months = int(os.getenv("CANTEEN_BILLING_HISTORY_MONTHS", "24"))
    billing_max_age = _optional_hours("CANTEEN_BILLING_MAX_AGE_HOURS")
    menu_max_age = timedelta(
        minutes=float(os.getenv("CANTEEN_MENU_MAX_AGE_MINUTES", "60"))
    )
    billing_refresh_minutes = int(os.getenv("CANTEEN_BILLING_REFRESH_MINUTES", "60"))
    menu_refresh_minutes = int(os.getenv("CANTEEN_MENU_REFRESH_MINUTES", "30"))
    log_level = os.getenv("CANTEEN_LOG_LEVEL", "INFO").upper()
    return Settings(
        data_dir=data_dir,
        database_path=database_path,
        credentials_dir=credentials_dir,
        timezone=timezone,
        device_key=device_key,
        billing_history_months=billing_history_months,
        billing_max_age=billing_max_age,
        menu_max_age=menu_max_age,
        billing_refresh_minutes=billing_refresh_minutes,
        menu_refresh_minutes=menu_refresh_minutes,
        log_level=log_level,
    )
