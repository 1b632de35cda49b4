import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        user_id: str,
        default_scope: str,
        recurring_memo: str,
        scheduler_interval_minutes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.user_id = user_id
        self.default_scope = default_scope
        self.recurring_memo = recurring_memo
        self.scheduler_interval_minutes = scheduler_interval_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("LEDGER_DATABASE_URL")
    if not database_url:
        data_dir = _ensure_data_dir()
        database_url = f"sqlite:///{data_dir / 'ledger.db'}"
    timezone = os.getenv("LEDGER_TIMEZONE", "Asia/Tokyo")
    user_id = os.getenv("LEDGER_USER_ID", "local")
    default_scope = os.getenv("LEDGER_DEFAULT_SCOPE", "private")
    recurring_memo = os.getenv("LEDGER_RECURRING_MEMO", "Auto-generated")
    scheduler_interval_minutes = int(
        os.getenv("LEDGER_SCHEDULER_INTERVAL_MINUTES", "60")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        user_id=user_id,
        default_scope=default_scope,
        recurring_memo=recurring_memo,
        scheduler_interval_minutes=scheduler_interval_minutes,
    )
