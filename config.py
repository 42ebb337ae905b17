import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        scheduler_interval_minutes: int,
        due_lookahead_days: int,
        max_catch_up: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.scheduler_interval_minutes = scheduler_interval_minutes
        self.due_lookahead_days = due_lookahead_days
        self.max_catch_up = max_catch_up


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Rome")
    scheduler_interval_minutes = int(
        os.getenv("LEDGER_SCHEDULER_INTERVAL_MINUTES", "10")
    )
    due_lookahead_days = int(os.getenv("LEDGER_DUE_LOOKAHEAD_DAYS", "7"))
    # Upper bound on occurrences posted for one obligation in a single sweep.
    max_catch_up = int(os.getenv("LEDGER_MAX_CATCH_UP", "366"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        scheduler_interval_minutes=scheduler_interval_minutes,
        due_lookahead_days=due_lookahead_days,
        max_catch_up=max_catch_up,
    )
