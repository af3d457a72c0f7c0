import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        export_dir: Path,
        refresh_interval_secs: float,
        refresh_debounce_ms: int,
        stats_cache_ttl_ms: int,
        upcoming_window_days: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.export_dir = export_dir
        self.refresh_interval_secs = refresh_interval_secs
        self.refresh_debounce_ms = refresh_debounce_ms
        self.stats_cache_ttl_ms = stats_cache_ttl_ms
        self.upcoming_window_days = upcoming_window_days


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    export_dir = Path(
        os.getenv("LEDGER_EXPORT_DIR", str(data_dir / "exports"))
    ).resolve()
    refresh_interval_secs = float(os.getenv("LEDGER_REFRESH_INTERVAL_SECS", "5"))
    refresh_debounce_ms = int(os.getenv("LEDGER_REFRESH_DEBOUNCE_MS", "100"))
    stats_cache_ttl_ms = int(os.getenv("LEDGER_STATS_CACHE_TTL_MS", "500"))
    upcoming_window_days = int(os.getenv("LEDGER_UPCOMING_WINDOW_DAYS", "7"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        export_dir=export_dir,
        refresh_interval_secs=refresh_interval_secs,
        refresh_debounce_ms=refresh_debounce_ms,
        stats_cache_ttl_ms=stats_cache_ttl_ms,
        upcoming_window_days=upcoming_window_days,
    )
