# gse_tracker/config.py
import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Loads variables from a local .env file into environment variables (dev only).
load_dotenv()

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class TradingWindow:
    """GSE trading hours: Monday-Friday, 10:00-15:00 UTC (close hour exclusive)."""
    open_hour_utc: int = 10
    close_hour_utc: int = 15
    weekdays_only: bool = True


@dataclass(frozen=True)
class Settings:
    # App config
    app_env: str = "local"
    log_level: str = "INFO"
    provider: str = "GSE"
    port: int = 3000

    # Provider config (GSE)
    gse_base_url: str = "https://dev.kwayisi.org/apis/gse"
    gse_timeout_seconds: float = 30.0
    gse_max_retries: int = 3

    # Storage
    storage_engine: str = "rocksdb"
    database_path: str = "./data/gse.db"

    # Scheduler
    scrape_interval_seconds: int = 3600
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    fetch_detail_data: bool = True
    generate_market_summary: bool = True
    trading_window: TradingWindow = field(default_factory=TradingWindow)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name}={raw!r} is not an integer")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name}={raw!r} is not a number")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise RuntimeError(f"{name}={raw!r} is not a boolean (use true/false)")


def get_settings() -> Settings:
    """
    Reads env vars and returns a Settings object.
    """
    window = TradingWindow(
        open_hour_utc=_env_int("TRADING_OPEN_HOUR_UTC", 10),
        close_hour_utc=_env_int("TRADING_CLOSE_HOUR_UTC", 15),
        weekdays_only=_env_bool("TRADING_WEEKDAYS_ONLY", True),
    )
    if not 0 <= window.open_hour_utc <= window.close_hour_utc <= 24:
        raise RuntimeError(
            f"Invalid trading window {window.open_hour_utc}-{window.close_hour_utc}; "
            "expected 0 <= open <= close <= 24"
        )

    return Settings(
        app_env=os.getenv("APP_ENV", "local"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        provider=os.getenv("PROVIDER", "GSE"),
        port=_env_int("PORT", 3000),
        gse_base_url=os.getenv("GSE_BASE_URL", "https://dev.kwayisi.org/apis/gse"),
        gse_timeout_seconds=_env_float("GSE_TIMEOUT_SECONDS", 30.0),
        gse_max_retries=_env_int("GSE_MAX_RETRIES", 3),
        storage_engine=os.getenv("STORAGE_ENGINE", "rocksdb").strip().lower(),
        database_path=os.getenv("DATABASE_PATH", "./data/gse.db"),
        scrape_interval_seconds=_env_int("SCRAPE_INTERVAL", 3600),
        max_retries=_env_int("MAX_RETRIES", 3),
        retry_delay_seconds=_env_float("RETRY_DELAY", 5.0),
        fetch_detail_data=_env_bool("FETCH_EQUITY_DATA", True),
        generate_market_summary=_env_bool("GENERATE_MARKET_SUMMARY", True),
        trading_window=window,
    )
