"""Configuration system using pydantic-settings with environment variable loading."""

from datetime import date
from decimal import Decimal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class LiveSourceSettings(BaseSettings):
    """Upstream live/historical price API credentials."""

    model_config = SettingsConfigDict(env_prefix="LIVE_")

    metalpriceapi_key: SecretStr = SecretStr("")
    goldapi_key: SecretStr = SecretStr("")
    timeout_seconds: float = 5.0


class CacheSettings(BaseSettings):
    """Live spot cache staleness and last-resort fallback prices."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    max_age_minutes: float = 10.0
    refresh_timeout_seconds: float = 12.0  # whole live-source chain
    fallback_gold: Decimal = Decimal("2650")
    fallback_silver: Decimal = Decimal("31")
    fallback_platinum: Decimal = Decimal("950")
    fallback_palladium: Decimal = Decimal("960")


class MarketSettings(BaseSettings):
    """Metals market calendar.

    Spot metals trade nearly 24h on weekdays; the weekly break runs from
    Friday close to Sunday evening in New York time.
    """

    model_config = SettingsConfigDict(env_prefix="MARKET_")

    timezone: str = "America/New_York"
    weekly_close_hour: int = 17  # Friday
    weekly_reopen_hour: int = 18  # Sunday
    holidays: list[str] = ["01-01", "12-25"]  # MM-DD, full-day closures


class HistoricalSettings(BaseSettings):
    """Historical resolver tiers and batch limits."""

    model_config = SettingsConfigDict(env_prefix="HISTORICAL_")

    static_table_path: str | None = None
    tier_timeout_seconds: float = 6.0
    price_log_window_minutes: int = 5
    batch_max_dates: int = 100
    batch_concurrency: int = 10
    batch_memo_size: int = 2000  # dates kept, least recently used evicted
    etf_start_date: date = date(2006, 4, 1)  # SLV launch month


class CalibrationSettings(BaseSettings):
    """Default ETF-price / spot-price ratios used until a calibration exists."""

    model_config = SettingsConfigDict(env_prefix="CALIBRATION_")

    default_gold_ratio: float = 0.092  # GLD ~ 1/10 oz
    default_silver_ratio: float = 0.92  # SLV ~ 0.92 oz
    default_platinum_ratio: float = 0.096  # PPLT
    default_palladium_ratio: float = 0.096  # PALL


class DatabaseSettings(BaseSettings):
    """SQLite datastore location."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    path: str = "data/prices.db"


class ApiSettings(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "0.0.0.0"
    port: int = 8080
    history_default_points: int = 60
    history_max_points: int = 200


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    live: LiveSourceSettings = LiveSourceSettings()
    cache: CacheSettings = CacheSettings()
    market: MarketSettings = MarketSettings()
    historical: HistoricalSettings = HistoricalSettings()
    calibration: CalibrationSettings = CalibrationSettings()
    database: DatabaseSettings = DatabaseSettings()
    api: ApiSettings = ApiSettings()
