from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List, Dict, Tuple
import json


DEFAULT_RESOURCE_CATALOG = json.dumps([
    {"id": 1, "label": "Bay 1", "category": "general", "capacity": 4},
    {"id": 2, "label": "Bay 2", "category": "general", "capacity": 4},
    {"id": 3, "label": "Bay 3", "category": "general", "capacity": 4},
])


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Local cache - SQLite by default, any SQLAlchemy URL works
    database_url: str = Field(
        default="sqlite:///./baybook.db",
        alias="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # CORS - staff terminal origins (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
        alias="ALLOWED_ORIGINS"
    )

    # Terminal identity (sent to the remote store with every write)
    terminal_id: str = Field(default="terminal-1", alias="TERMINAL_ID")

    # ==============================================
    # Remote store
    # ==============================================
    remote_store_url: str = Field(default="", alias="REMOTE_STORE_URL")
    remote_store_api_key: str = Field(default="", alias="REMOTE_STORE_API_KEY")
    remote_timeout_seconds: int = Field(default=20, alias="REMOTE_TIMEOUT_SECONDS")

    # Bounded retries inside one sync cycle
    remote_max_retries: int = Field(default=3, alias="REMOTE_MAX_RETRIES")
    remote_base_delay: float = Field(default=1.0, alias="REMOTE_BASE_DELAY")
    remote_max_delay: float = Field(default=30.0, alias="REMOTE_MAX_DELAY")

    # Membership lookups run inside booking creation: one attempt, short timeout
    membership_lookup_timeout_seconds: float = Field(default=3.0, alias="MEMBERSHIP_LOOKUP_TIMEOUT_SECONDS")

    # ==============================================
    # Sync
    # ==============================================
    sync_enabled: bool = Field(default=True, alias="SYNC_ENABLED")
    sync_interval_seconds: int = Field(default=30, alias="SYNC_INTERVAL_SECONDS")
    sync_batch_size: int = Field(default=50, alias="SYNC_BATCH_SIZE")
    sync_max_attempts: int = Field(default=10, alias="SYNC_MAX_ATTEMPTS")
    sync_max_backoff_minutes: int = Field(default=30, alias="SYNC_MAX_BACKOFF_MINUTES")

    # ==============================================
    # Venue
    # ==============================================
    # JSON list of {"id", "label", "category", "capacity"}
    resource_catalog: str = Field(default=DEFAULT_RESOURCE_CATALOG, alias="RESOURCE_CATALOG")

    # Weekend days, comma-separated weekday numbers (Monday=0, Sunday=6)
    weekend_days: str = Field(default="5,6", alias="WEEKEND_DAYS")

    # Operating hours (open inclusive, close exclusive)
    weekday_open_hour: int = Field(default=9, alias="WEEKDAY_OPEN_HOUR")
    weekday_close_hour: int = Field(default=22, alias="WEEKDAY_CLOSE_HOUR")
    weekend_open_hour: int = Field(default=8, alias="WEEKEND_OPEN_HOUR")
    weekend_close_hour: int = Field(default=23, alias="WEEKEND_CLOSE_HOUR")

    # Booking grid
    duration_unit_minutes: int = Field(default=60, alias="DURATION_UNIT_MINUTES")
    slot_minutes: int = Field(default=60, alias="SLOT_MINUTES")
    max_duration_units: int = Field(default=8, alias="MAX_DURATION_UNITS")

    # ==============================================
    # Pricing
    # ==============================================
    currency: str = Field(default="USD", alias="CURRENCY")

    # Duration -> price table, "units:price" pairs
    duration_price_table: str = Field(default="1:45,2:80,3:110,4:140", alias="DURATION_PRICE_TABLE")
    hourly_rate: float = Field(default=45, alias="HOURLY_RATE")

    # Peak windows "start-end" in hours, end exclusive
    weekday_peak_hours: str = Field(default="17-21", alias="WEEKDAY_PEAK_HOURS")
    weekend_peak_hours: str = Field(default="10-21", alias="WEEKEND_PEAK_HOURS")

    # "flat" adds peak_surcharge, "multiplier" multiplies by peak_multiplier
    peak_pricing_mode: str = Field(default="flat", alias="PEAK_PRICING_MODE")
    peak_surcharge: float = Field(default=10, alias="PEAK_SURCHARGE")
    peak_multiplier: float = Field(default=1.25, alias="PEAK_MULTIPLIER")

    # ==============================================
    # Policies
    # ==============================================
    full_refund_hours: int = Field(default=24, alias="FULL_REFUND_HOURS")
    partial_refund_hours: int = Field(default=12, alias="PARTIAL_REFUND_HOURS")
    partial_refund_percent: int = Field(default=50, alias="PARTIAL_REFUND_PERCENT")
    no_show_grace_minutes: int = Field(default=15, alias="NO_SHOW_GRACE_MINUTES")
    waitlist_hold_minutes: int = Field(default=30, alias="WAITLIST_HOLD_MINUTES")

    # Waitlist notifications (empty = log only)
    notification_webhook_url: str = Field(default="", alias="NOTIFICATION_WEBHOOK_URL")

    @field_validator('peak_pricing_mode')
    @classmethod
    def validate_peak_mode(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("flat", "multiplier"):
            raise ValueError("PEAK_PRICING_MODE must be 'flat' or 'multiplier'")
        return v

    @field_validator('duration_unit_minutes', 'slot_minutes')
    @classmethod
    def validate_positive_minutes(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("minute sizes must be positive")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def remote_enabled(self) -> bool:
        return bool(self.remote_store_url)

    @property
    def cors_origins(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)
        return origins or ["http://localhost:5173"]

    @property
    def weekend_day_numbers(self) -> List[int]:
        """
        Parse weekend days into list of weekday numbers.
        Default: [5, 6] (Saturday, Sunday)
        """
        try:
            return [int(d.strip()) for d in self.weekend_days.split(",") if d.strip()]
        except ValueError:
            return [5, 6]

    @property
    def price_table(self) -> Dict[int, float]:
        """Parse "1:45,2:80" into {1: 45.0, 2: 80.0}"""
        table = {}
        for pair in self.duration_price_table.split(","):
            if ":" not in pair:
                continue
            units, price = pair.split(":", 1)
            try:
                table[int(units.strip())] = float(price.strip())
            except ValueError:
                continue
        return table

    @staticmethod
    def _parse_window(value: str, default: Tuple[int, int]) -> Tuple[int, int]:
        try:
            start, end = value.split("-", 1)
            return int(start.strip()), int(end.strip())
        except ValueError:
            return default

    @property
    def weekday_peak_window(self) -> Tuple[int, int]:
        return self._parse_window(self.weekday_peak_hours, (17, 21))

    @property
    def weekend_peak_window(self) -> Tuple[int, int]:
        return self._parse_window(self.weekend_peak_hours, (10, 21))

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
