from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Marketplace Booking API"
    LOG_LEVEL: str = "INFO"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    SECRET_KEY: str = "change-me"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    DATABASE_URL: str = "sqlite:///./marketplace.db"
    # PostgreSQL only: how long a unit of work waits for a row lock before failing with ConflictError
    DB_LOCK_TIMEOUT_MS: int = 5000

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    # Booking lifecycle
    STALE_BOOKING_MINUTES: int = 60
    SWEEP_INTERVAL_SECONDS: float = 60.0
    BOOKING_HORIZON_DAYS: int = 2
    SCHEDULE_CONFLICT_MINUTES: int = 30
    # Bookable hours [start, end) on the clock of SERVICE_TIMEZONE
    SERVICE_HOURS_START: int = 9
    SERVICE_HOURS_END: int = 21
    SERVICE_TIMEZONE: str = "UTC"
    PROVIDER_BUSY_BLOCKS_NEW_BOOKINGS: bool = False

    # Real-time events: log|redis
    EVENT_BACKEND: str = "log"
    EVENT_CHANNEL_PREFIX: str = "marketplace"

    # Completion codes: booking (stored on the booking row) | kv (KeyValueStore on REDIS_URL)
    COMPLETION_CODE_BACKEND: str = "booking"
    COMPLETION_CODE_TTL_SECONDS: int = 0  # 0 = no expiry


settings = Settings()
