"""
Canteen API — Configuration
All settings are read from environment variables (or .env file).
"""
from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "canteen-api"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # ── PostgreSQL ────────────────────────────────────────────
    POSTGRES_HOST: str = "canteen-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "canteen_db"
    POSTGRES_USER: str = "canteen_user"
    POSTGRES_PASSWORD: str = "canteen_pass"
    DATABASE_URL: str | None = None  # full override, e.g. sqlite+aiosqlite:///./dev.db

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── Redis (pub/sub + idempotency) ─────────────────────────
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    IDEMPOTENCY_KEY_TTL_SECONDS: int = 86400

    # ── JWT (decode only, issued by the identity service) ────
    JWT_SECRET_KEY: str = "CHANGE_ME_IN_PRODUCTION"
    JWT_ALGORITHM: str = "HS256"

    # ── Payment gateway (Razorpay) ────────────────────────────
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com/v1"
    PAYMENT_CURRENCY: str = "INR"
    HTTP_TIMEOUT_SECONDS: float = 5.0

    # ── Orders ────────────────────────────────────────────────
    ORDER_NUMBER_PREFIX: str = "CC"
    TAX_RATE: Decimal = Decimal("0.05")
    MIN_ESTIMATED_MINUTES: int = 15
    ESTIMATE_BUFFER_MINUTES: int = 5
    DEFAULT_TABLE_NUMBER: str = "1"

    # ── Order automation thresholds ───────────────────────────
    AUTO_PREPARING_AFTER_MINUTES: float = 2.0
    AUTO_READY_PREP_FRACTION: float = 0.8

    # ── Scheduled maintenance ─────────────────────────────────
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "Asia/Kolkata"
    STOCK_RESET_HOUR: int = 6
    STOCK_RESET_MINUTE: int = 0
    LOW_STOCK_SCAN_INTERVAL_SECONDS: int = 1800
    ORDER_AUTOMATION_INTERVAL_SECONDS: int = 60

    # ── Optimistic Locking Retry ──────────────────────────────
    OPT_LOCK_MAX_RETRIES: int = 5
    OPT_LOCK_BASE_DELAY_MS: int = 50      # base exponential backoff delay in ms
    OPT_LOCK_MAX_DELAY_MS: int = 1000     # max backoff cap in ms
    OPT_LOCK_JITTER_MS: int = 50          # random jitter range in ms

    # ── SSE ───────────────────────────────────────────────────
    SSE_KEEPALIVE_INTERVAL_SECONDS: int = 15
    SSE_RETRY_MILLISECONDS: int = 3000

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
