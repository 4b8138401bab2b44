"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Database
    DATABASE_URL: str = "sqlite+pysqlite:///./lifelink.db"

    # Push credential encryption (AES-256-GCM, 64 hex chars).
    # Required: there is no generated fallback key.
    PUSH_ENCRYPTION_KEY: str = ""

    # Tenant push gateway
    PUSH_CLIENT_CACHE_TTL_SECONDS: int = 600  # 10 minutes
    PUSH_MULTICAST_BATCH_SIZE: int = 500  # FCM per-call ceiling
    PUSH_SEND_TIMEOUT_SECONDS: float = 10.0
    PUSH_DEFAULT_DAILY_LIMIT: int = 1000
    PUSH_DEFAULT_MONTHLY_LIMIT: int = 30000

    # System-default FCM credentials (mock mode when unset)
    FIREBASE_PROJECT_ID: str = ""
    FIREBASE_CLIENT_EMAIL: str = ""
    FIREBASE_PRIVATE_KEY: str = ""

    # LifeLink rules
    DONOR_COOLDOWN_DAYS: int = 90
    REQUISITION_DEFAULT_TTL_DAYS: int = 3
    DONOR_SEARCH_DEFAULT_LIMIT: int = 50
    DONOR_BROADCAST_LIMIT: int = 200

    # Duplicate donor responses: "reject" (both paths) or "legacy"
    # (direct path rejects, notification path overwrites)
    RESPONSE_DUPLICATE_POLICY: str = "reject"

    # Notification read caches (Redis)
    # Unset or "memory://" turns caching off
    REDIS_URL: str = ""
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0
    NOTIFICATION_CACHE_TTL_SECONDS: int = 300
    NOTIFICATION_RETENTION_DAYS: int = 30

    # Worker
    WORKER_POLL_INTERVAL_SECONDS: int = 10
    WORKER_BATCH_SIZE: int = 10

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    @property
    def has_default_push_credentials(self) -> bool:
        """True when system-wide FCM credentials are configured."""
        return bool(
            self.FIREBASE_PROJECT_ID
            and self.FIREBASE_CLIENT_EMAIL
            and self.FIREBASE_PRIVATE_KEY
        )


settings = Settings()
