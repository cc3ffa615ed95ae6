from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./coachflow.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings (admin bearer tokens issued by the auth service)
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    ADMIN_ROLES: list[str] = ["admin", "super_admin"]

    # Shared secret for internal callers (payment webhook, cron)
    INTERNAL_API_KEY: str = ""

    # Operations inbox for manual-queue and at-risk alerts
    ADMIN_EMAIL: Optional[str] = None

    # App Settings
    APP_NAME: str = "Coachflow Scheduling Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
    ]

    # Redis Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_NAMESPACE: str = "coachflow"
    IDEMPOTENCY_WINDOW_SECONDS: int = 10  # Dedup window for orchestrator events

    # Google Calendar / Meet
    GOOGLE_CALENDAR_ENABLED: bool = False
    GOOGLE_CALENDAR_API_URL: str = "https://www.googleapis.com/calendar/v3"
    GOOGLE_CALENDAR_ID: str = "primary"
    GOOGLE_CALENDAR_ACCESS_TOKEN: str = ""  # Delegated service-account token
    CALENDAR_ORGANIZER_EMAIL: str = "engage@yestoryd.com"
    CALENDAR_TIMEZONE: str = "Asia/Kolkata"

    # Recall.ai recording bots
    RECALL_API_KEY: str = ""
    RECALL_API_URL: str = "https://us-west-2.recall.ai/api/v1"
    RECALL_BOT_NAME: str = "rAI Notetaker"

    # Embedding service
    EMBEDDING_API_URL: str = ""
    EMBEDDING_API_KEY: str = ""
    EMBEDDING_MODEL: str = "text-embedding-004"

    # HTTP client defaults for external collaborators
    EXTERNAL_HTTP_TIMEOUT: float = 15.0

    # Coach assignment
    COACH_MAX_CAPACITY: int = 15

    # Coach availability thresholds (days)
    BACKUP_COACH_THRESHOLD_DAYS: int = 7
    REASSIGN_THRESHOLD_DAYS: int = 21

    # No-show policy (consecutive no-shows)
    NO_SHOW_AT_RISK_THRESHOLD: int = 3
    NO_SHOW_AUTO_PAUSE_THRESHOLD: int = 5

    # Scheduling retry policy
    SCHEDULING_MAX_RETRY_ATTEMPTS: int = 4
    SCHEDULING_RETRY_DELAYS_HOURS: list[int] = [0, 1, 6, 24]
    RETRY_QUEUE_INTERVAL_MINUTES: int = 15
    RETRY_QUEUE_BATCH_SIZE: int = 50

    # In-process retry-queue job; off by default, external cron calls
    # POST /api/v1/scheduling/retry-queue/process instead
    SCHEDULER_ENABLED: bool = False

    @field_validator('CORS_ORIGINS', 'ADMIN_ROLES', mode='before')
    @classmethod
    def parse_list(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [item.strip() for item in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
