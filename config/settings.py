"""
Centralized configuration using pydantic-settings.

How it works:
- Reads environment variables automatically (e.g., QUEUE_NAME env var → Settings.QUEUE_NAME)
- Falls back to defaults defined here if env vars are not set
- Can also read from a .env file in the project root

Entry points (scheduler.main, worker.main, api.main) read these values and pass
them explicitly into the objects they construct. Library code never reaches
for `settings` on its own, which keeps every component testable in isolation.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── PostgreSQL ──────────────────────────────────────────────
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "cronscheduler"
    POSTGRES_PASSWORD: str = "cronscheduler"
    POSTGRES_DB: str = "cronscheduler"

    # ── Redis ───────────────────────────────────────────────────
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # ── Scheduler ───────────────────────────────────────────────
    SCHEDULER_INTERVAL_MS: int = Field(default=5000, gt=0)    # timer period
    CATCH_UP_WINDOW_SECONDS: float = Field(default=10.0, ge=0)
    SCHEDULER_LOCK_ID: int = 12345    # pg advisory lock key for the scheduler role

    # ── Work queue ──────────────────────────────────────────────
    QUEUE_NAME: str = "cron-tasks"
    QUEUE_KEY_PREFIX: str = "cronscheduler"
    QUEUE_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    QUEUE_BACKOFF_MS: int = Field(default=5000, ge=0)   # first retry delay, doubles each attempt
    QUEUE_KEEP_COMPLETED: int = Field(default=1000, ge=0)
    QUEUE_KEEP_FAILED: int = Field(default=5000, ge=0)
    QUEUE_VISIBILITY_TIMEOUT: float = Field(default=60.0, gt=0)  # lease before redelivery

    # ── Worker ──────────────────────────────────────────────────
    WORKER_CONCURRENCY: int = Field(default=5, ge=1)   # handler threads per process
    WORKER_POLL_TIMEOUT: float = Field(default=1.0, gt=0)
    TASK_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    # ── App ─────────────────────────────────────────────────────
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        """Async connection string for FastAPI (uses asyncpg driver)."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def sync_database_url(self) -> str:
        """Sync connection string for scheduler and worker threads (uses psycopg2 driver)."""
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Read once at import; entry points hand the values on to the components they build.
settings = Settings()
