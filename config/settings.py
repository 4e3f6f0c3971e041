"""
Centralized configuration using pydantic-settings.

How it works:
- Reads environment variables automatically (e.g., POLL_INTERVAL_SECONDS env var → Settings.POLL_INTERVAL_SECONDS)
- Falls back to defaults defined here if env vars are not set
- Can also read from a .env file in the project root

Every module imports `settings` from here instead of hardcoding values.
Components that need different values in tests (the orchestrator, the queue
manager, the cost model) accept overrides in their constructors and only
fall back to this singleton.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── PostgreSQL ──────────────────────────────────────────────
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "videogen"
    POSTGRES_PASSWORD: str = "videogen"
    POSTGRES_DB: str = "videogen"

    # ── Redis ───────────────────────────────────────────────────
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # ── Generation service ──────────────────────────────────────
    GENERATION_BACKEND: str = "simulated"   # "veo" or "simulated"
    VEO_API_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    VEO_API_KEY: str = ""
    VEO_REQUEST_TIMEOUT: float = 30.0       # seconds per HTTP request
    VEO_RETRY_ATTEMPTS: int = 3             # extra attempts on 429 / 5xx / network errors
    VEO_RETRY_BASE_DELAY: float = 1.0       # backoff base (seconds), doubles per attempt

    # ── Polling ─────────────────────────────────────────────────
    POLL_INTERVAL_SECONDS: float = 3.0
    MAX_POLL_ATTEMPTS: int = 60             # 60 × 3s ≈ 3 minutes before a stuck job times out
    CANCEL_TIMEOUT_SECONDS: float = 10.0

    # ── Retry ───────────────────────────────────────────────────
    MAX_RETRIES: int = 3
    AUTO_RETRY: bool = False                # resubmit retryable failures without waiting for the user
    RETRY_DELAY_SECONDS: float = 5.0        # pause before an automatic retry

    # ── Queue ───────────────────────────────────────────────────
    MAX_ACTIVE_GENERATIONS: int = 1         # active slots per user
    MAX_QUEUE_SIZE: int = 50
    DEFAULT_GENERATION_SECONDS: float = 120.0
    WAIT_HISTORY_SIZE: int = 10             # completed jobs in the moving average

    # ── Pricing ─────────────────────────────────────────────────
    BASE_CREDITS: int = 10
    RESOLUTION_MULTIPLIERS: dict[str, float] = {"480p": 0.75, "720p": 1.0, "1080p": 1.5}
    DURATION_MULTIPLIERS: dict[int, float] = {5: 0.5, 10: 1.0, 30: 2.5}
    QUALITY_MULTIPLIERS: dict[str, float] = {"fast": 0.8, "balanced": 1.0, "high": 1.5}
    UPSCALING_SURCHARGE: float = 0.5        # +50% when enable_upscaling is on
    CREDIT_UNIT_PRICE: float = 0.01         # USD per credit
    DEFAULT_USER_CREDITS: int = 500

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
        """Sync connection string for scripts and migrations (uses psycopg2 driver)."""
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton: import this everywhere
settings = Settings()
