"""
Harness Configuration using Pydantic Settings

Loads configuration from environment variables with sensible defaults.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Harness settings loaded from environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # ========================================================================
    # Stress Run Settings
    # ========================================================================
    # Which backend collaborator to drive: "postgres" or "simulated".
    STRESS_BACKEND: str = "postgres"
    STRESS_TARGET_QPS: int = 100
    STRESS_DURATION_SECONDS: float = 10.0
    STRESS_TABLE_NAME: str = "stress_test"

    # Acceptance range for the mean per-write latency.
    STRESS_MIN_LATENCY_MS: float = 0.0
    STRESS_MAX_LATENCY_MS: float = 150.0

    # ========================================================================
    # Pool Warm-up Settings
    # ========================================================================
    # The maximum write round trip is ~200ms, so target_qps / 4 warm sessions
    # covers steady state. Capped to keep warm-up bounded.
    STRESS_PREWARM_CAP: int = 800
    STRESS_PREWARM_BATCH_SIZE: int = 25
    STRESS_PREWARM_SETTLE_MS: int = 250

    # Deadline for releasing every pooled session before a run.
    STRESS_POOL_SHUTDOWN_TIMEOUT_SECONDS: float = 30.0

    # Logging level applied to the harness while latency is being measured.
    STRESS_MEASUREMENT_LOG_LEVEL: str = "INFO"

    # ========================================================================
    # Retry Settings
    # ========================================================================
    RETRY_JITTER_MS: int = 100
    RETRY_MAX_DELAY_MS: int = 5000
    # 0 disables the budget (retry until success or a fatal fault).
    RETRY_MAX_ATTEMPTS: int = 0
    RETRY_MAX_ELAPSED_SECONDS: float = 0.0

    # ========================================================================
    # Simulated Backend Settings
    # ========================================================================
    SIMULATED_LATENCY_MS: float = 75.0

    # ========================================================================
    # Postgres Connection Settings
    # ========================================================================
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DATABASE: str = "postgres"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_COMMAND_TIMEOUT: float = 60.0

    # ========================================================================
    # Logging Settings
    # ========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("STRESS_BACKEND", mode="before")
    @classmethod
    def _normalize_backend(cls, v):
        backend = str(v or "").strip().lower()
        if backend not in ("postgres", "simulated"):
            raise ValueError(f"Unsupported STRESS_BACKEND: {v!r}")
        return backend

    @field_validator("LOG_LEVEL", "STRESS_MEASUREMENT_LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_level(cls, v):
        return str(v or "INFO").strip().upper()


# Create global settings instance
settings = Settings()
