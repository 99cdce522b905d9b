from __future__ import annotations
"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Photoglow orchestrator settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "Photoglow"
    DEBUG: bool = False
    ALLOW_TEST_MODE: bool = False

    # --- CORS ---
    CORS_ORIGINS: str = "*"
    ALLOW_NULL_ORIGIN: bool = True

    # --- Database (MySQL 8.0+) ---
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = ""
    DB_NAME: str = "photoglow"

    @property
    def DATABASE_URL(self) -> str:
        """Async MySQL connection string using asyncmy driver."""
        encoded_password = quote_plus(self.DB_PASSWORD)
        return (
            f"mysql+asyncmy://{self.DB_USER}:{encoded_password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            "?charset=utf8mb4"
        )

    # --- Redis (Celery broker + job pub/sub) ---
    REDIS_URL: str = "redis://localhost:6379/0"

    # --- Supabase (auth, balance RPCs, storage) ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""

    # --- Storage layout ---
    BUCKET_IMAGES: str = "generated_images"
    BUCKET_VIDEOS: str = "videos"
    BUCKET_UPLOADS: str = "photos"
    UPLOAD_PREFIX: str = "uploads"
    OUTPUT_PREFIX: str = "gen"
    RESOLVABLE_BUCKETS: str = "photos,generated_images"
    PUBLIC_BUCKETS: str = "generated_images,videos"
    OUTPUT_PUBLIC: bool = True
    OUTPUT_SIGNED_TTL_S: int = 60 * 60 * 24 * 30
    REFERENCE_SIGNED_TTL_S: int = 600
    CACHE_CONTROL_S: int = 31536000

    # --- Credits ---
    IMAGE_PRICE: int = 1
    VIDEO_PRICE: int = 1

    # --- Replicate (sync image providers) ---
    REPLICATE_API_TOKEN: str = ""
    REPLICATE_BASE_URL: str = "https://api.replicate.com/v1"

    # --- Sync polling budget ---
    POLL_INTERVAL_S: float = 1.25
    POLL_TIMEOUT_S: float = 25.0
    MAX_FUNCTION_S: float = 60.0
    SAFETY_MARGIN_S: float = 4.0
    UPLOAD_RESERVE_S: float = 8.0

    # --- Kie Sora-2 (async video provider) ---
    KIE_BASE_URL: str = "https://api.kie.ai"
    KIE_API_KEY: str = ""
    KIE_SORA2_CREATE_PATH: str = "/api/v1/sora/createTask"
    KIE_SORA2_DETAIL_PATH: str = "/api/v1/sora/record-detail"
    KIE_WEBHOOK_URL: str = ""
    WEBHOOK_SHARED_SECRET: str = ""

    # --- Pollinations (preview path) ---
    POLLINATIONS_URL: str = "https://image.pollinations.ai/prompt"
    POLLINATIONS_TOKEN: str = ""

    # --- Guards ---
    IDEMPOTENCY_TTL_S: float = 600.0
    RATE_LIMIT_MAX: int = 10
    RATE_LIMIT_WINDOW_S: float = 10.0

    # --- Reconciliation ---
    JOB_RECONCILE_AFTER_S: int = 300
    ASYNC_JOB_MAX_AGE_S: int = 3600

    @property
    def poll_budget_s(self) -> float:
        """Polling deadline kept under the invocation limit."""
        ceiling = self.MAX_FUNCTION_S - self.SAFETY_MARGIN_S - self.UPLOAD_RESERVE_S
        return max(1.0, min(self.POLL_TIMEOUT_S, ceiling))

    @property
    def resolvable_buckets(self) -> list[str]:
        return _split_csv(self.RESOLVABLE_BUCKETS)

    @property
    def public_buckets(self) -> list[str]:
        return _split_csv(self.PUBLIC_BUCKETS)

    @property
    def cors_origins(self) -> list[str]:
        return _split_csv(self.CORS_ORIGINS)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
