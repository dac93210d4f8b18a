from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application configuration.

    Loads environment variables from `.env` and provides
    typed access across API, dispatcher, and services.
    """

    # ─────────────────────────────────────────────
    # Pydantic Settings Config
    # ─────────────────────────────────────────────
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─────────────────────────────────────────────
    # Database
    # ─────────────────────────────────────────────
    database_url: str
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # ─────────────────────────────────────────────
    # OpenAI (background replacement)
    # ─────────────────────────────────────────────
    openai_api_key: str | None = None
    openai_image_model: str = "gpt-image-1"
    openai_image_size: str = "1024x1024"
    background_replace_prompt: str = (
        "Keep the product exactly as it is and only replace the background "
        "with a scene in the style of the reference image. Preserve shape, "
        "material, proportions, angle and count. Professional photography, 4K."
    )

    # ─────────────────────────────────────────────
    # DashScope (outpaint / upscale)
    # ─────────────────────────────────────────────
    dashscope_api_key: str | None = None
    dashscope_base_url: str = "https://dashscope.aliyuncs.com/api/v1"
    outpaint_model: str = "image-out-painting"
    upscale_model: str = "wanx2.1-imageedit"
    outpaint_crop_ratio: float = 0.1

    # ─────────────────────────────────────────────
    # Outbound call limits
    # ─────────────────────────────────────────────
    submit_timeout_seconds: float = 30.0
    poll_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int = 30

    serializer_min_interval_seconds: float = 1.0
    serializer_cooldown_seconds: float = 60.0

    # ─────────────────────────────────────────────
    # API
    # ─────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_base_url: str = "http://localhost:8000"
    internal_api_secret: str | None = None

    # ─────────────────────────────────────────────
    # Artifact Storage
    # ─────────────────────────────────────────────
    artifact_storage_path: str = "/data/artifacts"
    artifact_base_url: str = "/v1/files"

    # ─────────────────────────────────────────────
    # Dispatcher / Recovery
    # ─────────────────────────────────────────────
    worker_batch_size: int = 5
    worker_max_batch: int = 100
    worker_concurrency: int = 3
    worker_poll_interval: float = 30.0
    worker_max_retries: int = 3
    recovery_on_startup: bool = True
    recovery_startup_delay: float = 3.0

    # ─────────────────────────────────────────────
    # Derived Properties
    # ─────────────────────────────────────────────
    @property
    def artifact_dir(self) -> Path:
        """
        Ensures artifact storage directory exists
        and returns Path object.
        """
        p = Path(self.artifact_storage_path)
        p.mkdir(parents=True, exist_ok=True)
        return p


# ─────────────────────────────────────────────
# Cached Settings Instance
# ─────────────────────────────────────────────
@lru_cache
def get_settings() -> Settings:
    """
    Returns a cached Settings instance so config
    is only loaded once per process.
    """
    return Settings()
