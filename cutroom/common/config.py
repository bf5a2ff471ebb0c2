"""Configuration management."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "cutroom"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = False

    # Storage
    projects_dir: str = "data/projects"

    # Provider credentials
    openrouter_api_key: str = ""
    fal_api_key: str = ""
    replicate_api_token: str = ""

    # Provider endpoints
    openrouter_url: str = "https://openrouter.ai/api/v1/chat/completions"
    openrouter_referer: str = "http://localhost:5173"
    fal_run_url: str = "https://fal.run"
    fal_storage_url: str = "https://rest.alpha.fal.ai"
    replicate_api_url: str = "https://api.replicate.com/v1"

    # Default models
    default_text_model: str = "openai/gpt-4o"
    default_image_model: str = "fal/flux-kontext-max"
    default_image_no_ref_model: str = ""
    default_video_model: str = "fal/kling-2.1-pro"
    default_enhance_model: str = "openai/gpt-image-1"
    default_openrouter_image_model: str = "openai/gpt-image-1"

    # Generation params
    image_size: str = ""
    image_quality: str = "high"
    image_aspect_ratio: str = "16:9"
    video_quality: str = "high"
    enhance_size: str = ""
    enhance_quality: str = "high"
    enhance_prompt: str = (
        "Enhance this image: improve lighting, sharpness and detail "
        "without changing composition or geometry."
    )

    # Batch operations
    batch_concurrency: int = 3

    # Timeouts
    request_timeout_seconds: float = 120.0
    generation_timeout_seconds: float = 600.0
    download_timeout_seconds: float = 60.0

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
