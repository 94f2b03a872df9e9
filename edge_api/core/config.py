"""Configuration of the completion endpoint."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server settings, read from the environment and ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 8000

    # Upstream provider
    hf_token: str | None = None
    hf_model: str = "google/gemma-2-2b-it"
    hf_api_base: str = "https://api-inference.huggingface.co"
    system_prompt: str = "You are EDGE AI, a concise helpful assistant."
    upstream_timeout: float = 60.0
    upstream_attempts: int = 2
    upstream_retry_delay: float = 1.0

    # Request shaping
    history_window: int = 12
    max_tokens: int = 300
    temperature: float = 0.7
    max_new_tokens: int = 256

    # Logs
    log_dir: str = "logs"
    log_rotate_mb: int = 5
    log_retention_days: int = 7


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
