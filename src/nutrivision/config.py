"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Without Supabase credentials the app runs local-only; without a provider
    key, analysis with that provider fails with `missing_api_key`.
    """

    supabase_url: str | None = None
    supabase_service_key: str | None = None
    openai_api_key: str | None = None
    openai_model: str = "gpt-5-mini"
    openai_correction_model: str = "gpt-4o-mini"
    openai_reasoning_effort: str | None = "low"
    openai_store: bool = False
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_correction_model: str = "gemini-2.5-flash-lite"
    fdc_api_key: str = "DEMO_KEY"
    fdc_base_url: str = "https://api.nal.usda.gov/fdc/v1"
    local_store_dir: str = "~/.nutrivision"
    analysis_timeout_seconds: float = 60.0
    undo_window_seconds: float = 5.0
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def remote_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)
