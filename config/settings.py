"""Pydantic Settings — typed configuration with .env auto-loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from config.generation_config import GenerationConfig


class Settings(BaseSettings):
    """Application configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    service_port: int = 5000
    cors_origins: list[str] = ["*"]
    debug: bool = False

    # ── LLM ──────────────────────────────────────────────────
    default_model: str = "anthropic/claude-sonnet-4-20250514"
    outline_model: str = ""  # empty = default_model
    section_model: str = ""  # empty = default_model
    max_tokens_outline: int = 1000
    max_tokens_section: int = 4000
    temperature: float | None = 0.4

    # Provider API keys
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    dashscope_api_key: str = ""

    # ── Generation sessions ──────────────────────────────────
    generation_retention_seconds: int = 600  # completed sessions kept 10 min
    generation_cleanup_interval: int = 60  # seconds between sweeps
    max_active_generations: int = 20  # per worker

    # ── Database materialization ─────────────────────────────
    database_store_type: str = "memory"  # "memory" or "http"
    database_api_base_url: str = "http://localhost:3001"
    database_api_prefix: str = "/api/internal"
    database_api_token: str = ""
    database_api_timeout: int = 15  # seconds

    # ── Context retrieval ────────────────────────────────────
    context_provider_type: str = "none"  # "none" or "http"
    context_api_base_url: str = "http://localhost:3001"
    context_api_prefix: str = "/api/internal"
    context_api_token: str = ""
    context_api_timeout: int = 15  # seconds
    context_top_k: int = 10
    context_min_score: float = 0.5
    context_max_facts: int = 20

    # ── Helpers ───────────────────────────────────────────────

    def get_generation_config(self) -> GenerationConfig:
        """Build a :class:`GenerationConfig` from global .env defaults."""
        return GenerationConfig(
            outline_model=self.outline_model or self.default_model,
            section_model=self.section_model or self.default_model,
            max_tokens_outline=self.max_tokens_outline,
            max_tokens_section=self.max_tokens_section,
            temperature=self.temperature,
        )


@lru_cache
def get_settings() -> Settings:
    """Singleton accessor for application settings."""
    return Settings()
