"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class StoreBackend(str, Enum):
    memory = "memory"
    file = "file"
    redis = "redis"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # LLM Providers
    GEMINI_API_KEY: str = ""
    OPENAI_API_KEY: str = ""
    LLM_FAST_MODEL: str = "gemini/gemini-2.5-flash"
    LLM_REASONING_MODEL: str = "gemini/gemini-3-pro-preview"
    LLM_TIMEOUT: int = 120
    LLM_MAX_RETRIES: int = 2

    # Meeting store (key-value blob holding the whole collection)
    STORE_BACKEND: StoreBackend = StoreBackend.file
    STORE_DIR: str = "data"
    STORE_KEY: str = "pm_copilot_meetings"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Input limits
    MAX_NOTES_CHARS: int = 200_000
    MAX_AUDIO_BYTES: int = 20 * 1024 * 1024

    # Context windows (leading portion of the transcript is kept)
    CHAT_TRANSCRIPT_MAX_CHARS: int = 60_000
    PRD_TRANSCRIPT_EXCERPT_CHARS: int = 5_000

    # Chat sessions (in-process, least recently used evicted beyond the cap)
    MAX_CHAT_SESSIONS: int = 1000

    # Langfuse (LLM observability and cost tracking)
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""
    LANGFUSE_HOST: str = "https://cloud.langfuse.com"


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
