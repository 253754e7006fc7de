"""Runtime configuration for the assistant service.

Values come from environment variables prefixed with ``ASSISTANT_`` (for
example ``ASSISTANT_LLM_MODEL``) or from a local ``.env`` file.
"""

from typing import List, Optional
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AssistantSettings(BaseSettings):
    """Service settings"""

    model_config = SettingsConfigDict(
        env_prefix="ASSISTANT_",
        env_file=".env",
        extra="ignore",
    )

    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///./assistant.db"
    sql_echo: bool = False

    # Language model
    llm_model: str = "gpt-4o-mini"
    llm_base_url: Optional[str] = None
    llm_api_key: Optional[str] = None
    llm_max_tokens: int = Field(default=500, ge=1)
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_timeout_seconds: float = Field(default=25.0, gt=0)

    # Context assembly
    context_max_tokens: int = Field(default=3500, ge=1)
    context_max_messages: int = Field(default=50, ge=1)
    history_limit: int = Field(default=50, ge=1)
    rag_enabled: bool = True
    rag_top_k: int = Field(default=3, ge=1)

    # Actor host
    actor_idle_seconds: float = Field(default=300.0, gt=0)
    actor_sweep_interval_seconds: float = Field(default=60.0, gt=0)

    # Workflows
    workflow_max_attempts: int = Field(default=5, ge=1)
    workflow_backoff_seconds: float = Field(default=1.0, ge=0)

    # Email tool
    postmark_api_key: Optional[str] = None
    postmark_from_email: Optional[str] = None
    postmark_api_url: str = "https://api.postmarkapp.com/email"
    email_rate_limit_calls: int = 10
    email_rate_limit_window_ms: int = 3_600_000

    # Logging / HTTP
    log_level: str = "INFO"
    log_format: str = "json"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    host: str = "0.0.0.0"
    port: int = 8000


@lru_cache
def get_settings() -> AssistantSettings:
    """Return the process-wide settings instance"""
    return AssistantSettings()
