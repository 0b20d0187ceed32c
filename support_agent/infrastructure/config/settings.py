from functools import lru_cache
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentSettings(BaseSettings):
    """Runtime configuration loaded from SUPPORT_AGENT_* environment variables or .env"""

    model_config = SettingsConfigDict(
        env_prefix="SUPPORT_AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Generation
    model_name: str = Field("gemini-2.5-flash", description="Model identifier passed to the provider")
    context_window: int = Field(1_048_576, description="Provider context window in tokens")
    max_output_tokens: int = Field(8192, description="Max tokens per generated response")
    temperature: float = Field(0.0)
    max_tool_steps: int = Field(5, ge=1, description="Upper bound on generate/tool steps per attempt")
    context_warning_ratio: float = Field(0.8, gt=0, le=1)

    # Retry policy
    max_retries: int = Field(3, ge=0, description="Retries after the first attempt")
    retry_base_seconds: float = Field(1.0, gt=0)
    retry_max_seconds: float = Field(10.0, gt=0)

    # History and RAG
    history_limit: int = Field(6, ge=0)
    rag_enabled: bool = True
    rag_top_k: int = Field(3, ge=1)
    rag_min_similarity: float = Field(0.5, ge=0, le=1)
    rag_chunk_size: int = Field(10, ge=1)
    rag_chunk_overlap: int = Field(2, ge=0)
    rag_index_threshold: int = Field(10, ge=1)

    # Wizard dialogues and idle timers
    wizard_idle_timeout_ms: int = Field(300_000, ge=1)
    wizard_max_attempts: int = Field(3, ge=1)
    timeout_presets_ms: Dict[str, int] = Field(
        default_factory=lambda: {
            "SETUP": 5 * 60 * 1000,
            "QUERY": 2 * 60 * 1000,
            "CONFIRMATION": 60 * 1000,
            "SHORT": 30 * 1000,
        }
    )

    # Session store bounds
    session_max_entries: int = Field(10_000, ge=1)
    session_ttl_seconds: float = Field(3600.0, gt=0)
    session_sweep_interval_seconds: float = Field(60.0, gt=0)

    # Profile cache
    profile_cache_ttl_seconds: int = Field(3600, ge=0)

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"
    service_name: str = "support-agent"


@lru_cache
def get_settings() -> AgentSettings:
    """Return the process-wide settings instance"""
    return AgentSettings()
