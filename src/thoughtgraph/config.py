"""
Application configuration using pydantic-settings.

Loads configuration from environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DIMENSIONS = [
    "Scope",
    "Objectives",
    "Constraints",
    "Data Needs",
    "Use Cases",
    "Potential Biases",
    "Knowledge Gaps",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # LLM Configuration (Ollama)
    llm_model_name: str = Field(
        default="gpt-oss:20b",
        description="Ollama model name to use (e.g., gpt-oss:20b)",
    )
    llm_timeout: int = Field(
        default=120,
        description="Timeout in seconds for LLM requests",
    )
    llm_max_retries: int = Field(
        default=1,
        description="Number of retries on LLM failure",
    )

    # Remote reasoning / search service
    reasoner_endpoint: str = Field(
        default="http://localhost:9000",
        description="Endpoint for the HTTP reasoning and search service",
    )
    reasoner_timeout: int = Field(
        default=60,
        description="Timeout in seconds for reasoning service requests",
    )

    # Pipeline
    max_concurrent_calls: int = Field(
        default=8,
        ge=1,
        description="Upper bound on concurrent reasoner calls within one stage",
    )
    prune_threshold: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Evidence nodes with mean confidence below this are pruned",
    )
    merge_similarity: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Token overlap above which sibling hypotheses are merged",
    )
    high_impact_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Importance score at which an evidence cluster is prioritized",
    )
    decomposition_dimensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DIMENSIONS),
        description="Analytic dimensions used by the decomposition stage",
    )
    knowledge_nodes: list[str] = Field(
        default_factory=list,
        description="Background knowledge statements seeded at initialization",
    )

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
