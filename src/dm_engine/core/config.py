"""Configuration management for the DM turn engine.

This module provides centralized configuration management using pydantic-settings,
supporting environment variables, .env files, and runtime configuration overrides.
All sensitive values (API keys) are handled securely using SecretStr.

Example:
    >>> from dm_engine.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.engine.max_tool_iterations)
    10

Environment Variables:
    DM_ENGINE_OPENAI_API_KEY: OpenAI API key (chat + embeddings)
    DM_ENGINE_CHAT_MODEL: Chat model used for narration
    DM_ENGINE_DATABASE_PATH: Path to the SQLite database
    DM_ENGINE_MEMORY_TOP_K: Number of memories retrieved per turn
    DM_ENGINE_ENGINE_MAX_TOOL_ITERATIONS: Tool loop iteration cap
    DM_ENGINE_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dm_engine.core import constants
from dm_engine.core.exceptions import ConfigurationError


class AIProviderSettings(BaseSettings):
    """Configuration for the chat-completion and embedding provider.

    Attributes:
        openai_api_key: OpenAI (or compatible) API key.
        base_url: Optional base URL for an OpenAI-compatible endpoint.
        chat_model: Model used for the narration/tool loop.
        temperature: Sampling temperature for narration.
        max_tokens: Maximum completion tokens per model call.
        max_retries: Maximum number of API retry attempts.
        timeout_seconds: API request timeout in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="DM_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: SecretStr | None = Field(
        default=None,
        description="OpenAI API key",
    )
    base_url: str | None = Field(
        default=None,
        description="Base URL for an OpenAI-compatible API",
    )
    chat_model: str = Field(
        default="gpt-4o",
        description="Chat model used for narration",
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )
    max_tokens: int = Field(
        default=2048,
        gt=0,
        description="Maximum completion tokens",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Maximum API retry attempts",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        le=300,
        description="API request timeout",
    )


class StorageSettings(BaseSettings):
    """Configuration for the state store.

    Attributes:
        database_path: Path to the SQLite database file.
    """

    model_config = SettingsConfigDict(
        env_prefix="DM_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_path: Path = Field(
        default=Path("data/dm_engine.db"),
        description="Path to SQLite database",
    )


class MemorySettings(BaseSettings):
    """Configuration for the semantic memory subsystem.

    Attributes:
        embedding_model: Model to use for text embeddings.
        embedding_dimension: Fixed dimension of stored vectors.
        top_k: Number of memories injected per turn.
        similarity_threshold: Minimum adjusted similarity to keep a memory.
        importance_weight: Similarity added per importance point.
        max_embed_length: Characters kept before embedding.
        summary_length: Characters kept in auto-generated summaries.
        background_workers: Threads used for post-turn ingestion.
    """

    model_config = SettingsConfigDict(
        env_prefix="DM_ENGINE_MEMORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    embedding_model: str = Field(
        default=constants.EMBEDDING_MODEL,
        description="Embedding model to use",
    )
    embedding_dimension: int = Field(
        default=constants.EMBEDDING_DIMENSION,
        gt=0,
        description="Embedding vector dimension",
    )
    top_k: int = Field(
        default=constants.DEFAULT_TOP_K,
        ge=1,
        le=constants.MAX_TOP_K,
        description="Number of memories retrieved per turn",
    )
    similarity_threshold: float = Field(
        default=constants.DEFAULT_SIMILARITY_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Minimum similarity to include a memory",
    )
    importance_weight: float = Field(
        default=constants.IMPORTANCE_WEIGHT,
        ge=0.0,
        le=0.1,
        description="Similarity bonus per importance point",
    )
    max_embed_length: int = Field(
        default=constants.MAX_EMBED_LENGTH,
        ge=100,
        description="Maximum characters embedded",
    )
    summary_length: int = Field(
        default=constants.SUMMARY_LENGTH,
        ge=20,
        description="Auto-summary length",
    )
    background_workers: int = Field(
        default=2,
        ge=1,
        le=16,
        description="Background ingestion threads",
    )

    @model_validator(mode="after")
    def validate_summary_length(self) -> "MemorySettings":
        """Ensure summaries are shorter than the embedded text.

        Returns:
            Self if validation passes.

        Raises:
            ConfigurationError: If summary_length >= max_embed_length.
        """
        if self.summary_length >= self.max_embed_length:
            raise ConfigurationError(
                f"summary_length ({self.summary_length}) must be less than "
                f"max_embed_length ({self.max_embed_length})",
                config_key="summary_length",
            )
        return self


class EngineSettings(BaseSettings):
    """Configuration for turn orchestration.

    Attributes:
        max_tool_iterations: Model round trips allowed per turn.
        npc_goal_interval: NPC goals drift every N turns.
        npc_goal_increment: Progress added per drift.
        recent_mechanics_limit: Audit entries included in a snapshot.
        history_limit: Transcript messages sent as history.
    """

    model_config = SettingsConfigDict(
        env_prefix="DM_ENGINE_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_tool_iterations: int = Field(
        default=constants.MAX_TOOL_ITERATIONS,
        ge=1,
        le=50,
        description="Tool loop iteration cap",
    )
    npc_goal_interval: int = Field(
        default=constants.NPC_GOAL_INTERVAL,
        ge=1,
        description="Turns between NPC goal drifts",
    )
    npc_goal_increment: int = Field(
        default=constants.NPC_GOAL_INCREMENT,
        ge=1,
        le=constants.MAX_GOAL_PROGRESS,
        description="Goal progress per drift",
    )
    recent_mechanics_limit: int = Field(
        default=constants.RECENT_MECHANICS_LIMIT,
        ge=1,
        le=100,
        description="Audit entries in a snapshot",
    )
    history_limit: int = Field(
        default=constants.HISTORY_LIMIT,
        ge=0,
        le=100,
        description="Transcript messages sent as history",
    )


class Settings(BaseSettings):
    """Main application settings aggregating all configuration domains.

    Attributes:
        app_name: Application name.
        app_version: Application version string.
        debug: Enable debug mode.
        log_level: Application logging level.
        ai: AI provider settings.
        storage: State store settings.
        memory: Semantic memory settings.
        engine: Turn orchestration settings.
    """

    model_config = SettingsConfigDict(
        env_prefix="DM_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    app_name: str = Field(
        default="DM Turn Engine",
        description="Application name",
    )
    app_version: str = Field(
        default="0.1.0",
        description="Application version",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    ai: AIProviderSettings = Field(default_factory=AIProviderSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The application Settings instance.

    Raises:
        ConfigurationError: If required configuration is missing or invalid.
    """
    try:
        return Settings()
    except ConfigurationError:
        raise
    except Exception as exc:
        raise ConfigurationError(
            f"Failed to load application settings: {exc}",
            details={"original_error": str(exc)},
        ) from exc


def clear_settings_cache() -> None:
    """Clear the settings cache, forcing a reload on next access.

    This is primarily useful for testing or when environment variables
    have changed at runtime.
    """
    get_settings.cache_clear()


__all__ = [
    "AIProviderSettings",
    "StorageSettings",
    "MemorySettings",
    "EngineSettings",
    "Settings",
    "get_settings",
    "clear_settings_cache",
]
