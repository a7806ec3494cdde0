"""Core module providing configuration, logging, and base exceptions.

Exports:
    Exceptions:
        DMEngineError: Base exception for all engine errors.
        CampaignAccessError: Ownership check failures.
        ValidationError: Request validation errors.
        ConfigurationError: Configuration-related errors.

    Configuration:
        Settings: Main application settings class.
        get_settings: Get the settings singleton.
        clear_settings_cache: Force settings reload.

    Logging:
        configure_logging: Set up application logging.
        get_logger: Get a configured logger instance.
        bind_context: Add context to log entries.
        clear_context: Clear logging context.
        log_context: Scoped logging context.
"""

from __future__ import annotations

from dm_engine.core.config import (
    AIProviderSettings,
    EngineSettings,
    MemorySettings,
    Settings,
    StorageSettings,
    clear_settings_cache,
    get_settings,
)
from dm_engine.core.exceptions import (
    AIConnectionError,
    AIControlError,
    AIRateLimitError,
    AIResponseError,
    CampaignAccessError,
    ConfigurationError,
    DiceRollError,
    DMEngineError,
    EmbeddingError,
    GameEngineError,
    MemoryStoreError,
    PersistenceError,
    ValidationError,
)
from dm_engine.core.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    log_context,
)


__all__ = [
    # Base exception
    "DMEngineError",
    # Access & validation exceptions
    "CampaignAccessError",
    "ValidationError",
    "ConfigurationError",
    # Game engine exceptions
    "GameEngineError",
    "DiceRollError",
    "PersistenceError",
    # Memory exceptions
    "MemoryStoreError",
    "EmbeddingError",
    # AI control exceptions
    "AIControlError",
    "AIConnectionError",
    "AIResponseError",
    "AIRateLimitError",
    # Configuration
    "Settings",
    "AIProviderSettings",
    "StorageSettings",
    "MemorySettings",
    "EngineSettings",
    "get_settings",
    "clear_settings_cache",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "log_context",
]
