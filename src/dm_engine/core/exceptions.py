"""Custom exception hierarchy for the DM turn engine.

This module defines the exception hierarchy used across the engine. All
exceptions inherit from DMEngineError, enabling unified error handling at
the API boundary while preserving domain-specific context.

Mechanical outcomes (missed attacks, failed checks, empty spell slots) are
never exceptions; they are returned as data. The classes below cover
access, validation, persistence and external-service failures.

Example:
    >>> from dm_engine.core.exceptions import CampaignAccessError
    >>> raise CampaignAccessError("Access denied", campaign_id=7)
"""

from __future__ import annotations

from typing import Any


class DMEngineError(Exception):
    """Base exception for all DM engine errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary containing additional error context.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        """Initialize the base exception.

        Args:
            message: Human-readable error description.
            details: Optional dictionary containing additional error context.
        """
        self.message = message
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the exception message with optional details.

        Returns:
            Formatted error message including any provided details.
        """
        if self.details:
            detail_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} [{detail_str}]"
        return self.message

    def __repr__(self) -> str:
        """Return a detailed string representation of the exception."""
        return f"{self.__class__.__name__}(message={self.message!r}, details={self.details!r})"


# =============================================================================
# Access & Validation Exceptions
# =============================================================================


class CampaignAccessError(DMEngineError):
    """Raised when the caller does not own (or cannot see) a campaign.

    Surfaced immediately as a rejection; no turn state is touched.
    """

    def __init__(
        self,
        message: str,
        *,
        campaign_id: int | None = None,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize access error with campaign context.

        Args:
            message: Human-readable error description.
            campaign_id: The campaign that was requested.
            user_id: The caller that was rejected.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if campaign_id is not None:
            combined_details["campaign_id"] = campaign_id
        if user_id is not None:
            combined_details["user_id"] = user_id
        super().__init__(message, details=combined_details)


class ValidationError(DMEngineError):
    """Raised when request data fails validation.

    This includes schema validation errors, constraint violations,
    or type mismatches in caller input.
    """

    def __init__(
        self,
        message: str,
        *,
        field_name: str | None = None,
        invalid_value: Any | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize validation error with field context.

        Args:
            message: Human-readable error description.
            field_name: Name of the field that failed validation.
            invalid_value: The value that failed validation.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if field_name:
            combined_details["field_name"] = field_name
        if invalid_value is not None:
            combined_details["invalid_value"] = invalid_value
        super().__init__(message, details=combined_details)


class ConfigurationError(DMEngineError):
    """Raised when application configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize configuration error with config key context.

        Args:
            message: Human-readable error description.
            config_key: The configuration key that caused the error.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if config_key:
            combined_details["config_key"] = config_key
        super().__init__(message, details=combined_details)


# =============================================================================
# Game Engine Domain Exceptions
# =============================================================================


class GameEngineError(DMEngineError):
    """Base exception for game engine errors that are not mechanical outcomes."""


class DiceRollError(GameEngineError):
    """Raised when the dice engine is called with impossible arguments.

    Malformed notation is not an error (it falls back to a d20); this is
    reserved for programming mistakes such as a zero-sided die.
    """

    def __init__(
        self,
        message: str,
        *,
        expression: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize dice roll error with expression context.

        Args:
            message: Human-readable error description.
            expression: The dice expression that caused the error.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if expression:
            combined_details["expression"] = expression
        super().__init__(message, details=combined_details)


class PersistenceError(DMEngineError):
    """Raised when the state store cannot read or write a record."""

    def __init__(
        self,
        message: str,
        *,
        table: str | None = None,
        record_id: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize persistence error with record context.

        Args:
            message: Human-readable error description.
            table: The table involved.
            record_id: Primary key of the affected record.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if table:
            combined_details["table"] = table
        if record_id is not None:
            combined_details["record_id"] = record_id
        super().__init__(message, details=combined_details)


# =============================================================================
# Memory Domain Exceptions
# =============================================================================


class MemoryStoreError(DMEngineError):
    """Base exception for long-term memory failures.

    These are absorbed by the turn engine: a turn proceeds without
    memory context when retrieval fails.
    """


class EmbeddingError(MemoryStoreError):
    """Raised when text embedding generation fails."""

    def __init__(
        self,
        message: str,
        *,
        model_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize embedding error with model context.

        Args:
            message: Human-readable error description.
            model_name: Name of the embedding model that failed.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if model_name:
            combined_details["model_name"] = model_name
        super().__init__(message, details=combined_details)


# =============================================================================
# AI Control Domain Exceptions
# =============================================================================


class AIControlError(DMEngineError):
    """Base exception for chat-completion failures.

    These are terminal for a turn: the caller should retry the turn.
    """

    def __init__(
        self,
        message: str,
        *,
        model: str | None = None,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize AI control error with model context.

        Args:
            message: Human-readable error description.
            model: Name of the AI model involved.
            provider: Name of the AI provider.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if model:
            combined_details["model"] = model
        if provider:
            combined_details["provider"] = provider
        super().__init__(message, details=combined_details)


class AIConnectionError(AIControlError):
    """Raised when the chat service cannot be reached or times out."""


class AIResponseError(AIControlError):
    """Raised when a chat response cannot be interpreted."""


class AIRateLimitError(AIControlError):
    """Raised when AI API rate limits are exceeded."""

    def __init__(
        self,
        message: str,
        *,
        retry_after_seconds: float | None = None,
        model: str | None = None,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize rate limit error with retry context.

        Args:
            message: Human-readable error description.
            retry_after_seconds: Seconds to wait before retrying.
            model: Name of the AI model involved.
            provider: Name of the AI provider.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if retry_after_seconds is not None:
            combined_details["retry_after_seconds"] = retry_after_seconds
        super().__init__(message, model=model, provider=provider, details=combined_details)


__all__ = [
    "DMEngineError",
    # Access & validation
    "CampaignAccessError",
    "ValidationError",
    "ConfigurationError",
    # Game engine
    "GameEngineError",
    "DiceRollError",
    "PersistenceError",
    # Memory
    "MemoryStoreError",
    "EmbeddingError",
    # AI control
    "AIControlError",
    "AIConnectionError",
    "AIResponseError",
    "AIRateLimitError",
]
