"""Tests for the exception hierarchy."""

from __future__ import annotations

import pytest

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


class TestDMEngineError:
    """Tests for the base DMEngineError exception."""

    def test_basic_message(self) -> None:
        """Test exception with basic message."""
        exc = DMEngineError("Test error message")
        assert exc.message == "Test error message"
        assert exc.details == {}
        assert str(exc) == "Test error message"

    def test_with_details(self) -> None:
        """Test exception with additional details."""
        exc = DMEngineError("Test error", details={"key": "value", "count": 42})
        assert exc.details == {"key": "value", "count": 42}
        assert "key='value'" in str(exc)
        assert "count=42" in str(exc)

    def test_repr(self) -> None:
        """Test exception repr output."""
        repr_str = repr(DMEngineError("Test", details={"x": 1}))
        assert "DMEngineError" in repr_str
        assert "Test" in repr_str


class TestAccessAndValidation:
    """Tests for caller-facing exceptions."""

    def test_campaign_access_context(self) -> None:
        exc = CampaignAccessError("Access denied", campaign_id=7, user_id="user-2")
        assert exc.details == {"campaign_id": 7, "user_id": "user-2"}

    def test_validation_error_with_field(self) -> None:
        """Test ValidationError with field context."""
        exc = ValidationError("Invalid value", field_name="dc", invalid_value=-5)
        assert exc.details["field_name"] == "dc"
        assert exc.details["invalid_value"] == -5

    def test_configuration_error_key(self) -> None:
        exc = ConfigurationError("Bad config", config_key="top_k")
        assert exc.details["config_key"] == "top_k"


class TestEngineExceptions:
    """Tests for game engine and persistence exceptions."""

    def test_dice_roll_error_expression(self) -> None:
        exc = DiceRollError("Bad die", expression="d0")
        assert exc.details["expression"] == "d0"
        assert isinstance(exc, GameEngineError)

    def test_persistence_error_record(self) -> None:
        exc = PersistenceError("Missing", table="characters", record_id=3)
        assert exc.details == {"table": "characters", "record_id": 3}


class TestServiceExceptions:
    """Tests for memory and AI control exceptions."""

    def test_embedding_error_is_memory_error(self) -> None:
        exc = EmbeddingError("Failed", model_name="text-embedding-3-small")
        assert isinstance(exc, MemoryStoreError)
        assert exc.details["model_name"] == "text-embedding-3-small"

    def test_rate_limit_error(self) -> None:
        """Test AIRateLimitError keeps retry and model context."""
        exc = AIRateLimitError("Slow down", retry_after_seconds=30.0, model="gpt-4o", provider="openai")
        assert exc.details["retry_after_seconds"] == 30.0
        assert exc.details["model"] == "gpt-4o"
        assert exc.details["provider"] == "openai"

    @pytest.mark.parametrize("exc_type", [AIConnectionError, AIResponseError, AIRateLimitError])
    def test_ai_errors_share_base(self, exc_type: type[AIControlError]) -> None:
        """Test that every chat failure is catchable as AIControlError."""
        with pytest.raises(AIControlError):
            raise exc_type("boom")

    def test_all_catchable_as_base(self) -> None:
        """Test that the whole hierarchy is catchable at the API boundary."""
        for exc in (
            CampaignAccessError("x"),
            ValidationError("x"),
            PersistenceError("x"),
            EmbeddingError("x"),
            AIConnectionError("x"),
        ):
            assert isinstance(exc, DMEngineError)
