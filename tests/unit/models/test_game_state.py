"""Tests for game state models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from dm_engine.models import (
    CampaignState,
    CombatantType,
    DeathSaveState,
    EncounterState,
    InitiativeEntry,
    MechanicsEventType,
    MechanicsResult,
    MemoryRecord,
    MemorySearchResult,
    MemoryType,
)


def _entry(entry_id: str, name: str, initiative: int) -> InitiativeEntry:
    return InitiativeEntry(
        id=entry_id,
        name=name,
        initiative=initiative,
        type=CombatantType.PC if entry_id.startswith("pc_") else CombatantType.NPC,
        hp=10,
        max_hp=10,
        ac=12,
    )


class TestCampaignState:
    """Tests for CampaignState."""

    def test_defaults(self) -> None:
        state = CampaignState(campaign_id=1)

        assert state.turn_number == 0
        assert state.session_number == 1
        assert state.in_game_time == "Day 1, Morning"
        assert state.mode == "exploration"

    def test_assignment_validated(self) -> None:
        state = CampaignState(campaign_id=1)

        with pytest.raises(ValidationError):
            state.session_number = 0


class TestEncounterState:
    """Tests for EncounterState."""

    def test_current_combatant(self) -> None:
        encounter = EncounterState(
            id=1,
            campaign_id=1,
            initiative_order=[_entry("pc_1", "Thorin", 16), _entry("npc_enemy_0", "Goblin", 9)],
            current_turn_index=1,
        )

        assert encounter.current_combatant.name == "Goblin"
        assert encounter.find_combatant("pc_1").name == "Thorin"
        assert encounter.find_combatant("pc_9") is None

    def test_empty_order(self) -> None:
        assert EncounterState(id=1, campaign_id=1).current_combatant is None


class TestDeathSaveState:
    """Tests for DeathSaveState."""

    @pytest.mark.parametrize(
        "successes,failures,stable,dead",
        [
            (0, 0, False, False),
            (3, 1, True, False),
            (1, 3, False, True),
        ],
    )
    def test_flags(self, successes: int, failures: int, stable: bool, dead: bool) -> None:
        saves = DeathSaveState(character_id=1, successes=successes, failures=failures)

        assert saves.is_stable is stable
        assert saves.is_dead is dead

    def test_counters_capped(self) -> None:
        with pytest.raises(ValidationError):
            DeathSaveState(character_id=1, failures=4)

    def test_flags_serialised(self) -> None:
        dumped = DeathSaveState(character_id=1, successes=3).model_dump()

        assert dumped["is_stable"] is True
        assert dumped["is_dead"] is False


class TestMechanicsResult:
    """Tests for MechanicsResult."""

    def test_error_factory(self) -> None:
        result = MechanicsResult.error("character_not_found", "No character with ID 7", character_id=7)

        assert result.type is MechanicsEventType.ERROR
        assert result.success is False
        assert result.summary == "No character with ID 7"
        assert result.details == {"error": "character_not_found", "character_id": 7}
        assert result.is_hidden is False

    def test_extra_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            MechanicsResult(type=MechanicsEventType.DICE_ROLL, success=True, summary="x", narration="y")


class TestMemoryModels:
    """Tests for memory records."""

    def test_embedding_not_serialised(self) -> None:
        record = MemoryRecord(
            id=1,
            campaign_id=1,
            content="The king is dead",
            embedding=[0.1, 0.2],
            memory_type=MemoryType.PLOT_POINT,
        )

        assert "embedding" not in record.model_dump()
        assert "0.1" not in repr(record)

    def test_importance_bounds(self) -> None:
        with pytest.raises(ValidationError):
            MemoryRecord(id=1, campaign_id=1, content="x", memory_type=MemoryType.LORE, importance_boost=11)

    def test_similarity_bounds(self) -> None:
        record = MemoryRecord(id=1, campaign_id=1, content="x", memory_type=MemoryType.LORE)

        with pytest.raises(ValidationError):
            MemorySearchResult(memory=record, similarity=1.5)

    def test_type_label(self) -> None:
        assert MemoryType.NPC_INTERACTION.label == "npc interaction"
