"""Integration tests for complete engine flows.

These drive DMEngine end to end against a real SQLite database, the
scripted chat model and keyword embeddings, with ingestion running on a
background thread.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest

from dm_engine.core.exceptions import CampaignAccessError, ValidationError
from dm_engine.dm.service import DMEngine
from dm_engine.engine.dice import DiceRoller
from dm_engine.memory.background import BackgroundTaskRunner
from dm_engine.models.enums import GameMode, MechanicsEventType, MemoryType
from dm_engine.storage.database import Database


USER = "user-1"


@pytest.fixture
def engine(db: Database, chat, embedder, settings, roller: DiceRoller) -> Generator[DMEngine, None, None]:
    engine = DMEngine(
        db,
        chat,
        embedder,
        settings=settings,
        roller=roller,
        background=BackgroundTaskRunner(max_workers=1, name="test-ingest"),
    )
    yield engine
    engine.close()


def _settle(engine: DMEngine) -> None:
    assert engine.background.wait_idle(timeout=10)


class TestAccessControl:
    """Every operation checks campaign ownership first."""

    @pytest.mark.parametrize(
        "call",
        [
            lambda e, cid: e.interact("intruder", cid, "I steal the relic"),
            lambda e, cid: e.get_game_state("intruder", cid),
            lambda e, cid: e.get_mechanics_log("intruder", cid),
            lambda e, cid: e.search_memories("intruder", cid, "relic"),
            lambda e, cid: e.get_memory_count("intruder", cid),
            lambda e, cid: e.create_npc("intruder", cid, name="Spy"),
        ],
    )
    def test_foreign_user_rejected(self, engine: DMEngine, seeded, call) -> None:
        with pytest.raises(CampaignAccessError):
            call(engine, seeded.id)

    def test_missing_campaign(self, engine: DMEngine) -> None:
        with pytest.raises(CampaignAccessError) as exc_info:
            engine.get_game_state(USER, 404)

        assert exc_info.value.details["campaign_id"] == 404

    def test_rejected_turn_changes_nothing(self, engine: DMEngine, db: Database, seeded) -> None:
        with pytest.raises(CampaignAccessError):
            engine.interact("intruder", seeded.id, "I look around")

        assert db.get_game_state(seeded.id).turn_number == 0


class TestRequestValidation:
    """Tests for input validation at the facade."""

    @pytest.mark.parametrize("player_input", ["", "   "])
    def test_empty_input(self, engine: DMEngine, chat, seeded, player_input: str) -> None:
        with pytest.raises(ValidationError):
            engine.interact(USER, seeded.id, player_input)

        assert chat.calls == []

    def test_input_is_stripped(self, engine: DMEngine, chat, seeded) -> None:
        engine.interact(USER, seeded.id, "  I open the door  ")

        assert chat.calls[0][-1] == {"role": "user", "content": "I open the door"}

    def test_bad_options(self, engine: DMEngine, seeded) -> None:
        with pytest.raises(ValidationError) as exc_info:
            engine.search_memories(USER, seeded.id, "relic", top_k=50)

        assert exc_info.value.details["field_name"] == "top_k"

    def test_foreign_starting_location(self, engine: DMEngine, db: Database, seeded) -> None:
        other = db.create_campaign("user-2", "Elsewhere")
        far_away = db.create_location(other.id, "Far Tower")

        with pytest.raises(ValidationError):
            engine.initialize_game_state(USER, seeded.id, starting_location_id=far_away.id)


class TestExplorationFlow:
    """Tests for a campaign played over several turns."""

    def test_first_turn(self, engine: DMEngine, seeded) -> None:
        result = engine.interact(USER, seeded.id, "I step carefully into the crypt")
        _settle(engine)

        assert result.turn_number == 1
        assert len(result.hidden_mechanics_results) == 2

        state = engine.get_game_state(USER, seeded.id)
        assert state["turn_number"] == 1
        assert state["current_location"]["discovered_objects"] == [
            "Pressure Plate",
            "Loose Brick",
        ]
        assert state["recent_events"] == []

    def test_audit_log_includes_hidden(self, engine: DMEngine, seeded) -> None:
        engine.interact(USER, seeded.id, "I step carefully into the crypt")

        log = engine.get_mechanics_log(USER, seeded.id)

        assert {entry.event_type for entry in log} == {MechanicsEventType.PASSIVE_CHECK}
        assert all(entry.is_hidden for entry in log)

    def test_travel(self, engine: DMEngine, chat, db: Database, seeded) -> None:
        chat.call("move_to_location", {"location_id": seeded.village.id}).narrate("Gulls cry over the huts.")

        result = engine.interact(USER, seeded.id, "We head back to the village")
        _settle(engine)

        assert [r.type for r in result.visible_mechanics_results] == [MechanicsEventType.LOCATION_CHANGE]
        state = engine.get_game_state(USER, seeded.id)
        assert state["current_location"]["name"] == "Saltmarsh Village"
        assert state["npcs_present"] == []
        assert db.get_location(seeded.village.id).is_visited is True
        discoveries = engine.get_memories(USER, seeded.id, memory_type=MemoryType.LOCATION_DISCOVERY)
        assert len(discoveries) == 1

    def test_turns_are_remembered(self, engine: DMEngine, chat, seeded) -> None:
        """Test that an earlier turn is recalled into a later prompt."""
        chat.narrate("A golden dragon sleeps on a hoard of gold.")
        engine.interact(USER, seeded.id, "I peek into the next chamber")
        _settle(engine)

        engine.interact(USER, seeded.id, "I ask about the dragon and its gold")

        prompt = chat.system_prompts[1]
        assert "RELEVANT MEMORIES" in prompt
        assert "A golden dragon sleeps on a hoard of gold." in prompt


class TestCombatFlow:
    """Tests for a fight from first roll to last."""

    def test_fight_to_the_end(self, engine: DMEngine, chat, loaded_dice, seeded) -> None:
        chat.call("start_combat", {"enemies": [{"name": "Goblin", "max_hp": 7, "ac": 13, "dexterity": 14}]}).narrate(
            "A goblin leaps from the shadows!"
        )
        loaded_dice.push(15, 10, 5)
        start = engine.interact(USER, seeded.id, "I draw my sword")

        assert start.mode == GameMode.COMBAT
        state = engine.get_game_state(USER, seeded.id)
        assert [entry["name"] for entry in state["encounter"]["initiative_order"]] == ["Thorin", "Elara", "Goblin"]
        assert state["encounter"]["current_turn"] == "Thorin"

        chat.calls_many(
            (
                "roll_attack",
                {
                    "attacker_name": "Thorin",
                    "attack_bonus": 6,
                    "target_name": "Goblin",
                    "target_ac": 13,
                    "damage_dice": "1d8+3",
                },
            ),
            ("end_combat", {"reason": "victory"}),
        ).narrate("The goblin crumples.")
        loaded_dice.push(14, 6)
        finish = engine.interact(USER, seeded.id, "I swing at the goblin")
        _settle(engine)

        attack, end = finish.visible_mechanics_results
        assert attack.details["target_defeated"] is True
        assert end.type == MechanicsEventType.COMBAT_END
        assert finish.mode == GameMode.EXPLORATION
        assert engine.get_game_state(USER, seeded.id)["encounter"] is None
        combat_memories = engine.get_memories(USER, seeded.id, memory_type=MemoryType.COMBAT_EVENT)
        assert len(combat_memories) == 3


class TestAuthoringAndMemory:
    """Tests for authoring operations and memory management."""

    def test_initialize_game_state(self, engine: DMEngine, db: Database, seeded) -> None:
        state = engine.initialize_game_state(
            USER,
            seeded.id,
            starting_location_id=seeded.village.id,
            in_game_time="Day 3, Dusk",
            session_number=2,
        )

        assert state.current_location_id == seeded.village.id
        assert state.in_game_time == "Day 3, Dusk"
        assert state.session_number == 2
        assert db.get_location(seeded.village.id).is_visited is True

    def test_create_npc_is_remembered(self, engine: DMEngine, seeded) -> None:
        npc = engine.create_npc(
            USER,
            seeded.id,
            name="Goblin King",
            description="Hoards gold in the crypt",
            current_goal="Reclaim the crown",
            location_id=seeded.crypt.id,
        )
        _settle(engine)

        assert npc.id is not None
        assert [n.name for n in engine.get_npcs(USER, seeded.id, location_id=seeded.crypt.id)] == [
            "Mira",
            "Goblin King",
        ]
        results = engine.search_memories(USER, seeded.id, "goblin king gold")
        assert results[0].memory.content == "NPC Goblin King: Hoards gold in the crypt. Goal: Reclaim the crown"
        assert results[0].memory.importance_boost == 1

    def test_create_npc_in_foreign_location(self, engine: DMEngine, db: Database, seeded) -> None:
        other = db.create_campaign("user-2", "Elsewhere")
        far_away = db.create_location(other.id, "Far Tower")

        with pytest.raises(ValidationError):
            engine.create_npc(USER, seeded.id, name="Lost", location_id=far_away.id)

    def test_create_location(self, engine: DMEngine, seeded) -> None:
        location = engine.create_location(
            USER,
            seeded.id,
            name="Dragon Lair",
            description="Bones and gold",
            hidden_objects=[{"name": "Cracked Egg", "dc": 14, "type": "clue"}],
        )
        _settle(engine)

        assert location.hidden_objects[0].name == "Cracked Egg"
        assert location.name in [loc.name for loc in engine.get_locations(USER, seeded.id)]
        assert engine.get_memory_count(USER, seeded.id) == 1

    def test_duplicate_hidden_objects(self, engine: DMEngine, seeded) -> None:
        with pytest.raises(ValidationError):
            engine.create_location(
                USER,
                seeded.id,
                name="Mirror Hall",
                hidden_objects=[{"name": "Mirror", "dc": 10}, {"name": "Mirror", "dc": 12}],
            )

    def test_manual_memory_lifecycle(self, engine: DMEngine, seeded) -> None:
        memory = engine.add_memory(USER, seeded.id, "The King of Saltmarsh owes Mira a favour", importance_boost=2)

        assert memory.tags == ["The", "King", "Saltmarsh", "Mira"]
        assert memory.memory_type == MemoryType.PLOT_POINT

        updated = engine.update_memory_importance(USER, seeded.id, memory.id, 7)
        assert updated is not None
        assert updated.importance_boost == 7

        assert engine.delete_memory(USER, seeded.id, memory.id) is True
        assert engine.delete_memory(USER, seeded.id, memory.id) is False
        assert engine.get_memory_count(USER, seeded.id) == 0

    def test_memory_paging(self, engine: DMEngine, seeded) -> None:
        for text in ("first crypt note", "second crypt note", "third crypt note"):
            engine.add_memory(USER, seeded.id, text)

        page = engine.get_memories(USER, seeded.id, limit=2, offset=1)

        assert [m.content for m in page] == ["second crypt note", "first crypt note"]
