"""Tests for the SQLite state store."""

from __future__ import annotations

from pathlib import Path

import pytest

from dm_engine.core.exceptions import PersistenceError
from dm_engine.models.entities import NpcCombatStats
from dm_engine.models.enums import CombatantType, GameMode, MechanicsEventType, MemoryType, MessageRole
from dm_engine.models.game_state import DeathSaveState, InitiativeEntry, MechanicsResult
from dm_engine.storage import database as database_module
from dm_engine.storage.database import Database, get_database


class TestCampaignState:
    """Tests for campaigns and per-campaign game state."""

    def test_schema_is_idempotent(self, tmp_path: Path) -> None:
        """Test that reopening a database keeps its rows."""
        path = tmp_path / "state.db"
        campaign = Database(path).create_campaign("user-1", "Reopened")

        assert Database(path).get_campaign(campaign.id) == campaign

    def test_default_state_created_on_first_access(self, db: Database) -> None:
        campaign = db.create_campaign("user-1", "Fresh")

        state = db.get_or_create_game_state(campaign.id)

        assert state.mode == GameMode.EXPLORATION
        assert state.turn_number == 0
        assert state.session_number == 1
        assert state.in_game_time == "Day 1, Morning"

    def test_advance_turn_is_monotonic(self, db: Database) -> None:
        campaign = db.create_campaign("user-1", "Counter")

        numbers = [db.advance_turn(campaign.id).turn_number for _ in range(3)]

        assert numbers == [1, 2, 3]

    def test_update_game_state(self, db: Database, seeded) -> None:
        state = db.update_game_state(seeded.id, mode=GameMode.COMBAT, in_game_time="Day 2, Dusk")

        assert state.mode == GameMode.COMBAT
        assert db.get_game_state(seeded.id).in_game_time == "Day 2, Dusk"

    def test_turn_number_is_not_writable(self, db: Database, seeded) -> None:
        """Test that only advance_turn moves the counter."""
        with pytest.raises(PersistenceError):
            db.update_game_state(seeded.id, turn_number=99)


class TestCharacters:
    """Tests for party members and death saves."""

    def test_round_trip_typed_columns(self, db: Database, seeded) -> None:
        """Test that JSON columns come back as validated, typed fields."""
        wizard = db.get_character(seeded.wizard.id)

        assert wizard == seeded.wizard
        assert wizard.spell_slots == {1: 4, 2: 3, 3: 2}
        assert wizard.abilities.intelligence == 18

    def test_party_in_creation_order(self, db: Database, seeded) -> None:
        assert [c.name for c in db.get_party(seeded.id)] == ["Thorin", "Elara"]

    def test_hp_is_clamped(self, db: Database, seeded) -> None:
        db.update_character_hp(seeded.fighter.id, 500)
        assert db.get_character(seeded.fighter.id).current_hp == 44

        db.update_character_hp(seeded.fighter.id, -5)
        assert db.get_character(seeded.fighter.id).current_hp == 0

    def test_missing_character_update(self, db: Database) -> None:
        with pytest.raises(PersistenceError):
            db.update_character_hp(999, 10)

    def test_negative_spell_slots_rejected(self, db: Database, seeded) -> None:
        with pytest.raises(PersistenceError):
            db.update_character_spell_slots(seeded.wizard.id, {1: -1})

    def test_equipment_replaced(self, db: Database, seeded) -> None:
        db.update_character_equipment(seeded.fighter.id, ["Longsword", "Rope (50 ft)"])

        assert db.get_character(seeded.fighter.id).equipment == ["Longsword", "Rope (50 ft)"]
        with pytest.raises(PersistenceError):
            db.update_character_equipment(999, [])

    def test_death_saves(self, db: Database, seeded) -> None:
        character_id = seeded.fighter.id
        assert db.get_death_saves(character_id) == DeathSaveState(character_id=character_id)

        db.save_death_saves(DeathSaveState(character_id=character_id, successes=1, failures=2))
        assert db.get_death_saves(character_id).failures == 2

        db.clear_death_saves(character_id)
        assert db.get_death_saves(character_id).successes == 0


class TestNpcs:
    """Tests for NPC storage and goal progress rules."""

    def test_combat_stats_round_trip(self, db: Database, seeded) -> None:
        npc = db.create_npc(seeded.id, "Ogre", combat_stats=NpcCombatStats(armor_class=11, max_hp=59))

        stored = db.get_npc(npc.id)

        assert stored.combat_stats is not None
        assert stored.combat_stats.max_hp == 59

    def test_filter_by_location_and_activity(self, db: Database, seeded) -> None:
        db.create_npc(seeded.id, "Ghost", location_id=seeded.crypt.id, is_active=False)
        db.create_npc(seeded.id, "Fisher", location_id=seeded.village.id)

        at_crypt = db.get_npcs(seeded.id, location_id=seeded.crypt.id, active_only=True)

        assert [npc.name for npc in at_crypt] == ["Mira"]

    def test_goal_progress_never_decreases(self, db: Database, seeded) -> None:
        """Test that progress only moves forward while the goal is unchanged."""
        db.update_npc(seeded.mira.id, goal_progress=60)
        updated = db.update_npc(seeded.mira.id, goal_progress=10)

        assert updated.goal_progress == 60

    def test_goal_progress_clamped(self, db: Database, seeded) -> None:
        assert db.update_npc(seeded.mira.id, goal_progress=250).goal_progress == 100

    def test_new_goal_restarts_progress(self, db: Database, seeded) -> None:
        db.update_npc(seeded.mira.id, goal_progress=80)

        updated = db.update_npc(seeded.mira.id, current_goal="Escape the crypt")

        assert updated.current_goal == "Escape the crypt"
        assert updated.goal_progress == 0

    def test_update_missing_npc(self, db: Database) -> None:
        with pytest.raises(PersistenceError):
            db.update_npc(404, disposition=10)


class TestLocations:
    """Tests for locations and hidden-object discovery."""

    def test_discovery_is_one_way(self, db: Database, seeded) -> None:
        found = db.mark_objects_discovered(seeded.crypt.id, ["Pressure Plate", "Nonexistent"])
        again = db.mark_objects_discovered(seeded.crypt.id, ["Pressure Plate"])

        assert [obj.name for obj in found] == ["Pressure Plate"]
        assert again == []
        crypt = db.get_location(seeded.crypt.id)
        assert [obj.name for obj in crypt.undiscovered_objects] == ["Loose Brick", "Ancient Sigil"]

    def test_mark_visited(self, db: Database, seeded) -> None:
        db.mark_location_visited(seeded.village.id)

        assert db.get_location(seeded.village.id).is_visited is True


class TestEncounters:
    """Tests for encounter lifecycle."""

    def _order(self) -> list[InitiativeEntry]:
        return [
            InitiativeEntry(id="pc_1", name="Thorin", initiative=15, type=CombatantType.PC, hp=44, max_hp=44, ac=18),
            InitiativeEntry(id="npc_enemy_0", name="Goblin", initiative=9, type=CombatantType.NPC, hp=7, max_hp=7, ac=15),
        ]

    def test_single_active_encounter(self, db: Database, seeded) -> None:
        """Test that starting an encounter deactivates the previous one."""
        first = db.create_encounter(seeded.id, self._order())
        second = db.create_encounter(seeded.id, self._order())

        active = db.get_active_encounter(seeded.id)

        assert active is not None
        assert active.id == second.id != first.id

    def test_update_and_deactivate(self, db: Database, seeded) -> None:
        encounter = db.create_encounter(seeded.id, self._order())

        db.update_encounter(encounter.id, current_round=3, current_turn_index=1)
        active = db.get_active_encounter(seeded.id)
        assert (active.current_round, active.current_turn_index) == (3, 1)

        assert db.deactivate_encounters(seeded.id) == 1
        assert db.get_active_encounter(seeded.id) is None


class TestAuditAndTranscript:
    """Tests for the mechanics log and conversation transcript."""

    def test_log_newest_first(self, db: Database, seeded) -> None:
        for index in range(3):
            db.log_mechanics_event(
                seeded.id,
                1,
                MechanicsResult(type=MechanicsEventType.DICE_ROLL, success=True, summary=f"roll {index}"),
                actor_id="pc_1",
            )

        entries = db.get_recent_mechanics(seeded.id, limit=2)

        assert [entry.summary for entry in entries] == ["roll 2", "roll 1"]
        assert entries[0].actor_id == "pc_1"

    def test_hidden_flag_persisted(self, db: Database, seeded) -> None:
        db.log_mechanics_event(
            seeded.id,
            1,
            MechanicsResult(type=MechanicsEventType.PASSIVE_CHECK, success=True, summary="noticed", is_hidden=True),
        )

        assert db.get_recent_mechanics(seeded.id)[0].is_hidden is True

    def test_recent_messages_chronological(self, db: Database, seeded) -> None:
        for index in range(4):
            role = MessageRole.USER if index % 2 == 0 else MessageRole.ASSISTANT
            db.add_conversation_message(seeded.id, role, f"message {index}")

        messages = db.get_recent_messages(seeded.id, 3)

        assert [m.content for m in messages] == ["message 1", "message 2", "message 3"]
        assert db.get_recent_messages(seeded.id, 0) == []


class TestMemories:
    """Tests for memory rows."""

    def test_embedding_round_trip(self, db: Database, seeded) -> None:
        record = db.insert_memory(
            seeded.id,
            content="The dragon sleeps",
            summary="dragon",
            embedding=[1.0, 0.5, 0.0],
            memory_type=MemoryType.LORE,
            tags=["Dragon"],
        )

        listed = db.list_memories(seeded.id, with_embeddings=True)

        assert listed[0].id == record.id
        assert listed[0].embedding == pytest.approx([1.0, 0.5, 0.0])
        assert db.get_memory(record.id).embedding == []

    def test_filters_and_paging(self, db: Database, seeded) -> None:
        for index in range(3):
            db.insert_memory(
                seeded.id, content=f"lore {index}", summary="", embedding=[1.0], memory_type=MemoryType.LORE
            )
        db.insert_memory(
            seeded.id, content="plot", summary="", embedding=[1.0], memory_type=MemoryType.PLOT_POINT
        )

        lore = db.list_memories(seeded.id, memory_types=[MemoryType.LORE], limit=2, offset=1)

        assert [m.content for m in lore] == ["lore 1", "lore 0"]
        assert db.count_memories(seeded.id) == 4

    def test_importance_update_and_delete_are_campaign_scoped(self, db: Database, seeded) -> None:
        other = db.create_campaign("user-2", "Other")
        record = db.insert_memory(
            seeded.id, content="secret", summary="", embedding=[1.0], memory_type=MemoryType.LORE
        )

        assert db.update_memory_importance(other.id, record.id, 5) is None
        assert db.delete_memory(other.id, record.id) is False
        assert db.update_memory_importance(seeded.id, record.id, 5).importance_boost == 5
        assert db.delete_memory(seeded.id, record.id) is True
        assert db.get_memory(record.id) is None

    def test_invalid_memory_rejected(self, db: Database, seeded) -> None:
        with pytest.raises(PersistenceError):
            db.insert_memory(
                seeded.id, content="", summary="", embedding=[1.0], memory_type=MemoryType.LORE
            )


class TestGetDatabase:
    """Tests for the configured database instance."""

    def test_uses_configured_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "nested" / "campaigns.db"
        monkeypatch.setenv("DM_ENGINE_DATABASE_PATH", str(path))
        monkeypatch.setattr(database_module, "_database_instance", None)

        db = get_database()

        assert db.db_path == path
        assert path.exists()
        assert get_database() is db
