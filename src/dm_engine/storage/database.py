"""SQLite persistence layer for the turn engine.

Provides persistent storage for:
- Campaign state (mode, location, clock, turn counter)
- Party characters, NPCs, locations and encounters
- The append-only mechanics audit log
- Death save counters and the DM conversation transcript
- Embedded long-term memories

JSON columns are read and written through pydantic TypeAdapters so every
variant-shaped field is schema-validated at the storage boundary. Each
operation opens its own connection, which keeps the class safe to share
between the turn thread and background ingestion threads.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

import numpy as np
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from dm_engine.core.config import get_settings
from dm_engine.core.constants import MAX_GOAL_PROGRESS
from dm_engine.core.exceptions import PersistenceError
from dm_engine.core.logging import get_logger
from dm_engine.models.entities import (
    AbilityScores,
    Campaign,
    CharacterState,
    HiddenObject,
    Location,
    Npc,
    NpcCombatStats,
)
from dm_engine.models.enums import MemoryType, MessageRole
from dm_engine.models.game_state import (
    CampaignState,
    ConversationMessage,
    DeathSaveState,
    EncounterState,
    InitiativeEntry,
    MechanicsLogEntry,
    MechanicsResult,
)
from dm_engine.models.memory import MemoryRecord


logger = get_logger(__name__)


# =============================================================================
# Typed JSON columns
# =============================================================================

_FLAGS = TypeAdapter(dict[str, bool])
_STRINGS = TypeAdapter(list[str])
_INTS = TypeAdapter(list[int])
_SLOTS = TypeAdapter(dict[int, int])
_ABILITIES = TypeAdapter(AbilityScores)
_COMBAT_STATS = TypeAdapter(NpcCombatStats | None)
_HIDDEN_OBJECTS = TypeAdapter(list[HiddenObject])
_INITIATIVE = TypeAdapter(list[InitiativeEntry])
_DETAILS = TypeAdapter(dict[str, Any])


def _dump(adapter: TypeAdapter[Any], value: Any) -> str:
    return adapter.dump_json(value).decode("utf-8")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _vector_to_blob(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _blob_to_vector(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype=np.float32).tolist()


# =============================================================================
# Row converters
# =============================================================================


def _row_to_campaign(row: sqlite3.Row) -> Campaign:
    return Campaign(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        description=row["description"],
    )


def _row_to_state(row: sqlite3.Row) -> CampaignState:
    return CampaignState(
        campaign_id=row["campaign_id"],
        mode=row["mode"],
        current_location_id=row["current_location_id"],
        in_game_time=row["in_game_time"],
        turn_number=row["turn_number"],
        session_number=row["session_number"],
    )


def _row_to_character(row: sqlite3.Row) -> CharacterState:
    return CharacterState(
        id=row["id"],
        campaign_id=row["campaign_id"],
        name=row["name"],
        race=row["race"],
        character_class=row["character_class"],
        level=row["level"],
        abilities=_ABILITIES.validate_json(row["abilities_json"]),
        current_hp=row["current_hp"],
        max_hp=row["max_hp"],
        armor_class=row["armor_class"],
        speed=row["speed"],
        skills=_FLAGS.validate_json(row["skills_json"]),
        saving_throws=_FLAGS.validate_json(row["saving_throws_json"]),
        spells=_STRINGS.validate_json(row["spells_json"]),
        cantrips=_STRINGS.validate_json(row["cantrips_json"]),
        spell_slots=_SLOTS.validate_json(row["spell_slots_json"]),
        equipment=_STRINGS.validate_json(row["equipment_json"]),
        features=_STRINGS.validate_json(row["features_json"]),
    )


def _row_to_npc(row: sqlite3.Row) -> Npc:
    return Npc(
        id=row["id"],
        campaign_id=row["campaign_id"],
        name=row["name"],
        description=row["description"],
        personality=row["personality"],
        npc_type=row["npc_type"],
        disposition=row["disposition"],
        current_goal=row["current_goal"],
        goal_progress=row["goal_progress"],
        combat_stats=_COMBAT_STATS.validate_json(row["combat_stats_json"]),
        location_id=row["location_id"],
        is_active=bool(row["is_active"]),
    )


def _row_to_location(row: sqlite3.Row) -> Location:
    return Location(
        id=row["id"],
        campaign_id=row["campaign_id"],
        name=row["name"],
        description=row["description"],
        location_type=row["location_type"],
        hidden_objects=_HIDDEN_OBJECTS.validate_json(row["hidden_objects_json"]),
        connections=_INTS.validate_json(row["connections_json"]),
        is_visited=bool(row["is_visited"]),
    )


def _row_to_encounter(row: sqlite3.Row) -> EncounterState:
    return EncounterState(
        id=row["id"],
        campaign_id=row["campaign_id"],
        initiative_order=_INITIATIVE.validate_json(row["initiative_order_json"]),
        current_round=row["current_round"],
        current_turn_index=row["current_turn_index"],
        is_active=bool(row["is_active"]),
    )


def _row_to_log_entry(row: sqlite3.Row) -> MechanicsLogEntry:
    return MechanicsLogEntry(
        id=row["id"],
        campaign_id=row["campaign_id"],
        turn_number=row["turn_number"],
        event_type=row["event_type"],
        actor_id=row["actor_id"],
        target_id=row["target_id"],
        details=_DETAILS.validate_json(row["details_json"]),
        summary=row["summary"],
        is_hidden=bool(row["is_hidden"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_memory(row: sqlite3.Row, *, with_embedding: bool = False) -> MemoryRecord:
    return MemoryRecord(
        id=row["id"],
        campaign_id=row["campaign_id"],
        content=row["content"],
        summary=row["summary"],
        embedding=_blob_to_vector(row["embedding"]) if with_embedding else [],
        memory_type=row["memory_type"],
        session_number=row["session_number"],
        turn_number=row["turn_number"],
        source_type=row["source_type"],
        source_id=row["source_id"],
        importance_boost=row["importance_boost"],
        tags=_STRINGS.validate_json(row["tags_json"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS campaigns (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS game_state (
        campaign_id INTEGER PRIMARY KEY,
        mode TEXT NOT NULL,
        current_location_id INTEGER,
        in_game_time TEXT NOT NULL,
        turn_number INTEGER NOT NULL DEFAULT 0,
        session_number INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS characters (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        campaign_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        race TEXT NOT NULL DEFAULT '',
        character_class TEXT NOT NULL DEFAULT '',
        level INTEGER NOT NULL,
        abilities_json TEXT NOT NULL,
        current_hp INTEGER NOT NULL,
        max_hp INTEGER NOT NULL,
        armor_class INTEGER NOT NULL,
        speed INTEGER NOT NULL,
        skills_json TEXT NOT NULL,
        saving_throws_json TEXT NOT NULL,
        spells_json TEXT NOT NULL,
        cantrips_json TEXT NOT NULL,
        spell_slots_json TEXT NOT NULL,
        equipment_json TEXT NOT NULL,
        features_json TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS npcs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        campaign_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        personality TEXT NOT NULL DEFAULT '',
        npc_type TEXT NOT NULL,
        disposition INTEGER NOT NULL DEFAULT 0,
        current_goal TEXT,
        goal_progress INTEGER NOT NULL DEFAULT 0,
        combat_stats_json TEXT NOT NULL,
        location_id INTEGER,
        is_active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS locations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        campaign_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        location_type TEXT NOT NULL DEFAULT '',
        hidden_objects_json TEXT NOT NULL,
        connections_json TEXT NOT NULL,
        is_visited INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS encounters (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        campaign_id INTEGER NOT NULL,
        initiative_order_json TEXT NOT NULL,
        current_round INTEGER NOT NULL DEFAULT 1,
        current_turn_index INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mechanics_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        campaign_id INTEGER NOT NULL,
        turn_number INTEGER NOT NULL,
        event_type TEXT NOT NULL,
        actor_id TEXT,
        target_id TEXT,
        details_json TEXT NOT NULL,
        summary TEXT NOT NULL,
        is_hidden INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS death_saves (
        character_id INTEGER PRIMARY KEY,
        successes INTEGER NOT NULL DEFAULT 0,
        failures INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation_messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        campaign_id INTEGER NOT NULL,
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        campaign_id INTEGER NOT NULL,
        content TEXT NOT NULL,
        summary TEXT NOT NULL,
        embedding BLOB NOT NULL,
        memory_type TEXT NOT NULL,
        session_number INTEGER,
        turn_number INTEGER,
        source_type TEXT,
        source_id INTEGER,
        importance_boost INTEGER NOT NULL DEFAULT 0,
        tags_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_characters_campaign ON characters(campaign_id)",
    "CREATE INDEX IF NOT EXISTS idx_npcs_campaign ON npcs(campaign_id, location_id)",
    "CREATE INDEX IF NOT EXISTS idx_locations_campaign ON locations(campaign_id)",
    "CREATE INDEX IF NOT EXISTS idx_encounters_active ON encounters(campaign_id, is_active)",
    "CREATE INDEX IF NOT EXISTS idx_mechanics_campaign ON mechanics_log(campaign_id, id DESC)",
    "CREATE INDEX IF NOT EXISTS idx_messages_campaign ON conversation_messages(campaign_id, id DESC)",
    "CREATE INDEX IF NOT EXISTS idx_memories_campaign ON memories(campaign_id, memory_type)",
]

# =============================================================================
# Database Class
# =============================================================================


class Database:
    """SQLite state store for the turn engine.

    All writes go through narrow, named mutations. Reads return validated
    pydantic models.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: str | Path | None = None) -> None:
        """Initialize database.

        Args:
            db_path: Path to database file. If None, uses the configured
                ``storage.database_path``.
        """
        if db_path is None:
            self.db_path = get_settings().storage.database_path
        else:
            self.db_path = Path(db_path)

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

        logger.info("Database initialized", path=str(self.db_path))

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection that commits on success."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(f"Database operation failed: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._get_connection() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

    # =========================================================================
    # Campaigns
    # =========================================================================

    def create_campaign(self, user_id: str, name: str, description: str = "") -> Campaign:
        """Create a campaign owned by ``user_id``.

        Args:
            user_id: Owner id.
            name: Campaign name.
            description: Optional description.

        Returns:
            The created campaign.
        """
        campaign = Campaign(id=0, user_id=user_id, name=name, description=description)
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO campaigns (user_id, name, description, created_at) VALUES (?, ?, ?, ?)",
                (campaign.user_id, campaign.name, campaign.description, _now().isoformat()),
            )
            campaign_id = cursor.lastrowid

        logger.info("Created campaign", campaign_id=campaign_id, name=name)
        return campaign.model_copy(update={"id": campaign_id})

    def get_campaign(self, campaign_id: int) -> Campaign | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM campaigns WHERE id = ?", (campaign_id,)).fetchone()
        return _row_to_campaign(row) if row else None

    # =========================================================================
    # Game State
    # =========================================================================

    def get_game_state(self, campaign_id: int) -> CampaignState | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM game_state WHERE campaign_id = ?", (campaign_id,)
            ).fetchone()
        return _row_to_state(row) if row else None

    def get_or_create_game_state(self, campaign_id: int) -> CampaignState:
        """Get the campaign state, creating the default one on first access."""
        with self._get_connection() as conn:
            self._ensure_game_state(conn, campaign_id)
            row = conn.execute(
                "SELECT * FROM game_state WHERE campaign_id = ?", (campaign_id,)
            ).fetchone()
        return _row_to_state(row)

    def _ensure_game_state(self, conn: sqlite3.Connection, campaign_id: int) -> None:
        default = CampaignState(campaign_id=campaign_id)
        conn.execute(
            """
            INSERT OR IGNORE INTO game_state
            (campaign_id, mode, current_location_id, in_game_time, turn_number, session_number)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                campaign_id,
                default.mode.value,
                default.current_location_id,
                default.in_game_time,
                default.turn_number,
                default.session_number,
            ),
        )

    def advance_turn(self, campaign_id: int) -> CampaignState:
        """Increment the turn counter atomically and return the new state."""
        with self._get_connection() as conn:
            self._ensure_game_state(conn, campaign_id)
            conn.execute(
                "UPDATE game_state SET turn_number = turn_number + 1 WHERE campaign_id = ?",
                (campaign_id,),
            )
            row = conn.execute(
                "SELECT * FROM game_state WHERE campaign_id = ?", (campaign_id,)
            ).fetchone()
        return _row_to_state(row)

    def update_game_state(self, campaign_id: int, **changes: Any) -> CampaignState:
        """Update mode, location, clock or session number.

        The turn counter is not writable here; use ``advance_turn``.

        Args:
            campaign_id: Campaign to update.
            **changes: Any of mode, current_location_id, in_game_time,
                session_number.

        Returns:
            The updated, validated state.

        Raises:
            PersistenceError: If an unknown or read-only field is given.
        """
        unknown = set(changes) - {"mode", "current_location_id", "in_game_time", "session_number"}
        if unknown:
            raise PersistenceError(
                f"Cannot update game state fields: {sorted(unknown)}",
                table="game_state",
                record_id=campaign_id,
            )

        with self._get_connection() as conn:
            self._ensure_game_state(conn, campaign_id)
            row = conn.execute(
                "SELECT * FROM game_state WHERE campaign_id = ?", (campaign_id,)
            ).fetchone()
            current = _row_to_state(row)
            updated = CampaignState.model_validate({**current.model_dump(), **changes})
            conn.execute(
                """
                UPDATE game_state
                SET mode = ?, current_location_id = ?, in_game_time = ?, session_number = ?
                WHERE campaign_id = ?
                """,
                (
                    updated.mode.value,
                    updated.current_location_id,
                    updated.in_game_time,
                    updated.session_number,
                    campaign_id,
                ),
            )

        logger.debug("Updated game state", campaign_id=campaign_id, changes=list(changes))
        return updated

    # =========================================================================
    # Characters
    # =========================================================================

    def create_character(self, campaign_id: int, name: str, **attributes: Any) -> CharacterState:
        """Insert a party member.

        Character authoring lives outside the engine; this exists for
        seeding and for the authoring layer to call.
        """
        character = CharacterState(id=0, campaign_id=campaign_id, name=name, **attributes)
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO characters
                (campaign_id, name, race, character_class, level, abilities_json,
                 current_hp, max_hp, armor_class, speed, skills_json, saving_throws_json,
                 spells_json, cantrips_json, spell_slots_json, equipment_json, features_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    campaign_id,
                    character.name,
                    character.race,
                    character.character_class,
                    character.level,
                    _dump(_ABILITIES, character.abilities),
                    character.current_hp,
                    character.max_hp,
                    character.armor_class,
                    character.speed,
                    _dump(_FLAGS, character.skills),
                    _dump(_FLAGS, character.saving_throws),
                    _dump(_STRINGS, character.spells),
                    _dump(_STRINGS, character.cantrips),
                    _dump(_SLOTS, character.spell_slots),
                    _dump(_STRINGS, character.equipment),
                    _dump(_STRINGS, character.features),
                ),
            )
            character_id = cursor.lastrowid
        return character.model_copy(update={"id": character_id})

    def get_character(self, character_id: int) -> CharacterState | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM characters WHERE id = ?", (character_id,)).fetchone()
        return _row_to_character(row) if row else None

    def get_party(self, campaign_id: int) -> list[CharacterState]:
        """Get all party members in creation order."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM characters WHERE campaign_id = ? ORDER BY id", (campaign_id,)
            ).fetchall()
        return [_row_to_character(row) for row in rows]

    def update_character_hp(self, character_id: int, current_hp: int) -> None:
        """Write a character's HP, clamped into [0, max_hp]."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE characters SET current_hp = MAX(0, MIN(max_hp, ?)) WHERE id = ?",
                (current_hp, character_id),
            )
            if cursor.rowcount == 0:
                raise PersistenceError("Character not found", table="characters", record_id=character_id)

    def update_character_spell_slots(self, character_id: int, spell_slots: dict[int, int]) -> None:
        if any(count < 0 for count in spell_slots.values()):
            raise PersistenceError(
                "Spell slot counts cannot be negative", table="characters", record_id=character_id
            )
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE characters SET spell_slots_json = ? WHERE id = ?",
                (_dump(_SLOTS, spell_slots), character_id),
            )
            if cursor.rowcount == 0:
                raise PersistenceError("Character not found", table="characters", record_id=character_id)

    def update_character_equipment(self, character_id: int, equipment: list[str]) -> None:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE characters SET equipment_json = ? WHERE id = ?",
                (_dump(_STRINGS, equipment), character_id),
            )
            if cursor.rowcount == 0:
                raise PersistenceError("Character not found", table="characters", record_id=character_id)

    # =========================================================================
    # Death Saves
    # =========================================================================

    def get_death_saves(self, character_id: int) -> DeathSaveState:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT successes, failures FROM death_saves WHERE character_id = ?",
                (character_id,),
            ).fetchone()
        if row is None:
            return DeathSaveState(character_id=character_id)
        return DeathSaveState(
            character_id=character_id, successes=row["successes"], failures=row["failures"]
        )

    def save_death_saves(self, state: DeathSaveState) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO death_saves (character_id, successes, failures) VALUES (?, ?, ?)",
                (state.character_id, state.successes, state.failures),
            )

    def clear_death_saves(self, character_id: int) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM death_saves WHERE character_id = ?", (character_id,))

    # =========================================================================
    # NPCs
    # =========================================================================

    def create_npc(self, campaign_id: int, name: str, **attributes: Any) -> Npc:
        """Insert an NPC.

        Args:
            campaign_id: Owning campaign.
            name: NPC name.
            **attributes: Any other Npc field.

        Returns:
            The created NPC.
        """
        npc = Npc(id=0, campaign_id=campaign_id, name=name, **attributes)
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO npcs
                (campaign_id, name, description, personality, npc_type, disposition,
                 current_goal, goal_progress, combat_stats_json, location_id, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    campaign_id,
                    npc.name,
                    npc.description,
                    npc.personality,
                    npc.npc_type,
                    npc.disposition,
                    npc.current_goal,
                    npc.goal_progress,
                    _dump(_COMBAT_STATS, npc.combat_stats),
                    npc.location_id,
                    int(npc.is_active),
                ),
            )
            npc_id = cursor.lastrowid

        logger.info("Created NPC", campaign_id=campaign_id, npc_id=npc_id, name=name)
        return npc.model_copy(update={"id": npc_id})

    def get_npc(self, npc_id: int) -> Npc | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM npcs WHERE id = ?", (npc_id,)).fetchone()
        return _row_to_npc(row) if row else None

    def get_npcs(
        self,
        campaign_id: int,
        *,
        location_id: int | None = None,
        active_only: bool = False,
    ) -> list[Npc]:
        """List a campaign's NPCs.

        Args:
            campaign_id: Campaign to list.
            location_id: Only NPCs at this location.
            active_only: Skip inactive NPCs.

        Returns:
            NPCs in creation order.
        """
        query = "SELECT * FROM npcs WHERE campaign_id = ?"
        params: list[Any] = [campaign_id]
        if location_id is not None:
            query += " AND location_id = ?"
            params.append(location_id)
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY id"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_npc(row) for row in rows]

    def update_npc(self, npc_id: int, **changes: Any) -> Npc:
        """Update an NPC.

        Goal progress is clamped to 100 and never decreases while the goal
        stays the same. Setting a different ``current_goal`` restarts the
        progress (at the given value, or 0).

        Args:
            npc_id: NPC to update.
            **changes: Npc fields to change.

        Returns:
            The updated NPC.

        Raises:
            PersistenceError: If the NPC does not exist.
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM npcs WHERE id = ?", (npc_id,)).fetchone()
            if row is None:
                raise PersistenceError("NPC not found", table="npcs", record_id=npc_id)
            current = _row_to_npc(row)

            merged = {**current.model_dump(), **changes}
            goal_changed = "current_goal" in changes and changes["current_goal"] != current.current_goal
            requested = changes.get("goal_progress", 0 if goal_changed else current.goal_progress)
            requested = min(MAX_GOAL_PROGRESS, max(0, requested))
            merged["goal_progress"] = requested if goal_changed else max(current.goal_progress, requested)
            updated = Npc.model_validate(merged)

            conn.execute(
                """
                UPDATE npcs
                SET name = ?, description = ?, personality = ?, npc_type = ?, disposition = ?,
                    current_goal = ?, goal_progress = ?, combat_stats_json = ?,
                    location_id = ?, is_active = ?
                WHERE id = ?
                """,
                (
                    updated.name,
                    updated.description,
                    updated.personality,
                    updated.npc_type,
                    updated.disposition,
                    updated.current_goal,
                    updated.goal_progress,
                    _dump(_COMBAT_STATS, updated.combat_stats),
                    updated.location_id,
                    int(updated.is_active),
                    npc_id,
                ),
            )
        return updated

    # =========================================================================
    # Locations
    # =========================================================================

    def create_location(self, campaign_id: int, name: str, **attributes: Any) -> Location:
        location = Location(id=0, campaign_id=campaign_id, name=name, **attributes)
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO locations
                (campaign_id, name, description, location_type, hidden_objects_json,
                 connections_json, is_visited)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    campaign_id,
                    location.name,
                    location.description,
                    location.location_type,
                    _dump(_HIDDEN_OBJECTS, location.hidden_objects),
                    _dump(_INTS, location.connections),
                    int(location.is_visited),
                ),
            )
            location_id = cursor.lastrowid

        logger.info("Created location", campaign_id=campaign_id, location_id=location_id, name=name)
        return location.model_copy(update={"id": location_id})

    def get_location(self, location_id: int) -> Location | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM locations WHERE id = ?", (location_id,)).fetchone()
        return _row_to_location(row) if row else None

    def get_locations(self, campaign_id: int) -> list[Location]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM locations WHERE campaign_id = ? ORDER BY id", (campaign_id,)
            ).fetchall()
        return [_row_to_location(row) for row in rows]

    def mark_location_visited(self, location_id: int) -> None:
        with self._get_connection() as conn:
            conn.execute("UPDATE locations SET is_visited = 1 WHERE id = ?", (location_id,))

    def mark_objects_discovered(self, location_id: int, object_names: Iterable[str]) -> list[HiddenObject]:
        """Flip hidden objects to discovered.

        Only undiscovered objects change; already-discovered ones and
        unknown names are ignored.

        Args:
            location_id: Location holding the objects.
            object_names: Names of the objects found.

        Returns:
            The objects that transitioned from hidden to discovered.
        """
        names = set(object_names)
        if not names:
            return []

        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT hidden_objects_json FROM locations WHERE id = ?", (location_id,)
            ).fetchone()
            if row is None:
                raise PersistenceError("Location not found", table="locations", record_id=location_id)

            objects = _HIDDEN_OBJECTS.validate_json(row["hidden_objects_json"])
            newly_found: list[HiddenObject] = []
            updated: list[HiddenObject] = []
            for obj in objects:
                if obj.name in names and not obj.discovered:
                    obj = obj.model_copy(update={"discovered": True})
                    newly_found.append(obj)
                updated.append(obj)

            if newly_found:
                conn.execute(
                    "UPDATE locations SET hidden_objects_json = ? WHERE id = ?",
                    (_dump(_HIDDEN_OBJECTS, updated), location_id),
                )
        return newly_found

    # =========================================================================
    # Encounters
    # =========================================================================

    def create_encounter(self, campaign_id: int, initiative_order: list[InitiativeEntry]) -> EncounterState:
        """Start an encounter, deactivating any prior active one."""
        encounter = EncounterState(id=0, campaign_id=campaign_id, initiative_order=initiative_order)
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE encounters SET is_active = 0 WHERE campaign_id = ? AND is_active = 1",
                (campaign_id,),
            )
            cursor = conn.execute(
                """
                INSERT INTO encounters
                (campaign_id, initiative_order_json, current_round, current_turn_index, is_active, created_at)
                VALUES (?, ?, 1, 0, 1, ?)
                """,
                (campaign_id, _dump(_INITIATIVE, encounter.initiative_order), _now().isoformat()),
            )
            encounter_id = cursor.lastrowid

        logger.info("Created encounter", campaign_id=campaign_id, encounter_id=encounter_id)
        return encounter.model_copy(update={"id": encounter_id})

    def get_active_encounter(self, campaign_id: int) -> EncounterState | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM encounters WHERE campaign_id = ? AND is_active = 1 ORDER BY id DESC LIMIT 1",
                (campaign_id,),
            ).fetchone()
        return _row_to_encounter(row) if row else None

    def update_encounter(
        self,
        encounter_id: int,
        *,
        initiative_order: list[InitiativeEntry] | None = None,
        current_round: int | None = None,
        current_turn_index: int | None = None,
    ) -> None:
        assignments: list[str] = []
        params: list[Any] = []
        if initiative_order is not None:
            assignments.append("initiative_order_json = ?")
            params.append(_dump(_INITIATIVE, initiative_order))
        if current_round is not None:
            assignments.append("current_round = ?")
            params.append(current_round)
        if current_turn_index is not None:
            assignments.append("current_turn_index = ?")
            params.append(current_turn_index)
        if not assignments:
            return

        params.append(encounter_id)
        with self._get_connection() as conn:
            conn.execute(f"UPDATE encounters SET {', '.join(assignments)} WHERE id = ?", params)

    def deactivate_encounters(self, campaign_id: int) -> int:
        """End every active encounter in a campaign; returns how many ended."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE encounters SET is_active = 0 WHERE campaign_id = ? AND is_active = 1",
                (campaign_id,),
            )
            return cursor.rowcount

    # =========================================================================
    # Mechanics Log
    # =========================================================================

    def log_mechanics_event(
        self,
        campaign_id: int,
        turn_number: int,
        result: MechanicsResult,
        *,
        actor_id: str | None = None,
        target_id: str | None = None,
    ) -> MechanicsLogEntry:
        """Append a result to the audit log.

        Args:
            campaign_id: Owning campaign.
            turn_number: Turn the event happened on.
            result: The mechanics result to record.
            actor_id: Optional acting entity id.
            target_id: Optional target entity id.

        Returns:
            The stored, immutable log entry.
        """
        created_at = _now()
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO mechanics_log
                (campaign_id, turn_number, event_type, actor_id, target_id,
                 details_json, summary, is_hidden, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    campaign_id,
                    turn_number,
                    result.type.value,
                    actor_id,
                    target_id,
                    _dump(_DETAILS, result.details),
                    result.summary,
                    int(result.is_hidden),
                    created_at.isoformat(),
                ),
            )
            entry_id = cursor.lastrowid

        return MechanicsLogEntry(
            id=entry_id,
            campaign_id=campaign_id,
            turn_number=turn_number,
            event_type=result.type,
            actor_id=actor_id,
            target_id=target_id,
            details=result.details,
            summary=result.summary,
            is_hidden=result.is_hidden,
            created_at=created_at,
        )

    def get_recent_mechanics(self, campaign_id: int, limit: int = 10) -> list[MechanicsLogEntry]:
        """Get the most recent audit entries, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM mechanics_log WHERE campaign_id = ? ORDER BY id DESC LIMIT ?",
                (campaign_id, limit),
            ).fetchall()
        return [_row_to_log_entry(row) for row in rows]

    # =========================================================================
    # Conversation Transcript
    # =========================================================================

    def add_conversation_message(self, campaign_id: int, role: MessageRole, content: str) -> ConversationMessage:
        created_at = _now()
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO conversation_messages (campaign_id, role, content, created_at) VALUES (?, ?, ?, ?)",
                (campaign_id, MessageRole(role).value, content, created_at.isoformat()),
            )
            message_id = cursor.lastrowid
        return ConversationMessage(
            id=message_id, campaign_id=campaign_id, role=role, content=content, created_at=created_at
        )

    def get_recent_messages(self, campaign_id: int, limit: int) -> list[ConversationMessage]:
        """Get the last ``limit`` transcript messages in chronological order."""
        if limit <= 0:
            return []
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM conversation_messages WHERE campaign_id = ? ORDER BY id DESC LIMIT ?",
                (campaign_id, limit),
            ).fetchall()
        return [
            ConversationMessage(
                id=row["id"],
                campaign_id=row["campaign_id"],
                role=row["role"],
                content=row["content"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in reversed(rows)
        ]

    # =========================================================================
    # Memories
    # =========================================================================

    def insert_memory(
        self,
        campaign_id: int,
        *,
        content: str,
        summary: str,
        embedding: Sequence[float],
        memory_type: MemoryType,
        session_number: int | None = None,
        turn_number: int | None = None,
        source_type: str | None = None,
        source_id: int | None = None,
        importance_boost: int = 0,
        tags: list[str] | None = None,
    ) -> MemoryRecord:
        """Persist an embedded memory."""
        try:
            record = MemoryRecord(
                id=0,
                campaign_id=campaign_id,
                content=content,
                summary=summary,
                embedding=list(embedding),
                memory_type=memory_type,
                session_number=session_number,
                turn_number=turn_number,
                source_type=source_type,
                source_id=source_id,
                importance_boost=importance_boost,
                tags=tags or [],
            )
        except PydanticValidationError as exc:
            raise PersistenceError(f"Invalid memory record: {exc}", table="memories") from exc

        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO memories
                (campaign_id, content, summary, embedding, memory_type, session_number,
                 turn_number, source_type, source_id, importance_boost, tags_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    campaign_id,
                    record.content,
                    record.summary,
                    _vector_to_blob(record.embedding),
                    record.memory_type.value,
                    record.session_number,
                    record.turn_number,
                    record.source_type,
                    record.source_id,
                    record.importance_boost,
                    _dump(_STRINGS, record.tags),
                    record.created_at.isoformat(),
                ),
            )
            memory_id = cursor.lastrowid
        return record.model_copy(update={"id": memory_id})

    def get_memory(self, memory_id: int) -> MemoryRecord | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
        return _row_to_memory(row) if row else None

    def list_memories(
        self,
        campaign_id: int,
        *,
        memory_types: Sequence[MemoryType] | None = None,
        limit: int | None = None,
        offset: int = 0,
        with_embeddings: bool = False,
    ) -> list[MemoryRecord]:
        """List memories, newest first.

        Args:
            campaign_id: Campaign to list.
            memory_types: Restrict to these types.
            limit: Maximum number of records; None means all.
            offset: Records to skip.
            with_embeddings: Decode the stored vectors as well.

        Returns:
            Matching memory records.
        """
        query = "SELECT * FROM memories WHERE campaign_id = ?"
        params: list[Any] = [campaign_id]
        if memory_types:
            placeholders = ", ".join("?" for _ in memory_types)
            query += f" AND memory_type IN ({placeholders})"
            params.extend(MemoryType(t).value for t in memory_types)
        query += " ORDER BY id DESC"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_memory(row, with_embedding=with_embeddings) for row in rows]

    def count_memories(self, campaign_id: int) -> int:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM memories WHERE campaign_id = ?", (campaign_id,)
            ).fetchone()
        return row[0]

    def delete_memory(self, campaign_id: int, memory_id: int) -> bool:
        """Delete a memory; returns False if it does not exist in the campaign."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM memories WHERE id = ? AND campaign_id = ?", (memory_id, campaign_id)
            )
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted memory", campaign_id=campaign_id, memory_id=memory_id)
        return deleted

    def update_memory_importance(self, campaign_id: int, memory_id: int, importance_boost: int) -> MemoryRecord | None:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE memories SET importance_boost = ? WHERE id = ? AND campaign_id = ?",
                (importance_boost, memory_id, campaign_id),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
        return _row_to_memory(row)


# =============================================================================
# Singleton Instance
# =============================================================================


_database_instance: Database | None = None


def get_database() -> Database:
    """Get the global database instance at the configured path."""
    global _database_instance

    if _database_instance is None:
        _database_instance = Database()

    return _database_instance


__all__ = [
    "Database",
    "get_database",
]
