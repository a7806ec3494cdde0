"""Snapshot assembly.

A snapshot is the consistent read view a turn is narrated from. It is
rebuilt after pre-checks and again after the tool loop so that the
caller always sees the final state.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from dm_engine.core.constants import RECENT_MECHANICS_LIMIT
from dm_engine.models.entities import HiddenObject
from dm_engine.models.game_state import GameSnapshot
from dm_engine.storage.database import Database


def build_snapshot(
    db: Database,
    campaign_id: int,
    new_discoveries: Sequence[HiddenObject] | None = None,
    *,
    recent_limit: int = RECENT_MECHANICS_LIMIT,
) -> GameSnapshot:
    """Assemble the read view for a campaign.

    Args:
        db: State store.
        campaign_id: Campaign to read.
        new_discoveries: Hidden objects found earlier in this turn.
        recent_limit: Number of audit entries to include.

    Returns:
        Campaign state, party, current location with its active NPCs,
        the active encounter, recent audit entries (newest first) and
        the new discoveries.
    """
    state = db.get_or_create_game_state(campaign_id)
    location = None
    npcs = []
    if state.current_location_id is not None:
        location = db.get_location(state.current_location_id)
        if location is not None:
            npcs = db.get_npcs(campaign_id, location_id=location.id, active_only=True)

    return GameSnapshot(
        state=state,
        characters=db.get_party(campaign_id),
        current_location=location,
        npcs_present=npcs,
        active_encounter=db.get_active_encounter(campaign_id),
        recent_mechanics=db.get_recent_mechanics(campaign_id, limit=recent_limit),
        new_discoveries=list(new_discoveries or []),
    )


def summarize_snapshot(snapshot: GameSnapshot) -> dict[str, Any]:
    """Flatten a snapshot into the game-state payload returned to callers.

    Hidden audit entries and undiscovered hidden objects are left out.
    """
    location = snapshot.current_location
    encounter = snapshot.active_encounter
    current = encounter.current_combatant if encounter else None

    return {
        "campaign_id": snapshot.state.campaign_id,
        "mode": snapshot.state.mode.value,
        "in_game_time": snapshot.state.in_game_time,
        "turn_number": snapshot.state.turn_number,
        "session_number": snapshot.state.session_number,
        "party": [
            {
                "id": character.id,
                "name": character.name,
                "race": character.race,
                "character_class": character.character_class,
                "level": character.level,
                "current_hp": character.current_hp,
                "max_hp": character.max_hp,
                "armor_class": character.armor_class,
                "spell_slots": character.spell_slots,
            }
            for character in snapshot.characters
        ],
        "current_location": (
            {
                "id": location.id,
                "name": location.name,
                "description": location.description,
                "discovered_objects": [obj.name for obj in location.hidden_objects if obj.discovered],
            }
            if location
            else None
        ),
        "npcs_present": [
            {"id": npc.id, "name": npc.name, "npc_type": npc.npc_type, "disposition": npc.disposition}
            for npc in snapshot.npcs_present
        ],
        "encounter": (
            {
                "id": encounter.id,
                "round": encounter.current_round,
                "current_turn": current.name if current else None,
                "initiative_order": [entry.model_dump(mode="json") for entry in encounter.initiative_order],
            }
            if encounter
            else None
        ),
        "recent_events": [entry.summary for entry in snapshot.recent_mechanics if not entry.is_hidden],
    }


__all__ = [
    "build_snapshot",
    "summarize_snapshot",
]
