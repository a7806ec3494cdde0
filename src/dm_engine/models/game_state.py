"""Game state models for the turn engine.

Models:
    CampaignState: Per-campaign mode, location, clock and turn counter.
    InitiativeEntry: One combatant in an encounter's turn order.
    EncounterState: A combat encounter; at most one active per campaign.
    DeathSaveState: Death saving throw counters for a dying character.
    MechanicsResult: Tagged result returned by every resolver and tool.
    MechanicsLogEntry: Immutable audit record of a mechanical event.
    ConversationMessage: A line of the DM transcript.
    GameSnapshot: The read view a turn is narrated from.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from dm_engine.core.constants import MAX_DEATH_SAVES
from dm_engine.models.entities import CharacterState, HiddenObject, Location, Npc
from dm_engine.models.enums import CombatantType, GameMode, MechanicsEventType, MessageRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Campaign State
# =============================================================================


class CampaignState(BaseModel):
    """Mutable per-campaign game state.

    Attributes:
        campaign_id: Owning campaign.
        mode: Current game mode.
        current_location_id: Where the party is, if anywhere.
        in_game_time: Free-text clock label.
        turn_number: Monotonic turn counter, starts at 0.
        session_number: Session counter, starts at 1.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    campaign_id: int
    mode: GameMode = GameMode.EXPLORATION
    current_location_id: int | None = None
    in_game_time: str = "Day 1, Morning"
    turn_number: Annotated[int, Field(ge=0)] = 0
    session_number: Annotated[int, Field(ge=1)] = 1


# =============================================================================
# Encounters
# =============================================================================


class InitiativeEntry(BaseModel):
    """An entry in the initiative order.

    Party members use ids of the form ``pc_<character id>``; NPC
    combatants use the NPC id or a generated ``npc_enemy_<n>`` id.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    initiative: int
    type: CombatantType
    hp: Annotated[int, Field(ge=0)]
    max_hp: Annotated[int, Field(ge=1)]
    ac: Annotated[int, Field(ge=0)]
    conditions: list[str] = Field(default_factory=list)
    attack_bonus: int | None = None
    damage_dice: str | None = None


class EncounterState(BaseModel):
    """A combat encounter.

    Attributes:
        id: Encounter primary key.
        campaign_id: Owning campaign.
        initiative_order: Combatants, highest initiative first.
        current_round: Round number, starting at 1.
        current_turn_index: Index into initiative_order of who acts now.
        is_active: Only one encounter per campaign may be active.
    """

    model_config = ConfigDict(extra="forbid")

    id: int
    campaign_id: int
    initiative_order: list[InitiativeEntry] = Field(default_factory=list)
    current_round: Annotated[int, Field(ge=1)] = 1
    current_turn_index: Annotated[int, Field(ge=0)] = 0
    is_active: bool = True

    @property
    def current_combatant(self) -> InitiativeEntry | None:
        """Get the combatant whose turn it is."""
        if not self.initiative_order:
            return None
        return self.initiative_order[self.current_turn_index % len(self.initiative_order)]

    def find_combatant(self, combatant_id: str) -> InitiativeEntry | None:
        for entry in self.initiative_order:
            if entry.id == combatant_id:
                return entry
        return None


class DeathSaveState(BaseModel):
    """Death saving throw counters for one character."""

    model_config = ConfigDict(extra="forbid")

    character_id: int
    successes: Annotated[int, Field(ge=0, le=MAX_DEATH_SAVES)] = 0
    failures: Annotated[int, Field(ge=0, le=MAX_DEATH_SAVES)] = 0

    @computed_field
    @property
    def is_stable(self) -> bool:
        return self.successes >= MAX_DEATH_SAVES

    @computed_field
    @property
    def is_dead(self) -> bool:
        return self.failures >= MAX_DEATH_SAVES


# =============================================================================
# Mechanics
# =============================================================================


class MechanicsResult(BaseModel):
    """Tagged result of a resolver or tool execution.

    Mechanical failures (a missed attack, an empty spell slot) are
    ``success=False`` results, never exceptions. Tool-level problems such
    as an unknown character use ``type=error`` with ``details["error"]``
    holding a stable code.

    Attributes:
        type: Event tag.
        success: Whether the action succeeded.
        summary: One-line human summary.
        details: Structured, JSON-serialisable detail.
        is_hidden: Hidden results are never shown to the narrator as text.
    """

    model_config = ConfigDict(extra="forbid")

    type: MechanicsEventType
    success: bool
    summary: str
    details: dict[str, Any] = Field(default_factory=dict)
    is_hidden: bool = False

    @classmethod
    def error(cls, code: str, message: str, **extra: Any) -> "MechanicsResult":
        """Build a narratable error result.

        Args:
            code: Stable error code (e.g. ``character_not_found``).
            message: Human-readable explanation.
            **extra: Additional detail keys.

        Returns:
            A failed MechanicsResult tagged ``error``.
        """
        return cls(
            type=MechanicsEventType.ERROR,
            success=False,
            summary=message,
            details={"error": code, **extra},
        )


class MechanicsLogEntry(BaseModel):
    """Immutable audit record of a mechanical event."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: int
    campaign_id: int
    turn_number: int
    event_type: MechanicsEventType
    actor_id: str | None = None
    target_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    summary: str
    is_hidden: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


class ConversationMessage(BaseModel):
    """One line of the DM transcript."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: int
    campaign_id: int
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=_utcnow)


# =============================================================================
# Snapshot
# =============================================================================


class GameSnapshot(BaseModel):
    """Consistent read view of a campaign for one turn.

    The system prompt is assembled exclusively from this object.

    Attributes:
        state: Campaign state.
        characters: Party members.
        current_location: Where the party is, if set.
        npcs_present: Active NPCs at the current location.
        active_encounter: The active encounter, if any.
        recent_mechanics: Most recent audit entries, newest first.
        new_discoveries: Hidden objects discovered this turn.
    """

    model_config = ConfigDict(extra="forbid")

    state: CampaignState
    characters: list[CharacterState] = Field(default_factory=list)
    current_location: Location | None = None
    npcs_present: list[Npc] = Field(default_factory=list)
    active_encounter: EncounterState | None = None
    recent_mechanics: list[MechanicsLogEntry] = Field(default_factory=list)
    new_discoveries: list[HiddenObject] = Field(default_factory=list)


__all__ = [
    "CampaignState",
    "InitiativeEntry",
    "EncounterState",
    "DeathSaveState",
    "MechanicsResult",
    "MechanicsLogEntry",
    "ConversationMessage",
    "GameSnapshot",
]
