"""Entity models: campaigns, characters, NPCs and locations.

These are the typed shapes of rows in the state store. Variant-shaped
fields (skills, spell slots, hidden objects, combat stats) are explicit
models so that they are validated every time a row is read or written.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dm_engine.core.constants import MAX_DISPOSITION, MAX_GOAL_PROGRESS, MIN_DISPOSITION
from dm_engine.models.enums import Ability, HiddenObjectType


AbilityScore = Annotated[int, Field(ge=1, le=30)]


# =============================================================================
# Campaign
# =============================================================================


class Campaign(BaseModel):
    """A campaign row as seen through the campaign directory.

    Attributes:
        id: Campaign primary key.
        user_id: Owner of the campaign.
        name: Display name.
        description: Optional pitch or setting notes.
    """

    model_config = ConfigDict(extra="forbid")

    id: int
    user_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""


# =============================================================================
# Characters
# =============================================================================


class AbilityScores(BaseModel):
    """The six raw ability scores."""

    model_config = ConfigDict(extra="forbid")

    strength: AbilityScore = 10
    dexterity: AbilityScore = 10
    constitution: AbilityScore = 10
    intelligence: AbilityScore = 10
    wisdom: AbilityScore = 10
    charisma: AbilityScore = 10

    def score(self, ability: Ability) -> int:
        """Get the raw score for an ability."""
        return getattr(self, ability.value)


class CharacterState(BaseModel):
    """A party member's mechanical state.

    The engine writes back only hit points, spell slots and equipment;
    everything else is owned by the character-authoring collaborator.

    Attributes:
        id: Character primary key.
        campaign_id: Owning campaign.
        name: Character name.
        race: Race label.
        character_class: Class label.
        level: Character level (1-20).
        abilities: Raw ability scores.
        current_hp: Current hit points, within [0, max_hp].
        max_hp: Maximum hit points.
        armor_class: Armor class.
        speed: Walking speed in feet.
        skills: Skill proficiency flags keyed by skill name.
        saving_throws: Save proficiency flags keyed by ability name.
        spells: Known leveled spells.
        cantrips: Known cantrips.
        spell_slots: Remaining slots keyed by spell level.
        equipment: Carried items.
        features: Class and race features.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: int
    campaign_id: int
    name: str = Field(min_length=1)
    race: str = ""
    character_class: str = ""
    level: Annotated[int, Field(ge=1, le=20)] = 1
    abilities: AbilityScores = Field(default_factory=AbilityScores)
    current_hp: Annotated[int, Field(ge=0)] = 10
    max_hp: Annotated[int, Field(ge=1)] = 10
    armor_class: Annotated[int, Field(ge=0)] = 10
    speed: Annotated[int, Field(ge=0)] = 30
    skills: dict[str, bool] = Field(default_factory=dict)
    saving_throws: dict[str, bool] = Field(default_factory=dict)
    spells: list[str] = Field(default_factory=list)
    cantrips: list[str] = Field(default_factory=list)
    spell_slots: dict[int, Annotated[int, Field(ge=0)]] = Field(default_factory=dict)
    equipment: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_hp(self) -> "CharacterState":
        """Ensure current HP does not exceed maximum."""
        if self.current_hp > self.max_hp:
            raise ValueError(f"current_hp ({self.current_hp}) cannot exceed max_hp ({self.max_hp})")
        return self

    def is_proficient(self, skill: str) -> bool:
        return bool(self.skills.get(skill, False))

    def is_save_proficient(self, ability: Ability) -> bool:
        return bool(self.saving_throws.get(ability.value, False))


# =============================================================================
# NPCs
# =============================================================================


class NpcCombatStats(BaseModel):
    """Optional combat block for an NPC."""

    model_config = ConfigDict(extra="forbid")

    armor_class: Annotated[int, Field(ge=0)] = 10
    max_hp: Annotated[int, Field(ge=1)] = 10
    current_hp: Annotated[int, Field(ge=0)] | None = None
    attack_bonus: int = 0
    damage_dice: str = "1d6"
    dexterity: AbilityScore | None = None


class Npc(BaseModel):
    """A non-player character.

    Attributes:
        id: NPC primary key.
        campaign_id: Owning campaign.
        name: NPC name.
        description: Appearance and role.
        personality: Personality notes for the narrator.
        npc_type: Free-form tag (merchant, guard, villain, ...).
        disposition: Attitude towards the party, -100..100.
        current_goal: What the NPC is working towards, if anything.
        goal_progress: Progress towards the goal, 0..100; never decreases.
        combat_stats: Optional combat block.
        location_id: Where the NPC currently is.
        is_active: Inactive NPCs are hidden from snapshots.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: int
    campaign_id: int
    name: str = Field(min_length=1)
    description: str = ""
    personality: str = ""
    npc_type: str = "neutral"
    disposition: Annotated[int, Field(ge=MIN_DISPOSITION, le=MAX_DISPOSITION)] = 0
    current_goal: str | None = None
    goal_progress: Annotated[int, Field(ge=0, le=MAX_GOAL_PROGRESS)] = 0
    combat_stats: NpcCombatStats | None = None
    location_id: int | None = None
    is_active: bool = True

    @property
    def has_open_goal(self) -> bool:
        """Whether the NPC has a goal that can still advance."""
        return bool(self.current_goal) and self.goal_progress < MAX_GOAL_PROGRESS


# =============================================================================
# Locations
# =============================================================================


class HiddenObject(BaseModel):
    """Something hidden at a location, found only by passive checks."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    dc: Annotated[int, Field(ge=1, le=30)]
    type: HiddenObjectType = HiddenObjectType.OTHER
    description: str = ""
    discovered: bool = False


class Location(BaseModel):
    """A place the party can be.

    Attributes:
        id: Location primary key.
        campaign_id: Owning campaign.
        name: Location name.
        description: Read-aloud description.
        location_type: Free-form tag (dungeon, town, wilderness, ...).
        hidden_objects: Hidden content; discovery is one-way.
        connections: Ids of reachable locations.
        is_visited: Whether the party has been here.
    """

    model_config = ConfigDict(extra="forbid")

    id: int
    campaign_id: int
    name: str = Field(min_length=1)
    description: str = ""
    location_type: str = ""
    hidden_objects: list[HiddenObject] = Field(default_factory=list)
    connections: list[int] = Field(default_factory=list)
    is_visited: bool = False

    @field_validator("hidden_objects")
    @classmethod
    def validate_unique_names(cls, v: list[HiddenObject]) -> list[HiddenObject]:
        """Hidden objects are addressed by name, so names must be unique."""
        names = [obj.name for obj in v]
        if len(names) != len(set(names)):
            raise ValueError("Hidden object names must be unique within a location")
        return v

    @property
    def undiscovered_objects(self) -> list[HiddenObject]:
        return [obj for obj in self.hidden_objects if not obj.discovered]


__all__ = [
    "Campaign",
    "AbilityScores",
    "CharacterState",
    "NpcCombatStats",
    "Npc",
    "HiddenObject",
    "Location",
]
