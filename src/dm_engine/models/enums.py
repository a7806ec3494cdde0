"""Enumeration types for the DM turn engine.

Ability scores and skills, game modes, combatant and hidden-object tags,
mechanics event types, and the closed set of memory types.
"""

from __future__ import annotations

from enum import StrEnum


class Ability(StrEnum):
    """The six ability scores."""

    STR = "strength"
    DEX = "dexterity"
    CON = "constitution"
    INT = "intelligence"
    WIS = "wisdom"
    CHA = "charisma"

    @property
    def full_name(self) -> str:
        """Get the full name of the ability (e.g., 'Strength')."""
        return self.value.capitalize()


class Skill(StrEnum):
    """Skills and their associated abilities."""

    # Strength skills
    ATHLETICS = "athletics"

    # Dexterity skills
    ACROBATICS = "acrobatics"
    SLEIGHT_OF_HAND = "sleight_of_hand"
    STEALTH = "stealth"

    # Intelligence skills
    ARCANA = "arcana"
    HISTORY = "history"
    INVESTIGATION = "investigation"
    NATURE = "nature"
    RELIGION = "religion"

    # Wisdom skills
    ANIMAL_HANDLING = "animal_handling"
    INSIGHT = "insight"
    MEDICINE = "medicine"
    PERCEPTION = "perception"
    SURVIVAL = "survival"

    # Charisma skills
    DECEPTION = "deception"
    INTIMIDATION = "intimidation"
    PERFORMANCE = "performance"
    PERSUASION = "persuasion"

    @property
    def ability(self) -> Ability:
        """Get the ability this skill is rolled with."""
        return SKILL_ABILITIES[self]

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


SKILL_ABILITIES: dict[Skill, Ability] = {
    Skill.ATHLETICS: Ability.STR,
    Skill.ACROBATICS: Ability.DEX,
    Skill.SLEIGHT_OF_HAND: Ability.DEX,
    Skill.STEALTH: Ability.DEX,
    Skill.ARCANA: Ability.INT,
    Skill.HISTORY: Ability.INT,
    Skill.INVESTIGATION: Ability.INT,
    Skill.NATURE: Ability.INT,
    Skill.RELIGION: Ability.INT,
    Skill.ANIMAL_HANDLING: Ability.WIS,
    Skill.INSIGHT: Ability.WIS,
    Skill.MEDICINE: Ability.WIS,
    Skill.PERCEPTION: Ability.WIS,
    Skill.SURVIVAL: Ability.WIS,
    Skill.DECEPTION: Ability.CHA,
    Skill.INTIMIDATION: Ability.CHA,
    Skill.PERFORMANCE: Ability.CHA,
    Skill.PERSUASION: Ability.CHA,
}


class GameMode(StrEnum):
    """What the party is currently doing."""

    EXPLORATION = "exploration"
    COMBAT = "combat"
    SOCIAL = "social"
    REST = "rest"


class CombatantType(StrEnum):
    """Side of an initiative entry."""

    PC = "pc"
    NPC = "npc"


class HiddenObjectType(StrEnum):
    """Kinds of hidden content a location can hold."""

    TRAP = "trap"
    SECRET_DOOR = "secret_door"
    HIDDEN_ITEM = "hidden_item"
    CLUE = "clue"
    OTHER = "other"

    @property
    def detection_skill(self) -> Skill:
        """Clues and secret doors are found by investigation, the rest by perception."""
        if self in (HiddenObjectType.CLUE, HiddenObjectType.SECRET_DOOR):
            return Skill.INVESTIGATION
        return Skill.PERCEPTION


class MechanicsEventType(StrEnum):
    """Tag carried by every mechanics result and audit-log entry."""

    SKILL_CHECK = "skill_check"
    SAVING_THROW = "saving_throw"
    ATTACK = "attack"
    SPELL_CAST = "spell_cast"
    HP_CHANGE = "hp_change"
    INITIATIVE_ROLL = "initiative_roll"
    PASSIVE_CHECK = "passive_check"
    DEATH_SAVE = "death_save"
    NPC_GOAL_ADVANCE = "npc_goal_advance"
    DICE_ROLL = "dice_roll"
    TURN_ADVANCE = "turn_advance"
    COMBAT_END = "combat_end"
    LOCATION_CHANGE = "location_change"
    NPC_CREATED = "npc_created"
    TIME_ADVANCE = "time_advance"
    ERROR = "error"


class MemoryType(StrEnum):
    """Closed set of long-term memory categories."""

    SESSION_NARRATION = "session_narration"
    PLAYER_ACTION = "player_action"
    NPC_INTERACTION = "npc_interaction"
    COMBAT_EVENT = "combat_event"
    LOCATION_DISCOVERY = "location_discovery"
    PLOT_POINT = "plot_point"
    ITEM_EVENT = "item_event"
    LORE = "lore"
    CONTEXT_ENTRY = "context_entry"
    CHARACTER_MOMENT = "character_moment"

    @property
    def label(self) -> str:
        """Human-readable label used in prompt context blocks."""
        return self.value.replace("_", " ")


class MessageRole(StrEnum):
    """Author of a transcript message."""

    USER = "user"
    ASSISTANT = "assistant"


__all__ = [
    "Ability",
    "Skill",
    "SKILL_ABILITIES",
    "GameMode",
    "CombatantType",
    "HiddenObjectType",
    "MechanicsEventType",
    "MemoryType",
    "MessageRole",
]
