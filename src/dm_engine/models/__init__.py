"""Pydantic V2 schemas for the DM turn engine.

Submodules:
    enums: Enumeration types (Ability, Skill, GameMode, MemoryType, ...)
    entities: Campaign, CharacterState, Npc, Location
    game_state: CampaignState, EncounterState, MechanicsResult, GameSnapshot
    memory: MemoryRecord, MemorySearchResult
"""

from __future__ import annotations

# =============================================================================
# Enumerations
# =============================================================================
from dm_engine.models.enums import (
    SKILL_ABILITIES,
    Ability,
    CombatantType,
    GameMode,
    HiddenObjectType,
    MechanicsEventType,
    MemoryType,
    MessageRole,
    Skill,
)

# =============================================================================
# Entities
# =============================================================================
from dm_engine.models.entities import (
    AbilityScores,
    Campaign,
    CharacterState,
    HiddenObject,
    Location,
    Npc,
    NpcCombatStats,
)

# =============================================================================
# Game State
# =============================================================================
from dm_engine.models.game_state import (
    CampaignState,
    ConversationMessage,
    DeathSaveState,
    EncounterState,
    GameSnapshot,
    InitiativeEntry,
    MechanicsLogEntry,
    MechanicsResult,
)

# =============================================================================
# Memory
# =============================================================================
from dm_engine.models.memory import MemoryRecord, MemorySearchResult


__all__ = [
    # Enums
    "Ability",
    "Skill",
    "SKILL_ABILITIES",
    "GameMode",
    "CombatantType",
    "HiddenObjectType",
    "MechanicsEventType",
    "MemoryType",
    "MessageRole",
    # Entities
    "Campaign",
    "AbilityScores",
    "CharacterState",
    "NpcCombatStats",
    "Npc",
    "HiddenObject",
    "Location",
    # Game state
    "CampaignState",
    "InitiativeEntry",
    "EncounterState",
    "DeathSaveState",
    "MechanicsResult",
    "MechanicsLogEntry",
    "ConversationMessage",
    "GameSnapshot",
    # Memory
    "MemoryRecord",
    "MemorySearchResult",
]
