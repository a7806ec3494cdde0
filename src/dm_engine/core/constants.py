"""Engine-wide constants for the DM turn engine.

This module defines rule constants and tuning defaults used throughout
the engine. Tunable values are mirrored in the settings classes; the
constants here are the defaults those settings start from.
"""

from __future__ import annotations

# =============================================================================
# Rules Constants
# =============================================================================

PASSIVE_SCORE_BASE = 10
"""Base value for passive scores (10 + skill bonus)."""

DEATH_SAVE_THRESHOLD = 10
"""Minimum natural roll for a successful death saving throw."""

MAX_DEATH_SAVES = 3
"""Death saves needed to stabilize (successes) or die (failures)."""

MAX_GOAL_PROGRESS = 100
"""NPC goal progress ceiling; reaching it completes the goal."""

MIN_DISPOSITION = -100
MAX_DISPOSITION = 100

MAX_DICE_PER_ROLL = 100
"""Dice notation asking for more dice than this is treated as malformed."""

# =============================================================================
# Turn Engine Defaults
# =============================================================================

MAX_TOOL_ITERATIONS = 10
"""Hard cap on model round trips inside one turn."""

NPC_GOAL_INTERVAL = 3
"""NPC goals drift on every turn divisible by this number."""

NPC_GOAL_INCREMENT = 10
"""Progress added to each active NPC goal per drift."""

RECENT_MECHANICS_LIMIT = 10
"""Number of audit-log entries included in a snapshot."""

PROMPT_RECENT_EVENTS = 5
"""Number of recent log entries rendered into the system prompt."""

HISTORY_LIMIT = 10
"""Number of transcript messages sent as conversation history."""

FALLBACK_NARRATION = "The dungeon master takes a moment to gather their thoughts..."
"""Narration returned when the tool loop exhausts its iteration cap."""

EMPTY_NARRATION = "The dungeon master ponders the situation..."
"""Narration used when the model ends the loop without any text."""

# Defaults applied to enemies declared by start_combat without full stats
DEFAULT_ENEMY_AC = 12
DEFAULT_ENEMY_MAX_HP = 10
DEFAULT_ENEMY_ATTACK_BONUS = 3
DEFAULT_ENEMY_DAMAGE_DICE = "1d6+1"
DEFAULT_SPEED = 30

# =============================================================================
# Memory Defaults
# =============================================================================

EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIMENSION = 1536

DEFAULT_TOP_K = 8
MAX_TOP_K = 20
DEFAULT_SIMILARITY_THRESHOLD = 0.3

IMPORTANCE_WEIGHT = 0.02
"""Similarity added per point of importance boost."""

MAX_IMPORTANCE_BOOST = 10

MAX_EMBED_LENGTH = 8000
"""Texts longer than this are truncated before embedding."""

SUMMARY_LENGTH = 200
"""Length of the auto-generated memory summary."""

MIN_PLAYER_INPUT_LENGTH = 10
"""Player input must be longer than this to be remembered."""

MAX_TAGS = 5


__all__ = [
    # Rules
    "PASSIVE_SCORE_BASE",
    "DEATH_SAVE_THRESHOLD",
    "MAX_DEATH_SAVES",
    "MAX_GOAL_PROGRESS",
    "MIN_DISPOSITION",
    "MAX_DISPOSITION",
    "MAX_DICE_PER_ROLL",
    # Turn engine
    "MAX_TOOL_ITERATIONS",
    "NPC_GOAL_INTERVAL",
    "NPC_GOAL_INCREMENT",
    "RECENT_MECHANICS_LIMIT",
    "PROMPT_RECENT_EVENTS",
    "HISTORY_LIMIT",
    "FALLBACK_NARRATION",
    "EMPTY_NARRATION",
    "DEFAULT_ENEMY_AC",
    "DEFAULT_ENEMY_MAX_HP",
    "DEFAULT_ENEMY_ATTACK_BONUS",
    "DEFAULT_ENEMY_DAMAGE_DICE",
    "DEFAULT_SPEED",
    # Memory
    "EMBEDDING_MODEL",
    "EMBEDDING_DIMENSION",
    "DEFAULT_TOP_K",
    "MAX_TOP_K",
    "DEFAULT_SIMILARITY_THRESHOLD",
    "IMPORTANCE_WEIGHT",
    "MAX_IMPORTANCE_BOOST",
    "MAX_EMBED_LENGTH",
    "SUMMARY_LENGTH",
    "MIN_PLAYER_INPUT_LENGTH",
    "MAX_TAGS",
]
