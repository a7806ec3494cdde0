"""DM Engine - Mechanics-separated turn engine for an LLM Dungeon Master.

A player types free-text actions; the engine resolves every mechanical
outcome in Python and lets a language model narrate the results.

MECHANICS-SEPARATED ARCHITECTURE:
- Python owns TRUTH (campaign state, dice from a CSPRNG, rule resolution)
- LLMs handle INTERFACE (choosing which tools to call, narration)
- LLMs NEVER directly mutate state or generate random numbers

Example:
    >>> from dm_engine import DMEngine, configure_logging
    >>>
    >>> configure_logging(level="INFO")
    >>> engine = DMEngine.from_settings()
    >>> result = engine.interact("user-1", campaign_id=1, player_input="I search the room for traps")
    >>> print(result.narration)
    >>> for mechanic in result.visible_mechanics_results:
    ...     print(mechanic.summary)

Modules:
    core: Configuration, logging, and base exceptions.
    models: Pydantic V2 records (characters, NPCs, locations, encounters, memories).
    engine: Dice and rules resolvers.
    storage: SQLite state store and snapshot assembly.
    memory: Embeddings, semantic search, and post-turn ingestion.
    dm: Turn orchestrator, tool catalog, prompts, and the public DMEngine facade.
"""

from __future__ import annotations

# Core
from dm_engine.core.config import Settings, get_settings
from dm_engine.core.exceptions import DMEngineError
from dm_engine.core.logging import configure_logging, get_logger

# Models
from dm_engine.models import (
    CampaignState,
    CharacterState,
    EncounterState,
    GameSnapshot,
    Location,
    MechanicsResult,
    MemoryRecord,
    Npc,
)

# Engine
from dm_engine.engine.dice import DiceRoller
from dm_engine.engine.rules import (
    apply_hp_change,
    cast_spell,
    resolve_attack,
    resolve_saving_throw,
    resolve_skill_check,
)

# Storage & Memory
from dm_engine.storage import Database, build_snapshot
from dm_engine.memory import EmbeddingProvider, MemoryStore

# DM
from dm_engine.dm import DMEngine, DMOrchestrator, OpenAIChatClient, TurnResult


__version__ = "0.1.0"
__all__ = [
    # Version info
    "__version__",
    # Core
    "DMEngineError",
    "Settings",
    "get_settings",
    "configure_logging",
    "get_logger",
    # Models
    "CampaignState",
    "CharacterState",
    "EncounterState",
    "GameSnapshot",
    "Location",
    "MechanicsResult",
    "MemoryRecord",
    "Npc",
    # Engine
    "DiceRoller",
    "resolve_skill_check",
    "resolve_saving_throw",
    "resolve_attack",
    "apply_hp_change",
    "cast_spell",
    # Storage & Memory
    "Database",
    "build_snapshot",
    "EmbeddingProvider",
    "MemoryStore",
    # DM
    "DMEngine",
    "DMOrchestrator",
    "OpenAIChatClient",
    "TurnResult",
]
