"""Storage module for the turn engine.

Provides SQLite-based storage for campaign state, characters, NPCs,
locations, encounters, the mechanics audit log, the DM transcript and
embedded memories, plus snapshot assembly over them.
"""

from dm_engine.storage.database import (
    Database,
    get_database,
)
from dm_engine.storage.snapshot import build_snapshot, summarize_snapshot

__all__ = [
    "Database",
    "get_database",
    "build_snapshot",
    "summarize_snapshot",
]
