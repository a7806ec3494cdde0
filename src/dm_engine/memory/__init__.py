"""Semantic long-term memory.

Embedding, similarity search, the post-turn ingestion filter and the
background runner that keeps ingestion off the player's critical path.
"""

from __future__ import annotations

from dm_engine.memory.background import BackgroundTaskRunner
from dm_engine.memory.embeddings import EmbeddingProvider, EmbeddingService, cosine_similarity
from dm_engine.memory.pipeline import MemoryPipeline, TurnRecord, extract_tags, is_memorable
from dm_engine.memory.store import (
    MemoryDraft,
    MemoryStore,
    adjusted_similarity,
    format_memories_for_context,
)


__all__ = [
    "EmbeddingService",
    "EmbeddingProvider",
    "cosine_similarity",
    "MemoryDraft",
    "MemoryStore",
    "adjusted_similarity",
    "format_memories_for_context",
    "TurnRecord",
    "MemoryPipeline",
    "extract_tags",
    "is_memorable",
    "BackgroundTaskRunner",
]
