"""Semantic memory store.

Memories are kept in the state store alongside their embeddings. Search
loads every memory of a campaign and ranks it by cosine similarity plus
a small importance bonus; campaigns hold at most a few thousand
memories, so a brute-force pass is fast enough.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from dm_engine.core.config import MemorySettings, get_settings
from dm_engine.core.exceptions import EmbeddingError, MemoryStoreError, PersistenceError
from dm_engine.core.logging import get_logger
from dm_engine.memory.embeddings import EmbeddingService, cosine_similarity
from dm_engine.models.enums import MemoryType
from dm_engine.models.memory import MemoryRecord, MemorySearchResult
from dm_engine.storage.database import Database


logger = get_logger(__name__)


@dataclass
class MemoryDraft:
    """A memory waiting to be embedded."""

    content: str
    memory_type: MemoryType
    summary: str | None = None
    session_number: int | None = None
    turn_number: int | None = None
    source_type: str | None = None
    source_id: int | None = None
    importance_boost: int = 0
    tags: list[str] = field(default_factory=list)


class MemoryStore:
    """Embeds, stores and searches campaign memories.

    Example:
        >>> store = MemoryStore(db, EmbeddingProvider())
        >>> store.embed_and_store(1, "The party met Mira.", MemoryType.NPC_INTERACTION)
        >>> store.search_memories(1, "who is Mira?")
    """

    def __init__(
        self,
        db: Database,
        embedder: EmbeddingService,
        *,
        settings: MemorySettings | None = None,
    ) -> None:
        self._db = db
        self._embedder = embedder
        self._settings = settings or get_settings().memory

    def _summarize(self, content: str) -> str:
        return content.strip()[: self._settings.summary_length]

    def embed_and_store(
        self,
        campaign_id: int,
        content: str,
        memory_type: MemoryType,
        *,
        summary: str | None = None,
        session_number: int | None = None,
        turn_number: int | None = None,
        source_type: str | None = None,
        source_id: int | None = None,
        importance_boost: int = 0,
        tags: list[str] | None = None,
    ) -> MemoryRecord:
        """Embed a piece of text and persist it as a memory.

        Args:
            campaign_id: Owning campaign.
            content: Text to remember.
            memory_type: Memory category.
            summary: Short summary; defaults to the first 200 characters.
            session_number: Session the memory came from.
            turn_number: Turn the memory came from.
            source_type: Kind of record the memory was derived from.
            source_id: Id of that record.
            importance_boost: Ranking bonus, 0..10.
            tags: Free-form tags.

        Returns:
            The stored memory.

        Raises:
            EmbeddingError: If the text cannot be embedded.
            MemoryStoreError: If the memory cannot be persisted.
        """
        draft = MemoryDraft(
            content=content,
            memory_type=memory_type,
            summary=summary,
            session_number=session_number,
            turn_number=turn_number,
            source_type=source_type,
            source_id=source_id,
            importance_boost=importance_boost,
            tags=list(tags or []),
        )
        vector = self._embedder.embed_text(content)
        return self._persist(campaign_id, draft, vector)

    def batch_embed_and_store(self, campaign_id: int, drafts: Sequence[MemoryDraft]) -> list[MemoryRecord]:
        """Embed several memories with a single embedding call."""
        if not drafts:
            return []
        vectors = self._embedder.embed_texts([draft.content for draft in drafts])
        return [self._persist(campaign_id, draft, vector) for draft, vector in zip(drafts, vectors)]

    def _persist(self, campaign_id: int, draft: MemoryDraft, vector: list[float]) -> MemoryRecord:
        try:
            record = self._db.insert_memory(
                campaign_id,
                content=draft.content,
                summary=draft.summary or self._summarize(draft.content),
                embedding=vector,
                memory_type=draft.memory_type,
                session_number=draft.session_number,
                turn_number=draft.turn_number,
                source_type=draft.source_type,
                source_id=draft.source_id,
                importance_boost=draft.importance_boost,
                tags=draft.tags,
            )
        except PersistenceError as exc:
            raise MemoryStoreError(f"Failed to store memory: {exc.message}", details=exc.details) from exc

        logger.debug(
            "Stored memory",
            campaign_id=campaign_id,
            memory_id=record.id,
            memory_type=record.memory_type,
        )
        return record

    def search_memories(
        self,
        campaign_id: int,
        query: str,
        *,
        top_k: int | None = None,
        threshold: float | None = None,
        memory_types: Sequence[MemoryType] | None = None,
    ) -> list[MemorySearchResult]:
        """Find the memories most similar to a query.

        Each memory scores ``cosine + importance_boost * weight``, capped at
        1.0. Scores below ``threshold`` are dropped and the best ``top_k``
        are returned, highest first.

        Args:
            campaign_id: Campaign to search.
            query: Free-text query.
            top_k: Maximum results; defaults to the configured value.
            threshold: Minimum adjusted similarity; defaults to the configured value.
            memory_types: Restrict to these types.

        Returns:
            Ranked search results.

        Raises:
            EmbeddingError: If the query cannot be embedded.
        """
        top_k = self._settings.top_k if top_k is None else top_k
        threshold = self._settings.similarity_threshold if threshold is None else threshold

        records = self._db.list_memories(campaign_id, memory_types=memory_types, with_embeddings=True)
        if not records:
            return []

        query_vector = self._embedder.embed_text(query)
        results: list[MemorySearchResult] = []
        for record in records:
            similarity = adjusted_similarity(
                cosine_similarity(query_vector, record.embedding),
                record.importance_boost,
                weight=self._settings.importance_weight,
            )
            if similarity < threshold:
                continue
            results.append(
                MemorySearchResult(
                    memory=record.model_copy(update={"embedding": []}),
                    similarity=similarity,
                )
            )

        results.sort(key=lambda result: result.similarity, reverse=True)
        return results[:top_k]

    def retrieve_context(self, campaign_id: int, query: str) -> str:
        """Search and format memories for a prompt, absorbing any failure.

        Returns:
            The formatted memory block, or an empty string when nothing
            relevant was found or retrieval failed.
        """
        try:
            results = self.search_memories(campaign_id, query)
        except (EmbeddingError, MemoryStoreError, PersistenceError) as exc:
            logger.warning("Memory retrieval failed", campaign_id=campaign_id, error=str(exc))
            return ""
        return format_memories_for_context(results)


def adjusted_similarity(similarity: float, importance_boost: int, *, weight: float) -> float:
    """Add the importance bonus to a similarity, capped at 1.0."""
    return max(-1.0, min(1.0, similarity + importance_boost * weight))


def format_memories_for_context(results: Sequence[MemorySearchResult]) -> str:
    """Render search results as a system-prompt block.

    Returns an empty string when there are no results.
    """
    if not results:
        return ""

    lines = [
        "",
        "RELEVANT MEMORIES (from past sessions and events):",
        "Use these to maintain consistency and recall past events accurately.",
        "",
    ]
    for index, result in enumerate(results, start=1):
        memory = result.memory
        session = f" (Session {memory.session_number})" if memory.session_number is not None else ""
        relevance = round(result.similarity * 100)
        lines.append(f"[Memory {index} - {memory.memory_type.label}{session} - {relevance}% relevant]")
        lines.append(memory.content)
        lines.append("")
    return "\n".join(lines) + "\n"


__all__ = [
    "MemoryDraft",
    "MemoryStore",
    "adjusted_similarity",
    "format_memories_for_context",
]
