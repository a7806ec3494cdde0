"""Long-term memory models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from dm_engine.core.constants import MAX_IMPORTANCE_BOOST
from dm_engine.models.enums import MemoryType


class MemoryRecord(BaseModel):
    """An embedded piece of campaign history.

    Only ``importance_boost`` may change after creation; records can
    otherwise only be deleted.

    Attributes:
        id: Memory primary key.
        campaign_id: Owning campaign.
        content: Full text that was embedded.
        summary: Short summary for listings.
        embedding: Fixed-dimension vector. Excluded from serialisation.
        memory_type: Category of the memory.
        session_number: Session the memory came from, if known.
        turn_number: Turn the memory came from, if known.
        source_type: Kind of record this memory was derived from.
        source_id: Id of that record.
        importance_boost: Ranking bonus, 0..10.
        tags: Free-form tags (usually proper nouns).
        created_at: Creation timestamp.
    """

    model_config = ConfigDict(extra="forbid")

    id: int
    campaign_id: int
    content: str = Field(min_length=1)
    summary: str = ""
    embedding: list[float] = Field(default_factory=list, repr=False, exclude=True)
    memory_type: MemoryType
    session_number: int | None = None
    turn_number: int | None = None
    source_type: str | None = None
    source_id: int | None = None
    importance_boost: Annotated[int, Field(ge=0, le=MAX_IMPORTANCE_BOOST)] = 0
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MemorySearchResult(BaseModel):
    """A memory paired with its importance-adjusted similarity."""

    model_config = ConfigDict(extra="forbid")

    memory: MemoryRecord
    similarity: Annotated[float, Field(ge=-1.0, le=1.0)]


__all__ = [
    "MemoryRecord",
    "MemorySearchResult",
]
