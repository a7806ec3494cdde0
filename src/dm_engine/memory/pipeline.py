"""Memory ingestion.

Decides what from a finished turn is worth remembering and embeds it.
Narration is always kept, player input only when it says something, and
mechanics only when they are dramatic: critical hits, kills, natural 20s
and 1s on checks and saves, spell casts, combat starting or ending, and
moving to a new place.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from dm_engine.core.constants import MAX_TAGS, MIN_PLAYER_INPUT_LENGTH
from dm_engine.core.exceptions import DMEngineError
from dm_engine.core.logging import get_logger
from dm_engine.memory.store import MemoryDraft, MemoryStore
from dm_engine.models.enums import MechanicsEventType, MemoryType
from dm_engine.models.game_state import MechanicsResult
from dm_engine.models.memory import MemoryRecord


logger = get_logger(__name__)

PROPER_NOUN_PATTERN = re.compile(r"\b[A-Z][a-z]{2,}\b")

_NAME_KEYS = (
    "character_name",
    "attacker_name",
    "target_name",
    "caster_name",
    "spell_name",
    "npc_name",
    "location_name",
    "skill",
)


@dataclass
class TurnRecord:
    """Everything ingestion needs to know about a finished turn."""

    campaign_id: int
    turn_number: int
    session_number: int
    player_input: str
    narration: str
    mechanics_results: list[MechanicsResult] = field(default_factory=list)


def extract_tags(text: str, limit: int = MAX_TAGS) -> list[str]:
    """Pull capitalised words (likely proper nouns) out of text, in order, unique."""
    tags: list[str] = []
    for word in PROPER_NOUN_PATTERN.findall(text):
        if word not in tags:
            tags.append(word)
        if len(tags) >= limit:
            break
    return tags


def mechanics_tags(result: MechanicsResult, limit: int = MAX_TAGS) -> list[str]:
    """Tags taken from the names in a result's details."""
    tags: list[str] = []
    for key in _NAME_KEYS:
        value = result.details.get(key)
        if isinstance(value, str) and value and value not in tags:
            tags.append(value)
    return tags[:limit]


def _is_kill(result: MechanicsResult) -> bool:
    details = result.details
    if result.type == MechanicsEventType.ATTACK:
        return bool(details.get("target_defeated"))
    if result.type == MechanicsEventType.HP_CHANGE:
        return bool(details.get("is_dead"))
    return False


def is_memorable(result: MechanicsResult) -> bool:
    """Whether a mechanics result deserves a long-term memory."""
    details = result.details
    match result.type:
        case MechanicsEventType.ATTACK:
            return bool(details.get("is_critical")) or _is_kill(result)
        case MechanicsEventType.HP_CHANGE:
            return _is_kill(result)
        case MechanicsEventType.SKILL_CHECK | MechanicsEventType.SAVING_THROW:
            return bool(details.get("is_critical") or details.get("is_critical_fail"))
        case MechanicsEventType.SPELL_CAST:
            return result.success
        case (
            MechanicsEventType.INITIATIVE_ROLL
            | MechanicsEventType.COMBAT_END
            | MechanicsEventType.LOCATION_CHANGE
        ):
            return True
        case _:
            return False


def importance_for(result: MechanicsResult) -> int:
    """Importance boost for a memorable result.

    Critical hit 3, kill 2, natural 20 2, natural 1 1, combat start/end 1.
    When several apply the highest wins.
    """
    details = result.details
    scores = [0]
    if result.type == MechanicsEventType.ATTACK and details.get("is_critical"):
        scores.append(3)
    if _is_kill(result):
        scores.append(2)
    if result.type in (MechanicsEventType.SKILL_CHECK, MechanicsEventType.SAVING_THROW):
        if details.get("is_critical"):
            scores.append(2)
        if details.get("is_critical_fail"):
            scores.append(1)
    if result.type in (MechanicsEventType.INITIATIVE_ROLL, MechanicsEventType.COMBAT_END):
        scores.append(1)
    return max(scores)


def memory_type_for(result: MechanicsResult) -> MemoryType:
    if result.type == MechanicsEventType.LOCATION_CHANGE:
        return MemoryType.LOCATION_DISCOVERY
    if result.type in (MechanicsEventType.SKILL_CHECK, MechanicsEventType.SAVING_THROW):
        return MemoryType.CHARACTER_MOMENT
    return MemoryType.COMBAT_EVENT


class MemoryPipeline:
    """Turns finished turns and authoring events into memories."""

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    def drafts_for_turn(self, turn: TurnRecord) -> list[MemoryDraft]:
        """Select what to remember from a turn, without embedding anything."""
        prefix = f"[Turn {turn.turn_number}]"
        common = {"session_number": turn.session_number, "turn_number": turn.turn_number}
        drafts: list[MemoryDraft] = []

        narration = turn.narration.strip()
        if narration:
            drafts.append(
                MemoryDraft(
                    content=f"{prefix} DM: {narration}",
                    memory_type=MemoryType.SESSION_NARRATION,
                    source_type="narration",
                    tags=extract_tags(narration),
                    **common,
                )
            )

        player_input = turn.player_input.strip()
        if len(player_input) > MIN_PLAYER_INPUT_LENGTH:
            drafts.append(
                MemoryDraft(
                    content=f"{prefix} Player: {player_input}",
                    memory_type=MemoryType.PLAYER_ACTION,
                    source_type="player_input",
                    tags=extract_tags(player_input),
                    **common,
                )
            )

        for result in turn.mechanics_results:
            if not is_memorable(result):
                continue
            drafts.append(
                MemoryDraft(
                    content=f"{prefix} {result.summary}",
                    memory_type=memory_type_for(result),
                    source_type=result.type.value,
                    importance_boost=importance_for(result),
                    tags=mechanics_tags(result),
                    **common,
                )
            )
        return drafts

    def ingest_turn(self, turn: TurnRecord) -> list[MemoryRecord]:
        """Embed and store a turn's memorable content.

        Each item is embedded on its own; a failure is logged and the item
        skipped, so one bad call never loses the rest of the turn.

        Returns:
            The memories that were stored.
        """
        stored: list[MemoryRecord] = []
        for draft in self.drafts_for_turn(turn):
            record = self._store_one(turn.campaign_id, draft)
            if record is not None:
                stored.append(record)

        logger.info(
            "Turn ingested into memory",
            campaign_id=turn.campaign_id,
            turn_number=turn.turn_number,
            stored=len(stored),
        )
        return stored

    def _store_one(self, campaign_id: int, draft: MemoryDraft) -> MemoryRecord | None:
        try:
            return self._store.embed_and_store(
                campaign_id,
                draft.content,
                draft.memory_type,
                summary=draft.summary,
                session_number=draft.session_number,
                turn_number=draft.turn_number,
                source_type=draft.source_type,
                source_id=draft.source_id,
                importance_boost=draft.importance_boost,
                tags=draft.tags,
            )
        except DMEngineError as exc:
            logger.warning(
                "Skipping memory after embedding failure",
                campaign_id=campaign_id,
                memory_type=draft.memory_type,
                error=str(exc),
            )
            return None
        except Exception as exc:
            logger.error(
                "Skipping memory after unexpected failure",
                campaign_id=campaign_id,
                memory_type=draft.memory_type,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

    def embed_npc_event(
        self,
        campaign_id: int,
        npc_name: str,
        event: str,
        *,
        npc_id: int | None = None,
        session_number: int | None = None,
        turn_number: int | None = None,
    ) -> MemoryRecord | None:
        """Remember something an NPC did or that happened to them."""
        return self._store_one(
            campaign_id,
            MemoryDraft(
                content=f"NPC {npc_name}: {event}",
                memory_type=MemoryType.NPC_INTERACTION,
                session_number=session_number,
                turn_number=turn_number,
                source_type="npc",
                source_id=npc_id,
                importance_boost=1,
                tags=[npc_name, *extract_tags(event, MAX_TAGS - 1)],
            ),
        )

    def embed_location_discovery(
        self,
        campaign_id: int,
        location_name: str,
        description: str,
        *,
        location_id: int | None = None,
        session_number: int | None = None,
    ) -> MemoryRecord | None:
        """Remember a newly authored or discovered location."""
        content = f"Location {location_name}: {description}" if description else f"Location {location_name}"
        return self._store_one(
            campaign_id,
            MemoryDraft(
                content=content,
                memory_type=MemoryType.LOCATION_DISCOVERY,
                session_number=session_number,
                source_type="location",
                source_id=location_id,
                importance_boost=1,
                tags=[location_name, *extract_tags(description, MAX_TAGS - 1)],
            ),
        )


__all__ = [
    "TurnRecord",
    "MemoryPipeline",
    "extract_tags",
    "mechanics_tags",
    "is_memorable",
    "importance_for",
    "memory_type_for",
]
