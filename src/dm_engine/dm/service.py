"""Public engine facade.

DMEngine is what an API or CLI layer calls. Every operation takes the
calling user's id and checks that the user owns the campaign before
anything else happens. Request payloads are validated with pydantic
models; failures surface as ValidationError.
"""

from __future__ import annotations

from typing import Annotated, Any, TypeVar

from pydantic import BaseModel, Field, StringConstraints
from pydantic import ValidationError as PydanticValidationError

from dm_engine.core.config import Settings, get_settings
from dm_engine.core.constants import (
    DEFAULT_SIMILARITY_THRESHOLD,
    DEFAULT_TOP_K,
    MAX_DISPOSITION,
    MAX_GOAL_PROGRESS,
    MAX_IMPORTANCE_BOOST,
    MAX_TOP_K,
    MIN_DISPOSITION,
)
from dm_engine.core.exceptions import CampaignAccessError, ValidationError
from dm_engine.core.logging import get_logger
from dm_engine.dm.llm import ChatClient, OpenAIChatClient
from dm_engine.dm.locks import CampaignLockRegistry
from dm_engine.dm.orchestrator import DMOrchestrator, TurnResult
from dm_engine.engine.dice import DiceRoller
from dm_engine.memory.background import BackgroundTaskRunner
from dm_engine.memory.embeddings import EmbeddingProvider, EmbeddingService
from dm_engine.memory.pipeline import MemoryPipeline, extract_tags
from dm_engine.memory.store import MemoryStore
from dm_engine.models.entities import Campaign, HiddenObject, Location, Npc, NpcCombatStats
from dm_engine.models.enums import GameMode, HiddenObjectType, MemoryType
from dm_engine.models.game_state import CampaignState, MechanicsLogEntry
from dm_engine.models.memory import MemoryRecord, MemorySearchResult
from dm_engine.storage.database import Database
from dm_engine.storage.snapshot import build_snapshot, summarize_snapshot


logger = get_logger(__name__)

NonEmptyText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

RequestT = TypeVar("RequestT", bound=BaseModel)


# =============================================================================
# Request Models
# =============================================================================


class InteractRequest(BaseModel):
    player_input: NonEmptyText


class MechanicsLogRequest(BaseModel):
    limit: Annotated[int, Field(ge=1, le=100)] = 20


class CreateNpcRequest(BaseModel):
    name: NonEmptyText
    description: str = ""
    personality: str = ""
    npc_type: str = "neutral"
    disposition: Annotated[int, Field(ge=MIN_DISPOSITION, le=MAX_DISPOSITION)] = 0
    current_goal: str | None = None
    goal_progress: Annotated[int, Field(ge=0, le=MAX_GOAL_PROGRESS)] = 0
    combat_stats: NpcCombatStats | None = None
    location_id: int | None = None


class HiddenObjectRequest(BaseModel):
    name: NonEmptyText
    dc: Annotated[int, Field(ge=1, le=30)]
    type: HiddenObjectType = HiddenObjectType.OTHER
    description: str = ""


class CreateLocationRequest(BaseModel):
    name: NonEmptyText
    description: str = ""
    location_type: str = ""
    hidden_objects: list[HiddenObjectRequest] = Field(default_factory=list)
    connections: list[int] = Field(default_factory=list)


class InitializeGameStateRequest(BaseModel):
    starting_location_id: int | None = None
    in_game_time: NonEmptyText = "Day 1, Morning"
    mode: GameMode = GameMode.EXPLORATION
    session_number: Annotated[int, Field(ge=1)] = 1


class SearchMemoriesRequest(BaseModel):
    query: NonEmptyText
    top_k: Annotated[int, Field(ge=1, le=MAX_TOP_K)] = DEFAULT_TOP_K
    threshold: Annotated[float, Field(ge=0.0, le=1.0)] = DEFAULT_SIMILARITY_THRESHOLD
    memory_types: list[MemoryType] | None = None


class AddMemoryRequest(BaseModel):
    content: NonEmptyText
    memory_type: MemoryType = MemoryType.PLOT_POINT
    importance_boost: Annotated[int, Field(ge=0, le=MAX_IMPORTANCE_BOOST)] = 0
    tags: list[str] | None = None
    session_number: Annotated[int, Field(ge=1)] | None = None


class UpdateImportanceRequest(BaseModel):
    importance_boost: Annotated[int, Field(ge=0, le=MAX_IMPORTANCE_BOOST)]


class ListMemoriesRequest(BaseModel):
    limit: Annotated[int, Field(ge=1, le=100)] = 20
    offset: Annotated[int, Field(ge=0)] = 0
    memory_type: MemoryType | None = None


def validate_request(model: type[RequestT], **data: Any) -> RequestT:
    """Validate caller input, converting pydantic errors to ValidationError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field_name = ".".join(str(part) for part in first["loc"]) or None
        raise ValidationError(
            f"Invalid {model.__name__}: {first['msg']}",
            field_name=field_name,
            invalid_value=first.get("input"),
            details={"error_count": exc.error_count()},
        ) from exc


# =============================================================================
# Engine
# =============================================================================


class DMEngine:
    """Entry point for turns, game state, authoring and memory management.

    Example:
        >>> engine = DMEngine.from_settings()
        >>> result = engine.interact("user-1", campaign_id=1, player_input="I search the altar")
        >>> print(result.narration)
    """

    def __init__(
        self,
        db: Database,
        chat_client: ChatClient,
        embedder: EmbeddingService,
        *,
        settings: Settings | None = None,
        roller: DiceRoller | None = None,
        background: BackgroundTaskRunner | None = None,
        locks: CampaignLockRegistry | None = None,
    ) -> None:
        """Wire the engine's collaborators.

        Args:
            db: State store.
            chat_client: Narrating model.
            embedder: Embedding service for semantic memory.
            settings: Application settings.
            roller: Dice source.
            background: Runner for post-turn and authoring ingestion;
                defaults to a thread pool sized from the memory settings.
            locks: Per-campaign locks.
        """
        settings = settings or get_settings()
        self._db = db
        self._memory = MemoryStore(db, embedder, settings=settings.memory)
        self._pipeline = MemoryPipeline(self._memory)
        self._background = background or BackgroundTaskRunner(max_workers=settings.memory.background_workers)
        self._recent_limit = settings.engine.recent_mechanics_limit
        self._orchestrator = DMOrchestrator(
            db,
            chat_client,
            memory_store=self._memory,
            pipeline=self._pipeline,
            background=self._background,
            locks=locks,
            roller=roller,
            settings=settings.engine,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "DMEngine":
        """Build an engine against the configured database and OpenAI services."""
        settings = settings or get_settings()
        return cls(
            Database(settings.storage.database_path),
            OpenAIChatClient(settings=settings.ai),
            EmbeddingProvider(settings=settings.memory),
            settings=settings,
        )

    @property
    def background(self) -> BackgroundTaskRunner:
        return self._background

    def close(self, *, wait_for_tasks: bool = True) -> None:
        """Stop background work."""
        self._background.shutdown(wait_for_tasks=wait_for_tasks)

    def _authorize(self, user_id: str, campaign_id: int) -> Campaign:
        campaign = self._db.get_campaign(campaign_id)
        if campaign is None or campaign.user_id != user_id:
            logger.warning("Campaign access denied", campaign_id=campaign_id, user_id=user_id)
            raise CampaignAccessError(
                "Campaign not found or access denied",
                campaign_id=campaign_id,
                user_id=user_id,
            )
        return campaign

    # =========================================================================
    # Turns and State
    # =========================================================================

    def interact(self, user_id: str, campaign_id: int, player_input: str) -> TurnResult:
        """Play one turn.

        Raises:
            CampaignAccessError: If the user does not own the campaign.
            ValidationError: If the input is empty.
            AIControlError: If the narrating model fails.
        """
        self._authorize(user_id, campaign_id)
        request = validate_request(InteractRequest, player_input=player_input)
        return self._orchestrator.process_turn(campaign_id, request.player_input)

    def get_game_state(self, user_id: str, campaign_id: int) -> dict[str, Any]:
        self._authorize(user_id, campaign_id)
        return summarize_snapshot(build_snapshot(self._db, campaign_id, recent_limit=self._recent_limit))

    def get_mechanics_log(self, user_id: str, campaign_id: int, limit: int = 20) -> list[MechanicsLogEntry]:
        """Most recent audit entries, newest first, hidden ones included."""
        self._authorize(user_id, campaign_id)
        request = validate_request(MechanicsLogRequest, limit=limit)
        return self._db.get_recent_mechanics(campaign_id, limit=request.limit)

    def initialize_game_state(self, user_id: str, campaign_id: int, **fields: Any) -> CampaignState:
        """Set the starting location, clock, mode and session of a campaign."""
        self._authorize(user_id, campaign_id)
        request = validate_request(InitializeGameStateRequest, **fields)

        if request.starting_location_id is not None:
            location = self._db.get_location(request.starting_location_id)
            if location is None or location.campaign_id != campaign_id:
                raise ValidationError(
                    "Starting location does not belong to this campaign",
                    field_name="starting_location_id",
                    invalid_value=request.starting_location_id,
                )
            self._db.mark_location_visited(location.id)

        state = self._db.update_game_state(
            campaign_id,
            current_location_id=request.starting_location_id,
            in_game_time=request.in_game_time,
            mode=request.mode,
            session_number=request.session_number,
        )
        logger.info("Game state initialized", campaign_id=campaign_id, location_id=state.current_location_id)
        return state

    # =========================================================================
    # Authoring
    # =========================================================================

    def create_npc(self, user_id: str, campaign_id: int, **fields: Any) -> Npc:
        """Author an NPC and remember it in the background."""
        self._authorize(user_id, campaign_id)
        request = validate_request(CreateNpcRequest, **fields)
        self._check_location(campaign_id, request.location_id)

        npc = self._db.create_npc(campaign_id, **request.model_dump())
        event = npc.description or "introduced to the campaign"
        if npc.current_goal:
            event += f". Goal: {npc.current_goal}"
        self._background.submit(
            self._pipeline.embed_npc_event,
            campaign_id,
            npc.name,
            event,
            npc_id=npc.id,
            description=f"embed npc {npc.id}",
        )
        return npc

    def create_location(self, user_id: str, campaign_id: int, **fields: Any) -> Location:
        """Author a location and remember it in the background."""
        self._authorize(user_id, campaign_id)
        request = validate_request(CreateLocationRequest, **fields)
        names = [obj.name for obj in request.hidden_objects]
        if len(names) != len(set(names)):
            raise ValidationError("Hidden object names must be unique", field_name="hidden_objects")

        location = self._db.create_location(
            campaign_id,
            request.name,
            description=request.description,
            location_type=request.location_type,
            hidden_objects=[HiddenObject(**obj.model_dump()) for obj in request.hidden_objects],
            connections=request.connections,
        )
        self._background.submit(
            self._pipeline.embed_location_discovery,
            campaign_id,
            location.name,
            location.description,
            location_id=location.id,
            description=f"embed location {location.id}",
        )
        return location

    def get_npcs(self, user_id: str, campaign_id: int, *, location_id: int | None = None) -> list[Npc]:
        self._authorize(user_id, campaign_id)
        return self._db.get_npcs(campaign_id, location_id=location_id)

    def get_locations(self, user_id: str, campaign_id: int) -> list[Location]:
        self._authorize(user_id, campaign_id)
        return self._db.get_locations(campaign_id)

    def _check_location(self, campaign_id: int, location_id: int | None) -> None:
        if location_id is None:
            return
        location = self._db.get_location(location_id)
        if location is None or location.campaign_id != campaign_id:
            raise ValidationError(
                "Location does not belong to this campaign",
                field_name="location_id",
                invalid_value=location_id,
            )

    # =========================================================================
    # Memory
    # =========================================================================

    def search_memories(self, user_id: str, campaign_id: int, query: str, **options: Any) -> list[MemorySearchResult]:
        """Semantic search over a campaign's memories.

        Raises:
            EmbeddingError: If the query cannot be embedded.
        """
        self._authorize(user_id, campaign_id)
        request = validate_request(SearchMemoriesRequest, query=query, **options)
        return self._memory.search_memories(
            campaign_id,
            request.query,
            top_k=request.top_k,
            threshold=request.threshold,
            memory_types=request.memory_types,
        )

    def add_memory(self, user_id: str, campaign_id: int, content: str, **fields: Any) -> MemoryRecord:
        """Embed and store a hand-written memory."""
        self._authorize(user_id, campaign_id)
        request = validate_request(AddMemoryRequest, content=content, **fields)
        return self._memory.embed_and_store(
            campaign_id,
            request.content,
            request.memory_type,
            session_number=request.session_number,
            source_type="manual",
            importance_boost=request.importance_boost,
            tags=request.tags if request.tags is not None else extract_tags(request.content),
        )

    def delete_memory(self, user_id: str, campaign_id: int, memory_id: int) -> bool:
        self._authorize(user_id, campaign_id)
        return self._db.delete_memory(campaign_id, memory_id)

    def update_memory_importance(
        self,
        user_id: str,
        campaign_id: int,
        memory_id: int,
        importance_boost: int,
    ) -> MemoryRecord | None:
        """Change a memory's ranking bonus; None if the memory does not exist."""
        self._authorize(user_id, campaign_id)
        request = validate_request(UpdateImportanceRequest, importance_boost=importance_boost)
        return self._db.update_memory_importance(campaign_id, memory_id, request.importance_boost)

    def get_memories(self, user_id: str, campaign_id: int, **options: Any) -> list[MemoryRecord]:
        """Page through memories, newest first, without their vectors."""
        self._authorize(user_id, campaign_id)
        request = validate_request(ListMemoriesRequest, **options)
        return self._db.list_memories(
            campaign_id,
            memory_types=[request.memory_type] if request.memory_type else None,
            limit=request.limit,
            offset=request.offset,
        )

    def get_memory_count(self, user_id: str, campaign_id: int) -> int:
        self._authorize(user_id, campaign_id)
        return self._db.count_memories(campaign_id)


__all__ = [
    "DMEngine",
    "validate_request",
    "InteractRequest",
    "MechanicsLogRequest",
    "CreateNpcRequest",
    "CreateLocationRequest",
    "HiddenObjectRequest",
    "InitializeGameStateRequest",
    "SearchMemoriesRequest",
    "AddMemoryRequest",
    "UpdateImportanceRequest",
    "ListMemoriesRequest",
]
