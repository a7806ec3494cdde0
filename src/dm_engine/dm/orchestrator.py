"""DM Orchestrator - the turn engine.

ARCHITECTURE:
1. Advance the turn counter and snapshot the campaign
2. Silent pre-checks (passive detection, NPC goal drift)
3. Memory retrieval → system prompt
4. LLM reasoning → tool calls → Python executes mechanics → results back to LLM
5. LLM narration → transcript, final snapshot
6. Memory ingestion in the background, after the campaign lock is released

The model never produces a mechanical outcome; it only requests tools.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from dm_engine.core.config import EngineSettings, get_settings
from dm_engine.core.constants import EMPTY_NARRATION, FALLBACK_NARRATION
from dm_engine.core.logging import get_logger, log_context
from dm_engine.dm.llm import ChatClient
from dm_engine.dm.locks import CampaignLockRegistry
from dm_engine.dm.prompts import build_messages, build_system_prompt
from dm_engine.dm.tools import ToolContext, ToolRegistry, build_tool_registry
from dm_engine.engine import rules
from dm_engine.engine.dice import DiceRoller, get_default_roller
from dm_engine.memory.background import BackgroundTaskRunner
from dm_engine.memory.pipeline import MemoryPipeline, TurnRecord
from dm_engine.memory.store import MemoryStore
from dm_engine.models.entities import HiddenObject
from dm_engine.models.enums import GameMode, MessageRole
from dm_engine.models.game_state import GameSnapshot, MechanicsResult
from dm_engine.storage.database import Database
from dm_engine.storage.snapshot import build_snapshot


logger = get_logger(__name__)


class TurnPhase(StrEnum):
    """Phases of a turn, run strictly in this order."""

    ADVANCE_TURN = "advance_turn"
    BUILD_SNAPSHOT = "build_snapshot"
    PRE_CHECKS = "pre_checks"
    MEMORY_RETRIEVAL = "memory_retrieval"
    PROMPT_BUILD = "prompt_build"
    TOOL_LOOP = "tool_loop"
    FINALIZE = "finalize"


# =============================================================================
# Turn Result
# =============================================================================


class TurnResult(BaseModel):
    """Response from the turn engine.

    Attributes:
        narration: The story text for the player.
        mechanics_results: Every result of the turn in execution order,
            pre-checks first.
        turn_number: The turn this response belongs to.
        mode: Game mode after the turn.
        in_game_time: Clock label after the turn.
        hit_iteration_cap: Whether the tool loop ran out of iterations.
        snapshot: Final snapshot; not serialised.
    """

    model_config = ConfigDict(extra="forbid")

    narration: str
    mechanics_results: list[MechanicsResult] = Field(default_factory=list)
    turn_number: int
    mode: GameMode
    in_game_time: str
    hit_iteration_cap: bool = False
    snapshot: GameSnapshot | None = Field(default=None, exclude=True, repr=False)

    @computed_field
    @property
    def visible_mechanics_results(self) -> list[MechanicsResult]:
        return [result for result in self.mechanics_results if not result.is_hidden]

    @computed_field
    @property
    def hidden_mechanics_results(self) -> list[MechanicsResult]:
        return [result for result in self.mechanics_results if result.is_hidden]


# =============================================================================
# DM Orchestrator
# =============================================================================


class DMOrchestrator:
    """Runs turns for any number of campaigns.

    Turns of the same campaign are serialized by a per-campaign lock;
    different campaigns proceed concurrently.
    """

    def __init__(
        self,
        db: Database,
        chat_client: ChatClient,
        *,
        memory_store: MemoryStore | None = None,
        pipeline: MemoryPipeline | None = None,
        background: BackgroundTaskRunner | None = None,
        registry: ToolRegistry | None = None,
        locks: CampaignLockRegistry | None = None,
        roller: DiceRoller | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            db: State store.
            chat_client: Narrating model.
            memory_store: Semantic memory; None disables retrieval.
            pipeline: Post-turn ingestion; defaults to one over ``memory_store``.
            background: Runner for ingestion; None ingests inline after the
                campaign lock is released.
            registry: Tool table; defaults to the full DM toolkit.
            locks: Per-campaign locks, shareable between orchestrators.
            roller: Dice source.
            settings: Engine settings.
        """
        self._db = db
        self._chat = chat_client
        self._memory = memory_store
        self._pipeline = pipeline or (MemoryPipeline(memory_store) if memory_store else None)
        self._background = background
        self._registry = registry or build_tool_registry()
        self._locks = locks or CampaignLockRegistry()
        self._roller = roller or get_default_roller()
        self._settings = settings or get_settings().engine

        logger.info(
            "DMOrchestrator initialized",
            tools=len(self._registry),
            memory_enabled=self._memory is not None,
            max_tool_iterations=self._settings.max_tool_iterations,
        )

    @property
    def locks(self) -> CampaignLockRegistry:
        return self._locks

    def process_turn(self, campaign_id: int, player_input: str) -> TurnResult:
        """Run one full turn for a campaign.

        Args:
            campaign_id: Campaign to play.
            player_input: The player's free-text action.

        Returns:
            Narration, mechanics results and the post-turn state.

        Raises:
            AIControlError: If the chat-completion service fails; the turn
                is lost and should be retried by the caller.
        """
        with self._locks.hold(campaign_id):
            state = self._db.advance_turn(campaign_id)
            with log_context(campaign_id=campaign_id, turn_number=state.turn_number):
                logger.debug("Turn phase", phase=TurnPhase.ADVANCE_TURN)
                result, record = self._run_turn(campaign_id, state.turn_number, state.session_number, player_input)

        self._schedule_ingestion(record)
        return result

    def _run_turn(
        self,
        campaign_id: int,
        turn_number: int,
        session_number: int,
        player_input: str,
    ) -> tuple[TurnResult, TurnRecord]:
        recent_limit = self._settings.recent_mechanics_limit

        logger.debug("Turn phase", phase=TurnPhase.BUILD_SNAPSHOT)
        snapshot = build_snapshot(self._db, campaign_id, recent_limit=recent_limit)

        logger.debug("Turn phase", phase=TurnPhase.PRE_CHECKS)
        pre_results, discoveries = self._run_pre_checks(campaign_id, turn_number, snapshot)
        if pre_results:
            snapshot = build_snapshot(self._db, campaign_id, discoveries, recent_limit=recent_limit)

        logger.debug("Turn phase", phase=TurnPhase.MEMORY_RETRIEVAL)
        memory_context = self._memory.retrieve_context(campaign_id, player_input) if self._memory else ""

        logger.debug("Turn phase", phase=TurnPhase.PROMPT_BUILD)
        system_prompt = build_system_prompt(
            snapshot,
            campaign=self._db.get_campaign(campaign_id),
            memory_context=memory_context,
        )
        history = self._db.get_recent_messages(campaign_id, self._settings.history_limit)
        messages = build_messages(
            system_prompt, history, player_input, history_limit=self._settings.history_limit
        )

        logger.debug("Turn phase", phase=TurnPhase.TOOL_LOOP)
        context = ToolContext.for_party(
            campaign_id,
            turn_number,
            self._db,
            snapshot.characters,
            roller=self._roller,
            settings=self._settings,
        )
        narration, tool_results, capped = self._tool_loop(context, messages)

        logger.debug("Turn phase", phase=TurnPhase.FINALIZE)
        self._db.add_conversation_message(campaign_id, MessageRole.USER, player_input)
        self._db.add_conversation_message(campaign_id, MessageRole.ASSISTANT, narration)
        final = build_snapshot(self._db, campaign_id, recent_limit=recent_limit)

        all_results = [*pre_results, *tool_results]
        logger.info(
            "Turn complete",
            results=len(all_results),
            hit_iteration_cap=capped,
            narration_length=len(narration),
        )

        result = TurnResult(
            narration=narration,
            mechanics_results=all_results,
            turn_number=turn_number,
            mode=final.state.mode,
            in_game_time=final.state.in_game_time,
            hit_iteration_cap=capped,
            snapshot=final,
        )
        record = TurnRecord(
            campaign_id=campaign_id,
            turn_number=turn_number,
            session_number=session_number,
            player_input=player_input,
            narration="" if capped else narration,
            mechanics_results=all_results,
        )
        return result, record

    # =========================================================================
    # Pre-checks
    # =========================================================================

    def _run_pre_checks(
        self,
        campaign_id: int,
        turn_number: int,
        snapshot: GameSnapshot,
    ) -> tuple[list[MechanicsResult], list[HiddenObject]]:
        """Passive detection at the current location and periodic NPC goal drift.

        Returns:
            The hidden results and the objects newly discovered this turn.
        """
        results: list[MechanicsResult] = []
        discoveries: list[HiddenObject] = []

        location = snapshot.current_location
        if location is not None and location.undiscovered_objects:
            passive = rules.run_passive_checks(snapshot.characters, location.undiscovered_objects)
            for result in passive:
                self._db.log_mechanics_event(
                    campaign_id,
                    turn_number,
                    result,
                    actor_id=rules.party_initiative_id(result.details["character_id"]),
                )
            results.extend(passive)
            if passive:
                discoveries = self._db.mark_objects_discovered(
                    location.id, [result.details["object_name"] for result in passive]
                )
                logger.info(
                    "Passive checks found hidden objects",
                    location_id=location.id,
                    discovered=[obj.name for obj in discoveries],
                )

        if turn_number % self._settings.npc_goal_interval == 0:
            for npc in self._db.get_npcs(campaign_id, active_only=True):
                if not npc.has_open_goal:
                    continue
                result = rules.advance_npc_goal(
                    npc_name=npc.name,
                    goal=npc.current_goal or "",
                    progress=npc.goal_progress,
                    increment=self._settings.npc_goal_increment,
                )
                self._db.update_npc(npc.id, goal_progress=result.details["new_progress"])
                self._db.log_mechanics_event(campaign_id, turn_number, result, actor_id=f"npc_{npc.id}")
                results.append(result)
                logger.debug(
                    "NPC goal advanced",
                    npc_id=npc.id,
                    progress=result.details["new_progress"],
                )

        return results, discoveries

    # =========================================================================
    # Tool loop
    # =========================================================================

    def _tool_loop(
        self,
        context: ToolContext,
        messages: list[dict[str, Any]],
    ) -> tuple[str, list[MechanicsResult], bool]:
        """Exchange messages with the model until it narrates or the cap is hit.

        Returns:
            ``(narration, results, hit_cap)``.
        """
        tools = self._registry.schemas()
        results: list[MechanicsResult] = []

        for iteration in range(1, self._settings.max_tool_iterations + 1):
            response = self._chat.complete(messages, tools)
            if not response.wants_tools:
                narration = (response.content or "").strip()
                logger.debug("Model narrated", iteration=iteration)
                return narration or EMPTY_NARRATION, results, False

            messages.append(
                {
                    "role": "assistant",
                    "content": response.content,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments},
                        }
                        for call in response.tool_calls
                    ],
                }
            )
            for call in response.tool_calls:
                result = self._registry.dispatch(context, call.name, call.arguments)
                results.append(result)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": result.model_dump_json(),
                    }
                )

        logger.warning(
            "Tool loop hit iteration cap",
            iterations=self._settings.max_tool_iterations,
            results=len(results),
        )
        return FALLBACK_NARRATION, results, True

    # =========================================================================
    # Memory ingestion
    # =========================================================================

    def _schedule_ingestion(self, record: TurnRecord) -> None:
        if self._pipeline is None:
            return
        if self._background is None:
            self._pipeline.ingest_turn(record)
            return
        self._background.submit(
            self._pipeline.ingest_turn,
            record,
            description=f"ingest turn {record.turn_number} of campaign {record.campaign_id}",
        )


__all__ = [
    "TurnPhase",
    "TurnResult",
    "DMOrchestrator",
]
