"""Base classes for DM tools.

Tools are defined by Python and requested by the LLM.
The LLM provides arguments, Python validates and executes them.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from dm_engine.core.config import EngineSettings, get_settings
from dm_engine.core.exceptions import DMEngineError
from dm_engine.core.logging import get_logger
from dm_engine.engine.dice import DiceRoller, get_default_roller
from dm_engine.models.entities import CharacterState
from dm_engine.models.game_state import MechanicsResult
from dm_engine.storage.database import Database


logger = get_logger(__name__)


# =============================================================================
# Tool Context
# =============================================================================


@dataclass
class ToolContext:
    """Everything a tool handler may touch during one turn.

    ``characters`` is the in-turn character map: handlers that change a
    character replace its entry so later tool calls in the same turn see
    the new values.
    """

    campaign_id: int
    turn_number: int
    db: Database
    characters: dict[int, CharacterState] = field(default_factory=dict)
    roller: DiceRoller = field(default_factory=get_default_roller)
    settings: EngineSettings = field(default_factory=lambda: get_settings().engine)

    @classmethod
    def for_party(
        cls,
        campaign_id: int,
        turn_number: int,
        db: Database,
        party: Iterable[CharacterState],
        **kwargs: Any,
    ) -> "ToolContext":
        return cls(
            campaign_id=campaign_id,
            turn_number=turn_number,
            db=db,
            characters={character.id: character for character in party},
            **kwargs,
        )

    def character(self, character_id: int) -> CharacterState | None:
        return self.characters.get(character_id)

    def record(
        self,
        result: MechanicsResult,
        *,
        actor_id: str | None = None,
        target_id: str | None = None,
    ) -> MechanicsResult:
        """Append a result to the audit log and hand it back."""
        self.db.log_mechanics_event(
            self.campaign_id,
            self.turn_number,
            result,
            actor_id=actor_id,
            target_id=target_id,
        )
        return result


# =============================================================================
# Tool Base Classes
# =============================================================================


ToolHandler = Callable[[ToolContext, Any], MechanicsResult]


class DMTool:
    """A tool that the DM can invoke.

    Arguments are described by a pydantic model; the same model produces
    the JSON schema sent to the LLM and validates what comes back.
    """

    def __init__(
        self,
        name: str,
        description: str,
        args_model: type[BaseModel],
        handler: ToolHandler,
    ) -> None:
        self.name = name
        self.description = description
        self.args_model = args_model
        self.handler = handler

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON schema of the tool's arguments."""
        return json_schema_for(self.args_model)

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI function schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def execute(self, context: ToolContext, raw_arguments: str | dict[str, Any]) -> MechanicsResult:
        """Validate arguments and run the handler.

        Malformed JSON and schema violations become ``invalid_arguments``
        error results. Engine errors raised by the handler become
        ``execution_failed`` error results so the model stays in the loop.
        """
        try:
            arguments = json.loads(raw_arguments) if isinstance(raw_arguments, str) else raw_arguments
            if not isinstance(arguments, dict):
                raise TypeError("arguments must be a JSON object")
            args = self.args_model.model_validate(arguments)
        except (json.JSONDecodeError, TypeError, PydanticValidationError) as exc:
            logger.warning("Invalid tool arguments", tool=self.name, error=str(exc))
            return MechanicsResult.error(
                "invalid_arguments",
                f"Invalid arguments for {self.name}: {exc}",
                tool_name=self.name,
            )

        try:
            return self.handler(context, args)
        except DMEngineError as exc:
            logger.exception("Tool failed", tool=self.name)
            return MechanicsResult.error(
                "execution_failed",
                f"{self.name} failed: {exc.message}",
                tool_name=self.name,
            )


class ToolRegistry:
    """Closed name → tool table."""

    def __init__(self, tools: Iterable[DMTool]) -> None:
        self._tools = {tool.name: tool for tool in tools}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> DMTool | None:
        return self._tools.get(name)

    def schemas(self) -> list[dict[str, Any]]:
        """OpenAI schemas for every registered tool."""
        return [tool.to_openai_schema() for tool in self._tools.values()]

    def dispatch(self, context: ToolContext, name: str, raw_arguments: str | dict[str, Any]) -> MechanicsResult:
        """Execute a tool by name; unknown names yield an ``unknown_tool`` error result."""
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("Unknown tool requested", tool=name)
            return MechanicsResult.error("unknown_tool", f"Unknown tool: {name}", tool_name=name)

        logger.info("Executing tool", tool=name, campaign_id=context.campaign_id)
        result = tool.execute(context, raw_arguments)
        logger.debug("Tool finished", tool=name, type=result.type, success=result.success)
        return result


# =============================================================================
# Schema helpers
# =============================================================================


def json_schema_for(model: type[BaseModel]) -> dict[str, Any]:
    """Build a self-contained JSON schema for a tool argument model.

    Nested models and enums are inlined so the schema has no ``$ref``
    pointers; titles are dropped.
    """
    schema = model.model_json_schema()
    definitions = schema.pop("$defs", {})
    return _strip(_inline(schema, definitions))


def _inline(node: Any, definitions: dict[str, Any]) -> Any:
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str) and ref.startswith("#/$defs/"):
            target = dict(definitions[ref.rsplit("/", 1)[-1]])
            extras = {key: value for key, value in node.items() if key != "$ref"}
            return _inline({**target, **extras}, definitions)
        return {key: _inline(value, definitions) for key, value in node.items()}
    if isinstance(node, list):
        return [_inline(item, definitions) for item in node]
    return node


def _strip(node: Any) -> Any:
    if isinstance(node, dict):
        return {
            key: _strip(value)
            for key, value in node.items()
            if not (key == "title" and isinstance(value, str))
        }
    if isinstance(node, list):
        return [_strip(item) for item in node]
    return node


__all__ = [
    "ToolContext",
    "ToolHandler",
    "DMTool",
    "ToolRegistry",
    "json_schema_for",
]
