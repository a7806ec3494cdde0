"""Dungeon Master module for the turn engine.

This module provides the AI Dungeon Master functionality:
- Turn orchestration with per-campaign serialization
- LLM-based narration through a bounded tool-calling loop
- Tool execution (checks, attacks, spells, HP, combat, world changes)
- Memory retrieval for the system prompt

The DM module uses LLMs for reasoning and narrative,
but all game mechanics are executed by Python.
LLMs NEVER generate random numbers.
"""

from __future__ import annotations

from .llm import ChatClient, ChatResponse, OpenAIChatClient, ToolCallRequest
from .locks import CampaignLockRegistry
from .orchestrator import DMOrchestrator, TurnPhase, TurnResult
from .prompts import build_messages, build_system_prompt
from .service import DMEngine
from .tools import DMTool, ToolContext, ToolRegistry, build_tool_registry, create_dm_tools

__all__ = [
    "ChatClient",
    "ChatResponse",
    "ToolCallRequest",
    "OpenAIChatClient",
    "CampaignLockRegistry",
    "DMOrchestrator",
    "TurnPhase",
    "TurnResult",
    "build_system_prompt",
    "build_messages",
    "DMEngine",
    "DMTool",
    "ToolContext",
    "ToolRegistry",
    "build_tool_registry",
    "create_dm_tools",
]
