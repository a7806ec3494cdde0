"""DM Tools - Re-exports for convenience."""

from __future__ import annotations

from .base import DMTool, ToolContext, ToolRegistry, json_schema_for
from .catalog import TOOL_NAMES, build_tool_registry, create_dm_tools


__all__ = [
    "DMTool",
    "ToolContext",
    "ToolRegistry",
    "json_schema_for",
    "TOOL_NAMES",
    "create_dm_tools",
    "build_tool_registry",
]
