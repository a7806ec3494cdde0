"""DM System Prompt - Instructions for the AI Dungeon Master.

The prompt is assembled only from the turn's GameSnapshot (plus the
retrieved memory block), so narration can never lean on state the
engine has not resolved.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from dm_engine.core.constants import HISTORY_LIMIT, PROMPT_RECENT_EVENTS
from dm_engine.models.entities import Campaign
from dm_engine.models.enums import MessageRole
from dm_engine.models.game_state import ConversationMessage, GameSnapshot


# =============================================================================
# DM System Prompt
# =============================================================================


DM_SYSTEM_PROMPT = """You are the Dungeon Master for the campaign "{campaign_name}".
{campaign_description}
CRITICAL RULES:
- You MUST NOT invent dice rolls, damage numbers, HP values, or any mechanical results.
- You MUST use the provided function calling tools for ALL mechanical actions.
- When a player attempts something that requires a check, call the appropriate tool.
- Narrate based ONLY on the mechanical results provided to you.
- Be vivid, creative, and fair in your narration.
- Stay consistent with the established world state below.

CURRENT GAME STATE:
- Mode: {mode}
- Time: {in_game_time}
- Turn: {turn_number}
"""


def _party_section(snapshot: GameSnapshot) -> list[str]:
    if not snapshot.characters:
        return []
    lines = ["", "PARTY MEMBERS:"]
    for c in snapshot.characters:
        a = c.abilities
        header = f"- {c.name} (ID {c.id}, Level {c.level}"
        if c.race or c.character_class:
            header += f" {' '.join(part for part in (c.race, c.character_class) if part)}"
        lines.append(f"{header}): HP {c.current_hp}/{c.max_hp}, AC {c.armor_class}")
        lines.append(
            f"  STR:{a.strength} DEX:{a.dexterity} CON:{a.constitution} "
            f"INT:{a.intelligence} WIS:{a.wisdom} CHA:{a.charisma}"
        )
        if c.cantrips:
            lines.append(f"  Cantrips: {', '.join(c.cantrips)}")
        if c.spells:
            lines.append(f"  Known spells: {', '.join(c.spells)}")
        if c.spell_slots:
            slots = ", ".join(f"L{level}: {count}" for level, count in sorted(c.spell_slots.items()))
            lines.append(f"  Spell slots: {slots}")
        if c.equipment:
            lines.append(f"  Equipment: {', '.join(c.equipment)}")
    return lines


def _location_section(snapshot: GameSnapshot) -> list[str]:
    location = snapshot.current_location
    if location is None:
        return []
    lines = ["", f"CURRENT LOCATION: {location.name}", location.description or "No description available."]
    found = [obj for obj in location.hidden_objects if obj.discovered]
    if found:
        lines.append(f"Already discovered here: {', '.join(obj.name for obj in found)}")
    return lines


def _npc_section(snapshot: GameSnapshot) -> list[str]:
    if not snapshot.npcs_present:
        return []
    lines = ["", "NPCs PRESENT:"]
    for npc in snapshot.npcs_present:
        lines.append(f"- {npc.name} ({npc.npc_type}): {npc.description or 'No description'}")
        if npc.personality:
            lines.append(f"  Personality: {npc.personality}")
        if npc.current_goal:
            lines.append(f"  Current goal: {npc.current_goal} ({npc.goal_progress}% complete)")
    return lines


def _combat_section(snapshot: GameSnapshot) -> list[str]:
    encounter = snapshot.active_encounter
    if encounter is None:
        return []
    lines = ["", f"ACTIVE COMBAT (Round {encounter.current_round}):", "Initiative order:"]
    for index, entry in enumerate(encounter.initiative_order):
        marker = ">>>" if index == encounter.current_turn_index else "   "
        line = f"{marker} {entry.name} [{entry.id}]: Initiative {entry.initiative}, HP {entry.hp}/{entry.max_hp}, AC {entry.ac}"
        if entry.conditions:
            line += f" [{', '.join(entry.conditions)}]"
        lines.append(line)
    return lines


def _recent_events_section(snapshot: GameSnapshot) -> list[str]:
    visible = [entry for entry in snapshot.recent_mechanics[:PROMPT_RECENT_EVENTS] if not entry.is_hidden]
    if not visible:
        return []
    return ["", "RECENT EVENTS:", *(f"- {entry.summary}" for entry in visible)]


def _discoveries_section(snapshot: GameSnapshot) -> list[str]:
    if not snapshot.new_discoveries:
        return []
    lines = ["", "NEW DISCOVERIES (weave these into your narration naturally):"]
    for obj in snapshot.new_discoveries:
        detail = f": {obj.description}" if obj.description else ""
        lines.append(f"- The party has noticed: {obj.name}{detail}")
    return lines


def build_system_prompt(
    snapshot: GameSnapshot,
    *,
    campaign: Campaign | None = None,
    memory_context: str = "",
) -> str:
    """Build the DM system prompt for a turn.

    Args:
        snapshot: The turn's snapshot; the only source of world state.
        campaign: Campaign for the name and description header.
        memory_context: Pre-formatted memory block, may be empty.

    Returns:
        The system prompt text.
    """
    state = snapshot.state
    prompt = DM_SYSTEM_PROMPT.format(
        campaign_name=campaign.name if campaign else "Untitled Campaign",
        campaign_description=f"Campaign: {campaign.description}\n" if campaign and campaign.description else "",
        mode=state.mode.value,
        in_game_time=state.in_game_time or "Unknown",
        turn_number=state.turn_number,
    )

    lines = [
        *_party_section(snapshot),
        *_location_section(snapshot),
        *_npc_section(snapshot),
        *_combat_section(snapshot),
    ]
    if lines:
        prompt += "\n".join(lines) + "\n"
    if memory_context:
        prompt += memory_context

    tail = [*_recent_events_section(snapshot), *_discoveries_section(snapshot)]
    if tail:
        prompt += "\n".join(tail) + "\n"
    return prompt


def build_messages(
    system_prompt: str,
    history: Sequence[ConversationMessage],
    player_input: str,
    *,
    history_limit: int = HISTORY_LIMIT,
) -> list[dict[str, Any]]:
    """Assemble the chat messages for the first model call of a turn.

    Only the last ``history_limit`` transcript messages are included.
    """
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    recent = list(history)[-history_limit:] if history_limit > 0 else []
    for message in recent:
        role = "assistant" if message.role == MessageRole.ASSISTANT else "user"
        messages.append({"role": role, "content": message.content})
    messages.append({"role": "user", "content": player_input})
    return messages


__all__ = [
    "DM_SYSTEM_PROMPT",
    "build_system_prompt",
    "build_messages",
]
