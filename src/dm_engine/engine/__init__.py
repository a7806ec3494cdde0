"""Dice and rules engine.

Python owns every number: the narrating model asks for mechanics through
tools, and the functions in this package decide the outcome.
"""

from __future__ import annotations

from dm_engine.engine.dice import (
    AdvantageRoll,
    D20Roll,
    DiceRoller,
    NotationRoll,
    RollMode,
    get_default_roller,
    roll_die,
    roll_notation,
)
from dm_engine.engine.rules import (
    NpcCombatant,
    ability_modifier,
    advance_npc_goal,
    apply_hp_change,
    cast_spell,
    passive_score,
    proficiency_bonus,
    resolve_attack,
    resolve_saving_throw,
    resolve_skill_check,
    resolve_turn_advance,
    roll_death_save,
    roll_dice,
    roll_initiative,
    run_passive_checks,
    save_bonus,
    skill_bonus,
)


__all__ = [
    # Dice
    "DiceRoller",
    "RollMode",
    "AdvantageRoll",
    "D20Roll",
    "NotationRoll",
    "get_default_roller",
    "roll_die",
    "roll_notation",
    # Rules
    "ability_modifier",
    "proficiency_bonus",
    "skill_bonus",
    "save_bonus",
    "passive_score",
    "resolve_skill_check",
    "resolve_saving_throw",
    "resolve_attack",
    "apply_hp_change",
    "NpcCombatant",
    "roll_initiative",
    "resolve_turn_advance",
    "cast_spell",
    "run_passive_checks",
    "roll_death_save",
    "advance_npc_goal",
    "roll_dice",
]
