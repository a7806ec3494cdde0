"""Rules resolvers.

Pure functions over character and NPC snapshots that turn dice into
structured MechanicsResult records. Nothing here touches the state
store; callers persist whatever the results imply.

Every resolver that rolls accepts an optional DiceRoller and falls back
to the process-wide CSPRNG roller.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from dm_engine.core.constants import (
    DEATH_SAVE_THRESHOLD,
    MAX_DEATH_SAVES,
    MAX_GOAL_PROGRESS,
    NPC_GOAL_INCREMENT,
    PASSIVE_SCORE_BASE,
)
from dm_engine.engine.dice import D20Roll, DiceRoller, RollMode, get_default_roller
from dm_engine.models.entities import CharacterState, HiddenObject
from dm_engine.models.enums import Ability, CombatantType, MechanicsEventType, Skill
from dm_engine.models.game_state import (
    DeathSaveState,
    EncounterState,
    InitiativeEntry,
    MechanicsResult,
)


# =============================================================================
# Derived statistics
# =============================================================================


def ability_modifier(score: int) -> int:
    """Get the modifier for a raw ability score: floor((score - 10) / 2)."""
    return math.floor((score - 10) / 2)


def proficiency_bonus(level: int) -> int:
    """Get the proficiency bonus for a level: ceil(level / 4) + 1."""
    return math.ceil(level / 4) + 1


def skill_bonus(character: CharacterState, skill: Skill) -> int:
    """Total bonus a character adds to a skill check.

    Args:
        character: The character making the check.
        skill: The skill being used.

    Returns:
        Ability modifier plus proficiency bonus when proficient.
    """
    bonus = ability_modifier(character.abilities.score(skill.ability))
    if character.is_proficient(skill.value):
        bonus += proficiency_bonus(character.level)
    return bonus


def save_bonus(character: CharacterState, ability: Ability) -> int:
    bonus = ability_modifier(character.abilities.score(ability))
    if character.is_save_proficient(ability):
        bonus += proficiency_bonus(character.level)
    return bonus


def passive_score(character: CharacterState, skill: Skill) -> int:
    return PASSIVE_SCORE_BASE + skill_bonus(character, skill)


def _signed(value: int) -> str:
    return f"+{value}" if value >= 0 else str(value)


def _describe_d20(roll: D20Roll) -> str:
    if roll.mode == RollMode.NORMAL:
        return str(roll.natural)
    return f"[{', '.join(str(r) for r in roll.rolls)}]→{roll.natural}"


def _d20_outcome(roll: D20Roll, total: int, target: int) -> tuple[bool, str]:
    """Apply the natural 20 / natural 1 overrides to a threshold comparison."""
    if roll.is_critical:
        return True, "CRITICAL SUCCESS"
    if roll.is_fumble:
        return False, "CRITICAL FAIL"
    if total >= target:
        return True, "SUCCESS"
    return False, "FAIL"


# =============================================================================
# Checks and saves
# =============================================================================


def resolve_skill_check(
    character: CharacterState,
    skill: Skill,
    dc: int,
    *,
    advantage: bool = False,
    disadvantage: bool = False,
    roller: DiceRoller | None = None,
) -> MechanicsResult:
    """Resolve a skill check.

    Args:
        character: The character making the check.
        skill: Skill being checked.
        dc: Difficulty class to meet or beat.
        advantage: Roll with advantage.
        disadvantage: Roll with disadvantage.
        roller: Dice source.

    Returns:
        A ``skill_check`` MechanicsResult. A natural 20 always succeeds
        and a natural 1 always fails regardless of the total.
    """
    roller = roller or get_default_roller()
    roll = roller.roll_d20(advantage=advantage, disadvantage=disadvantage)
    proficient = character.is_proficient(skill.value)
    bonus = skill_bonus(character, skill)
    total = roll.natural + bonus
    success, outcome = _d20_outcome(roll, total, dc)

    mode_text = f" ({roll.mode})" if roll.mode != RollMode.NORMAL else ""
    prof_text = " (proficient)" if proficient else ""
    summary = (
        f"{character.name} {skill.display_name} check{mode_text}: {_describe_d20(roll)} "
        f"{_signed(bonus)}{prof_text} = {total} vs DC {dc} → {outcome}"
    )
    return MechanicsResult(
        type=MechanicsEventType.SKILL_CHECK,
        success=success,
        summary=summary,
        details={
            "character_id": character.id,
            "character_name": character.name,
            "skill": skill.value,
            "ability": skill.ability.value,
            "rolls": list(roll.rolls),
            "natural": roll.natural,
            "roll_mode": roll.mode.value,
            "bonus": bonus,
            "proficient": proficient,
            "total": total,
            "dc": dc,
            "is_critical": roll.is_critical,
            "is_critical_fail": roll.is_fumble,
        },
    )


def resolve_saving_throw(
    character: CharacterState,
    ability: Ability,
    dc: int,
    *,
    advantage: bool = False,
    disadvantage: bool = False,
    roller: DiceRoller | None = None,
) -> MechanicsResult:
    """Resolve a saving throw. Same natural 20 / natural 1 rules as checks."""
    roller = roller or get_default_roller()
    roll = roller.roll_d20(advantage=advantage, disadvantage=disadvantage)
    proficient = character.is_save_proficient(ability)
    bonus = save_bonus(character, ability)
    total = roll.natural + bonus
    success, outcome = _d20_outcome(roll, total, dc)

    mode_text = f" ({roll.mode})" if roll.mode != RollMode.NORMAL else ""
    prof_text = " (proficient)" if proficient else ""
    summary = (
        f"{character.name} {ability.full_name} save{mode_text}: {_describe_d20(roll)} "
        f"{_signed(bonus)}{prof_text} = {total} vs DC {dc} → {outcome}"
    )
    return MechanicsResult(
        type=MechanicsEventType.SAVING_THROW,
        success=success,
        summary=summary,
        details={
            "character_id": character.id,
            "character_name": character.name,
            "ability": ability.value,
            "rolls": list(roll.rolls),
            "natural": roll.natural,
            "roll_mode": roll.mode.value,
            "bonus": bonus,
            "proficient": proficient,
            "total": total,
            "dc": dc,
            "is_critical": roll.is_critical,
            "is_critical_fail": roll.is_fumble,
        },
    )


# =============================================================================
# Combat
# =============================================================================


def resolve_attack(
    *,
    attacker_name: str,
    attack_bonus: int,
    target_name: str,
    target_ac: int,
    damage_dice: str,
    damage_type: str | None = None,
    weapon: str | None = None,
    advantage: bool = False,
    disadvantage: bool = False,
    roller: DiceRoller | None = None,
) -> MechanicsResult:
    """Resolve an attack roll and, on a hit, its damage.

    A natural 20 always hits and is critical; a natural 1 always misses.
    On a critical hit the damage dice are rolled a second time and only
    the dice are added, so the flat modifier counts once.

    Args:
        attacker_name: Who attacks.
        attack_bonus: Bonus added to the d20.
        target_name: Who is attacked.
        target_ac: Armor class to meet or beat.
        damage_dice: Damage notation, e.g. ``1d8+3``.
        damage_type: Optional damage type label.
        weapon: Optional weapon or attack name.
        advantage: Roll with advantage.
        disadvantage: Roll with disadvantage.
        roller: Dice source.

    Returns:
        An ``attack`` MechanicsResult; ``success`` means the attack hit.
    """
    roller = roller or get_default_roller()
    roll = roller.roll_d20(advantage=advantage, disadvantage=disadvantage)
    attack_total = roll.natural + attack_bonus
    is_critical = roll.is_critical
    if is_critical:
        hit = True
    elif roll.is_fumble:
        hit = False
    else:
        hit = attack_total >= target_ac

    damage_rolls: list[int] = []
    damage_total = 0
    damage_notation = None
    if hit:
        damage = roller.roll_notation(damage_dice)
        damage_notation = damage.notation
        damage_rolls = list(damage.rolls)
        damage_total = damage.total
        if is_critical:
            extra = roller.roll_notation(damage_dice)
            damage_rolls.extend(extra.rolls)
            damage_total += extra.dice_total
        damage_total = max(0, damage_total)

    with_weapon = f" with {weapon}" if weapon else ""
    damage_label = f"{damage_total} {damage_type} damage" if damage_type else f"{damage_total} damage"
    if is_critical:
        outcome = f"CRITICAL HIT! {damage_label}"
    elif hit:
        outcome = f"HIT! {damage_label}"
    elif roll.is_fumble:
        outcome = "CRITICAL MISS"
    else:
        outcome = "MISS"
    summary = (
        f"{attacker_name} attacks {target_name}{with_weapon}: {_describe_d20(roll)} "
        f"{_signed(attack_bonus)} = {attack_total} vs AC {target_ac} → {outcome}"
    )

    return MechanicsResult(
        type=MechanicsEventType.ATTACK,
        success=hit,
        summary=summary,
        details={
            "attacker_name": attacker_name,
            "target_name": target_name,
            "weapon": weapon,
            "rolls": list(roll.rolls),
            "attack_roll": roll.natural,
            "roll_mode": roll.mode.value,
            "attack_bonus": attack_bonus,
            "attack_total": attack_total,
            "target_ac": target_ac,
            "hit": hit,
            "is_critical": is_critical,
            "is_critical_fail": roll.is_fumble,
            "damage_dice": damage_notation,
            "damage_rolls": damage_rolls,
            "damage_total": damage_total,
            "damage_type": damage_type,
        },
    )


def apply_hp_change(*, name: str, current_hp: int, max_hp: int, delta: int) -> MechanicsResult:
    """Apply damage (negative delta) or healing (positive delta).

    The new value is clamped into ``[0, max_hp]``. Instant death is
    judged on the unclamped value: ``current_hp + delta <= -max_hp``.

    Args:
        name: Display name of whoever changes HP.
        current_hp: HP before the change.
        max_hp: Maximum HP.
        delta: Signed change.

    Returns:
        An ``hp_change`` MechanicsResult with ``new_hp`` in its details.
    """
    raw = current_hp + delta
    new_hp = max(0, min(max_hp, raw))
    is_unconscious = new_hp == 0
    is_dead = raw <= -max_hp

    if delta >= 0:
        change = f"healed {delta} HP"
    else:
        change = f"took {-delta} damage"
    summary = f"{name} {change}: {current_hp} → {new_hp}/{max_hp} HP"
    if is_unconscious:
        summary += " (UNCONSCIOUS)"
    if is_dead:
        summary += " (DEAD)"

    return MechanicsResult(
        type=MechanicsEventType.HP_CHANGE,
        success=True,
        summary=summary,
        details={
            "name": name,
            "previous_hp": current_hp,
            "new_hp": new_hp,
            "max_hp": max_hp,
            "delta": delta,
            "is_unconscious": is_unconscious,
            "is_dead": is_dead,
        },
    )


@dataclass(frozen=True)
class NpcCombatant:
    """An NPC or ad-hoc enemy entering initiative.

    Attributes:
        id: Initiative id (NPC id or generated ``npc_enemy_<n>``).
        name: Display name.
        hp: Current hit points.
        max_hp: Maximum hit points.
        ac: Armor class.
        dexterity: Raw DEX score; None means a +0 modifier.
        attack_bonus: Attack bonus used when the NPC attacks.
        damage_dice: Damage notation used when the NPC attacks.
    """

    id: str
    name: str
    hp: int
    max_hp: int
    ac: int
    dexterity: int | None = None
    attack_bonus: int | None = None
    damage_dice: str | None = None


def party_initiative_id(character_id: int) -> str:
    return f"pc_{character_id}"


def roll_initiative(
    party: Sequence[CharacterState],
    npcs: Sequence[NpcCombatant],
    *,
    roller: DiceRoller | None = None,
) -> tuple[list[InitiativeEntry], MechanicsResult]:
    """Roll initiative for everyone entering combat.

    Each combatant rolls d20 + DEX modifier. The order is sorted
    descending with a stable sort, so ties keep insertion order: party
    members first, then NPCs.

    Args:
        party: Party members entering combat.
        npcs: NPC combatants entering combat.
        roller: Dice source.

    Returns:
        The sorted initiative order and an ``initiative_roll`` result.
    """
    roller = roller or get_default_roller()
    entries: list[InitiativeEntry] = []
    rolls: dict[str, int] = {}

    for character in party:
        natural = roller.roll_die(20)
        entry_id = party_initiative_id(character.id)
        rolls[entry_id] = natural
        entries.append(
            InitiativeEntry(
                id=entry_id,
                name=character.name,
                initiative=natural + ability_modifier(character.abilities.dexterity),
                type=CombatantType.PC,
                hp=character.current_hp,
                max_hp=character.max_hp,
                ac=character.armor_class,
            )
        )

    for npc in npcs:
        natural = roller.roll_die(20)
        dex_mod = ability_modifier(npc.dexterity) if npc.dexterity is not None else 0
        rolls[npc.id] = natural
        entries.append(
            InitiativeEntry(
                id=npc.id,
                name=npc.name,
                initiative=natural + dex_mod,
                type=CombatantType.NPC,
                hp=npc.hp,
                max_hp=npc.max_hp,
                ac=npc.ac,
                attack_bonus=npc.attack_bonus,
                damage_dice=npc.damage_dice,
            )
        )

    order = sorted(entries, key=lambda entry: entry.initiative, reverse=True)
    summary = "Initiative order: " + ", ".join(f"{e.name} ({e.initiative})" for e in order)
    result = MechanicsResult(
        type=MechanicsEventType.INITIATIVE_ROLL,
        success=True,
        summary=summary,
        details={
            "initiative_order": [entry.model_dump(mode="json") for entry in order],
            "natural_rolls": rolls,
        },
    )
    return order, result


def resolve_turn_advance(encounter: EncounterState) -> tuple[int, int, MechanicsResult]:
    """Move an encounter to its next combatant.

    Args:
        encounter: The active encounter.

    Returns:
        ``(turn_index, round, result)`` after advancing; passing the last
        combatant wraps to index 0 of the next round.
    """
    count = len(encounter.initiative_order)
    previous = encounter.current_combatant
    if count == 0:
        return 0, encounter.current_round, MechanicsResult(
            type=MechanicsEventType.TURN_ADVANCE,
            success=False,
            summary="There is nobody in the initiative order",
            details={"round": encounter.current_round, "turn_index": 0},
        )

    next_index = encounter.current_turn_index + 1
    next_round = encounter.current_round
    new_round = next_index >= count
    if new_round:
        next_index = 0
        next_round += 1
    current = encounter.initiative_order[next_index]

    summary = f"Round {next_round}: {current.name}'s turn"
    if new_round:
        summary = f"Round {next_round} begins. {current.name}'s turn"
    return next_index, next_round, MechanicsResult(
        type=MechanicsEventType.TURN_ADVANCE,
        success=True,
        summary=summary,
        details={
            "previous_combatant_id": previous.id if previous else None,
            "current_combatant_id": current.id,
            "current_combatant_name": current.name,
            "round": next_round,
            "turn_index": next_index,
            "new_round": new_round,
        },
    )


# =============================================================================
# Spellcasting
# =============================================================================


def cast_spell(
    *,
    caster_name: str,
    spell_name: str,
    spell_level: int,
    spell_slots: dict[int, int],
) -> tuple[MechanicsResult, dict[int, int]]:
    """Spend a spell slot for a spell.

    Cantrips (level 0) always succeed and never touch slots. A leveled
    spell fails when no slot of its level remains; otherwise one slot is
    spent. The input table is never mutated.

    Args:
        caster_name: Who casts.
        spell_name: Spell being cast.
        spell_level: Slot level, 0 for cantrips.
        spell_slots: Remaining slots by level.

    Returns:
        The ``spell_cast`` result and the (possibly) updated slot table.
    """
    slots = dict(spell_slots)

    if spell_level == 0:
        return MechanicsResult(
            type=MechanicsEventType.SPELL_CAST,
            success=True,
            summary=f"{caster_name} casts {spell_name} (cantrip)",
            details={
                "caster_name": caster_name,
                "spell_name": spell_name,
                "spell_level": 0,
                "is_cantrip": True,
                "remaining_slots": slots,
            },
        ), slots

    remaining = slots.get(spell_level, 0)
    if remaining <= 0:
        return MechanicsResult(
            type=MechanicsEventType.SPELL_CAST,
            success=False,
            summary=f"{caster_name} cannot cast {spell_name}: no level {spell_level} spell slots remaining!",
            details={
                "caster_name": caster_name,
                "spell_name": spell_name,
                "spell_level": spell_level,
                "is_cantrip": False,
                "slots_remaining": 0,
                "remaining_slots": slots,
            },
        ), slots

    slots[spell_level] = remaining - 1
    return MechanicsResult(
        type=MechanicsEventType.SPELL_CAST,
        success=True,
        summary=(
            f"{caster_name} casts {spell_name} using a level {spell_level} slot "
            f"({slots[spell_level]} remaining)"
        ),
        details={
            "caster_name": caster_name,
            "spell_name": spell_name,
            "spell_level": spell_level,
            "is_cantrip": False,
            "slots_remaining": slots[spell_level],
            "remaining_slots": slots,
        },
    ), slots


# =============================================================================
# Passive detection
# =============================================================================


def run_passive_checks(
    characters: Sequence[CharacterState],
    hidden_objects: Sequence[HiddenObject],
) -> list[MechanicsResult]:
    """Compare party passive scores against undiscovered hidden objects.

    Clues and secret doors use investigation, everything else uses
    perception. The first party member (in party order) whose passive
    score meets the DC finds the object. Results are always hidden.

    Args:
        characters: Party members, in party order.
        hidden_objects: Hidden objects at the current location.

    Returns:
        One hidden ``passive_check`` result per newly found object.
    """
    results: list[MechanicsResult] = []
    for obj in hidden_objects:
        if obj.discovered:
            continue
        skill = obj.type.detection_skill
        for character in characters:
            score = passive_score(character, skill)
            if score < obj.dc:
                continue
            results.append(
                MechanicsResult(
                    type=MechanicsEventType.PASSIVE_CHECK,
                    success=True,
                    summary=f"{character.name} noticed {obj.name} (passive {skill.display_name})",
                    details={
                        "character_id": character.id,
                        "character_name": character.name,
                        "skill": skill.value,
                        "passive_score": score,
                        "object_name": obj.name,
                        "object_type": obj.type.value,
                        "object_dc": obj.dc,
                        "object_description": obj.description,
                        "discovered": True,
                    },
                    is_hidden=True,
                )
            )
            break
    return results


# =============================================================================
# Death saves
# =============================================================================


def roll_death_save(
    *,
    character_name: str,
    state: DeathSaveState,
    roller: DiceRoller | None = None,
) -> tuple[MechanicsResult, DeathSaveState]:
    """Roll a death saving throw.

    A natural 20 clears both counters and the character regains
    consciousness. A natural 1 counts as two failures. Otherwise 10 or
    more is a success. Three successes stabilize, three failures kill.

    Args:
        character_name: Who is dying.
        state: Counters before the roll.
        roller: Dice source.

    Returns:
        The ``death_save`` result and the updated counters.
    """
    roller = roller or get_default_roller()
    roll = roller.roll_die(20)
    successes, failures = state.successes, state.failures
    regained = False

    if roll == 20:
        successes, failures = 0, 0
        regained = True
    elif roll == 1:
        failures = min(MAX_DEATH_SAVES, failures + 2)
    elif roll >= DEATH_SAVE_THRESHOLD:
        successes = min(MAX_DEATH_SAVES, successes + 1)
    else:
        failures = min(MAX_DEATH_SAVES, failures + 1)

    updated = DeathSaveState(character_id=state.character_id, successes=successes, failures=failures)

    if regained:
        summary = f"{character_name} rolls a natural 20 on a death save and regains consciousness!"
    else:
        outcome = "SUCCESS" if roll >= DEATH_SAVE_THRESHOLD else "FAILURE"
        if roll == 1:
            outcome = "CRITICAL FAILURE (two failures)"
        summary = (
            f"{character_name} death save: {roll} → {outcome} "
            f"({successes}/{MAX_DEATH_SAVES} successes, {failures}/{MAX_DEATH_SAVES} failures)"
        )
        if updated.is_stable:
            summary += " STABILIZED"
        if updated.is_dead:
            summary += " DEAD"

    return MechanicsResult(
        type=MechanicsEventType.DEATH_SAVE,
        success=roll >= DEATH_SAVE_THRESHOLD,
        summary=summary,
        details={
            "character_id": state.character_id,
            "character_name": character_name,
            "roll": roll,
            "successes": successes,
            "failures": failures,
            "is_stable": updated.is_stable,
            "is_dead": updated.is_dead,
            "regained_consciousness": regained,
        },
    ), updated


# =============================================================================
# NPC goals and free rolls
# =============================================================================


def advance_npc_goal(
    *,
    npc_name: str,
    goal: str,
    progress: int,
    increment: int = NPC_GOAL_INCREMENT,
) -> MechanicsResult:
    """Advance an NPC's goal by a fixed increment, capped at 100.

    Always hidden from narration.
    """
    new_progress = min(MAX_GOAL_PROGRESS, progress + increment)
    completed = new_progress >= MAX_GOAL_PROGRESS
    if completed:
        summary = f"{npc_name} has completed their goal: {goal}"
    else:
        summary = f"{npc_name} progresses toward their goal ({goal}): {progress}% → {new_progress}%"
    return MechanicsResult(
        type=MechanicsEventType.NPC_GOAL_ADVANCE,
        success=True,
        summary=summary,
        details={
            "npc_name": npc_name,
            "goal": goal,
            "previous_progress": progress,
            "new_progress": new_progress,
            "completed": completed,
        },
        is_hidden=True,
    )


def roll_dice(
    notation: str,
    *,
    purpose: str | None = None,
    roller: DiceRoller | None = None,
) -> MechanicsResult:
    """Roll an arbitrary dice expression on the narrator's behalf."""
    roller = roller or get_default_roller()
    roll = roller.roll_notation(notation)
    label = f" for {purpose}" if purpose else ""
    modifier = f" {_signed(roll.modifier)}" if roll.modifier else ""
    return MechanicsResult(
        type=MechanicsEventType.DICE_ROLL,
        success=True,
        summary=f"Rolled {roll.notation}{label}: {list(roll.rolls)}{modifier} = {roll.total}",
        details={
            "requested_notation": notation,
            "notation": roll.notation,
            "rolls": list(roll.rolls),
            "modifier": roll.modifier,
            "total": roll.total,
            "purpose": purpose,
        },
    )


__all__ = [
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
    "party_initiative_id",
    "roll_initiative",
    "resolve_turn_advance",
    "cast_spell",
    "run_passive_checks",
    "roll_death_save",
    "advance_npc_goal",
    "roll_dice",
]
