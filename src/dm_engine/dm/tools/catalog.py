"""The DM's toolkit.

Every mechanical action the narrator can request is listed here: an
argument model, a handler and an entry in the closed registry built by
``create_dm_tools``. Handlers resolve mechanics through the rules engine,
persist the state they change and append their result to the audit log.

CRITICAL: LLMs request these tools, Python executes them.
"""

from __future__ import annotations

import re
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field, model_validator

from dm_engine.core.constants import (
    DEFAULT_ENEMY_AC,
    DEFAULT_ENEMY_ATTACK_BONUS,
    DEFAULT_ENEMY_DAMAGE_DICE,
    DEFAULT_ENEMY_MAX_HP,
    MAX_DISPOSITION,
    MIN_DISPOSITION,
)
from dm_engine.core.logging import get_logger
from dm_engine.dm.tools.base import DMTool, ToolContext, ToolRegistry
from dm_engine.engine import rules
from dm_engine.models.entities import CharacterState, HiddenObject, NpcCombatStats
from dm_engine.models.enums import (
    Ability,
    CombatantType,
    GameMode,
    HiddenObjectType,
    MechanicsEventType,
    Skill,
)
from dm_engine.models.game_state import DeathSaveState, EncounterState, InitiativeEntry, MechanicsResult


logger = get_logger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z])(?=[A-Z])")


def _snake(value: object) -> object:
    """Accept ``sleightOfHand`` or ``Sleight of Hand`` for ``sleight_of_hand``."""
    if not isinstance(value, str):
        return value
    value = _CAMEL_BOUNDARY.sub("_", value.strip())
    return re.sub(r"[\s-]+", "_", value).lower()


# =============================================================================
# Argument Models
# =============================================================================


class RollSkillCheckArgs(BaseModel):
    character_id: int = Field(description="The character's database ID")
    skill: Annotated[Skill, BeforeValidator(_snake)] = Field(description="The skill to check")
    dc: Annotated[int, Field(ge=1, le=40)] = Field(description="The difficulty class (DC) to beat")
    advantage: bool = Field(default=False, description="Whether the character has advantage")
    disadvantage: bool = Field(default=False, description="Whether the character has disadvantage")


class RollSavingThrowArgs(BaseModel):
    character_id: int = Field(description="The character's database ID")
    ability: Annotated[Ability, BeforeValidator(_snake)] = Field(description="The ability for the saving throw")
    dc: Annotated[int, Field(ge=1, le=40)] = Field(description="The difficulty class to beat")
    advantage: bool = False
    disadvantage: bool = False


class RollAttackArgs(BaseModel):
    attacker_name: str = Field(min_length=1, description="Name of the attacker")
    attack_bonus: int = Field(description="The attack bonus modifier")
    target_name: str = Field(min_length=1, description="Name of the target")
    target_ac: Annotated[int, Field(ge=0, le=40)] = Field(description="The target's armor class")
    damage_dice: str = Field(min_length=1, description="Damage dice notation, e.g. '1d8+3'")
    damage_type: str = Field(default="slashing", description="Type of damage (slashing, piercing, fire, etc.)")
    weapon: str | None = Field(default=None, description="Name of the weapon or spell used")
    target_id: str | None = Field(
        default=None, description="Initiative id of the target during combat, e.g. 'npc_enemy_0'"
    )
    advantage: bool = False
    disadvantage: bool = False


class CastSpellArgs(BaseModel):
    character_id: int = Field(description="The caster's character ID")
    spell_name: str = Field(min_length=1, description="Name of the spell")
    spell_level: Annotated[int, Field(ge=0, le=9)] = Field(description="Level of the spell (0 for cantrips)")


class UpdateHpArgs(BaseModel):
    character_id: int = Field(description="The character's database ID")
    amount: int = Field(description="HP change: positive for healing, negative for damage")
    reason: str = Field(default="", description="Why the HP is changing")


class EnemyArgs(BaseModel):
    name: str = Field(min_length=1)
    ac: Annotated[int, Field(ge=0)] = DEFAULT_ENEMY_AC
    max_hp: Annotated[int, Field(ge=1)] = DEFAULT_ENEMY_MAX_HP
    attack_bonus: int = DEFAULT_ENEMY_ATTACK_BONUS
    damage_dice: str = DEFAULT_ENEMY_DAMAGE_DICE
    dexterity: Annotated[int, Field(ge=1, le=30)] | None = None


class StartCombatArgs(BaseModel):
    enemies: list[EnemyArgs] = Field(min_length=1, description="Stats for each enemy combatant")


class EndCombatArgs(BaseModel):
    reason: str = Field(default="combat is over", description="Why combat ended (victory, retreat, surrender, etc.)")


class EndTurnArgs(BaseModel):
    pass


class HiddenObjectArgs(BaseModel):
    name: str = Field(min_length=1)
    dc: Annotated[int, Field(ge=1, le=30)]
    type: HiddenObjectType = HiddenObjectType.OTHER
    description: str = ""


class MoveToLocationArgs(BaseModel):
    location_id: int | None = Field(default=None, description="ID of the destination location")
    location_name: str | None = Field(default=None, description="Name of the destination (for creating new locations)")
    location_description: str = Field(default="", description="Description of the location if it's new")
    hidden_objects: list[HiddenObjectArgs] = Field(
        default_factory=list, description="Hidden objects in the new location with their DCs"
    )

    @model_validator(mode="after")
    def validate_destination(self) -> "MoveToLocationArgs":
        if self.location_id is None and not (self.location_name or "").strip():
            raise ValueError("Either location_id or location_name is required")
        names = [obj.name for obj in self.hidden_objects]
        if len(names) != len(set(names)):
            raise ValueError("Hidden object names must be unique")
        return self


class NpcStatsArgs(BaseModel):
    ac: Annotated[int, Field(ge=0)] = 10
    max_hp: Annotated[int, Field(ge=1)] = 10
    attack_bonus: int = 0
    damage_dice: str = "1d6"
    dexterity: Annotated[int, Field(ge=1, le=30)] | None = None


class CreateNpcArgs(BaseModel):
    name: str = Field(min_length=1, description="NPC name")
    npc_type: str = Field(
        default="neutral",
        description="friendly, neutral, hostile, merchant, quest_giver or boss",
    )
    description: str = Field(default="", description="Short description")
    current_goal: str | None = Field(default=None, description="What is this NPC currently trying to accomplish?")
    disposition: Annotated[int, Field(ge=MIN_DISPOSITION, le=MAX_DISPOSITION)] = Field(
        default=0, description="Attitude toward party: -100 (hostile) to 100 (allied)"
    )
    personality: str = Field(default="", description="How this NPC speaks and behaves")
    stats: NpcStatsArgs | None = Field(default=None, description="Combat stats (optional, for hostile NPCs)")


class AdvanceTimeArgs(BaseModel):
    new_time: str = Field(min_length=1, description="New time description, e.g. 'Day 2, Evening'")
    mode: GameMode | None = Field(default=None, description="New game mode")


class RollDeathSaveArgs(BaseModel):
    character_id: int = Field(description="The dying character's database ID")


class RollDiceArgs(BaseModel):
    notation: str = Field(min_length=1, description="Dice notation, e.g. '2d6+3' or 'd20'")
    purpose: str | None = Field(default=None, description="What the roll is for")


# =============================================================================
# Shared helpers
# =============================================================================


def _character_not_found(character_id: int) -> MechanicsResult:
    return MechanicsResult.error(
        "character_not_found",
        f"Character {character_id} not found",
        character_id=character_id,
    )


def _no_active_encounter() -> MechanicsResult:
    return MechanicsResult.error("no_active_encounter", "There is no active combat encounter")


def _with_details(result: MechanicsResult, **details: object) -> MechanicsResult:
    return result.model_copy(update={"details": {**result.details, **details}})


def _find_combatant(
    encounter: EncounterState,
    combatant_id: str | None,
    name: str | None,
) -> InitiativeEntry | None:
    if combatant_id:
        entry = encounter.find_combatant(combatant_id)
        if entry is not None:
            return entry
    if name:
        wanted = name.strip().lower()
        for entry in encounter.initiative_order:
            if entry.name.lower() == wanted:
                return entry
    return None


def _set_combatant_hp(ctx: ToolContext, encounter: EncounterState, combatant_id: str, hp: int) -> None:
    order = [
        entry.model_copy(update={"hp": max(0, min(entry.max_hp, hp))}) if entry.id == combatant_id else entry
        for entry in encounter.initiative_order
    ]
    ctx.db.update_encounter(encounter.id, initiative_order=order)


def _set_character_hp(ctx: ToolContext, character: CharacterState, hp: int) -> CharacterState:
    """Persist HP, refresh the in-turn map and mirror into the active encounter."""
    ctx.db.update_character_hp(character.id, hp)
    updated = character.model_copy(update={"current_hp": hp})
    ctx.characters[character.id] = updated

    encounter = ctx.db.get_active_encounter(ctx.campaign_id)
    combatant_id = rules.party_initiative_id(character.id)
    if encounter is not None and encounter.find_combatant(combatant_id) is not None:
        _set_combatant_hp(ctx, encounter, combatant_id, hp)
    return updated


# =============================================================================
# Handlers
# =============================================================================


def handle_roll_skill_check(ctx: ToolContext, args: RollSkillCheckArgs) -> MechanicsResult:
    """Roll a skill check for a party member."""
    character = ctx.character(args.character_id)
    if character is None:
        return _character_not_found(args.character_id)

    result = rules.resolve_skill_check(
        character,
        args.skill,
        args.dc,
        advantage=args.advantage,
        disadvantage=args.disadvantage,
        roller=ctx.roller,
    )
    return ctx.record(result, actor_id=rules.party_initiative_id(character.id))


def handle_roll_saving_throw(ctx: ToolContext, args: RollSavingThrowArgs) -> MechanicsResult:
    character = ctx.character(args.character_id)
    if character is None:
        return _character_not_found(args.character_id)

    result = rules.resolve_saving_throw(
        character,
        args.ability,
        args.dc,
        advantage=args.advantage,
        disadvantage=args.disadvantage,
        roller=ctx.roller,
    )
    return ctx.record(result, actor_id=rules.party_initiative_id(character.id))


def handle_roll_attack(ctx: ToolContext, args: RollAttackArgs) -> MechanicsResult:
    """Roll an attack and apply its damage to an NPC combatant.

    Damage to party members is not applied here; the narrator follows up
    with ``update_hp`` for them.
    """
    result = rules.resolve_attack(
        attacker_name=args.attacker_name,
        attack_bonus=args.attack_bonus,
        target_name=args.target_name,
        target_ac=args.target_ac,
        damage_dice=args.damage_dice,
        damage_type=args.damage_type,
        weapon=args.weapon,
        advantage=args.advantage,
        disadvantage=args.disadvantage,
        roller=ctx.roller,
    )

    actor_id: str = args.attacker_name
    target_id: str = args.target_id or args.target_name
    encounter = ctx.db.get_active_encounter(ctx.campaign_id)
    if encounter is not None:
        attacker = _find_combatant(encounter, None, args.attacker_name)
        if attacker is not None:
            actor_id = attacker.id

        target = _find_combatant(encounter, args.target_id, args.target_name)
        if target is not None:
            target_id = target.id
        if target is not None and target.type == CombatantType.NPC:
            hp_after = target.hp
            if result.details["hit"]:
                hp_after = max(0, target.hp - result.details["damage_total"])
                _set_combatant_hp(ctx, encounter, target.id, hp_after)
            defeated = bool(result.details["hit"]) and hp_after == 0
            result = _with_details(
                result,
                target_id=target.id,
                target_hp_after=hp_after,
                target_defeated=defeated,
            )
            if defeated:
                result = result.model_copy(update={"summary": f"{result.summary} {target.name} is down!"})

    return ctx.record(result, actor_id=actor_id, target_id=target_id)


def handle_cast_spell(ctx: ToolContext, args: CastSpellArgs) -> MechanicsResult:
    character = ctx.character(args.character_id)
    if character is None:
        return _character_not_found(args.character_id)

    result, slots = rules.cast_spell(
        caster_name=character.name,
        spell_name=args.spell_name,
        spell_level=args.spell_level,
        spell_slots=character.spell_slots,
    )
    if result.success and not result.details["is_cantrip"]:
        ctx.db.update_character_spell_slots(character.id, slots)
        ctx.characters[character.id] = character.model_copy(update={"spell_slots": slots})

    return ctx.record(result, actor_id=rules.party_initiative_id(character.id))


def handle_update_hp(ctx: ToolContext, args: UpdateHpArgs) -> MechanicsResult:
    """Apply damage or healing to a party member.

    Healing above 0 HP clears the character's death-save counters. Massive
    damage records three failed saves, and the dead take no further changes.
    """
    character = ctx.character(args.character_id)
    if character is None:
        return _character_not_found(args.character_id)
    if ctx.db.get_death_saves(character.id).is_dead:
        return MechanicsResult.error(
            "character_dead",
            f"{character.name} is dead",
            character_id=character.id,
        )

    result = rules.apply_hp_change(
        name=character.name,
        current_hp=character.current_hp,
        max_hp=character.max_hp,
        delta=args.amount,
    )
    new_hp = result.details["new_hp"]
    _set_character_hp(ctx, character, new_hp)
    if result.details["is_dead"]:
        ctx.db.save_death_saves(DeathSaveState(character_id=character.id, failures=3))
    elif new_hp > 0:
        ctx.db.clear_death_saves(character.id)
    if args.reason:
        result = _with_details(result, reason=args.reason)

    return ctx.record(result, actor_id=rules.party_initiative_id(character.id))


def handle_start_combat(ctx: ToolContext, args: StartCombatArgs) -> MechanicsResult:
    """Roll initiative for the party and the given enemies and enter combat."""
    enemies = [
        rules.NpcCombatant(
            id=f"npc_enemy_{index}",
            name=enemy.name,
            hp=enemy.max_hp,
            max_hp=enemy.max_hp,
            ac=enemy.ac,
            dexterity=enemy.dexterity,
            attack_bonus=enemy.attack_bonus,
            damage_dice=enemy.damage_dice,
        )
        for index, enemy in enumerate(args.enemies)
    ]
    order, result = rules.roll_initiative(list(ctx.characters.values()), enemies, roller=ctx.roller)

    encounter = ctx.db.create_encounter(ctx.campaign_id, order)
    ctx.db.update_game_state(ctx.campaign_id, mode=GameMode.COMBAT)
    logger.info("Combat started", campaign_id=ctx.campaign_id, encounter_id=encounter.id, combatants=len(order))

    result = _with_details(result, encounter_id=encounter.id)
    result = result.model_copy(update={"summary": f"Combat started! {result.summary}"})
    return ctx.record(result)


def handle_end_combat(ctx: ToolContext, args: EndCombatArgs) -> MechanicsResult:
    encounter = ctx.db.get_active_encounter(ctx.campaign_id)
    if encounter is None:
        return _no_active_encounter()

    ctx.db.deactivate_encounters(ctx.campaign_id)
    ctx.db.update_game_state(ctx.campaign_id, mode=GameMode.EXPLORATION)

    result = MechanicsResult(
        type=MechanicsEventType.COMBAT_END,
        success=True,
        summary=f"Combat ended after {encounter.current_round} rounds: {args.reason}. Returning to exploration mode.",
        details={
            "encounter_id": encounter.id,
            "rounds": encounter.current_round,
            "reason": args.reason,
            "new_mode": GameMode.EXPLORATION.value,
        },
    )
    return ctx.record(result)


def handle_end_turn(ctx: ToolContext, args: EndTurnArgs) -> MechanicsResult:
    """Advance the active encounter to the next combatant."""
    encounter = ctx.db.get_active_encounter(ctx.campaign_id)
    if encounter is None:
        return _no_active_encounter()

    next_index, next_round, result = rules.resolve_turn_advance(encounter)
    ctx.db.update_encounter(encounter.id, current_round=next_round, current_turn_index=next_index)
    return ctx.record(result, actor_id=result.details.get("current_combatant_id"))


def handle_move_to_location(ctx: ToolContext, args: MoveToLocationArgs) -> MechanicsResult:
    """Move the party, creating the destination when no id is given."""
    created = False
    if args.location_id is not None:
        location = ctx.db.get_location(args.location_id)
        if location is None or location.campaign_id != ctx.campaign_id:
            return MechanicsResult.error(
                "location_not_found",
                f"Location {args.location_id} not found",
                location_id=args.location_id,
            )
    else:
        location = ctx.db.create_location(
            ctx.campaign_id,
            (args.location_name or "").strip(),
            description=args.location_description,
            hidden_objects=[HiddenObject(**obj.model_dump()) for obj in args.hidden_objects],
        )
        created = True

    first_visit = not location.is_visited
    ctx.db.update_game_state(ctx.campaign_id, current_location_id=location.id)
    ctx.db.mark_location_visited(location.id)

    result = MechanicsResult(
        type=MechanicsEventType.LOCATION_CHANGE,
        success=True,
        summary=f"Party moved to: {location.name}",
        details={
            "location_id": location.id,
            "location_name": location.name,
            "description": location.description,
            "created": created,
            "first_visit": first_visit,
        },
    )
    return ctx.record(result, target_id=f"location_{location.id}")


def handle_create_npc(ctx: ToolContext, args: CreateNpcArgs) -> MechanicsResult:
    """Create an NPC at the party's current location."""
    state = ctx.db.get_or_create_game_state(ctx.campaign_id)
    combat_stats = None
    if args.stats is not None:
        combat_stats = NpcCombatStats(
            armor_class=args.stats.ac,
            max_hp=args.stats.max_hp,
            current_hp=args.stats.max_hp,
            attack_bonus=args.stats.attack_bonus,
            damage_dice=args.stats.damage_dice,
            dexterity=args.stats.dexterity,
        )

    npc = ctx.db.create_npc(
        ctx.campaign_id,
        args.name,
        npc_type=args.npc_type,
        description=args.description,
        personality=args.personality,
        current_goal=args.current_goal,
        disposition=args.disposition,
        combat_stats=combat_stats,
        location_id=state.current_location_id,
    )

    result = MechanicsResult(
        type=MechanicsEventType.NPC_CREATED,
        success=True,
        summary=f"NPC created: {npc.name} ({npc.npc_type})",
        details={
            "npc_id": npc.id,
            "npc_name": npc.name,
            "npc_type": npc.npc_type,
            "location_id": npc.location_id,
        },
    )
    return ctx.record(result, target_id=f"npc_{npc.id}")


def handle_advance_time(ctx: ToolContext, args: AdvanceTimeArgs) -> MechanicsResult:
    changes: dict[str, object] = {"in_game_time": args.new_time}
    if args.mode is not None:
        changes["mode"] = args.mode
    ctx.db.update_game_state(ctx.campaign_id, **changes)

    mode = f" ({args.mode.value} mode)" if args.mode else ""
    result = MechanicsResult(
        type=MechanicsEventType.TIME_ADVANCE,
        success=True,
        summary=f"Time advanced to: {args.new_time}{mode}",
        details={"new_time": args.new_time, "mode": args.mode.value if args.mode else None},
    )
    return ctx.record(result)


def handle_roll_death_save(ctx: ToolContext, args: RollDeathSaveArgs) -> MechanicsResult:
    """Roll a death save for a party member at 0 HP.

    A natural 20 brings the character back at 1 HP. Stabilizing clears
    the counters; three failures leave them in place.
    """
    character = ctx.character(args.character_id)
    if character is None:
        return _character_not_found(args.character_id)
    if character.current_hp > 0:
        return MechanicsResult.error(
            "not_dying",
            f"{character.name} is not dying ({character.current_hp} HP)",
            character_id=character.id,
        )

    state = ctx.db.get_death_saves(character.id)
    if state.is_dead:
        return MechanicsResult.error(
            "not_dying",
            f"{character.name} is dead and cannot make death saves",
            character_id=character.id,
        )

    result, updated = rules.roll_death_save(character_name=character.name, state=state, roller=ctx.roller)
    if result.details["regained_consciousness"]:
        ctx.db.clear_death_saves(character.id)
        _set_character_hp(ctx, character, 1)
        result = _with_details(result, new_hp=1)
    elif updated.is_stable:
        ctx.db.clear_death_saves(character.id)
    else:
        ctx.db.save_death_saves(updated)

    return ctx.record(result, actor_id=rules.party_initiative_id(character.id))


def handle_roll_dice(ctx: ToolContext, args: RollDiceArgs) -> MechanicsResult:
    result = rules.roll_dice(args.notation, purpose=args.purpose, roller=ctx.roller)
    return ctx.record(result)


# =============================================================================
# Registry
# =============================================================================


def create_dm_tools() -> list[DMTool]:
    """Create the DM's toolkit.

    These tools allow the LLM to:
    - Roll checks, saves, attacks and free dice
    - Spend spell slots and change hit points
    - Start, advance and end combat
    - Move the party, create NPCs and advance the clock
    """
    return [
        DMTool(
            name="roll_skill_check",
            description=(
                "Roll a skill check for a character against a difficulty class (DC). "
                "Use this when a character attempts something that requires a skill."
            ),
            args_model=RollSkillCheckArgs,
            handler=handle_roll_skill_check,
        ),
        DMTool(
            name="roll_saving_throw",
            description="Roll a saving throw for a character against a DC. Use when a character needs to resist an effect.",
            args_model=RollSavingThrowArgs,
            handler=handle_roll_saving_throw,
        ),
        DMTool(
            name="roll_attack",
            description=(
                "Roll an attack against a target. Handles the attack roll and damage if hit. "
                "Damage to enemies in combat is applied automatically; use update_hp for party members."
            ),
            args_model=RollAttackArgs,
            handler=handle_roll_attack,
        ),
        DMTool(
            name="cast_spell",
            description=(
                "Cast a spell, consuming a spell slot. Validates that the character has available slots. "
                "Cantrips (level 0) don't consume slots."
            ),
            args_model=CastSpellArgs,
            handler=handle_cast_spell,
        ),
        DMTool(
            name="update_hp",
            description="Apply healing or damage to a character. Use positive numbers for healing, negative for damage.",
            args_model=UpdateHpArgs,
            handler=handle_update_hp,
        ),
        DMTool(
            name="start_combat",
            description="Initiate a combat encounter. Rolls initiative for all participants and enters combat mode.",
            args_model=StartCombatArgs,
            handler=handle_start_combat,
        ),
        DMTool(
            name="end_turn",
            description="End the current combatant's turn and advance to the next in initiative order.",
            args_model=EndTurnArgs,
            handler=handle_end_turn,
        ),
        DMTool(
            name="end_combat",
            description="End the current combat encounter and return to exploration mode.",
            args_model=EndCombatArgs,
            handler=handle_end_combat,
        ),
        DMTool(
            name="move_to_location",
            description=(
                "Move the party to a different location. Give location_id for a known place, "
                "or location_name (plus description and hidden objects) to create a new one."
            ),
            args_model=MoveToLocationArgs,
            handler=handle_move_to_location,
        ),
        DMTool(
            name="create_npc",
            description="Create a new NPC in the current location with a goal and personality.",
            args_model=CreateNpcArgs,
            handler=handle_create_npc,
        ),
        DMTool(
            name="advance_time",
            description="Advance the in-game time. Use for rests, travel, or passage of time.",
            args_model=AdvanceTimeArgs,
            handler=handle_advance_time,
        ),
        DMTool(
            name="roll_death_save",
            description="Roll a death saving throw for a character at 0 HP.",
            args_model=RollDeathSaveArgs,
            handler=handle_roll_death_save,
        ),
        DMTool(
            name="roll_dice",
            description="Roll arbitrary dice, e.g. for an NPC's check or a random table. Never invent dice results.",
            args_model=RollDiceArgs,
            handler=handle_roll_dice,
        ),
    ]


def build_tool_registry() -> ToolRegistry:
    return ToolRegistry(create_dm_tools())


TOOL_NAMES = tuple(tool.name for tool in create_dm_tools())


__all__ = [
    "TOOL_NAMES",
    "create_dm_tools",
    "build_tool_registry",
]
