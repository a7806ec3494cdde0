"""Tests for the rules resolvers."""

from __future__ import annotations

import pytest

from dm_engine.engine import rules
from dm_engine.engine.dice import DiceRoller
from dm_engine.models.entities import HiddenObject
from dm_engine.models.enums import Ability, CombatantType, HiddenObjectType, MechanicsEventType, Skill
from dm_engine.models.game_state import DeathSaveState, EncounterState, InitiativeEntry, MechanicsResult


class TestDerivedStats:
    """Tests for modifiers, proficiency and bonuses."""

    @pytest.mark.parametrize(("score", "modifier"), [(1, -5), (8, -1), (9, -1), (10, 0), (11, 0), (16, 3), (20, 5)])
    def test_ability_modifier(self, score: int, modifier: int) -> None:
        assert rules.ability_modifier(score) == modifier

    @pytest.mark.parametrize(("level", "bonus"), [(1, 2), (4, 2), (5, 3), (9, 4), (17, 6), (20, 6)])
    def test_proficiency_bonus(self, level: int, bonus: int) -> None:
        assert rules.proficiency_bonus(level) == bonus

    def test_skill_bonus_with_proficiency(self, make_character) -> None:
        """Test DEX 16 at level 5 with stealth proficiency gives +6."""
        rogue = make_character(dexterity=16, skills={"stealth": True})

        assert rules.skill_bonus(rogue, Skill.STEALTH) == 6
        assert rules.skill_bonus(rogue, Skill.ACROBATICS) == 3

    def test_passive_score(self, make_character) -> None:
        scout = make_character(wisdom=16, skills={"perception": True})

        assert rules.passive_score(scout, Skill.PERCEPTION) == 16


class TestSkillChecks:
    """Tests for skill checks and saving throws."""

    def test_check_meets_dc(self, make_character, loaded_dice, roller: DiceRoller) -> None:
        """Test a natural 12 with +6 against DC 15."""
        rogue = make_character(dexterity=16, skills={"stealth": True})
        loaded_dice.push(12)

        result = rules.resolve_skill_check(rogue, Skill.STEALTH, 15, roller=roller)

        assert result.type == MechanicsEventType.SKILL_CHECK
        assert result.success is True
        assert result.details["total"] == 18
        assert result.details["proficient"] is True
        assert "18 vs DC 15" in result.summary

    def test_natural_one_always_fails(self, make_character, loaded_dice, roller: DiceRoller) -> None:
        """Test that a natural 1 fails even when the total beats the DC."""
        expert = make_character(dexterity=30, level=20, skills={"stealth": True})
        loaded_dice.push(1)

        result = rules.resolve_skill_check(expert, Skill.STEALTH, 5, roller=roller)

        assert result.success is False
        assert result.details["is_critical_fail"] is True

    def test_natural_twenty_always_succeeds(self, make_character, loaded_dice, roller: DiceRoller) -> None:
        clumsy = make_character(dexterity=3)
        loaded_dice.push(20)

        result = rules.resolve_skill_check(clumsy, Skill.ACROBATICS, 30, roller=roller)

        assert result.success is True
        assert result.details["is_critical"] is True

    def test_advantage_uses_higher_roll(self, make_character, loaded_dice, roller: DiceRoller) -> None:
        character = make_character()
        loaded_dice.push(4, 16)

        result = rules.resolve_skill_check(character, Skill.ATHLETICS, 10, advantage=True, roller=roller)

        assert result.details["rolls"] == [4, 16]
        assert result.details["natural"] == 16
        assert result.details["roll_mode"] == "advantage"

    def test_disadvantage_uses_lower_roll(self, make_character, loaded_dice, roller: DiceRoller) -> None:
        character = make_character()
        loaded_dice.push(4, 16)

        result = rules.resolve_skill_check(character, Skill.ATHLETICS, 10, disadvantage=True, roller=roller)

        assert result.details["natural"] == 4
        assert result.success is False

    def test_saving_throw_proficiency(self, make_character, loaded_dice, roller: DiceRoller) -> None:
        """Test CON 14 proficient at level 5 gives +5."""
        fighter = make_character(constitution=14, saving_throws={"constitution": True})
        loaded_dice.push(8)

        result = rules.resolve_saving_throw(fighter, Ability.CON, 13, roller=roller)

        assert result.type == MechanicsEventType.SAVING_THROW
        assert result.details["bonus"] == 5
        assert result.details["total"] == 13
        assert result.success is True


class TestAttacks:
    """Tests for attack resolution."""

    def _attack(self, roller: DiceRoller, **overrides: object) -> MechanicsResult:
        params = {
            "attacker_name": "Thorin",
            "attack_bonus": 5,
            "target_name": "Goblin",
            "target_ac": 13,
            "damage_dice": "1d8+3",
            "damage_type": "slashing",
            "roller": roller,
        }
        params.update(overrides)
        return rules.resolve_attack(**params)

    def test_hit_rolls_damage(self, loaded_dice, roller: DiceRoller) -> None:
        loaded_dice.push(10, 6)

        result = self._attack(roller)

        assert result.success is True
        assert result.details["attack_total"] == 15
        assert result.details["damage_total"] == 9
        assert "HIT! 9 slashing damage" in result.summary

    def test_miss_rolls_no_damage(self, loaded_dice, roller: DiceRoller) -> None:
        loaded_dice.push(5)

        result = self._attack(roller)

        assert result.success is False
        assert result.details["damage_total"] == 0
        assert result.details["damage_rolls"] == []

    def test_critical_doubles_dice_not_modifier(self, loaded_dice, roller: DiceRoller) -> None:
        """Test that a natural 20 rolls the damage dice twice and adds the modifier once."""
        loaded_dice.push(20, 6, 4)

        result = self._attack(roller, target_ac=30)

        assert result.success is True
        assert result.details["is_critical"] is True
        assert result.details["damage_rolls"] == [6, 4]
        assert result.details["damage_total"] == 13
        assert "CRITICAL HIT" in result.summary

    def test_natural_one_misses(self, loaded_dice, roller: DiceRoller) -> None:
        loaded_dice.push(1)

        result = self._attack(roller, attack_bonus=30)

        assert result.success is False
        assert "CRITICAL MISS" in result.summary


class TestHitPoints:
    """Tests for HP changes."""

    def test_damage(self) -> None:
        result = rules.apply_hp_change(name="Thorin", current_hp=30, max_hp=44, delta=-10)

        assert result.details["new_hp"] == 20
        assert result.details["is_unconscious"] is False

    def test_healing_clamps_to_max(self) -> None:
        result = rules.apply_hp_change(name="Thorin", current_hp=30, max_hp=44, delta=20)

        assert result.details["new_hp"] == 44

    def test_massive_damage_knocks_out(self) -> None:
        """Test 10/44 taking 100 drops to 0 and is judged dead on the raw value."""
        result = rules.apply_hp_change(name="Thorin", current_hp=10, max_hp=44, delta=-100)

        assert result.details["new_hp"] == 0
        assert result.details["is_unconscious"] is True
        assert result.details["is_dead"] is True

    def test_unconscious_but_not_dead(self) -> None:
        result = rules.apply_hp_change(name="Thorin", current_hp=10, max_hp=44, delta=-30)

        assert result.details["new_hp"] == 0
        assert result.details["is_unconscious"] is True
        assert result.details["is_dead"] is False
        assert "(UNCONSCIOUS)" in result.summary

    def test_instant_death_threshold(self) -> None:
        """Test that exactly -max_hp below zero is instant death."""
        result = rules.apply_hp_change(name="Thorin", current_hp=10, max_hp=44, delta=-54)

        assert result.details["is_dead"] is True
        assert "(DEAD)" in result.summary


class TestSpellcasting:
    """Tests for spell slot consumption."""

    def test_cantrip_never_uses_slots(self) -> None:
        result, slots = rules.cast_spell(caster_name="Elara", spell_name="Fire Bolt", spell_level=0, spell_slots={})

        assert result.success is True
        assert result.details["is_cantrip"] is True
        assert slots == {}

    def test_spends_one_slot(self) -> None:
        """Test that casting uses exactly one slot of the spell's level."""
        original = {1: 4, 3: 2}

        result, slots = rules.cast_spell(
            caster_name="Elara", spell_name="Fireball", spell_level=3, spell_slots=original
        )

        assert result.success is True
        assert slots == {1: 4, 3: 1}
        assert original == {1: 4, 3: 2}
        assert result.details["slots_remaining"] == 1

    def test_no_slots_fails_without_change(self) -> None:
        result, slots = rules.cast_spell(
            caster_name="Elara", spell_name="Fireball", spell_level=3, spell_slots={1: 4, 3: 0}
        )

        assert result.success is False
        assert slots == {1: 4, 3: 0}
        assert "no level 3 spell slots" in result.summary

    def test_missing_level_fails(self) -> None:
        result, _ = rules.cast_spell(caster_name="Elara", spell_name="Wish", spell_level=9, spell_slots={1: 4})

        assert result.success is False


class TestPassiveChecks:
    """Tests for passive detection."""

    def test_high_passive_finds_object(self, make_character) -> None:
        """Test passive 18 against a DC 12 trap."""
        scout = make_character(wisdom=16, level=13, skills={"perception": True})
        trap = HiddenObject(name="Tripwire", dc=12, type=HiddenObjectType.TRAP)

        results = rules.run_passive_checks([scout], [trap])

        assert len(results) == 1
        assert results[0].is_hidden is True
        assert results[0].details["passive_score"] == 18
        assert results[0].details["object_name"] == "Tripwire"

    def test_low_passive_misses_object(self, make_character) -> None:
        """Test passive 12 against a DC 20 clue."""
        character = make_character(intelligence=14, level=1)
        clue = HiddenObject(name="Faded Map", dc=20, type=HiddenObjectType.CLUE)

        assert rules.run_passive_checks([character], [clue]) == []

    def test_discovered_objects_are_skipped(self, make_character) -> None:
        scout = make_character(wisdom=20, skills={"perception": True})
        trap = HiddenObject(name="Tripwire", dc=5, type=HiddenObjectType.TRAP, discovered=True)

        assert rules.run_passive_checks([scout], [trap]) == []

    def test_clues_use_investigation(self, make_character) -> None:
        """Test that a perceptive but unscholarly character misses a clue."""
        watcher = make_character(wisdom=20, intelligence=8, skills={"perception": True})
        scholar = make_character(id=2, name="Scholar", intelligence=18, skills={"investigation": True})
        clue = HiddenObject(name="Cipher", dc=15, type=HiddenObjectType.CLUE)

        results = rules.run_passive_checks([watcher, scholar], [clue])

        assert [r.details["character_name"] for r in results] == ["Scholar"]
        assert results[0].details["skill"] == "investigation"

    def test_first_qualifying_member_wins(self, make_character) -> None:
        first = make_character(id=1, name="First", wisdom=14)
        second = make_character(id=2, name="Second", wisdom=20)
        trap = HiddenObject(name="Pit", dc=10, type=HiddenObjectType.TRAP)

        results = rules.run_passive_checks([first, second], [trap])

        assert len(results) == 1
        assert results[0].details["character_name"] == "First"


class TestInitiative:
    """Tests for initiative and turn order."""

    def test_order_is_descending_and_stable(self, make_character, loaded_dice, roller: DiceRoller) -> None:
        """Test that ties keep party members ahead of NPCs."""
        hero = make_character(dexterity=10)
        goblin = rules.NpcCombatant(id="npc_enemy_0", name="Goblin", hp=7, max_hp=7, ac=15, dexterity=10)
        ogre = rules.NpcCombatant(id="npc_enemy_1", name="Ogre", hp=59, max_hp=59, ac=11, dexterity=8)
        loaded_dice.push(12, 12, 18)

        order, result = rules.roll_initiative([hero], [goblin, ogre], roller=roller)

        assert [entry.id for entry in order] == ["npc_enemy_1", "pc_1", "npc_enemy_0"]
        assert order[0].initiative == 17
        assert order[1].type == CombatantType.PC
        assert result.type == MechanicsEventType.INITIATIVE_ROLL
        assert result.details["natural_rolls"] == {"pc_1": 12, "npc_enemy_0": 12, "npc_enemy_1": 18}

    def _encounter(self, turn_index: int = 0, round_number: int = 1) -> EncounterState:
        entries = [
            InitiativeEntry(id=f"c{i}", name=f"C{i}", initiative=20 - i, type=CombatantType.NPC, hp=5, max_hp=5, ac=10)
            for i in range(3)
        ]
        return EncounterState(
            id=1, campaign_id=1, initiative_order=entries, current_turn_index=turn_index, current_round=round_number
        )

    def test_turn_advances(self) -> None:
        index, round_number, result = rules.resolve_turn_advance(self._encounter(0))

        assert (index, round_number) == (1, 1)
        assert result.details["current_combatant_id"] == "c1"

    def test_turn_wraps_to_next_round(self) -> None:
        index, round_number, result = rules.resolve_turn_advance(self._encounter(2, 1))

        assert (index, round_number) == (0, 2)
        assert result.details["new_round"] is True
        assert result.summary.startswith("Round 2 begins")


class TestDeathSaves:
    """Tests for death saving throws."""

    def test_success_and_failure_counting(self, loaded_dice, roller: DiceRoller) -> None:
        loaded_dice.push(14, 3)
        state = DeathSaveState(character_id=1)

        _, state = rules.roll_death_save(character_name="Thorin", state=state, roller=roller)
        _, state = rules.roll_death_save(character_name="Thorin", state=state, roller=roller)

        assert (state.successes, state.failures) == (1, 1)

    def test_natural_one_counts_twice(self, loaded_dice, roller: DiceRoller) -> None:
        loaded_dice.push(1)

        result, state = rules.roll_death_save(
            character_name="Thorin", state=DeathSaveState(character_id=1, failures=2), roller=roller
        )

        assert state.failures == 3
        assert state.is_dead is True
        assert "DEAD" in result.summary

    def test_natural_twenty_regains_consciousness(self, loaded_dice, roller: DiceRoller) -> None:
        loaded_dice.push(20)

        result, state = rules.roll_death_save(
            character_name="Thorin", state=DeathSaveState(character_id=1, successes=1, failures=2), roller=roller
        )

        assert result.details["regained_consciousness"] is True
        assert (state.successes, state.failures) == (0, 0)

    def test_third_success_stabilizes(self, loaded_dice, roller: DiceRoller) -> None:
        loaded_dice.push(10)

        result, state = rules.roll_death_save(
            character_name="Thorin", state=DeathSaveState(character_id=1, successes=2), roller=roller
        )

        assert state.is_stable is True
        assert "STABILIZED" in result.summary


class TestGoalsAndFreeRolls:
    """Tests for NPC goals and free dice rolls."""

    def test_goal_advances_hidden(self) -> None:
        result = rules.advance_npc_goal(npc_name="Mira", goal="Find the relic", progress=20)

        assert result.is_hidden is True
        assert result.details["new_progress"] == 30
        assert result.details["completed"] is False

    def test_goal_caps_at_hundred(self) -> None:
        result = rules.advance_npc_goal(npc_name="Mira", goal="Find the relic", progress=95)

        assert result.details["new_progress"] == 100
        assert result.details["completed"] is True

    def test_roll_dice(self, loaded_dice, roller: DiceRoller) -> None:
        loaded_dice.push(3, 6)

        result = rules.roll_dice("2d6+1", purpose="falling rocks", roller=roller)

        assert result.type == MechanicsEventType.DICE_ROLL
        assert result.details["total"] == 10
        assert "for falling rocks" in result.summary
