"""Dice rolling mechanics for the turn engine.

All randomness in the engine flows through DiceRoller, which draws from
``secrets.SystemRandom`` so neither the narrating model nor a client can
predict or bias results. Tests inject a scripted ``random.Random``
subclass instead.

Notation parsing is lenient: anything that does not look like ``NdS+M``
is rolled as a single d20.
"""

from __future__ import annotations

import random
import re
import secrets
from dataclasses import dataclass
from enum import StrEnum

from dm_engine.core.constants import MAX_DICE_PER_ROLL
from dm_engine.core.exceptions import DiceRollError
from dm_engine.core.logging import get_logger


logger = get_logger(__name__)

NOTATION_PATTERN = re.compile(
    r"^\s*(?P<count>\d*)\s*d\s*(?P<sides>\d+)\s*(?P<modifier>[+-]\s*\d+)?\s*$",
    re.IGNORECASE,
)

FALLBACK_NOTATION = "1d20"


class RollMode(StrEnum):
    """How a d20 was rolled."""

    NORMAL = "normal"
    ADVANTAGE = "advantage"
    DISADVANTAGE = "disadvantage"


@dataclass(frozen=True)
class AdvantageRoll:
    """Two d20s with one kept.

    Attributes:
        rolls: Both raw rolls, in the order they were made.
        result: The kept roll (max for advantage, min for disadvantage).
        mode: Which of the two was kept.
    """

    rolls: tuple[int, int]
    result: int
    mode: RollMode


@dataclass(frozen=True)
class D20Roll:
    """A resolved d20 roll for checks, saves and attacks.

    Attributes:
        natural: The kept die face.
        rolls: Every die rolled (one or two).
        mode: Normal, advantage or disadvantage.
    """

    natural: int
    rolls: tuple[int, ...]
    mode: RollMode

    @property
    def is_critical(self) -> bool:
        return self.natural == 20

    @property
    def is_fumble(self) -> bool:
        return self.natural == 1


@dataclass(frozen=True)
class NotationRoll:
    """Result of rolling a dice expression.

    Attributes:
        notation: The normalised expression actually rolled.
        rolls: Individual die faces.
        modifier: Flat signed modifier.
        total: Sum of the dice plus the modifier.
    """

    notation: str
    rolls: tuple[int, ...]
    modifier: int
    total: int

    @property
    def dice_total(self) -> int:
        """Sum of the dice alone, without the flat modifier."""
        return self.total - self.modifier


class DiceRoller:
    """Cryptographically random dice.

    Example:
        >>> roller = DiceRoller()
        >>> result = roller.roll_notation("2d6+3")
        >>> 5 <= result.total <= 15
        True
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        """Initialize the dice roller.

        Args:
            rng: Random source. Defaults to ``secrets.SystemRandom``;
                anything else should only be passed by tests.
        """
        self._rng = rng if rng is not None else secrets.SystemRandom()

    def roll_die(self, sides: int) -> int:
        """Roll one die.

        Args:
            sides: Number of faces, at least 1.

        Returns:
            Uniform integer in ``[1, sides]``.

        Raises:
            DiceRollError: If ``sides`` is below 1.
        """
        if sides < 1:
            raise DiceRollError(f"A die needs at least one side, got {sides}", expression=f"d{sides}")
        return self._rng.randint(1, sides)

    def roll_dice(self, count: int, sides: int) -> list[int]:
        """Roll ``count`` dice of the same size."""
        return [self.roll_die(sides) for _ in range(count)]

    def roll_with_advantage(self) -> AdvantageRoll:
        first, second = self.roll_die(20), self.roll_die(20)
        return AdvantageRoll(rolls=(first, second), result=max(first, second), mode=RollMode.ADVANTAGE)

    def roll_with_disadvantage(self) -> AdvantageRoll:
        first, second = self.roll_die(20), self.roll_die(20)
        return AdvantageRoll(rolls=(first, second), result=min(first, second), mode=RollMode.DISADVANTAGE)

    def roll_d20(self, *, advantage: bool = False, disadvantage: bool = False) -> D20Roll:
        """Roll a d20, applying advantage or disadvantage.

        Advantage and disadvantage together cancel into a normal roll.

        Args:
            advantage: Roll twice and keep the higher.
            disadvantage: Roll twice and keep the lower.

        Returns:
            D20Roll with the kept face and all raw rolls.
        """
        if advantage and not disadvantage:
            adv = self.roll_with_advantage()
            return D20Roll(natural=adv.result, rolls=adv.rolls, mode=adv.mode)
        if disadvantage and not advantage:
            dis = self.roll_with_disadvantage()
            return D20Roll(natural=dis.result, rolls=dis.rolls, mode=dis.mode)
        natural = self.roll_die(20)
        return D20Roll(natural=natural, rolls=(natural,), mode=RollMode.NORMAL)

    def roll_notation(self, notation: str) -> NotationRoll:
        """Roll a dice expression such as ``2d6+3``.

        Accepts an optional count (``d8``), whitespace and upper case.
        Anything unparseable, a zero count, zero sides, or more than
        ``MAX_DICE_PER_ROLL`` dice is rolled as ``1d20`` instead.

        Args:
            notation: Dice expression.

        Returns:
            NotationRoll with the individual dice and the total.
        """
        parsed = parse_notation(notation)
        if parsed is None:
            logger.debug("Unparseable dice notation, rolling d20", notation=notation)
            count, sides, modifier = 1, 20, 0
        else:
            count, sides, modifier = parsed

        rolls = tuple(self.roll_dice(count, sides))
        return NotationRoll(
            notation=format_notation(count, sides, modifier),
            rolls=rolls,
            modifier=modifier,
            total=sum(rolls) + modifier,
        )


def parse_notation(notation: str) -> tuple[int, int, int] | None:
    """Parse ``NdS+M`` into ``(count, sides, modifier)`` or None when invalid."""
    match = NOTATION_PATTERN.match(notation or "")
    if match is None:
        return None
    count = int(match.group("count")) if match.group("count") else 1
    sides = int(match.group("sides"))
    raw_modifier = match.group("modifier")
    modifier = int(raw_modifier.replace(" ", "")) if raw_modifier else 0
    if count < 1 or count > MAX_DICE_PER_ROLL or sides < 1:
        return None
    return count, sides, modifier


def format_notation(count: int, sides: int, modifier: int) -> str:
    if modifier > 0:
        return f"{count}d{sides}+{modifier}"
    if modifier < 0:
        return f"{count}d{sides}{modifier}"
    return f"{count}d{sides}"


# =============================================================================
# Module-level convenience
# =============================================================================

_default_roller: DiceRoller | None = None


def get_default_roller() -> DiceRoller:
    """Get the process-wide CSPRNG-backed roller, creating it on first use."""
    global _default_roller
    if _default_roller is None:
        _default_roller = DiceRoller()
    return _default_roller


def roll_die(sides: int) -> int:
    return get_default_roller().roll_die(sides)


def roll_notation(notation: str) -> NotationRoll:
    return get_default_roller().roll_notation(notation)


__all__ = [
    "RollMode",
    "AdvantageRoll",
    "D20Roll",
    "NotationRoll",
    "DiceRoller",
    "parse_notation",
    "format_notation",
    "get_default_roller",
    "roll_die",
    "roll_notation",
]
