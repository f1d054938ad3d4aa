import dataclasses
import random
import re
import typing

_DICE_RE = re.compile(r"^(\d+)?d(\d+)(kh(\d+)|kl(\d+))?([+-]\d+)?$")
MAX_DICE = 100
MAX_SIDES = 1000

Advantage = typing.Literal["normal", "advantage", "disadvantage"]


@dataclasses.dataclass
class DiceRoll:
    notation: str
    rolls: list[int]
    modifier: int
    total: int
    critical_hit: bool = False
    critical_miss: bool = False

    @property
    def dice_sum(self) -> int:
        return self.total - self.modifier


def roll_dice(notation: str, rng: random.Random | None = None) -> DiceRoll:
    """
    Roll dice written in the usual tabletop notation.

    Supports `NdS`, an optional keep-highest / keep-lowest suffix
    (`4d6kh3`, `2d20kl1`) and a trailing modifier (`1d8+2`). The count
    defaults to one die. Only the kept dice count towards the total,
    while `rolls` reports every die thrown.
    """
    rng = rng or random
    match = _DICE_RE.match(notation.strip().lower())
    if match is None:
        raise ValueError(f"Invalid dice notation: {notation}")

    count = int(match.group(1) or 1)
    sides = int(match.group(2))
    if not 1 <= count <= MAX_DICE or not 1 <= sides <= MAX_SIDES:
        raise ValueError(f"Invalid dice notation: {notation}")
    keep_highest = int(match.group(4)) if match.group(4) else None
    keep_lowest = int(match.group(5)) if match.group(5) else None
    modifier = int(match.group(6)) if match.group(6) else 0

    rolls = [rng.randint(1, sides) for _ in range(count)]
    kept = rolls
    if keep_highest:
        kept = sorted(rolls, reverse=True)[:keep_highest]
    elif keep_lowest:
        kept = sorted(rolls)[:keep_lowest]

    single_d20 = sides == 20 and count == 1
    return DiceRoll(
        notation=notation,
        rolls=rolls,
        modifier=modifier,
        total=sum(kept) + modifier,
        critical_hit=single_d20 and rolls[0] == 20,
        critical_miss=single_d20 and rolls[0] == 1,
    )


def roll_d20(
    advantage: Advantage = "normal", rng: random.Random | None = None
) -> tuple[int, list[int]]:
    rng = rng or random
    if advantage in ("advantage", "disadvantage"):
        rolls = [rng.randint(1, 20), rng.randint(1, 20)]
        kept = max(rolls) if advantage == "advantage" else min(rolls)
        return kept, rolls
    roll = rng.randint(1, 20)
    return roll, [roll]


def ability_modifier(score: int | None) -> int:
    return ((score if score is not None else 10) - 10) // 2
