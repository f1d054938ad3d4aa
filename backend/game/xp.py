import dataclasses
import typing

XP_THRESHOLDS: dict[int, int] = {
    1: 0,
    2: 300,
    3: 900,
    4: 2700,
    5: 6500,
    6: 14000,
    7: 23000,
    8: 34000,
    9: 48000,
    10: 64000,
    11: 85000,
    12: 100000,
    13: 120000,
    14: 140000,
    15: 165000,
    16: 195000,
    17: 225000,
    18: 265000,
    19: 305000,
    20: 355000,
}
MAX_LEVEL = 20

XpCategory = typing.Literal[
    "combat", "puzzle", "quest", "roleplay", "exploration", "milestone", "skillCheck"
]
XP_CATEGORIES: tuple[str, ...] = typing.get_args(XpCategory)
STORY_CATEGORIES = ("quest", "milestone")

ROUGH_ENEMY_XP: dict[str, int] = {
    "goblin": 50,
    "wolf": 50,
    "rat": 25,
    "skeleton": 50,
    "zombie": 50,
    "orc": 100,
    "bandit": 100,
    "gnoll": 100,
    "ogre": 200,
    "troll": 450,
    "owlbear": 200,
    "dragon": 1000,
    "beholder": 5000,
}
UNKNOWN_ENEMY_XP = 75


@dataclasses.dataclass
class XpTracker:
    category_counts: dict[str, int] = dataclasses.field(
        default_factory=lambda: {c: 0 for c in XP_CATEGORIES}
    )
    encounters_since_story_beat: int = 0
    session_xp: int = 0

    def to_dict(self) -> dict[str, typing.Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, typing.Any] | None) -> "XpTracker":
        tracker = cls()
        if not data:
            return tracker
        tracker.category_counts.update(data.get("category_counts") or {})
        tracker.encounters_since_story_beat = data.get("encounters_since_story_beat", 0)
        tracker.session_xp = data.get("session_xp", 0)
        return tracker


@dataclasses.dataclass
class XpAward:
    base_xp: int
    diminishing_multiplier: float
    stagnation_multiplier: float
    level_scaler: float
    final_xp: int
    breakdown: str
    level_up: bool
    new_level: int
    new_total_xp: int


def diminishing_multiplier(repeat_count: int) -> float:
    if repeat_count <= 1:
        return 1.0
    return {2: 0.8, 3: 0.6, 4: 0.4}.get(repeat_count, 0.25)


def stagnation_multiplier(encounters_since_story_beat: int) -> float:
    if encounters_since_story_beat <= 5:
        return 1.0
    if encounters_since_story_beat <= 10:
        return 0.8
    if encounters_since_story_beat <= 15:
        return 0.6
    return 0.4


def level_scaler(level: int) -> float:
    if level <= 3:
        return 1.0
    if level <= 6:
        return 1.5
    if level <= 10:
        return 2.0
    if level <= 15:
        return 3.0
    return 4.0


def level_for_xp(xp: int) -> int:
    level = 1
    for lvl, threshold in XP_THRESHOLDS.items():
        if xp >= threshold:
            level = lvl
    return level


def proficiency_bonus(level: int) -> int:
    return (level - 1) // 4 + 2


def award_xp(
    category: str,
    amount: int,
    level: int,
    current_xp: int,
    tracker: XpTracker,
) -> XpAward:
    """
    Apply an XP award with anti-grind scaling; mutates `tracker`.

    Repeating the same category without story progress yields less XP,
    and a long stretch without a quest or milestone adds a stagnation
    penalty. Quest and milestone awards reset both counters and are
    never penalised for stagnation.
    """
    if category not in tracker.category_counts:
        tracker.category_counts[category] = 0
    tracker.category_counts[category] += 1
    tracker.encounters_since_story_beat += 1

    is_story = category in STORY_CATEGORIES
    if is_story:
        for key in tracker.category_counts:
            tracker.category_counts[key] = 0
        tracker.encounters_since_story_beat = 0

    dim = diminishing_multiplier(tracker.category_counts[category])
    stag = 1.0 if is_story else stagnation_multiplier(tracker.encounters_since_story_beat)
    scaler = level_scaler(level)

    base_xp = round(amount * scaler)
    final_xp = max(1, round(base_xp * dim * stag))
    new_total = current_xp + final_xp

    next_threshold = XP_THRESHOLDS.get(level + 1)
    level_up = level < MAX_LEVEL and next_threshold is not None and new_total >= next_threshold
    tracker.session_xp += final_xp

    parts = [f"{amount} base"]
    if scaler != 1.0:
        parts.append(f"x{scaler} level")
    if dim < 1.0:
        parts.append(f"x{dim} (repeated activity)")
    if stag < 1.0:
        parts.append(f"x{stag} (story stagnation)")

    return XpAward(
        base_xp=base_xp,
        diminishing_multiplier=dim,
        stagnation_multiplier=stag,
        level_scaler=scaler,
        final_xp=final_xp,
        breakdown=" ".join(parts),
        level_up=level_up,
        new_level=level + 1 if level_up else level,
        new_total_xp=new_total,
    )


def suggest_combat_xp(enemy_names: typing.Iterable[str], party_size: int) -> int:
    total = 0
    for name in enemy_names:
        lower = name.lower()
        key = next((k for k in ROUGH_ENEMY_XP if k in lower), None)
        total += ROUGH_ENEMY_XP[key] if key else UNKNOWN_ENEMY_XP
    return max(10, round(total / max(1, party_size)))
