import dataclasses
import random
import typing

from game.dice import Advantage, ability_modifier, roll_d20, roll_dice
from irtypes.game_state import InitiativeEntry


@dataclasses.dataclass(frozen=True)
class StatBlock:
    hp: int
    ac: int
    speed: int


ENEMY_STAT_BLOCKS: dict[str, StatBlock] = {
    "goblin": StatBlock(hp=7, ac=15, speed=30),
    "sentry": StatBlock(hp=7, ac=15, speed=30),
    "wolf": StatBlock(hp=11, ac=13, speed=40),
    "orc": StatBlock(hp=15, ac=13, speed=30),
    "skeleton": StatBlock(hp=13, ac=13, speed=30),
    "zombie": StatBlock(hp=22, ac=8, speed=20),
    "bandit": StatBlock(hp=11, ac=12, speed=30),
}
DEFAULT_STAT_BLOCK = StatBlock(hp=10, ac=12, speed=30)
ENEMY_INITIATIVE_BONUS = 1


def stat_block_for(name: str) -> StatBlock:
    lower = name.lower()
    for key, block in ENEMY_STAT_BLOCKS.items():
        if key in lower:
            return block
    return DEFAULT_STAT_BLOCK


def roll_initiative(
    characters: typing.Sequence[typing.Any],
    combatant_names: typing.Sequence[str],
    rng: random.Random | None = None,
) -> list[InitiativeEntry]:
    rng = rng or random.Random()
    entries: list[InitiativeEntry] = []

    for character in characters:
        dex = (character.ability_scores or {}).get("dexterity", 10)
        entries.append(
            InitiativeEntry(
                id=str(character.id),
                name=character.name,
                initiative=rng.randint(1, 20) + ability_modifier(dex),
                is_player=True,
                character_id=str(character.id),
                hp=character.current_hp,
                max_hp=character.max_hp,
                ac=character.armor_class or 10,
                speed=character.speed or 30,
            )
        )

    player_names = {c.name.lower() for c in characters}
    enemy_index = 0
    for name in combatant_names:
        if name.lower() in player_names:
            continue
        block = stat_block_for(name)
        entries.append(
            InitiativeEntry(
                id=f"enemy-{enemy_index}-{rng.getrandbits(32):08x}",
                name=name,
                initiative=rng.randint(1, 20) + ENEMY_INITIATIVE_BONUS,
                is_player=False,
                hp=block.hp,
                max_hp=block.hp,
                ac=block.ac,
                speed=block.speed,
            )
        )
        enemy_index += 1

    entries.sort(key=lambda e: e.initiative, reverse=True)
    return entries


@dataclasses.dataclass
class TurnAdvance:
    current_turn: int
    round: int
    skipped: int
    all_defeated: bool = False


def advance_turn(order: typing.Sequence[InitiativeEntry], current_turn: int, round_: int) -> TurnAdvance:
    """
    Move to the next living combatant in initiative order.

    The index wraps around the order and every wrap to the first slot
    starts a new round. Defeated combatants (hp <= 0) are skipped; if a
    whole lap finds nobody standing, `all_defeated` is set and the turn
    and round are left untouched.
    """
    n = len(order)
    if n == 0:
        return TurnAdvance(current_turn=current_turn, round=round_, skipped=0, all_defeated=True)

    next_turn = (current_turn + 1) % n
    new_round = round_ + 1 if next_turn == 0 else round_
    skipped = 0
    while order[next_turn].hp <= 0 and skipped < n:
        next_turn = (next_turn + 1) % n
        if next_turn == 0:
            new_round += 1
        skipped += 1

    if skipped >= n:
        return TurnAdvance(current_turn=current_turn, round=round_, skipped=skipped, all_defeated=True)
    return TurnAdvance(current_turn=next_turn, round=new_round, skipped=skipped)


@dataclasses.dataclass
class AttackOutcome:
    attack_roll: int
    attack_rolls: list[int]
    attack_total: int
    target_ac: int
    hit: bool
    critical: bool
    critical_miss: bool
    damage: int
    damage_rolls: list[int]
    target_hp: int


def resolve_npc_attack(
    target: InitiativeEntry,
    attack_bonus: int,
    damage_dice: str | None,
    advantage: Advantage = "normal",
    rng: random.Random | None = None,
) -> AttackOutcome:
    rng = rng or random.Random()
    attack_roll, attack_rolls = roll_d20(advantage, rng)
    critical = attack_roll == 20
    critical_miss = attack_roll == 1
    total = attack_roll + attack_bonus
    target_ac = target.ac or 10
    hit = critical or (not critical_miss and total >= target_ac)

    damage = 0
    damage_rolls: list[int] = []
    if hit:
        try:
            first = roll_dice(damage_dice or "1d6", rng)
        except ValueError:
            first = roll_dice("1d6", rng)
        damage = first.total
        damage_rolls = list(first.rolls)
        if critical:
            extra = roll_dice(first.notation, rng)
            damage += sum(extra.rolls)
            damage_rolls.extend(extra.rolls)

    target_hp = max(0, target.hp - damage) if hit else target.hp
    return AttackOutcome(
        attack_roll=attack_roll,
        attack_rolls=attack_rolls,
        attack_total=total,
        target_ac=target_ac,
        hit=hit,
        critical=critical,
        critical_miss=critical_miss,
        damage=damage,
        damage_rolls=damage_rolls,
        target_hp=target_hp,
    )


def apply_combatant_update(
    entry: InitiativeEntry,
    hp: int | None = None,
    damage: int | None = None,
    healing: int | None = None,
    add_condition: str | None = None,
    remove_condition: str | None = None,
) -> InitiativeEntry:
    new_hp = entry.hp
    if hp is not None:
        new_hp = max(0, min(hp, entry.max_hp))
    elif damage is not None:
        new_hp = max(0, new_hp - damage)
    elif healing is not None:
        new_hp = min(entry.max_hp, new_hp + healing)

    conditions = list(entry.conditions)
    if add_condition and add_condition not in conditions:
        conditions.append(add_condition)
    if remove_condition:
        conditions = [c for c in conditions if c != remove_condition]

    return dataclasses.replace(entry, hp=new_hp, conditions=conditions)


def find_combatant(order: typing.Iterable[InitiativeEntry], name: str | None) -> InitiativeEntry | None:
    if not name:
        return None
    lower = name.lower()
    return next((e for e in order if e.name.lower() == lower), None)


def all_enemies_defeated(order: typing.Sequence[InitiativeEntry]) -> bool:
    enemies = [e for e in order if not e.is_player]
    return bool(enemies) and all(e.hp <= 0 for e in enemies)


def replace_entry(order: typing.Sequence[InitiativeEntry], updated: InitiativeEntry) -> list[InitiativeEntry]:
    return [updated if e.id == updated.id else e for e in order]
