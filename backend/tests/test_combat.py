import random

from game.combat import (
    advance_turn,
    all_enemies_defeated,
    apply_combatant_update,
    find_combatant,
    resolve_npc_attack,
    roll_initiative,
    stat_block_for,
)
from tests.fakes import entry, make_character


def test_advance_moves_to_next_and_wraps_round():
    order = [entry("A", 5), entry("B", 5), entry("C", 5)]
    step = advance_turn(order, 0, 1)
    assert (step.current_turn, step.round, step.skipped) == (1, 1, 0)
    step = advance_turn(order, 2, 1)
    assert (step.current_turn, step.round) == (0, 2)


def test_advance_skips_defeated_combatants():
    order = [entry("A", 5), entry("B", 0), entry("C", 0), entry("D", 3)]
    step = advance_turn(order, 0, 1)
    assert (step.current_turn, step.round, step.skipped) == (3, 1, 2)


def test_skipping_past_the_end_starts_a_new_round():
    order = [entry("A", 0), entry("B", 5), entry("C", 0)]
    step = advance_turn(order, 1, 2)
    assert (step.current_turn, step.round) == (1, 3)


def test_all_defeated_leaves_turn_unchanged():
    order = [entry("A", 0), entry("B", 0)]
    step = advance_turn(order, 1, 4)
    assert step.all_defeated
    assert (step.current_turn, step.round) == (1, 4)


def test_empty_order_counts_as_all_defeated():
    assert advance_turn([], 0, 1).all_defeated


def test_initiative_uses_stat_blocks_and_sorts_descending():
    hero = make_character("Kael")
    order = roll_initiative([hero], ["Goblin Archer", "Kael", "Mysterious Thing"], random.Random(3))
    assert [e.initiative for e in order] == sorted((e.initiative for e in order), reverse=True)
    names = {e.name: e for e in order}
    assert set(names) == {"Kael", "Goblin Archer", "Mysterious Thing"}
    assert names["Kael"].is_player and names["Kael"].character_id == str(hero.id)
    assert (names["Goblin Archer"].hp, names["Goblin Archer"].ac) == (7, 15)
    assert (names["Mysterious Thing"].hp, names["Mysterious Thing"].ac) == (10, 12)


def test_stat_block_match_is_case_insensitive():
    assert stat_block_for("Dire WOLF").hp == 11


def test_natural_twenty_always_hits_and_doubles_dice():
    rng = random.Random()
    rng.randint = lambda a, b: b
    target = entry("Kael", 20, is_player=True, ac=30)
    outcome = resolve_npc_attack(target, 0, "1d6+2", "normal", rng)
    assert outcome.critical and outcome.hit
    assert outcome.damage == 6 + 2 + 6
    assert outcome.target_hp == 20 - 14


def test_natural_one_always_misses():
    rng = random.Random()
    rng.randint = lambda a, b: a
    target = entry("Kael", 20, is_player=True, ac=1)
    outcome = resolve_npc_attack(target, 10, "1d6", "normal", rng)
    assert outcome.critical_miss and not outcome.hit
    assert outcome.target_hp == 20


def test_damage_never_drops_hp_below_zero():
    rng = random.Random()
    rng.randint = lambda a, b: b
    outcome = resolve_npc_attack(entry("Kael", 3, is_player=True, ac=5), 5, "2d6", "normal", rng)
    assert outcome.target_hp == 0


def test_combatant_update_clamps_and_tracks_conditions():
    goblin = entry("Goblin", 7, max_hp=7)
    assert apply_combatant_update(goblin, damage=10).hp == 0
    assert apply_combatant_update(goblin, hp=99).hp == 7
    hurt = apply_combatant_update(goblin, damage=4)
    assert apply_combatant_update(hurt, healing=10).hp == 7
    poisoned = apply_combatant_update(goblin, add_condition="poisoned")
    assert poisoned.conditions == ["poisoned"]
    assert apply_combatant_update(poisoned, remove_condition="poisoned").conditions == []


def test_find_and_defeated_helpers():
    order = [entry("Kael", 5, is_player=True), entry("Goblin", 0)]
    assert find_combatant(order, "goblin").name == "Goblin"
    assert find_combatant(order, None) is None
    assert all_enemies_defeated(order)
    assert not all_enemies_defeated([entry("Kael", 5, is_player=True)])


def test_oversized_damage_dice_fall_back_to_d6():
    rng = random.Random()
    rng.randint = lambda a, b: b
    outcome = resolve_npc_attack(entry("Kael", 40, is_player=True, ac=5), 5, "100000000d6", "normal", rng)
    assert outcome.damage == 6 + 6
    assert outcome.target_hp == 28
