import json
import random
import uuid

import pytest

from game.inference import ToolCall
from game.tool_executor import ToolExecutor
from irtypes.error import ServiceCode, raise_service_error
from tests.fakes import InMemoryGameStore, entry, make_character, make_game_state


def fixed_rng(*values) -> random.Random:
    rng = random.Random(0)
    it = iter(values)
    rng.randint = lambda a, b: next(it)
    return rng


def max_rng() -> random.Random:
    rng = random.Random(0)
    rng.randint = lambda a, b: b
    return rng


def call(name: str, /, **args) -> ToolCall:
    return ToolCall(id=f"call-{name}", name=name, arguments=json.dumps(args))


def combat_store(*order, **state) -> InMemoryGameStore:
    kael = make_character("Kael")
    entries = [
        e if e.name != "Kael" else entry("Kael", e.hp, is_player=True, character_id=str(kael.id), max_hp=12)
        for e in order
    ]
    return InMemoryGameStore(
        characters=[kael],
        game_state=make_game_state(in_combat=True, initiative_order=entries, round=1, **state),
    )


@pytest.mark.asyncio
async def test_dice_roll_stops_the_model_without_state_change():
    store = InMemoryGameStore()
    before = store.game_state
    result = await ToolExecutor(store).execute(call("requestDiceRoll", skill="Perception", dc=12))
    assert "STOP HERE" in result.result
    assert result.force_next_tool is None
    assert result.id == "call-requestDiceRoll"
    assert store.game_state is before


@pytest.mark.asyncio
async def test_start_encounter_forces_npc_turn_when_enemy_goes_first():
    store = InMemoryGameStore(characters=[make_character("Kael")])
    executor = ToolExecutor(store, rng=fixed_rng(1, 20))
    result = await executor.execute(call("startEncounter", combatants=["Goblin"]))

    assert result.force_next_tool == "npcAction"
    state = store.game_state
    assert state.in_combat and state.round == 1 and state.current_turn == 0
    assert [e.name for e in state.initiative_order] == ["Goblin", "Kael"]


@pytest.mark.asyncio
async def test_start_encounter_waits_for_player_when_player_goes_first():
    store = InMemoryGameStore(characters=[make_character("Kael")])
    result = await ToolExecutor(store, rng=fixed_rng(20, 1)).execute(call("startEncounter", combatants=["Goblin"]))
    assert result.force_next_tool is None
    assert "await their action" in result.result


@pytest.mark.asyncio
async def test_npc_action_outside_combat_is_an_error():
    result = await ToolExecutor(InMemoryGameStore()).execute(call("npcAction", attackerName="Goblin", targetName="Kael"))
    assert result.result == "Error: Not in combat."
    assert result.force_next_tool is None


@pytest.mark.asyncio
async def test_npc_action_unknown_combatant():
    store = combat_store(entry("Goblin", 7), entry("Kael", 12))
    result = await ToolExecutor(store).execute(call("npcAction", attackerName="Dragon", targetName="Kael"))
    assert result.result.startswith('Error: Could not find combatant "Dragon"')


@pytest.mark.asyncio
async def test_npc_action_hits_and_syncs_player_hp():
    store = combat_store(entry("Goblin", 7), entry("Kael", 12))
    result = await ToolExecutor(store, rng=max_rng()).execute(
        call("npcAction", attackerName="Goblin", targetName="Kael", attackBonus=4, damageDice="1d6")
    )
    assert "CRITICAL HIT" in result.result
    assert result.result.endswith("Call advanceTurn NOW.")
    assert result.force_next_tool == "advanceTurn"
    kael = next(e for e in store.game_state.initiative_order if e.name == "Kael")
    assert kael.hp == 0
    assert store.characters[0].current_hp == 0


@pytest.mark.asyncio
async def test_advance_turn_forces_npc_action_for_npc():
    store = combat_store(entry("Kael", 12), entry("Goblin", 7))
    result = await ToolExecutor(store).execute(call("advanceTurn"))
    assert result.force_next_tool == "npcAction"
    assert store.game_state.current_turn == 1


@pytest.mark.asyncio
async def test_advance_turn_to_player_forces_nothing_and_counts_rounds():
    store = combat_store(entry("Kael", 12), entry("Goblin", 7), current_turn=1)
    result = await ToolExecutor(store).execute(call("advanceTurn"))
    assert result.force_next_tool is None
    assert store.game_state.current_turn == 0
    assert store.game_state.round == 2
    assert "WAIT for their action" in result.result


@pytest.mark.asyncio
async def test_advance_turn_skips_defeated():
    store = combat_store(entry("Kael", 12), entry("Goblin", 0), entry("Orc", 15))
    result = await ToolExecutor(store).execute(call("advanceTurn"))
    assert store.game_state.current_turn == 2
    assert "Skipped 1 defeated" in result.result


@pytest.mark.asyncio
async def test_advance_turn_with_everyone_down_ends_encounter():
    store = combat_store(entry("Kael", 0), entry("Goblin", 0))
    result = await ToolExecutor(store).execute(call("advanceTurn"))
    assert result.force_next_tool == "endEncounter"


@pytest.mark.asyncio
async def test_update_combatant_last_enemy_forces_end():
    store = combat_store(entry("Kael", 12), entry("Goblin", 7))
    result = await ToolExecutor(store).execute(call("updateCombatant", name="Goblin", damage=9))
    assert result.force_next_tool == "endEncounter"
    assert "DEFEATED" in result.result


@pytest.mark.asyncio
async def test_update_combatant_otherwise_forces_advance():
    store = combat_store(entry("Kael", 12), entry("Goblin", 7))
    result = await ToolExecutor(store).execute(call("updateCombatant", name="Goblin", damage=2, addCondition="prone"))
    assert result.force_next_tool == "advanceTurn"
    goblin = store.game_state.initiative_order[1]
    assert (goblin.hp, goblin.conditions) == (5, ["prone"])


@pytest.mark.asyncio
async def test_end_encounter_syncs_hp_and_awards_combat_xp():
    store = combat_store(entry("Kael", 4), entry("Goblin", 0))
    result = await ToolExecutor(store).execute(call("endEncounter"))
    assert "Defeated: Goblin" in result.result
    assert not store.game_state.in_combat
    assert store.game_state.initiative_order == []
    kael = store.characters[0]
    assert kael.current_hp == 4
    assert kael.experience == 50
    assert store.game_state.xp_tracker["category_counts"]["combat"] == 1


@pytest.mark.asyncio
async def test_award_xp_levels_up_first_character():
    store = InMemoryGameStore(characters=[make_character("Kael", experience=250)])
    result = await ToolExecutor(store).execute(call("awardXP", amount=100, category="milestone", reason="Saved the town"))
    kael = store.characters[0]
    assert kael.experience == 350
    assert kael.level == 2
    assert "LEVEL UP" in result.result


@pytest.mark.asyncio
async def test_gold_never_goes_negative():
    store = InMemoryGameStore(game_state=make_game_state(party_gold=10))
    executor = ToolExecutor(store)
    await executor.execute(call("modifyGold", amount=15, reason="loot"))
    assert store.game_state.party_gold == 25
    result = await executor.execute(call("modifyGold", amount=-100, reason="bribe"))
    assert store.game_state.party_gold == 0
    assert "Total: 0 gp" in result.result


@pytest.mark.asyncio
async def test_items_are_added_and_removed_by_name():
    store = InMemoryGameStore()
    executor = ToolExecutor(store)
    kael_id = store.characters[0].id
    await executor.execute(call("addItem", name="Healing Potion", quantity=2))
    assert [i.name for i in store.inventory[kael_id]] == ["Healing Potion"]

    result = await executor.execute(call("removeItem", itemName="healing potion"))
    assert "removed" in result.result
    assert store.inventory[kael_id] == []

    missing = await executor.execute(call("removeItem", itemName="Sword"))
    assert "not found" in missing.result


@pytest.mark.asyncio
async def test_set_scene_updates_state_and_location():
    store = InMemoryGameStore()
    await ToolExecutor(store).execute(
        call("setScene", location="Old Mill", description="A creaking mill.", timeOfDay="night")
    )
    assert store.game_state.current_scene == "A creaking mill."
    assert store.game_state.time_of_day == "night"
    assert store.campaign == {"current_location": "Old Mill"}


@pytest.mark.asyncio
async def test_unknown_tools_are_acknowledged():
    results = await ToolExecutor(InMemoryGameStore()).execute_all([call("addNpc", name="Bob"), call("mystery")])
    assert results[0].result.startswith("Game state updated (addNpc)")
    assert results[1].result == "Tool mystery completed. Continue the narrative."


class MissingCharacterStore(InMemoryGameStore):
    """Store whose characters can be deleted while still listed in the initiative order."""

    async def update_character(self, character_id, updates):
        if all(c.id != character_id for c in self.characters):
            raise_service_error(404, ServiceCode.CHARACTER_NOT_FOUND, "Character not found")
        await super().update_character(character_id, updates)


def deleted_player_store(*enemies) -> MissingCharacterStore:
    ghost = entry("Ghost", 6, is_player=True, character_id=str(uuid.uuid4()), initiative=1)
    return MissingCharacterStore(
        characters=[make_character("Kael")],
        game_state=make_game_state(in_combat=True, initiative_order=[*enemies, ghost], round=1),
    )


@pytest.mark.asyncio
async def test_end_encounter_clears_combat_when_a_player_is_gone():
    store = deleted_player_store(entry("Goblin", 0))
    result = await ToolExecutor(store).execute(call("endEncounter"))

    assert "Defeated: Goblin" in result.result
    assert not store.game_state.in_combat
    assert store.game_state.initiative_order == []
    assert store.characters[0].experience == 50


@pytest.mark.asyncio
async def test_npc_attack_on_deleted_player_still_advances():
    store = deleted_player_store(entry("Goblin", 7))
    result = await ToolExecutor(store, rng=max_rng()).execute(
        call("npcAction", attackerName="Goblin", targetName="Ghost", attackBonus=5, damageDice="1d4")
    )
    assert result.force_next_tool == "advanceTurn"
    ghost = store.game_state.initiative_order[1]
    assert ghost.hp == 0


@pytest.mark.asyncio
async def test_failed_store_write_becomes_error_result():
    class BrokenStore(InMemoryGameStore):
        async def update_game_state(self, updates):
            raise_service_error(404, ServiceCode.GAME_STATE_NOT_FOUND, "Game state not found")

    result = await ToolExecutor(BrokenStore()).execute(call("modifyGold", amount=5))
    assert result.result.startswith("Error: modifyGold failed (Game state not found)")
    assert result.force_next_tool is None
