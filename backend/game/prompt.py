import typing

from irtypes.campaign import CampaignOut
from irtypes.character import CharacterOut
from irtypes.game_state import GameStateOut

RULES = """\
## Dice
You never roll dice and never invent random outcomes.
- Skill checks and player attacks: call requestDiceRoll with the skill and DC.
- Saving throws: call requestSavingThrow with the ability and DC.
- NPC attacks: call npcAction. Attack and damage are rolled in code and shown to the player.
- After requestDiceRoll or requestSavingThrow, describe the moment briefly and stop. The result
  arrives later as a [ROLL RESULT] or [SAVING THROW RESULT] message; narrate only that outcome.
- Pass advantage or disadvantage only when 5e rules clearly grant it. They cancel out and never stack.

## Combat
You run every combatant. There is no grid and no local combat engine.
- Start combat with startEncounter and the enemy names, announce initiative, then handle the first turn.
- NPC turn: npcAction, one line of narration, advanceTurn. Repeat while the next combatant is an NPC.
  The player never has to type "continue".
- Player turn: describe the situation and wait. Resolve their attack with requestDiceRoll, apply damage
  with updateCombatant, then advanceTurn.
- When every enemy is at 0 HP call endEncounter and then awardXP.
- Show the numbers: "The goblin lunges (17 vs AC 15, hit) for 5 slashing. Kael: 17/22 HP."

## Treasure
Always call modifyGold, addItem and removeItem when gold or items change hands. Never only narrate it.

## Scenes
With an empty history, open with setScene and a vivid first scene. Otherwise recap in one or two
sentences and continue. Call setScene whenever the location changes significantly.

## Experience
Award XP with awardXP: combat 25-200, puzzle 50-150, quest 100-500, roleplay 15-75, exploration
25-100, milestone 200-1000, skillCheck 10-50. Diminishing returns are applied automatically.

## Style
Narrate vividly in three to five sentences while exploring and briefly during combat. Play NPCs with
distinct voices, use markdown for emphasis and never end mid-scene."""


def _lines(items: typing.Iterable[str], empty: str) -> str:
    text = "\n".join(items)
    return text or empty


def build_system_prompt(
    campaign: CampaignOut,
    characters: typing.Sequence[CharacterOut],
    game_state: GameStateOut | None,
    global_prompt: str | None = None,
) -> str:
    party = _lines(
        (
            f"- {c.name}: Level {c.level} {c.race} {c.character_class} "
            f"(HP {c.current_hp}/{c.max_hp}, AC {c.armor_class})"
            for c in characters
        ),
        "No characters.",
    )
    npcs = _lines(
        (f"- {n.get('name', 'Unknown')} ({n.get('race', '?')} {n.get('occupation', '')})".rstrip() for n in campaign.npcs[:10]),
        "None.",
    )
    quests = _lines(
        (f"- {q.get('name', 'Quest')}: {q.get('description', '')}" for q in campaign.quests if q.get("status") == "active"),
        "None.",
    )

    sections = [
        "You are an expert Dungeon Master running a solo D&D 5th Edition campaign.",
        f"## Campaign: {campaign.name}\n{campaign.description or 'A new adventure awaits...'}",
        f"## World Setting\n{campaign.world_setting or 'Generic Fantasy'}",
        f"## Current Party\n{party}",
        f"## Known NPCs\n{npcs}",
        f"## Active Quests\n{quests}",
    ]

    scene = (game_state.current_scene if game_state else "") or campaign.current_scene or "The adventure begins..."
    time_of_day = game_state.time_of_day if game_state else "midday"
    weather = game_state.weather if game_state else "clear"
    sections.append(
        f"## Current Scene\n{scene}\n"
        f"Location: {campaign.current_location or 'Unknown'}\n"
        f"Time: {time_of_day}, Weather: {weather}"
    )

    if game_state and game_state.in_combat and game_state.initiative_order:
        order = "\n".join(
            f"{'>' if i == game_state.current_turn else '-'} {e.name} "
            f"({'PC' if e.is_player else 'NPC'}, HP {e.hp}/{e.max_hp}, AC {e.ac}"
            f"{', ' + ', '.join(e.conditions) if e.conditions else ''})"
            for i, e in enumerate(game_state.initiative_order)
        )
        sections.append(f"## Combat (round {game_state.round})\n{order}")

    sections.append(
        "## DM Rules\n"
        f"- Difficulty: {campaign.difficulty_level}\n"
        f"- Rules Enforcement: {campaign.rules_enforcement}\n"
        f"- Your Personality: {campaign.dm_personality}"
    )
    if global_prompt:
        sections.append(f"## Global Rules & Style\n{global_prompt}")
    sections.append(RULES)
    sections.append(f"Current party gold: {game_state.party_gold if game_state else 0} gp.")
    return "\n\n".join(sections)
