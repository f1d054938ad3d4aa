import dataclasses
import random
import typing
import uuid

import asyncpg

import game.campaign
import game.character
from game.combat import (
    advance_turn,
    all_enemies_defeated,
    apply_combatant_update,
    find_combatant,
    replace_entry,
    resolve_npc_attack,
    roll_initiative,
)
from game.events import ToolCallResult
from game.inference import ToolCall
from game.logger import gl_log
from game.xp import XpTracker, award_xp, proficiency_bonus, suggest_combat_xp
from irtypes.character import CharacterOut
from irtypes.error import ServiceError, ServiceErrorException, unwrap
from irtypes.game_state import GameStateOut, InitiativeEntry

ACKNOWLEDGED_TOOLS = ("addNpc", "addQuest", "modifyHp")


class GameStore(typing.Protocol):
    async def get_characters(self) -> list[CharacterOut]: ...

    async def get_game_state(self) -> GameStateOut: ...

    async def update_game_state(self, updates: dict[str, typing.Any]) -> None: ...

    async def update_character(self, character_id: uuid.UUID, updates: dict[str, typing.Any]) -> None: ...

    async def update_campaign(self, updates: dict[str, typing.Any]) -> None: ...

    async def add_item(
        self,
        character_id: uuid.UUID,
        name: str,
        type_: str,
        quantity: int,
        description: str,
        magical: bool,
    ) -> None: ...

    async def remove_item(self, character_id: uuid.UUID, name: str) -> bool: ...


class PgGameStore:
    """Game state of one campaign, read and written through the Postgres services."""

    def __init__(self, conn: asyncpg.Connection, campaign_id: uuid.UUID, log=gl_log):
        self.conn = conn
        self.campaign_id = campaign_id
        self.log = log

    async def get_characters(self) -> list[CharacterOut]:
        return await game.character.get_characters(self.conn, self.campaign_id)

    async def get_game_state(self) -> GameStateOut:
        return unwrap(await game.campaign.get_game_state(self.conn, self.campaign_id, log=self.log))

    async def update_game_state(self, updates: dict[str, typing.Any]) -> None:
        unwrap(await game.campaign.update_game_state(self.conn, self.campaign_id, updates, log=self.log))

    async def update_character(self, character_id: uuid.UUID, updates: dict[str, typing.Any]) -> None:
        unwrap(await game.character.update_character(self.conn, character_id, updates, log=self.log))

    async def update_campaign(self, updates: dict[str, typing.Any]) -> None:
        unwrap(await game.campaign.update_campaign(self.conn, self.campaign_id, updates, log=self.log))

    async def add_item(self, character_id, name, type_, quantity, description, magical) -> None:
        unwrap(
            await game.character.add_inventory_item(
                self.conn, character_id, name, type_, quantity, description, magical, log=self.log
            )
        )

    async def remove_item(self, character_id: uuid.UUID, name: str) -> bool:
        removed = await game.character.remove_inventory_item(self.conn, character_id, name, log=self.log)
        return not isinstance(removed, ServiceError)


def _int(value: typing.Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class ToolExecutor:
    """
    Applies the DM tool calls to the game state.

    Each handler returns the text sent back to the model and, where the
    combat flow requires it, the tool the model must call next.
    """

    def __init__(self, store: GameStore, rng: random.Random | None = None, log=gl_log):
        self.store = store
        self.rng = rng or random.Random()
        self.log = log

    async def execute_all(self, calls: typing.Iterable[ToolCall]) -> list[ToolCallResult]:
        return [await self.execute(call) for call in calls]

    async def execute(self, call: ToolCall) -> ToolCallResult:
        await self.log.ainfo("Executing tool", tool=call.name, tool_call_id=call.id)
        try:
            text, force = await self._dispatch(call)
        except ServiceErrorException as e:
            await self.log.awarn("Tool failed", tool=call.name, tool_call_id=call.id, error=e.error.message)
            text, force = f"Error: {call.name} failed ({e.error.message}). Continue the narrative.", None
        return ToolCallResult(id=call.id, name=call.name, result=text, force_next_tool=force)

    async def _dispatch(self, call: ToolCall) -> tuple[str, str | None]:
        args = call.args
        match call.name:
            case "requestDiceRoll":
                text, force = self._dice_roll(args), None
            case "requestSavingThrow":
                text, force = self._saving_throw(args), None
            case "startEncounter":
                text, force = await self._start_encounter(args)
            case "endEncounter" | "endCombat":
                text, force = await self._end_encounter(), None
            case "npcAction":
                text, force = await self._npc_action(args)
            case "updateCombatant":
                text, force = await self._update_combatant(args)
            case "advanceTurn":
                text, force = await self._advance_turn()
            case "setScene":
                text, force = await self._set_scene(args), None
            case "awardXP":
                text, force = await self._award_xp(args), None
            case "modifyGold":
                text, force = await self._modify_gold(args), None
            case "addItem":
                text, force = await self._add_item(args), None
            case "removeItem":
                text, force = await self._remove_item(args), None
            case name if name in ACKNOWLEDGED_TOOLS:
                text, force = f"Game state updated ({name}). Continue narrating.", None
            case name:
                text, force = f"Tool {name} completed. Continue the narrative.", None
        return text, force

    def _dice_roll(self, args) -> str:
        return (
            f"Dice roll requested for {args.get('skill', 'a check')}. The player is now rolling dice. "
            "STOP HERE, do NOT narrate any outcome yet. Wait for the [ROLL RESULT] message "
            "with the actual numbers before continuing."
        )

    def _saving_throw(self, args) -> str:
        return (
            f"Saving throw requested: {args.get('ability', 'ability')} DC {args.get('dc', '?')}. "
            "The player is now rolling. STOP HERE, do NOT narrate any outcome yet. "
            "Wait for the [SAVING THROW RESULT] message before continuing."
        )

    async def _start_encounter(self, args) -> tuple[str, str | None]:
        characters = await self.store.get_characters()
        order = roll_initiative(characters, args.get("combatants") or [], self.rng)
        if not order:
            return "No combatants to start an encounter with.", None
        await self.store.update_game_state(
            {"in_combat": True, "initiative_order": order, "current_turn": 0, "round": 1}
        )
        summary = " | ".join(
            f"{e.name} (Init {e.initiative}, HP {e.hp}/{e.max_hp}, AC {e.ac}, {'PLAYER' if e.is_player else 'NPC'})"
            for e in order
        )
        first = order[0]
        if first.is_player:
            return (
                f"Combat started! Initiative: {summary}. Round 1, {first.name} goes first. "
                "This is a player, describe the situation and await their action.",
                None,
            )
        return (
            f"Combat started! Initiative: {summary}. Round 1, {first.name} goes first. "
            "This is an NPC, handle their turn immediately with npcAction.",
            "npcAction",
        )

    async def _sync_player_hp(self, order: typing.Iterable[InitiativeEntry]) -> None:
        for entry in order:
            if not entry.is_player or not entry.character_id:
                continue
            try:
                await self.store.update_character(uuid.UUID(entry.character_id), {"current_hp": max(0, entry.hp)})
            except (ServiceErrorException, ValueError) as e:
                await self.log.awarn(
                    "Could not sync player HP", character_id=entry.character_id, combatant=entry.name, error=str(e)
                )

    async def _end_encounter(self) -> str:
        state = await self.store.get_game_state()
        await self._sync_player_hp(state.initiative_order)
        await self.store.update_game_state({"in_combat": False, "initiative_order": []})

        defeated = [e.name for e in state.initiative_order if not e.is_player and e.hp <= 0]
        if not defeated:
            return "Combat ended. Continue the narrative, what does the party see now that the dust has settled?"
        characters = await self.store.get_characters()
        amount = suggest_combat_xp(defeated, len(characters))
        await self._apply_xp("combat", amount, characters)
        return (
            f"Combat ended. Defeated: {', '.join(defeated)}. XP awarded. "
            "Continue the story, describe what happens after the fight."
        )

    async def _npc_action(self, args) -> tuple[str, str | None]:
        state = await self.store.get_game_state()
        if not state.in_combat or not state.initiative_order:
            return "Error: Not in combat.", None
        attacker = find_combatant(state.initiative_order, args.get("attackerName"))
        target = find_combatant(state.initiative_order, args.get("targetName"))
        if attacker is None or target is None:
            missing = args.get("attackerName") if attacker is None else args.get("targetName")
            return f'Error: Could not find combatant "{missing}" in initiative order.', None

        outcome = resolve_npc_attack(
            target,
            _int(args.get("attackBonus")),
            args.get("damageDice"),
            args.get("advantage") or "normal",
            self.rng,
        )
        if outcome.hit:
            updated = dataclasses.replace(target, hp=outcome.target_hp)
            order = replace_entry(state.initiative_order, updated)
            await self.store.update_game_state({"initiative_order": order})
            await self._sync_player_hp([updated])

        rolls = f"d20({outcome.attack_roll})"
        if len(outcome.attack_rolls) > 1:
            rolls = f"d20({outcome.attack_roll}) [{'/'.join(str(r) for r in outcome.attack_rolls)}]"
        text = (
            f"{attacker.name} attacks {target.name} (AC {outcome.target_ac}): "
            f"{rolls} + {_int(args.get('attackBonus'))} = {outcome.attack_total} -> {'HIT' if outcome.hit else 'MISS'}"
        )
        if outcome.critical:
            text += " (CRITICAL HIT!)"
        if outcome.critical_miss:
            text += " (CRITICAL MISS!)"
        if outcome.hit:
            damage_type = f" {args['damageType']}" if args.get("damageType") else ""
            text += f". Deals {outcome.damage}{damage_type} damage. {target.name}: {outcome.target_hp}/{target.max_hp} HP"
            if outcome.target_hp == 0:
                text += ", DEFEATED!"
        text += f". Action: {args.get('description', 'attacks')}. Call advanceTurn NOW."
        return text, "advanceTurn"

    async def _update_combatant(self, args) -> tuple[str, str | None]:
        state = await self.store.get_game_state()
        if not state.in_combat or not state.initiative_order:
            return "Error: Not in combat.", None
        entry = find_combatant(state.initiative_order, args.get("name"))
        if entry is None:
            return f'Error: Combatant "{args.get("name")}" not found.', None

        updated = apply_combatant_update(
            entry,
            hp=_int(args["hp"]) if args.get("hp") is not None else None,
            damage=_int(args["damage"]) if args.get("damage") is not None else None,
            healing=_int(args["healing"]) if args.get("healing") is not None else None,
            add_condition=args.get("addCondition"),
            remove_condition=args.get("removeCondition"),
        )
        order = replace_entry(state.initiative_order, updated)
        await self.store.update_game_state({"initiative_order": order})
        await self._sync_player_hp([updated])

        text = f"{updated.name} updated. HP: {updated.hp}/{updated.max_hp}"
        if updated.conditions:
            text += f". Conditions: {', '.join(updated.conditions)}"
        if updated.defeated:
            text += ". DEFEATED!"
        if all_enemies_defeated(order):
            return text + ". ALL ENEMIES DEFEATED, call endEncounter NOW, then awardXP.", "endEncounter"
        return text + ". Call advanceTurn NOW to continue combat.", "advanceTurn"

    async def _advance_turn(self) -> tuple[str, str | None]:
        state = await self.store.get_game_state()
        order = state.initiative_order
        if not state.in_combat or not order:
            return "Not in combat or no combatants.", None

        advance = advance_turn(order, state.current_turn, state.round)
        if advance.all_defeated:
            return "All combatants are defeated. Call endEncounter NOW.", "endEncounter"
        await self.store.update_game_state({"current_turn": advance.current_turn, "round": advance.round})

        nxt = order[advance.current_turn]
        status = ", ".join(
            f"{e.name}({'PC' if e.is_player else 'NPC'} HP:{e.hp}/{e.max_hp})" for e in order if not e.defeated
        )
        text = (
            f"Round {advance.round}, Turn: {nxt.name} ({'PLAYER' if nxt.is_player else 'NPC'}, "
            f"HP {nxt.hp}/{nxt.max_hp}). Combat status: [{status}]."
        )
        if advance.skipped:
            text += f" Skipped {advance.skipped} defeated combatant(s)."
        if nxt.is_player:
            return (
                text + " This is the PLAYER, describe the tactical situation and WAIT for their action. "
                "Do NOT call any tools.",
                None,
            )
        return text + " This is an NPC, call npcAction NOW. Do NOT wait for user input.", "npcAction"

    async def _set_scene(self, args) -> str:
        updates: dict[str, typing.Any] = {}
        if args.get("description"):
            updates["current_scene"] = args["description"]
        if args.get("timeOfDay"):
            updates["time_of_day"] = args["timeOfDay"]
        if args.get("weather"):
            updates["weather"] = args["weather"]
        if updates:
            await self.store.update_game_state(updates)
        if args.get("location"):
            await self.store.update_campaign({"current_location": args["location"]})
        label = args.get("location") or "New Area"
        return (
            f"Scene updated to {label}. {args.get('description', '')}. Continue narrating, describe what "
            "the characters see, hear, and can interact with in this new scene."
        )

    async def _apply_xp(self, category: str, amount: int, characters: list[CharacterOut]) -> str | None:
        if not characters:
            return None
        character = characters[0]
        state = await self.store.get_game_state()
        tracker = XpTracker.from_dict(state.xp_tracker)
        award = award_xp(category, amount, character.level, character.experience, tracker)
        updates: dict[str, typing.Any] = {"experience": award.new_total_xp}
        if award.level_up:
            updates["level"] = award.new_level
            updates["proficiency_bonus"] = proficiency_bonus(award.new_level)
        await self.store.update_character(character.id, updates)
        await self.store.update_game_state({"xp_tracker": tracker.to_dict()})
        await self.log.ainfo(
            "Awarded XP",
            character_id=str(character.id),
            category=category,
            final_xp=award.final_xp,
            level_up=award.level_up,
        )
        text = f"{character.name} gains {award.final_xp} XP ({award.breakdown})"
        if award.level_up:
            text += f". LEVEL UP! {character.name} is now level {award.new_level}"
        return text

    async def _award_xp(self, args) -> str:
        category = args.get("category") or "milestone"
        amount = _int(args.get("amount"), 50) or 50
        reason = args.get("reason") or "Adventure progress"
        detail = await self._apply_xp(category, amount, await self.store.get_characters())
        text = f"Awarded {amount} {category} XP for: {reason}."
        if detail:
            text += f" {detail}."
        return text + " Continue the story."

    async def _modify_gold(self, args) -> str:
        amount = _int(args.get("amount"))
        state = await self.store.get_game_state()
        total = max(0, state.party_gold + amount)
        await self.store.update_game_state({"party_gold": total})
        verb = "gained" if amount >= 0 else "spent"
        return f"Party {verb} {abs(amount)} gold ({args.get('reason', 'no reason given')}). Total: {total} gp. Continue narrating."

    async def _add_item(self, args) -> str:
        characters = await self.store.get_characters()
        if not characters:
            return "No character found to add item to."
        name = args.get("name") or "Unknown item"
        quantity = max(1, _int(args.get("quantity"), 1))
        await self.store.add_item(
            characters[0].id,
            name,
            args.get("type") or "gear",
            quantity,
            args.get("description") or "",
            bool(args.get("magical")),
        )
        suffix = f" (x{quantity})" if quantity > 1 else ""
        return f"{name}{suffix} added to inventory. Continue narrating."

    async def _remove_item(self, args) -> str:
        characters = await self.store.get_characters()
        if not characters:
            return "No character found."
        name = args.get("itemName") or ""
        if not await self.store.remove_item(characters[0].id, name):
            return f'Item "{name}" not found in inventory. Continue narrating.'
        reason = f" ({args['reason']})" if args.get("reason") else ""
        return f"{name} removed from inventory{reason}. Continue narrating."
