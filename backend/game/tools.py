import dataclasses
import typing

from google.genai import types as genai_types

_ADVANTAGE_PARAM = {
    "type": "string",
    "enum": ["normal", "advantage", "disadvantage"],
    "description": (
        "Roll with advantage (2d20 take higher) or disadvantage (2d20 take lower). "
        "Defaults to normal. Use only when D&D 5e rules clearly grant it; "
        "advantage and disadvantage cancel out."
    ),
}


@dataclasses.dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, typing.Any]

    def to_openai(self) -> dict[str, typing.Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic(self) -> dict[str, typing.Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }

    def to_gemini(self) -> genai_types.FunctionDeclaration:
        return genai_types.FunctionDeclaration(
            name=self.name,
            description=self.description,
            parameters_json_schema=self.parameters,
        )


def _object(properties: dict[str, typing.Any], required: list[str] | None = None) -> dict[str, typing.Any]:
    schema: dict[str, typing.Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


DM_TOOLS: list[ToolSpec] = [
    ToolSpec(
        name="requestDiceRoll",
        description="Request a dice roll from the player for a skill check, saving throw, or attack roll.",
        parameters=_object(
            {
                "skill": {
                    "type": "string",
                    "description": 'The skill or ability to roll for (e.g., "Investigation", "Strength", "Initiative").',
                },
                "dc": {
                    "type": "number",
                    "description": "The difficulty class (DC) of the check. Omit when not applicable, like Initiative.",
                },
                "isGroupRoll": {
                    "type": "boolean",
                    "description": "Whether this is a group roll for all players.",
                },
                "advantage": _ADVANTAGE_PARAM,
            },
            ["skill"],
        ),
    ),
    ToolSpec(
        name="requestSavingThrow",
        description="Request a saving throw from a player character or monster.",
        parameters=_object(
            {
                "ability": {
                    "type": "string",
                    "description": "Strength, Dexterity, Constitution, Intelligence, Wisdom or Charisma.",
                },
                "dc": {"type": "number", "description": "The difficulty class (DC) of the saving throw."},
                "characterName": {
                    "type": "string",
                    "description": "Name of the character making the save. Defaults to the current character.",
                },
                "source": {
                    "type": "string",
                    "description": "What caused the saving throw (e.g., \"Fireball spell\").",
                },
                "advantage": _ADVANTAGE_PARAM,
            },
            ["ability", "dc"],
        ),
    ),
    ToolSpec(
        name="startEncounter",
        description="Signals the start of a combat encounter, optionally specifying the initial combatants.",
        parameters=_object(
            {
                "combatants": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": 'Names of the combatants (e.g., "Goblin Sentry", "James").',
                },
            }
        ),
    ),
    ToolSpec(
        name="endEncounter",
        description="Signals the end of a combat encounter. Call this when all enemies are defeated.",
        parameters=_object({}),
    ),
    ToolSpec(
        name="npcAction",
        description=(
            "Resolve an NPC combat action (attack). Rolls attack vs target AC and damage automatically. "
            "Use this for every NPC attack during combat."
        ),
        parameters=_object(
            {
                "attackerName": {
                    "type": "string",
                    "description": "Name of the attacking NPC (must match initiative entry).",
                },
                "targetName": {
                    "type": "string",
                    "description": "Name of the target (must match initiative entry).",
                },
                "attackBonus": {"type": "number", "description": "Attack bonus (e.g., 4 for +4 to hit)."},
                "damageDice": {
                    "type": "string",
                    "description": 'Damage dice notation (e.g., "1d6+2").',
                },
                "description": {
                    "type": "string",
                    "description": 'Brief vivid description of the attack (e.g., "lunges with its scimitar").',
                },
                "damageType": {"type": "string", "description": "Damage type (slashing, piercing, fire...)."},
                "advantage": {
                    "type": "string",
                    "enum": ["normal", "advantage", "disadvantage"],
                    "description": "Advantage or disadvantage on the attack (Pack Tactics, restrained targets...).",
                },
            },
            ["attackerName", "targetName", "attackBonus", "damageDice", "description"],
        ),
    ),
    ToolSpec(
        name="updateCombatant",
        description=(
            "Update a combatant HP or conditions. Use for spell damage, environmental damage, "
            "healing, or applying/removing conditions like Stunned, Prone, etc."
        ),
        parameters=_object(
            {
                "name": {"type": "string", "description": "Name of the combatant to update."},
                "damage": {"type": "number", "description": "Damage to deal (subtracted from current HP)."},
                "healing": {"type": "number", "description": "Healing to apply (capped at max HP)."},
                "hp": {"type": "number", "description": "Set HP to an absolute value."},
                "addCondition": {"type": "string", "description": "Condition to add (e.g., \"Prone\")."},
                "removeCondition": {"type": "string", "description": "Condition to remove by name."},
            },
            ["name"],
        ),
    ),
    ToolSpec(
        name="advanceTurn",
        description=(
            "Advance to the next combatant in initiative order. Returns who is next. "
            "If next is an NPC, handle their turn immediately."
        ),
        parameters=_object({}),
    ),
    ToolSpec(
        name="setScene",
        description=(
            "Updates the current game scene with a new description. Call this when the location "
            "or environment changes significantly."
        ),
        parameters=_object(
            {
                "description": {
                    "type": "string",
                    "description": "A vivid description of the new scene, including atmosphere and NPCs present.",
                },
                "location": {
                    "type": "string",
                    "description": 'A short place name for the scene (e.g., "Tavern", "Forest Path").',
                },
                "timeOfDay": {
                    "type": "string",
                    "description": "dawn, morning, midday, afternoon, evening or night.",
                },
                "weather": {"type": "string", "description": 'Current weather (e.g., "clear", "foggy").'},
            },
            ["description", "location"],
        ),
    ),
    ToolSpec(
        name="awardXP",
        description=(
            "Award experience points to the party after combat victories, puzzle solutions, "
            "quest completions, roleplay moments, discoveries, or story milestones."
        ),
        parameters=_object(
            {
                "category": {
                    "type": "string",
                    "description": "combat, puzzle, quest, roleplay, exploration, milestone, or skillCheck.",
                },
                "amount": {"type": "number", "description": "Base XP amount before modifiers."},
                "reason": {"type": "string", "description": "Short reason for the award."},
            },
            ["category", "amount", "reason"],
        ),
    ),
    ToolSpec(
        name="modifyGold",
        description="Add or remove gold from the party treasury whenever gold is found, spent or looted.",
        parameters=_object(
            {
                "amount": {"type": "number", "description": "Positive to add, negative to remove."},
                "reason": {"type": "string", "description": "Why the gold changes hands."},
            },
            ["amount", "reason"],
        ),
    ),
    ToolSpec(
        name="addItem",
        description="Add an item to the player character's inventory when it is found, bought or received.",
        parameters=_object(
            {
                "name": {"type": "string", "description": "Name of the item."},
                "type": {
                    "type": "string",
                    "description": "weapon, armor, potion, scroll, wondrous, gear, treasure, or other.",
                },
                "quantity": {"type": "number", "description": "How many to add. Default 1."},
                "description": {"type": "string", "description": "Brief description of the item."},
                "magical": {"type": "boolean", "description": "Whether the item is magical."},
            },
            ["name", "type"],
        ),
    ),
    ToolSpec(
        name="removeItem",
        description="Remove an item from inventory when it is consumed, sold, broken, lost, or given away.",
        parameters=_object(
            {
                "itemName": {"type": "string", "description": "Name of the item to remove."},
                "reason": {"type": "string", "description": "Why it is being removed."},
            },
            ["itemName"],
        ),
    ),
]

TOOLS_BY_NAME: dict[str, ToolSpec] = {tool.name: tool for tool in DM_TOOLS}


def openai_tools() -> list[dict[str, typing.Any]]:
    return [tool.to_openai() for tool in DM_TOOLS]


def anthropic_tools() -> list[dict[str, typing.Any]]:
    return [tool.to_anthropic() for tool in DM_TOOLS]


def gemini_tools() -> list[genai_types.Tool]:
    return [genai_types.Tool(function_declarations=[tool.to_gemini() for tool in DM_TOOLS])]


def openai_tool_choice(force_next_tool: str | None) -> dict[str, typing.Any] | str:
    if force_next_tool:
        return {"type": "function", "function": {"name": force_next_tool}}
    return "auto"


def anthropic_tool_choice(force_next_tool: str | None) -> dict[str, typing.Any]:
    if force_next_tool:
        return {"type": "tool", "name": force_next_tool}
    return {"type": "auto"}


def gemini_tool_config(force_next_tool: str | None) -> genai_types.ToolConfig:
    if force_next_tool:
        return genai_types.ToolConfig(
            function_calling_config=genai_types.FunctionCallingConfig(
                mode=genai_types.FunctionCallingConfigMode.ANY,
                allowed_function_names=[force_next_tool],
            )
        )
    return genai_types.ToolConfig(
        function_calling_config=genai_types.FunctionCallingConfig(
            mode=genai_types.FunctionCallingConfigMode.AUTO,
        )
    )
