import typing
import uuid

import asyncpg

from game.dice import ability_modifier
from game.logger import gl_log
from irtypes.character import (
    CharacterOut,
    CharacterWithExtrasOut,
    EquipResultOut,
    InventoryItemOut,
    SpellOut,
)
from irtypes.error import ServiceCode, ServiceError, error

ABILITIES = ("strength", "dexterity", "constitution", "intelligence", "wisdom", "charisma")

CHARACTER_COLUMNS = """
    id, campaign_id, name, race, class AS character_class, subclass, level, background,
    alignment, experience, ability_scores, max_hp, current_hp, temp_hp, armor_class,
    initiative, speed, proficiency_bonus, saving_throws, skills, hit_dice,
    hit_dice_remaining, death_saves, spellcasting_ability, spell_save_dc,
    spell_attack_bonus, spell_slots, portrait_url, notes, created_at, updated_at
"""

INVENTORY_COLUMNS = """
    id, character_id, name, type, quantity, weight, value, description, equipped,
    attuned, requires_attunement, magical, rarity, properties, created_at
"""

SPELL_COLUMNS = """
    id, character_id, name, level, school, casting_time, range, components, duration,
    description, prepared, ritual, concentration
"""

# API field name -> column
UPDATABLE_CHARACTER_FIELDS: dict[str, str] = {
    "name": "name",
    "race": "race",
    "character_class": "class",
    "subclass": "subclass",
    "level": "level",
    "background": "background",
    "alignment": "alignment",
    "experience": "experience",
    "ability_scores": "ability_scores",
    "max_hp": "max_hp",
    "current_hp": "current_hp",
    "temp_hp": "temp_hp",
    "armor_class": "armor_class",
    "initiative": "initiative",
    "speed": "speed",
    "proficiency_bonus": "proficiency_bonus",
    "saving_throws": "saving_throws",
    "skills": "skills",
    "hit_dice": "hit_dice",
    "hit_dice_remaining": "hit_dice_remaining",
    "death_saves": "death_saves",
    "spellcasting_ability": "spellcasting_ability",
    "spell_save_dc": "spell_save_dc",
    "spell_attack_bonus": "spell_attack_bonus",
    "spell_slots": "spell_slots",
    "portrait_url": "portrait_url",
    "notes": "notes",
}

LIGHT_ARMOR = (("padded", 11), ("studded", 12), ("leather", 11))
MEDIUM_ARMOR = (("hide", 12), ("chain shirt", 13), ("scale", 14), ("breastplate", 14), ("half plate", 15))
HEAVY_ARMOR = (("ring mail", 14), ("chain mail", 16), ("splint", 17), ("plate", 18))


def character_from_row(row) -> CharacterOut:
    return CharacterOut(**{k: row[k] for k in row.keys()})


def inventory_item_from_row(row) -> InventoryItemOut:
    return InventoryItemOut(**{k: row[k] for k in row.keys()})


def spell_from_row(row) -> SpellOut:
    return SpellOut(**{k: row[k] for k in row.keys()})


def proficiency_for_level(level: int) -> int:
    return (level - 1) // 4 + 2


def armor_class_for(dexterity: int, inventory: typing.Iterable[InventoryItemOut]) -> int:
    """
    Armor class from the equipped armor pieces.

    Unarmored is 10 + DEX. Light armor adds the full DEX modifier, medium
    armor at most +2 and heavy armor none. The best body armor wins and
    each shield adds 2.
    """
    dex = ability_modifier(dexterity)
    ac = 10 + dex
    shields = 0
    for item in inventory:
        if item.type != "armor" or not item.equipped:
            continue
        name = item.name.lower()
        if "shield" in name:
            shields += 1
            continue
        if "half plate" in name:
            ac = max(ac, 15 + min(2, dex))
            continue
        if "breastplate" in name:
            ac = max(ac, 14 + min(2, dex))
            continue
        if "chain shirt" in name:
            ac = max(ac, 13 + min(2, dex))
            continue
        base = next((b for k, b in HEAVY_ARMOR if k in name), None)
        if base is not None:
            ac = max(ac, base)
            continue
        base = next((b for k, b in MEDIUM_ARMOR if k in name), None)
        if base is not None:
            ac = max(ac, base + min(2, dex))
            continue
        base = next((b for k, b in LIGHT_ARMOR if k in name), None)
        if base is not None:
            ac = max(ac, base + dex)
    return ac + 2 * shields


def short_rest_healing(hit_dice: str, constitution: int, dice_used: int) -> int:
    try:
        size = int(hit_dice.split("d")[1])
    except (IndexError, ValueError):
        size = 8
    per_die = max(0, size // 2 + 1 + ability_modifier(constitution))
    return per_die * dice_used


async def create_character(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    name: str,
    race: str,
    character_class: str,
    fields: dict[str, typing.Any] | None = None,
    starting_equipment: list[str] | None = None,
    log=gl_log,
) -> CharacterOut | ServiceError:
    log = log.bind(campaign_id=str(campaign_id), character_name=name)
    fields = fields or {}
    exists = await conn.fetchval("SELECT EXISTS (SELECT 1 FROM campaigns WHERE id = $1)", campaign_id)
    if not exists:
        return await error(ServiceCode.CAMPAIGN_NOT_FOUND, "Campaign not found", log=log)

    level = fields.get("level") or 1
    ability_scores = {a: 10 for a in ABILITIES} | (fields.get("ability_scores") or {})
    max_hp = fields.get("max_hp") or 10
    hit_dice_remaining = fields.get("hit_dice_remaining")

    async with conn.transaction():
        row = await conn.fetchrow(
            f"""
            INSERT INTO characters (
                campaign_id, name, race, class, level, background, alignment,
                ability_scores, max_hp, current_hp, proficiency_bonus, armor_class, speed,
                saving_throws, skills, hit_dice, hit_dice_remaining, death_saves, experience,
                spellcasting_ability, spell_save_dc, spell_attack_bonus, spell_slots, notes
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $9, $10, $11, $12, $13, $14, $15, $16,
                    $17, $18, $19, $20, $21, $22, $23)
            RETURNING {CHARACTER_COLUMNS}
            """,
            campaign_id,
            name,
            race,
            character_class,
            level,
            fields.get("background") or "",
            fields.get("alignment") or "True Neutral",
            ability_scores,
            max_hp,
            fields.get("proficiency_bonus") or proficiency_for_level(level),
            fields.get("armor_class") or 10 + ability_modifier(ability_scores["dexterity"]),
            fields.get("speed") or 30,
            fields.get("saving_throws") or {a: False for a in ABILITIES},
            fields.get("skills") or {},
            fields.get("hit_dice") or f"{level}d8",
            level if hit_dice_remaining is None else hit_dice_remaining,
            fields.get("death_saves") or {"successes": 0, "failures": 0},
            fields.get("experience") or 0,
            fields.get("spellcasting_ability"),
            fields.get("spell_save_dc"),
            fields.get("spell_attack_bonus"),
            fields.get("spell_slots") or {},
            fields.get("notes") or "",
        )
        for item_name in starting_equipment or []:
            await conn.execute(
                """
                INSERT INTO inventory (character_id, name, type, description)
                VALUES ($1, $2, 'gear', 'Starting equipment')
                """,
                row["id"],
                item_name,
            )
    await log.ainfo("Created character", character_id=str(row["id"]), items=len(starting_equipment or []))
    return character_from_row(row)


async def get_character(conn: asyncpg.Connection, id_: uuid.UUID, log=gl_log) -> CharacterOut | ServiceError:
    row = await conn.fetchrow(f"SELECT {CHARACTER_COLUMNS} FROM characters WHERE id = $1", id_)
    if row is None:
        return await error(ServiceCode.CHARACTER_NOT_FOUND, "Character not found", log=log, character_id=str(id_))
    return character_from_row(row)


async def get_character_with_extras(
    conn: asyncpg.Connection,
    id_: uuid.UUID,
    include: typing.Collection[str] = (),
    log=gl_log,
) -> CharacterWithExtrasOut | ServiceError:
    character = await get_character(conn, id_, log=log)
    if isinstance(character, ServiceError):
        return character
    result = CharacterWithExtrasOut(**character.__dict__)
    if "inventory" in include:
        result.inventory = await get_inventory(conn, id_)
    if "spells" in include:
        result.spells = await get_spells(conn, id_)
    return result


async def get_characters(conn: asyncpg.Connection, campaign_id: uuid.UUID) -> list[CharacterOut]:
    rows = await conn.fetch(
        f"SELECT {CHARACTER_COLUMNS} FROM characters WHERE campaign_id = $1 ORDER BY created_at ASC",
        campaign_id,
    )
    return [character_from_row(r) for r in rows]


async def update_character(
    conn: asyncpg.Connection,
    id_: uuid.UUID,
    updates: dict[str, typing.Any],
    log=gl_log,
) -> CharacterOut | ServiceError:
    log = log.bind(character_id=str(id_))
    clauses: list[str] = []
    values: list[typing.Any] = []
    for field, column in UPDATABLE_CHARACTER_FIELDS.items():
        if field in updates:
            values.append(updates[field])
            clauses.append(f"{column} = ${len(values)}")
    if not clauses:
        return await error(ServiceCode.NO_UPDATE_FIELDS, "No update fields provided", log=log)

    values.append(id_)
    row = await conn.fetchrow(
        f"""
        UPDATE characters
        SET {", ".join(clauses)}, updated_at = NOW()
        WHERE id = ${len(values)}
        RETURNING {CHARACTER_COLUMNS}
        """,
        *values,
    )
    if row is None:
        return await error(ServiceCode.CHARACTER_NOT_FOUND, "Character not found", log=log)
    await log.ainfo("Updated character", fields=sorted(k for k in updates if k in UPDATABLE_CHARACTER_FIELDS))
    return character_from_row(row)


async def delete_character(conn: asyncpg.Connection, id_: uuid.UUID, log=gl_log) -> None | ServiceError:
    deleted_id = await conn.fetchval("DELETE FROM characters WHERE id = $1 RETURNING id", id_)
    if deleted_id is None:
        return await error(ServiceCode.CHARACTER_NOT_FOUND, "Character not found", log=log, character_id=str(id_))
    await log.ainfo("Deleted character", character_id=str(deleted_id))
    return None


async def short_rest(
    conn: asyncpg.Connection,
    id_: uuid.UUID,
    hit_dice_used: int,
    log=gl_log,
) -> CharacterOut | ServiceError:
    log = log.bind(character_id=str(id_), hit_dice_used=hit_dice_used)
    character = await get_character(conn, id_, log=log)
    if isinstance(character, ServiceError):
        return character
    if hit_dice_used > character.hit_dice_remaining:
        return await error(
            ServiceCode.NOT_ENOUGH_HIT_DICE,
            "Not enough hit dice remaining",
            log=log,
            hit_dice_remaining=character.hit_dice_remaining,
        )
    healing = short_rest_healing(
        character.hit_dice,
        (character.ability_scores or {}).get("constitution", 10),
        hit_dice_used,
    )
    return await update_character(
        conn,
        id_,
        {
            "current_hp": min(character.current_hp + healing, character.max_hp),
            "hit_dice_remaining": character.hit_dice_remaining - hit_dice_used,
        },
        log=log,
    )


async def long_rest(conn: asyncpg.Connection, id_: uuid.UUID, log=gl_log) -> CharacterOut | ServiceError:
    log = log.bind(character_id=str(id_))
    character = await get_character(conn, id_, log=log)
    if isinstance(character, ServiceError):
        return character
    restored = max(1, character.level // 2)
    spell_slots = {level: {**slot, "used": 0} for level, slot in (character.spell_slots or {}).items()}
    return await update_character(
        conn,
        id_,
        {
            "current_hp": character.max_hp,
            "temp_hp": 0,
            "hit_dice_remaining": min(character.hit_dice_remaining + restored, character.level),
            "death_saves": {"successes": 0, "failures": 0},
            "spell_slots": spell_slots,
        },
        log=log,
    )


async def get_inventory(conn: asyncpg.Connection, character_id: uuid.UUID) -> list[InventoryItemOut]:
    rows = await conn.fetch(
        f"SELECT {INVENTORY_COLUMNS} FROM inventory WHERE character_id = $1 ORDER BY type, name",
        character_id,
    )
    return [inventory_item_from_row(r) for r in rows]


async def get_spells(conn: asyncpg.Connection, character_id: uuid.UUID) -> list[SpellOut]:
    rows = await conn.fetch(
        f"SELECT {SPELL_COLUMNS} FROM spells WHERE character_id = $1 ORDER BY level, name",
        character_id,
    )
    return [spell_from_row(r) for r in rows]


async def add_inventory_item(
    conn: asyncpg.Connection,
    character_id: uuid.UUID,
    name: str,
    type_: str = "gear",
    quantity: int = 1,
    description: str = "",
    magical: bool = False,
    log=gl_log,
) -> InventoryItemOut | ServiceError:
    log = log.bind(character_id=str(character_id), item_name=name)
    exists = await conn.fetchval("SELECT EXISTS (SELECT 1 FROM characters WHERE id = $1)", character_id)
    if not exists:
        return await error(ServiceCode.CHARACTER_NOT_FOUND, "Character not found", log=log)
    row = await conn.fetchrow(
        f"""
        INSERT INTO inventory (character_id, name, type, quantity, description, magical)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING {INVENTORY_COLUMNS}
        """,
        character_id,
        name,
        type_,
        quantity,
        description,
        magical,
    )
    await log.ainfo("Added inventory item", item_id=str(row["id"]))
    return inventory_item_from_row(row)


async def remove_inventory_item(
    conn: asyncpg.Connection,
    character_id: uuid.UUID,
    item: str,
    log=gl_log,
) -> InventoryItemOut | ServiceError:
    """Remove an item by id, or by case-insensitive name when `item` is not a UUID."""
    log = log.bind(character_id=str(character_id), item=item)
    try:
        item_id = uuid.UUID(item)
    except ValueError:
        item_id = None

    if item_id is not None:
        row = await conn.fetchrow(
            f"DELETE FROM inventory WHERE id = $1 AND character_id = $2 RETURNING {INVENTORY_COLUMNS}",
            item_id,
            character_id,
        )
    else:
        row = await conn.fetchrow(
            f"""
            DELETE FROM inventory
            WHERE id = (
                SELECT id FROM inventory
                WHERE character_id = $1 AND LOWER(name) = LOWER($2)
                ORDER BY created_at
                LIMIT 1
            )
            RETURNING {INVENTORY_COLUMNS}
            """,
            character_id,
            item,
        )
    if row is None:
        return await error(ServiceCode.ITEM_NOT_FOUND, "Item not found", log=log)
    await log.ainfo("Removed inventory item", item_id=str(row["id"]))
    return inventory_item_from_row(row)


async def equip_item(
    conn: asyncpg.Connection,
    character_id: uuid.UUID,
    item_id: uuid.UUID,
    equipped: bool,
    log=gl_log,
) -> EquipResultOut | ServiceError:
    log = log.bind(character_id=str(character_id), item_id=str(item_id), equipped=equipped)
    character = await get_character(conn, character_id, log=log)
    if isinstance(character, ServiceError):
        return character

    async with conn.transaction():
        updated = await conn.fetchval(
            "UPDATE inventory SET equipped = $1 WHERE id = $2 AND character_id = $3 RETURNING id",
            equipped,
            item_id,
            character_id,
        )
        if updated is None:
            return await error(ServiceCode.ITEM_NOT_FOUND, "Item not found", log=log)
        inventory = await get_inventory(conn, character_id)
        ac = armor_class_for((character.ability_scores or {}).get("dexterity", 10), inventory)
        if ac != character.armor_class:
            character = await update_character(conn, character_id, {"armor_class": ac}, log=log)
            if isinstance(character, ServiceError):
                return character
            await log.ainfo("Recalculated armor class", armor_class=ac)
    return EquipResultOut(character=character, inventory=inventory)
