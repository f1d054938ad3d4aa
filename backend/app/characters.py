import typing
import uuid
from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

import game.character
from app.dependencies import Conn, Log
from app.responses import ok
from irtypes.character import InventoryOut
from irtypes.error import ServiceCode, raise_service_error, unwrap

router = APIRouter()


class AbilityScoresIn(BaseModel):
    strength: int = Field(default=10, ge=1, le=30)
    dexterity: int = Field(default=10, ge=1, le=30)
    constitution: int = Field(default=10, ge=1, le=30)
    intelligence: int = Field(default=10, ge=1, le=30)
    wisdom: int = Field(default=10, ge=1, le=30)
    charisma: int = Field(default=10, ge=1, le=30)


class CharacterIn(BaseModel):
    campaign_id: uuid.UUID
    name: str = Field(min_length=1, max_length=100)
    race: str = Field(min_length=1, max_length=50)
    character_class: str = Field(min_length=1, max_length=50)
    level: int | None = Field(default=None, ge=1, le=20)
    background: str | None = None
    alignment: str | None = None
    ability_scores: AbilityScoresIn | None = None
    max_hp: int | None = Field(default=None, ge=1)
    armor_class: int | None = Field(default=None, ge=1)
    speed: int | None = Field(default=None, ge=0)
    saving_throws: dict[str, bool] | None = None
    skills: dict[str, bool] | None = None
    hit_dice: str | None = None
    spellcasting_ability: str | None = None
    spell_save_dc: int | None = None
    spell_attack_bonus: int | None = None
    notes: str | None = None
    starting_equipment: list[str] | None = None


class CharacterUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    race: str | None = None
    character_class: str | None = None
    subclass: str | None = None
    level: int | None = Field(default=None, ge=1, le=20)
    background: str | None = None
    alignment: str | None = None
    experience: int | None = Field(default=None, ge=0)
    ability_scores: AbilityScoresIn | None = None
    max_hp: int | None = Field(default=None, ge=1)
    current_hp: int | None = Field(default=None, ge=0)
    temp_hp: int | None = Field(default=None, ge=0)
    armor_class: int | None = Field(default=None, ge=1)
    initiative: int | None = None
    speed: int | None = Field(default=None, ge=0)
    proficiency_bonus: int | None = Field(default=None, ge=0)
    saving_throws: dict[str, bool] | None = None
    skills: dict[str, bool] | None = None
    hit_dice: str | None = None
    hit_dice_remaining: int | None = Field(default=None, ge=0)
    death_saves: dict[str, int] | None = None
    spellcasting_ability: str | None = None
    spell_save_dc: int | None = None
    spell_attack_bonus: int | None = None
    spell_slots: dict[str, dict[str, int]] | None = None
    portrait_url: str | None = None
    notes: str | None = None


class CharacterActionIn(BaseModel):
    action: str
    hit_dice_used: int = Field(default=1, ge=1)
    item_id: uuid.UUID | None = None
    equipped: bool = True
    item: str | None = None
    name: str | None = Field(default=None, min_length=1)
    type: str = "gear"
    quantity: int = Field(default=1, ge=1)
    description: str = ""
    magical: bool = False


def _required[T](value: T | None, field: str) -> T:
    if value is None:
        raise_service_error(400, ServiceCode.VALIDATION, f"{field} is required")
    return value


@router.get("/api/characters")
async def get_characters(conn: Conn, campaign_id: uuid.UUID):
    return ok(await game.character.get_characters(conn, campaign_id))


@router.post("/api/characters", status_code=201)
async def post_character(conn: Conn, log: Log, character: CharacterIn):
    fields = character.model_dump(
        exclude_none=True,
        exclude={"campaign_id", "name", "race", "character_class", "starting_equipment"},
    )
    return ok(
        unwrap(
            await game.character.create_character(
                conn,
                character.campaign_id,
                character.name,
                character.race,
                character.character_class,
                fields=fields,
                starting_equipment=character.starting_equipment,
                log=log,
            )
        )
    )


@router.get("/api/characters/{character_id}")
async def get_character(
    conn: Conn,
    log: Log,
    character_id: uuid.UUID,
    include: Annotated[str | None, Query()] = None,
):
    parts = {p.strip() for p in (include or "").split(",") if p.strip()}
    return ok(unwrap(await game.character.get_character_with_extras(conn, character_id, parts, log=log)))


@router.patch("/api/characters/{character_id}")
async def patch_character(conn: Conn, log: Log, character_id: uuid.UUID, update: CharacterUpdateIn):
    return ok(
        unwrap(
            await game.character.update_character(
                conn, character_id, update.model_dump(exclude_none=True), log=log
            )
        )
    )


@router.post("/api/characters/{character_id}")
async def post_character_action(conn: Conn, log: Log, character_id: uuid.UUID, body: CharacterActionIn):
    match body.action:
        case "shortRest":
            result: typing.Any = await game.character.short_rest(conn, character_id, body.hit_dice_used, log=log)
        case "longRest":
            result = await game.character.long_rest(conn, character_id, log=log)
        case "equipItem":
            result = await game.character.equip_item(
                conn, character_id, _required(body.item_id, "item_id"), body.equipped, log=log
            )
        case "addItem":
            unwrap(
                await game.character.add_inventory_item(
                    conn,
                    character_id,
                    _required(body.name, "name"),
                    body.type,
                    body.quantity,
                    body.description,
                    body.magical,
                    log=log,
                )
            )
            result = InventoryOut(inventory=await game.character.get_inventory(conn, character_id))
        case "removeItem":
            unwrap(
                await game.character.remove_inventory_item(
                    conn, character_id, _required(body.item or body.name, "item"), log=log
                )
            )
            result = InventoryOut(inventory=await game.character.get_inventory(conn, character_id))
        case _:
            raise_service_error(400, ServiceCode.UNKNOWN_ACTION, f"Unknown action: {body.action}")
    return ok(unwrap(result))


@router.delete("/api/characters/{character_id}")
async def delete_character(conn: Conn, log: Log, character_id: uuid.UUID):
    unwrap(await game.character.delete_character(conn, character_id, log=log))
    return ok()
