import typing
import uuid

from fastapi import APIRouter
from pydantic import BaseModel, Field

import game.campaign
from app.dependencies import Conn, Log
from app.responses import ok
from irtypes.error import unwrap
from irtypes.game_state import InitiativeEntry

router = APIRouter()

TimeOfDay = typing.Literal["dawn", "morning", "midday", "afternoon", "evening", "night"]


class InitiativeEntryIn(BaseModel):
    id: str
    name: str
    initiative: int
    is_player: bool
    hp: int
    max_hp: int
    ac: int = 10
    character_id: str | None = None
    conditions: list[str] = []
    speed: int = 30


class GameStateUpdateIn(BaseModel):
    in_combat: bool | None = None
    initiative_order: list[InitiativeEntryIn] | None = None
    current_turn: int | None = Field(default=None, ge=0)
    round: int | None = Field(default=None, ge=0)
    current_scene: str | None = None
    current_scene_image_url: str | None = None
    time_of_day: TimeOfDay | None = None
    weather: str | None = None
    party_gold: int | None = Field(default=None, ge=0)
    party_inventory: list[dict[str, typing.Any]] | None = None
    xp_tracker: dict[str, typing.Any] | None = None


@router.get("/api/game-state")
async def get_game_state(conn: Conn, log: Log, campaign_id: uuid.UUID):
    return ok(unwrap(await game.campaign.get_game_state(conn, campaign_id, log=log)))


@router.patch("/api/game-state")
async def patch_game_state(conn: Conn, log: Log, campaign_id: uuid.UUID, update: GameStateUpdateIn):
    updates = update.model_dump(exclude_none=True)
    if update.initiative_order is not None:
        updates["initiative_order"] = [InitiativeEntry(**e.model_dump()) for e in update.initiative_order]
    return ok(unwrap(await game.campaign.update_game_state(conn, campaign_id, updates, log=log)))
