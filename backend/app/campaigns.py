import typing
import uuid

from fastapi import APIRouter
from pydantic import BaseModel, Field

import game.campaign
from app.dependencies import Conn, Log
from app.responses import ok
from irtypes.error import unwrap

router = APIRouter()

Difficulty = typing.Literal["easy", "normal", "hard", "deadly"]
RulesEnforcement = typing.Literal["strict", "moderate", "loose"]


class CampaignIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    world_setting: str | None = Field(default=None, max_length=5000)
    difficulty_level: Difficulty | None = None
    dm_personality: str | None = Field(default=None, max_length=2000)


class CampaignUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    world_setting: str | None = Field(default=None, max_length=5000)
    current_scene: str | None = None
    current_location: str | None = None
    themes: list[str] | None = None
    difficulty_level: Difficulty | None = None
    rules_enforcement: RulesEnforcement | None = None
    dm_personality: str | None = Field(default=None, max_length=2000)
    npcs: list[dict[str, typing.Any]] | None = None
    quests: list[dict[str, typing.Any]] | None = None
    session_count: int | None = Field(default=None, ge=0)


@router.get("/api/campaigns")
async def get_campaigns(conn: Conn):
    return ok(await game.campaign.get_campaigns(conn))


@router.post("/api/campaigns", status_code=201)
async def post_campaign(conn: Conn, log: Log, campaign: CampaignIn):
    return ok(
        await game.campaign.create_campaign(
            conn,
            campaign.name,
            campaign.description,
            campaign.world_setting,
            campaign.difficulty_level,
            campaign.dm_personality,
            log=log,
        )
    )


@router.get("/api/campaigns/{campaign_id}")
async def get_campaign(conn: Conn, log: Log, campaign_id: uuid.UUID):
    campaign = unwrap(await game.campaign.get_campaign(conn, campaign_id, log=log))
    await game.campaign.touch_last_played(conn, campaign_id)
    return ok(campaign)


@router.patch("/api/campaigns/{campaign_id}")
async def patch_campaign(conn: Conn, log: Log, campaign_id: uuid.UUID, update: CampaignUpdateIn):
    return ok(
        unwrap(
            await game.campaign.update_campaign(
                conn, campaign_id, update.model_dump(exclude_none=True), log=log
            )
        )
    )


@router.delete("/api/campaigns/{campaign_id}")
async def delete_campaign(conn: Conn, log: Log, campaign_id: uuid.UUID):
    unwrap(await game.campaign.delete_campaign(conn, campaign_id, log=log))
    return ok()
