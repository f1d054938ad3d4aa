import typing
import uuid

import asyncpg

from game.logger import gl_log
from irtypes.campaign import CampaignOut
from irtypes.error import ServiceCode, ServiceError, error
from irtypes.game_state import GameStateOut, InitiativeEntry

DEFAULT_DM_PERSONALITY = "A wise and fair Dungeon Master who creates immersive adventures."

CAMPAIGN_COLUMNS = """
    id, name, description, world_setting, current_scene, current_location, themes,
    difficulty_level, rules_enforcement, dm_personality, npcs, quests, session_count,
    created_at, updated_at, last_played_at
"""

UPDATABLE_CAMPAIGN_FIELDS = (
    "name",
    "description",
    "world_setting",
    "current_scene",
    "current_location",
    "themes",
    "difficulty_level",
    "rules_enforcement",
    "dm_personality",
    "npcs",
    "quests",
    "session_count",
)

GAME_STATE_COLUMNS = """
    id, campaign_id, in_combat, initiative_order, current_turn, round, current_scene,
    current_scene_image_url, time_of_day, weather, party_gold, party_inventory,
    xp_tracker, updated_at
"""

UPDATABLE_GAME_STATE_FIELDS = (
    "in_combat",
    "initiative_order",
    "current_turn",
    "round",
    "current_scene",
    "current_scene_image_url",
    "time_of_day",
    "weather",
    "party_gold",
    "party_inventory",
    "xp_tracker",
)


def campaign_from_row(row) -> CampaignOut:
    return CampaignOut(**{k: row[k] for k in row.keys()})


def game_state_from_row(row) -> GameStateOut:
    data = {k: row[k] for k in row.keys()}
    data["initiative_order"] = [InitiativeEntry.from_dict(e) for e in data["initiative_order"] or []]
    data["xp_tracker"] = data["xp_tracker"] or {}
    return GameStateOut(**data)


def _set_clauses(updates: dict[str, typing.Any], allowed: typing.Iterable[str]) -> tuple[list[str], list[typing.Any]]:
    clauses: list[str] = []
    values: list[typing.Any] = []
    for field in allowed:
        if field in updates:
            values.append(updates[field])
            clauses.append(f"{field} = ${len(values)}")
    return clauses, values


async def create_campaign(
    conn: asyncpg.Connection,
    name: str,
    description: str | None = None,
    world_setting: str | None = None,
    difficulty_level: str | None = None,
    dm_personality: str | None = None,
    log=gl_log,
) -> CampaignOut:
    async with conn.transaction():
        row = await conn.fetchrow(
            f"""
            INSERT INTO campaigns (name, description, world_setting, difficulty_level, dm_personality)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING {CAMPAIGN_COLUMNS}
            """,
            name,
            description or "",
            world_setting or "Generic Fantasy",
            difficulty_level or "normal",
            dm_personality or DEFAULT_DM_PERSONALITY,
        )
        await conn.execute("INSERT INTO game_state (campaign_id) VALUES ($1)", row["id"])
    await log.ainfo("Created campaign", campaign_id=str(row["id"]), campaign_name=name)
    return campaign_from_row(row)


async def get_campaign(conn: asyncpg.Connection, id_: uuid.UUID, log=gl_log) -> CampaignOut | ServiceError:
    row = await conn.fetchrow(f"SELECT {CAMPAIGN_COLUMNS} FROM campaigns WHERE id = $1", id_)
    if row is None:
        return await error(ServiceCode.CAMPAIGN_NOT_FOUND, "Campaign not found", log=log, campaign_id=str(id_))
    return campaign_from_row(row)


async def get_campaigns(conn: asyncpg.Connection) -> list[CampaignOut]:
    rows = await conn.fetch(f"SELECT {CAMPAIGN_COLUMNS} FROM campaigns ORDER BY last_played_at DESC")
    return [campaign_from_row(r) for r in rows]


async def check_campaign_exists(conn: asyncpg.Connection, id_: uuid.UUID) -> bool:
    return await conn.fetchval("SELECT EXISTS (SELECT 1 FROM campaigns WHERE id = $1)", id_)


async def touch_last_played(conn: asyncpg.Connection, id_: uuid.UUID) -> None:
    await conn.execute("UPDATE campaigns SET last_played_at = NOW() WHERE id = $1", id_)


async def update_campaign(
    conn: asyncpg.Connection,
    id_: uuid.UUID,
    updates: dict[str, typing.Any],
    log=gl_log,
) -> CampaignOut | ServiceError:
    log = log.bind(campaign_id=str(id_))
    clauses, values = _set_clauses(updates, UPDATABLE_CAMPAIGN_FIELDS)
    if not clauses:
        return await error(ServiceCode.NO_UPDATE_FIELDS, "No update fields provided", log=log)

    values.append(id_)
    row = await conn.fetchrow(
        f"""
        UPDATE campaigns
        SET {", ".join(clauses)}, updated_at = NOW()
        WHERE id = ${len(values)}
        RETURNING {CAMPAIGN_COLUMNS}
        """,
        *values,
    )
    if row is None:
        return await error(ServiceCode.CAMPAIGN_NOT_FOUND, "Campaign not found", log=log)
    await log.ainfo("Updated campaign", fields=sorted(k for k in updates if k in UPDATABLE_CAMPAIGN_FIELDS))
    return campaign_from_row(row)


async def delete_campaign(conn: asyncpg.Connection, id_: uuid.UUID, log=gl_log) -> None | ServiceError:
    deleted_id = await conn.fetchval("DELETE FROM campaigns WHERE id = $1 RETURNING id", id_)
    if deleted_id is None:
        return await error(ServiceCode.CAMPAIGN_NOT_FOUND, "Campaign not found", log=log, campaign_id=str(id_))
    await log.ainfo("Deleted campaign", campaign_id=str(deleted_id))
    return None


async def get_game_state(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    log=gl_log,
) -> GameStateOut | ServiceError:
    row = await conn.fetchrow(
        f"SELECT {GAME_STATE_COLUMNS} FROM game_state WHERE campaign_id = $1",
        campaign_id,
    )
    if row is None:
        return await error(
            ServiceCode.GAME_STATE_NOT_FOUND,
            "Game state not found",
            log=log,
            campaign_id=str(campaign_id),
        )
    return game_state_from_row(row)


async def update_game_state(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    updates: dict[str, typing.Any],
    log=gl_log,
) -> GameStateOut | ServiceError:
    log = log.bind(campaign_id=str(campaign_id))
    updates = dict(updates)
    if "initiative_order" in updates:
        updates["initiative_order"] = [
            e.to_dict() if isinstance(e, InitiativeEntry) else e for e in updates["initiative_order"]
        ]
    clauses, values = _set_clauses(updates, UPDATABLE_GAME_STATE_FIELDS)
    if not clauses:
        return await error(ServiceCode.NO_UPDATE_FIELDS, "No update fields provided", log=log)

    values.append(campaign_id)
    row = await conn.fetchrow(
        f"""
        UPDATE game_state
        SET {", ".join(clauses)}, updated_at = NOW()
        WHERE campaign_id = ${len(values)}
        RETURNING {GAME_STATE_COLUMNS}
        """,
        *values,
    )
    if row is None:
        return await error(ServiceCode.GAME_STATE_NOT_FOUND, "Game state not found", log=log)
    await log.ainfo("Updated game state", fields=sorted(k for k in updates if k in UPDATABLE_GAME_STATE_FIELDS))
    return game_state_from_row(row)
