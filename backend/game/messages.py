import typing
import uuid

import asyncpg

from game.logger import gl_log
from irtypes.message import MessageOut, MessageRole

MESSAGE_COLUMNS = "id, campaign_id, role, content, tool_calls, tool_call_id, created_at"


def message_from_row(row) -> MessageOut:
    return MessageOut(**{k: row[k] for k in row.keys()})


async def create_message(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    role: MessageRole,
    content: str,
    tool_calls: list[dict[str, typing.Any]] | None = None,
    tool_call_id: str | None = None,
    log=gl_log,
) -> MessageOut:
    row = await conn.fetchrow(
        f"""
        INSERT INTO messages (campaign_id, role, content, tool_calls, tool_call_id)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING {MESSAGE_COLUMNS}
        """,
        campaign_id,
        role,
        content,
        tool_calls or None,
        tool_call_id,
    )
    await log.adebug(
        "Stored message",
        campaign_id=str(campaign_id),
        message_id=str(row["id"]),
        role=role.value,
        tool_calls=len(tool_calls or []),
    )
    return message_from_row(row)


async def get_recent_messages(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    limit: int = 50,
) -> list[MessageOut]:
    """The newest `limit` messages of a campaign, oldest first."""
    rows = await conn.fetch(
        f"""
        SELECT {MESSAGE_COLUMNS} FROM (
            SELECT {MESSAGE_COLUMNS}, seq
            FROM messages
            WHERE campaign_id = $1
            ORDER BY seq DESC
            LIMIT $2
        ) AS recent
        ORDER BY seq ASC
        """,
        campaign_id,
        limit,
    )
    return [message_from_row(r) for r in rows]


async def get_recent_tool_call_ids(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    window: int,
) -> set[str]:
    rows = await conn.fetch(
        """
        SELECT tool_call_id FROM (
            SELECT tool_call_id
            FROM messages
            WHERE campaign_id = $1
            ORDER BY seq DESC
            LIMIT $2
        ) AS recent
        WHERE tool_call_id IS NOT NULL
        """,
        campaign_id,
        window,
    )
    return {r["tool_call_id"] for r in rows}


async def clear_messages(conn: asyncpg.Connection, campaign_id: uuid.UUID, log=gl_log) -> int:
    result = await conn.execute("DELETE FROM messages WHERE campaign_id = $1", campaign_id)
    deleted = int(result.split()[-1])
    await log.ainfo("Cleared chat history", campaign_id=str(campaign_id), deleted=deleted)
    return deleted
