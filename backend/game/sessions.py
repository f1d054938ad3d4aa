"""
Play sessions of a campaign: one open session at a time, closed with an
optional summary and highlights.
"""
import typing
import uuid

import asyncpg

import game.campaign
import game.messages
from game.logger import gl_log
from irtypes.error import ServiceCode, ServiceError, error
from irtypes.message import MessageRole
from irtypes.session import SessionLogOut, SessionNarrativeOut, SessionsOut

SESSION_COLUMNS = """
    id, campaign_id, session_number, started_at, ended_at, summary, highlights, message_count
"""
NARRATIVE_MESSAGES = 30


def session_from_row(row) -> SessionLogOut:
    return SessionLogOut(**{k: row[k] for k in row.keys()})


async def get_current_session(conn: asyncpg.Connection, campaign_id: uuid.UUID) -> SessionLogOut | None:
    row = await conn.fetchrow(
        f"SELECT {SESSION_COLUMNS} FROM session_logs WHERE campaign_id = $1 AND ended_at IS NULL",
        campaign_id,
    )
    return session_from_row(row) if row is not None else None


async def get_session_logs(conn: asyncpg.Connection, campaign_id: uuid.UUID) -> list[SessionLogOut]:
    rows = await conn.fetch(
        f"SELECT {SESSION_COLUMNS} FROM session_logs WHERE campaign_id = $1 ORDER BY session_number DESC",
        campaign_id,
    )
    return [session_from_row(r) for r in rows]


async def get_sessions(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    log=gl_log,
) -> SessionsOut | ServiceError:
    if not await game.campaign.check_campaign_exists(conn, campaign_id):
        return await error(ServiceCode.CAMPAIGN_NOT_FOUND, "Campaign not found", log=log, campaign_id=str(campaign_id))
    return SessionsOut(
        current=await get_current_session(conn, campaign_id),
        logs=await get_session_logs(conn, campaign_id),
    )


async def start_session(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    log=gl_log,
) -> SessionLogOut | ServiceError:
    """Open a new session, or return the one already open."""
    log = log.bind(campaign_id=str(campaign_id))
    if not await game.campaign.check_campaign_exists(conn, campaign_id):
        return await error(ServiceCode.CAMPAIGN_NOT_FOUND, "Campaign not found", log=log)

    async with conn.transaction():
        row = await conn.fetchrow(
            f"""
            INSERT INTO session_logs (campaign_id, session_number, start_seq)
            VALUES (
                $1,
                (SELECT COALESCE(MAX(session_number), 0) + 1 FROM session_logs WHERE campaign_id = $1),
                (SELECT COALESCE(MAX(seq), 0) FROM messages WHERE campaign_id = $1)
            )
            ON CONFLICT (campaign_id) WHERE ended_at IS NULL DO NOTHING
            RETURNING {SESSION_COLUMNS}
            """,
            campaign_id,
        )
        if row is None:
            current = await get_current_session(conn, campaign_id)
            if current is not None:
                return current
            return await error(ServiceCode.SERVER_ERROR, "Could not start session", log=log)
        await conn.execute(
            "UPDATE campaigns SET session_count = session_count + 1, last_played_at = NOW() WHERE id = $1",
            campaign_id,
        )
    await log.ainfo("Started session", session_id=str(row["id"]), session_number=row["session_number"])
    return session_from_row(row)


async def end_session(
    conn: asyncpg.Connection,
    session_id: uuid.UUID,
    summary: str | None = None,
    highlights: typing.Sequence[str] | None = None,
    log=gl_log,
) -> SessionLogOut | ServiceError:
    log = log.bind(session_id=str(session_id))
    row = await conn.fetchrow(
        f"""
        UPDATE session_logs AS s
        SET ended_at = COALESCE(s.ended_at, NOW()),
            summary = $2,
            highlights = $3,
            message_count = (
                SELECT COUNT(*) FROM messages m
                WHERE m.campaign_id = s.campaign_id AND m.seq > s.start_seq
            )
        WHERE s.id = $1
        RETURNING {SESSION_COLUMNS}
        """,
        session_id,
        summary or None,
        list(highlights or []),
    )
    if row is None:
        return await error(ServiceCode.SESSION_NOT_FOUND, "Session not found", log=log)
    await log.ainfo("Ended session", message_count=row["message_count"])
    return session_from_row(row)


async def session_narrative(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    log=gl_log,
) -> SessionNarrativeOut | ServiceError:
    """Recent player and DM lines, for the client to summarize a session."""
    if not await game.campaign.check_campaign_exists(conn, campaign_id):
        return await error(ServiceCode.CAMPAIGN_NOT_FOUND, "Campaign not found", log=log, campaign_id=str(campaign_id))
    messages = await game.messages.get_recent_messages(conn, campaign_id, NARRATIVE_MESSAGES)
    lines = [
        f"{'Player' if m.role == MessageRole.USER else 'DM'}: {m.content}"
        for m in messages
        if m.role in (MessageRole.USER, MessageRole.ASSISTANT) and m.content
    ]
    return SessionNarrativeOut(narrative="\n".join(lines), message_count=len(messages))
