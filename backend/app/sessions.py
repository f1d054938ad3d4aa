import typing
import uuid

from fastapi import APIRouter
from pydantic import BaseModel, Field

import game.sessions
from app.dependencies import Conn, Log
from app.responses import ok
from irtypes.error import ServiceCode, raise_service_error, unwrap

router = APIRouter()


class SessionActionIn(BaseModel):
    action: typing.Literal["start", "end", "summarize"]
    campaign_id: uuid.UUID | None = None
    session_id: uuid.UUID | None = None
    summary: str | None = Field(default=None, max_length=10000)
    highlights: list[str] | None = None


@router.get("/api/sessions")
async def get_sessions(conn: Conn, log: Log, campaign_id: uuid.UUID):
    return ok(unwrap(await game.sessions.get_sessions(conn, campaign_id, log=log)))


@router.post("/api/sessions")
async def post_session(conn: Conn, log: Log, body: SessionActionIn):
    if body.action == "end":
        if body.session_id is None:
            raise_service_error(400, ServiceCode.VALIDATION, "session_id is required")
        return ok(
            unwrap(await game.sessions.end_session(conn, body.session_id, body.summary, body.highlights, log=log))
        )

    if body.campaign_id is None:
        raise_service_error(400, ServiceCode.VALIDATION, "campaign_id is required")
    if body.action == "start":
        return ok(unwrap(await game.sessions.start_session(conn, body.campaign_id, log=log)))
    return ok(unwrap(await game.sessions.session_narrative(conn, body.campaign_id, log=log)))
