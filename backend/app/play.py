import uuid

from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

import game.play
from app.dependencies import Conn, Log
from irtypes.error import unwrap

router = APIRouter()


class PlayIn(BaseModel):
    campaign_id: uuid.UUID
    message: str = Field(min_length=1, max_length=10000)


@router.post("/api/play")
async def post_play(conn: Conn, log: Log, body: PlayIn):
    session = unwrap(await game.play.start_play(conn, body.campaign_id, body.message.strip(), log=log))
    return StreamingResponse(session.stream(), media_type="text/plain; charset=utf-8")
