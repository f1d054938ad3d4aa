import uuid
from typing import Annotated, AsyncIterator

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, model_validator

import game.campaign
import game.chat
import game.messages
from app.dependencies import Conn, Log
from app.responses import ok
from game.events import Notice, ToolResponse, encode_event
from game.inference import InferenceEvent, ProviderError
from game.utils import get_conn
from irtypes.error import ServiceCode, raise_service_error, unwrap

router = APIRouter()


class ToolResponseIn(BaseModel):
    tool_call_id: str = Field(min_length=1)
    content: str


class ChatIn(BaseModel):
    campaign_id: uuid.UUID
    message: str | None = Field(default=None, min_length=1, max_length=10000)
    tool_responses: list[ToolResponseIn] | None = None
    force_next_tool: str | None = None
    character_id: uuid.UUID | None = None
    is_whisper: bool = False

    @model_validator(mode="after")
    def exactly_one_input(self):
        if (self.message is None) == (not self.tool_responses):
            raise ValueError("Provide either message or a non-empty tool_responses list")
        return self


class ChatClearIn(BaseModel):
    campaign_id: uuid.UUID


async def _stream(campaign_id: uuid.UUID, events: AsyncIterator[InferenceEvent], log) -> AsyncIterator[str]:
    async with get_conn() as conn:
        try:
            async for event in game.chat.relay(conn, campaign_id, events, log=log):
                yield encode_event(event)
        except ProviderError as e:
            await log.awarn("Provider stream failed", provider=e.provider, status=e.status, error=e.message)
            yield encode_event(Notice("error", e.message))


@router.post("/api/chat")
async def post_chat(conn: Conn, log: Log, chat: ChatIn):
    log = log.bind(campaign_id=str(chat.campaign_id))
    if not await game.campaign.check_campaign_exists(conn, chat.campaign_id):
        raise_service_error(404, ServiceCode.CAMPAIGN_NOT_FOUND, "Campaign not found")

    tool_responses = [ToolResponse(r.tool_call_id, r.content) for r in chat.tool_responses or []]
    await game.chat.record_input(conn, chat.campaign_id, chat.message, tool_responses, log=log)
    await game.campaign.touch_last_played(conn, chat.campaign_id)
    opened = unwrap(await game.chat.open_turn(conn, chat.campaign_id, chat.force_next_tool, log=log))

    headers = {"X-Provider": opened.provider, "X-Model": opened.model}
    if opened.fallback_used:
        headers["X-Fallback-Used"] = "true"
    return StreamingResponse(
        _stream(chat.campaign_id, opened.events, log),
        media_type="text/plain; charset=utf-8",
        headers=headers,
    )


@router.get("/api/chat")
async def get_chat(
    conn: Conn,
    campaign_id: uuid.UUID,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
):
    return ok(await game.messages.get_recent_messages(conn, campaign_id, limit))


@router.delete("/api/chat")
async def delete_chat(conn: Conn, log: Log, body: ChatClearIn):
    if not await game.campaign.check_campaign_exists(conn, body.campaign_id):
        raise_service_error(404, ServiceCode.CAMPAIGN_NOT_FOUND, "Campaign not found")
    deleted = await game.messages.clear_messages(conn, body.campaign_id, log=log)
    return ok({"deleted": deleted})
