"""
Single chat turn: persist the player's input, build the provider request
from stored history and stream the model's answer back.
"""
import typing
import uuid
from typing import AsyncIterator

import asyncpg

import config
import game.campaign
import game.character
import game.messages
import game.settings
from game.events import ToolResponse
from game.failover import OpenedStream, open_with_failover
from game.history import sanitize_history
from game.inference import (
    InferenceEvent,
    InferenceRequest,
    ProviderAdapter,
    TextDelta,
    ToolCall,
    ToolCallsReady,
    create_adapter,
)
from game.logger import gl_log
from game.prompt import build_system_prompt
from game.providers import PROVIDERS
from irtypes.error import ServiceCode, ServiceError, error
from irtypes.message import MessageRole


async def record_input(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    message: str | None = None,
    tool_responses: typing.Sequence[ToolResponse] | None = None,
    log=gl_log,
) -> int:
    """
    Store the player's message or the tool responses of the previous turn.

    Tool responses already stored among the most recent messages are
    skipped, so a client retrying a continuation does not duplicate them.
    Returns the number of stored messages.
    """
    if message is not None:
        await game.messages.create_message(conn, campaign_id, MessageRole.USER, message.strip(), log=log)
        return 1

    existing = await game.messages.get_recent_tool_call_ids(conn, campaign_id, config.TOOL_DEDUP_WINDOW)
    stored = 0
    async with conn.transaction():
        for response in tool_responses or []:
            if response.tool_call_id in existing:
                continue
            await game.messages.create_message(
                conn,
                campaign_id,
                MessageRole.TOOL,
                response.content,
                tool_call_id=response.tool_call_id,
                log=log,
            )
            existing.add(response.tool_call_id)
            stored += 1
    if stored == 0 and tool_responses:
        await log.ainfo("Tool responses already stored, skipping", campaign_id=str(campaign_id))
    return stored


async def open_turn(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    force_next_tool: str | None = None,
    adapter_factory: typing.Callable[[str, str], ProviderAdapter] = create_adapter,
    log=gl_log,
) -> OpenedStream | ServiceError:
    log = log.bind(campaign_id=str(campaign_id))
    settings = await game.settings.get_settings(conn, decrypt_keys=True, log=log)
    provider = settings.default_provider if settings.default_provider in PROVIDERS else "openai"
    if not settings.api_keys.get(provider):
        return await error(
            ServiceCode.NO_API_KEY,
            f"No API key configured for {provider}. Please add one in Settings.",
            log=log,
        )

    campaign = await game.campaign.get_campaign(conn, campaign_id, log=log)
    if isinstance(campaign, ServiceError):
        return campaign
    characters = await game.character.get_characters(conn, campaign_id)
    game_state = await game.campaign.get_game_state(conn, campaign_id, log=log)
    if isinstance(game_state, ServiceError):
        game_state = None
    history = await game.messages.get_recent_messages(conn, campaign_id, config.CHAT_HISTORY_LIMIT)

    system_prompt = build_system_prompt(campaign, characters, game_state, settings.global_prompt)
    request = InferenceRequest(
        model=settings.default_model,
        messages=sanitize_history(history, system_prompt),
        temperature=settings.temperature or config.DEFAULT_TEMPERATURE,
        max_tokens=settings.max_tokens or config.DEFAULT_MAX_TOKENS,
        force_next_tool=force_next_tool,
    )
    await log.ainfo(
        "Opening chat turn",
        provider=provider,
        history=len(history),
        wire_messages=len(request.messages),
        force_next_tool=force_next_tool,
    )
    return await open_with_failover(
        request,
        provider,
        settings.api_keys,
        auto_fallback=settings.auto_fallback,
        fallback_order=settings.fallback_order,
        adapter_factory=adapter_factory,
        log=log,
    )


async def relay(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    events: AsyncIterator[InferenceEvent],
    log=gl_log,
) -> AsyncIterator[InferenceEvent]:
    """
    Pass the model's events through and store the assistant message once
    the stream ends. Text received before a failure is stored as well.
    """
    parts: list[str] = []
    calls: list[ToolCall] = []
    try:
        async for event in events:
            match event:
                case TextDelta(text=text):
                    parts.append(text)
                case ToolCallsReady(tool_calls=tool_calls):
                    calls.extend(tool_calls)
            yield event
    finally:
        content = "".join(parts)
        if content.strip() or calls:
            await game.messages.create_message(
                conn,
                campaign_id,
                MessageRole.ASSISTANT,
                content,
                tool_calls=[c.to_openai() for c in calls] or None,
                log=log,
            )
