import asyncio
import typing
import uuid
from typing import AsyncIterator

import asyncpg

import game.campaign
import game.settings
from game.chat import open_turn, record_input, relay
from game.continuation import ContinuationLoop, LoopLimits, LoopOutcome
from game.events import Notice, ToolResponse, encode_event
from game.inference import InferenceEvent, ProviderAdapter, create_adapter
from game.logger import gl_log
from game.providers import PROVIDERS
from game.system import System, SystemPipeException
from game.tool_executor import PgGameStore, ToolExecutor
from game.utils import get_conn
from irtypes.error import ServiceCode, ServiceError, error, unwrap

AdapterFactory = typing.Callable[[str, str], ProviderAdapter]
LoopRunner = typing.Callable[[typing.Callable[[InferenceEvent], None]], typing.Awaitable[LoopOutcome]]


class LocalChatTransport:
    """Sends chat turns through the chat service on one connection."""

    def __init__(
        self,
        conn: asyncpg.Connection,
        campaign_id: uuid.UUID,
        adapter_factory: AdapterFactory = create_adapter,
        log=gl_log,
    ):
        self.conn = conn
        self.campaign_id = campaign_id
        self.adapter_factory = adapter_factory
        self.log = log

    async def send(
        self,
        message: str | None,
        tool_responses: list[ToolResponse] | None,
        force_next_tool: str | None,
    ) -> AsyncIterator[InferenceEvent]:
        await record_input(self.conn, self.campaign_id, message, tool_responses, log=self.log)
        opened = unwrap(
            await open_turn(
                self.conn,
                self.campaign_id,
                force_next_tool,
                adapter_factory=self.adapter_factory,
                log=self.log,
            )
        )
        if opened.fallback_used:
            await self.log.ainfo("Play turn served by fallback provider", provider=opened.provider)
        return relay(self.conn, self.campaign_id, opened.events, log=self.log)


class PlaySession(System[InferenceEvent, uuid.UUID]):
    """
    One running continuation loop. Keyed by campaign, so a second session
    for the same campaign cannot start while this one runs.
    """

    def __init__(self, campaign_id: uuid.UUID, runner: LoopRunner, log=gl_log):
        super().__init__(campaign_id)
        self.log = log
        self.outcome: LoopOutcome | None = None
        self.add_pipe(self._run(runner))
        self._stopper = asyncio.create_task(self.stop())

    async def _run(self, runner: LoopRunner):
        self.outcome = await runner(self.emit)
        await self.log.ainfo(
            "Play session finished",
            reason=self.outcome.reason,
            continuations=self.outcome.continuations,
            npc_steps=self.outcome.npc_steps,
        )

    async def stream(self) -> AsyncIterator[str]:
        try:
            async for event in self.listen():
                yield encode_event(event)
        except SystemPipeException as e:
            await self.log.aerror("Play session failed", error=repr(e.cause))
            yield encode_event(Notice("error", "Internal server error"))
        finally:
            if not self.stopped:
                await self.log.ainfo("Play stream closed early, cancelling session")
                await self.cancel()


async def _play_in_progress(campaign_id: uuid.UUID, log) -> ServiceError:
    return await error(
        ServiceCode.PLAY_IN_PROGRESS,
        "A turn is already being played for this campaign",
        log=log,
        campaign_id=str(campaign_id),
    )


async def preflight(conn: asyncpg.Connection, campaign_id: uuid.UUID, log=gl_log) -> None | ServiceError:
    if not await game.campaign.check_campaign_exists(conn, campaign_id):
        return await error(ServiceCode.CAMPAIGN_NOT_FOUND, "Campaign not found", log=log, campaign_id=str(campaign_id))
    if PlaySession.of(campaign_id) is not None:
        return await _play_in_progress(campaign_id, log)
    settings = await game.settings.get_settings(conn, decrypt_keys=True, log=log)
    provider = settings.default_provider if settings.default_provider in PROVIDERS else "openai"
    if not settings.api_keys.get(provider):
        return await error(
            ServiceCode.NO_API_KEY,
            f"No API key configured for {provider}. Please add one in Settings.",
            log=log,
        )
    return None


def database_runner(
    campaign_id: uuid.UUID,
    message: str,
    adapter_factory: AdapterFactory = create_adapter,
    limits: LoopLimits | None = None,
    log=gl_log,
) -> LoopRunner:
    async def run(emit: typing.Callable[[InferenceEvent], None]) -> LoopOutcome:
        async with get_conn() as conn:
            transport = LocalChatTransport(conn, campaign_id, adapter_factory, log=log)
            executor = ToolExecutor(PgGameStore(conn, campaign_id, log=log), log=log)
            loop = ContinuationLoop(transport, executor, limits, log=log)
            return await loop.run(message, emit)

    return run


async def start_play(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    message: str,
    adapter_factory: AdapterFactory = create_adapter,
    limits: LoopLimits | None = None,
    log=gl_log,
) -> PlaySession | ServiceError:
    log = log.bind(campaign_id=str(campaign_id))
    failure = await preflight(conn, campaign_id, log=log)
    if failure is not None:
        return failure
    await game.campaign.touch_last_played(conn, campaign_id)
    # No await between this check and registering the session.
    if PlaySession.of(campaign_id) is not None:
        return await _play_in_progress(campaign_id, log)
    return PlaySession(
        campaign_id,
        database_runner(campaign_id, message, adapter_factory, limits, log=log),
        log=log,
    )
