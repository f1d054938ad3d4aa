import asyncio
import dataclasses
import typing
from typing import AsyncIterator

import config
from game.events import Notice, ToolResponse, ToolResultsReady
from game.inference import InferenceEvent, ProviderError, ToolCall, ToolCallsReady
from game.logger import gl_log
from game.tool_executor import ToolExecutor
from irtypes.error import ServiceErrorException

StopReason = typing.Literal["finished", "continuation_limit", "npc_chain_limit", "error"]


class ChatTransport(typing.Protocol):
    async def send(
        self,
        message: str | None,
        tool_responses: list[ToolResponse] | None,
        force_next_tool: str | None,
    ) -> AsyncIterator[InferenceEvent]: ...


@dataclasses.dataclass
class LoopLimits:
    max_continuations: int = config.MAX_CONTINUATIONS
    max_npc_actions: int = config.MAX_NPC_ACTIONS_PER_CHAIN
    pause_seconds: float = config.CONTINUATION_PAUSE_SECONDS
    retries: int = config.CONTINUATION_RETRIES
    retry_backoff_seconds: float = config.CONTINUATION_RETRY_BACKOFF_SECONDS


@dataclasses.dataclass
class LoopOutcome:
    reason: StopReason
    continuations: int
    npc_steps: int


class SendFailed(Exception):
    pass


def _failure_message(e: Exception) -> str:
    if isinstance(e, ServiceErrorException):
        return e.error.message
    if isinstance(e, ProviderError):
        return e.message
    return str(e)


class ContinuationLoop:
    """
    Drives a model through chains of tool calls without player input.

    After every response carrying tool calls the calls are executed, their
    results are sent back and the model answers again, until it stops
    calling tools. Long NPC chains and runaway loops are cut off by the
    configured limits.
    """

    def __init__(
        self,
        transport: ChatTransport,
        executor: ToolExecutor,
        limits: LoopLimits | None = None,
        log=gl_log,
    ):
        self.transport = transport
        self.executor = executor
        self.limits = limits or LoopLimits()
        self.log = log

    async def _relay(
        self,
        events: AsyncIterator[InferenceEvent],
        emit: typing.Callable[[InferenceEvent], None],
    ) -> list[ToolCall]:
        calls: list[ToolCall] = []
        async for event in events:
            if isinstance(event, ToolCallsReady):
                calls.extend(event.tool_calls)
            emit(event)
        return calls

    async def _send(
        self,
        emit: typing.Callable[[InferenceEvent], None],
        message: str | None = None,
        tool_responses: list[ToolResponse] | None = None,
        force_next_tool: str | None = None,
        retries: int = 0,
    ) -> list[ToolCall]:
        attempt = 0
        while True:
            try:
                events = await self.transport.send(message, tool_responses, force_next_tool)
                return await self._relay(events, emit)
            except (ProviderError, ServiceErrorException) as e:
                if attempt >= retries:
                    raise SendFailed(_failure_message(e)) from e
                attempt += 1
                await self.log.awarn("Continuation failed, retrying", attempt=attempt, error=_failure_message(e))
                await asyncio.sleep(self.limits.retry_backoff_seconds * attempt)

    async def run(self, message: str, emit: typing.Callable[[InferenceEvent], None]) -> LoopOutcome:
        try:
            calls = await self._send(emit, message=message)
        except SendFailed as e:
            emit(Notice("error", str(e)))
            return LoopOutcome("error", 0, 0)

        npc_steps = 0
        for step in range(1, self.limits.max_continuations + 1):
            if not calls:
                return LoopOutcome("finished", step - 1, npc_steps)

            results = await self.executor.execute_all(calls)
            emit(ToolResultsReady(results))

            force = next((r.force_next_tool for r in reversed(results) if r.force_next_tool), None)
            if force == "npcAction" or any(r.name == "npcAction" for r in results):
                npc_steps += 1
                if npc_steps > self.limits.max_npc_actions:
                    await self.log.awarn("NPC chain limit reached", npc_steps=npc_steps)
                    emit(
                        Notice(
                            "npc_chain_limit",
                            f"Stopped after {self.limits.max_npc_actions} NPC actions in a row. "
                            "Send a message to continue the fight.",
                        )
                    )
                    return LoopOutcome("npc_chain_limit", step, npc_steps)

            await asyncio.sleep(self.limits.pause_seconds)
            await self.log.ainfo("Continuing after tool calls", step=step, tools=[r.name for r in results], force=force)
            try:
                calls = await self._send(
                    emit,
                    tool_responses=[r.to_tool_response() for r in results],
                    force_next_tool=force,
                    retries=self.limits.retries,
                )
            except SendFailed as e:
                emit(Notice("error", str(e)))
                return LoopOutcome("error", step, npc_steps)

        if not calls:
            return LoopOutcome("finished", self.limits.max_continuations, npc_steps)
        await self.log.awarn("Continuation limit reached", limit=self.limits.max_continuations)
        emit(
            Notice(
                "continuation_limit",
                f"Stopped after {self.limits.max_continuations} automatic continuations. "
                "Send a message to continue.",
            )
        )
        return LoopOutcome("continuation_limit", self.limits.max_continuations, npc_steps)
