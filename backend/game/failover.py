import dataclasses
import typing
from typing import AsyncIterator

from game.inference import (
    InferenceEvent,
    InferenceRequest,
    ProviderAdapter,
    ProviderError,
    create_adapter,
)
from game.logger import gl_log
from game.providers import PROVIDERS, ModelInfo, fallback_providers, resolve_model
from irtypes.error import ServiceCode, ServiceError, error

ALL_RATE_LIMITED = "All configured AI providers are rate limited. Please wait a moment and try again."


@dataclasses.dataclass
class OpenedStream:
    provider: str
    model: str
    events: AsyncIterator[InferenceEvent]
    fallback_used: bool = False


def _request_for(request: InferenceRequest, model: ModelInfo) -> InferenceRequest:
    return dataclasses.replace(request, model=model.id, use_tools=request.use_tools and model.supports_tools)


def _no_fallback_message(name: str, billing: bool, auto_fallback: bool) -> str:
    if billing:
        if auto_fallback:
            return f"{name} has a billing issue (insufficient credits) and no other provider has an API key configured."
        return f"{name} has a billing issue (insufficient credits). Add credits or enable auto-fallback in settings."
    if auto_fallback:
        return ALL_RATE_LIMITED
    return f"{name} is rate limited. Enable auto-fallback in settings or wait a moment."


async def open_with_failover(
    request: InferenceRequest,
    primary: str,
    api_keys: dict[str, str],
    auto_fallback: bool = True,
    fallback_order: typing.Sequence[str] | None = None,
    adapter_factory: typing.Callable[[str, str], ProviderAdapter] = create_adapter,
    log=gl_log,
) -> OpenedStream | ServiceError:
    """
    Open a completion stream on the primary provider, falling back to the
    other configured providers when it is rate limited or out of credit.

    Only failures classified as retryable move on to a fallback. The
    returned stream names the provider and model that actually answered.
    """
    model = resolve_model(primary, request.model)
    log = log.bind(provider=primary, model=model.id)

    try:
        events = await adapter_factory(primary, api_keys[primary]).open_stream(_request_for(request, model))
        return OpenedStream(provider=primary, model=model.id, events=events)
    except ProviderError as e:
        failure = e

    if not failure.retryable:
        return await error(
            ServiceCode.PROVIDER_ERROR,
            failure.message,
            log=log,
            status=failure.status,
        )

    candidates = fallback_providers(primary, api_keys, fallback_order) if auto_fallback else []
    if not candidates:
        return await error(
            ServiceCode.BILLING if failure.billing else ServiceCode.RATE_LIMITED,
            _no_fallback_message(PROVIDERS[primary].name, failure.billing, auto_fallback),
            log=log,
            status=failure.status,
        )

    await log.ainfo("Primary provider unavailable, trying fallbacks", status=failure.status, billing=failure.billing)
    for provider, fallback_model in candidates:
        flog = log.bind(fallback_provider=provider, fallback_model=fallback_model.id)
        try:
            events = await adapter_factory(provider, api_keys[provider]).open_stream(
                _request_for(request, fallback_model)
            )
        except ProviderError as e:
            if e.retryable:
                await flog.ainfo("Fallback provider also rate limited", status=e.status)
            else:
                await flog.awarn("Fallback provider failed", status=e.status, error=e.message)
            continue
        await flog.ainfo("Fallback provider succeeded")
        return OpenedStream(provider=provider, model=fallback_model.id, events=events, fallback_used=True)

    return await error(ServiceCode.RATE_LIMITED, ALL_RATE_LIMITED, log=log)
