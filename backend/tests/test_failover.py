import pytest

from game.failover import ALL_RATE_LIMITED, open_with_failover
from game.inference import InferenceRequest, ProviderError, TextDelta, collect
from irtypes.error import ServiceCode, ServiceError, status_code_from_service_code
from tests.fakes import FakeAdapter

REQUEST = InferenceRequest(model="gpt-4o", messages=[{"role": "user", "content": "Hi"}])


def rate_limited(provider: str) -> ProviderError:
    return ProviderError(provider, "rate limited", status=429, retryable=True)


def out_of_credit(provider: str) -> ProviderError:
    return ProviderError(provider, "payment required", status=402, retryable=True, billing=True)


class Factory:
    def __init__(self, adapters: dict[str, FakeAdapter]):
        self.adapters = adapters
        self.opened: list[str] = []

    def __call__(self, provider: str, api_key: str) -> FakeAdapter:
        self.opened.append(provider)
        return self.adapters[provider]


@pytest.mark.asyncio
async def test_primary_success_uses_requested_model():
    factory = Factory({"openai": FakeAdapter("openai", [TextDelta("Hello")])})
    opened = await open_with_failover(REQUEST, "openai", {"openai": "k"}, adapter_factory=factory)
    assert not isinstance(opened, ServiceError)
    assert (opened.provider, opened.model, opened.fallback_used) == ("openai", "gpt-4o", False)
    assert await collect(opened.events) == ("Hello", [])


@pytest.mark.asyncio
async def test_unknown_model_falls_back_to_recommended():
    adapter = FakeAdapter("anthropic", [TextDelta("x")])
    opened = await open_with_failover(
        REQUEST, "anthropic", {"anthropic": "k"}, adapter_factory=Factory({"anthropic": adapter})
    )
    assert opened.model == "claude-3-5-sonnet-20241022"
    assert adapter.requests[0].model == opened.model


@pytest.mark.asyncio
async def test_rate_limited_primary_fails_over_in_order():
    factory = Factory(
        {
            "openai": FakeAdapter("openai", failure=rate_limited("openai")),
            "anthropic": FakeAdapter("anthropic", failure=out_of_credit("anthropic")),
            "gemini": FakeAdapter("gemini", [TextDelta("from gemini")]),
        }
    )
    opened = await open_with_failover(
        REQUEST,
        "openai",
        {"openai": "k", "anthropic": "k", "gemini": "k"},
        fallback_order=["anthropic", "gemini"],
        adapter_factory=factory,
    )
    assert factory.opened == ["openai", "anthropic", "gemini"]
    assert (opened.provider, opened.model, opened.fallback_used) == ("gemini", "gemini-2.0-flash", True)


@pytest.mark.asyncio
async def test_providers_without_keys_are_not_tried():
    factory = Factory(
        {
            "openai": FakeAdapter("openai", failure=rate_limited("openai")),
            "gemini": FakeAdapter("gemini", [TextDelta("ok")]),
        }
    )
    opened = await open_with_failover(REQUEST, "openai", {"openai": "k", "gemini": "k", "anthropic": ""}, adapter_factory=factory)
    assert opened.provider == "gemini"
    assert "anthropic" not in factory.opened


@pytest.mark.asyncio
async def test_fatal_error_does_not_fail_over():
    factory = Factory(
        {
            "openai": FakeAdapter("openai", failure=ProviderError("openai", "Invalid API key", status=401)),
            "gemini": FakeAdapter("gemini", [TextDelta("ok")]),
        }
    )
    result = await open_with_failover(REQUEST, "openai", {"openai": "k", "gemini": "k"}, adapter_factory=factory)
    assert isinstance(result, ServiceError)
    assert result.code == ServiceCode.PROVIDER_ERROR
    assert status_code_from_service_code(result.code) == 500
    assert factory.opened == ["openai"]


@pytest.mark.asyncio
async def test_all_providers_rate_limited():
    factory = Factory(
        {
            "openai": FakeAdapter("openai", failure=rate_limited("openai")),
            "gemini": FakeAdapter("gemini", failure=rate_limited("gemini")),
        }
    )
    result = await open_with_failover(REQUEST, "openai", {"openai": "k", "gemini": "k"}, adapter_factory=factory)
    assert result.code == ServiceCode.RATE_LIMITED
    assert result.message == ALL_RATE_LIMITED
    assert status_code_from_service_code(result.code) == 429


@pytest.mark.asyncio
async def test_disabled_fallback_reports_primary_status():
    factory = Factory({"openai": FakeAdapter("openai", failure=out_of_credit("openai"))})
    result = await open_with_failover(
        REQUEST, "openai", {"openai": "k", "gemini": "k"}, auto_fallback=False, adapter_factory=factory
    )
    assert result.code == ServiceCode.BILLING
    assert status_code_from_service_code(result.code) == 402
    assert result.message.startswith("OpenAI has a billing issue")
    assert "enable auto-fallback" in result.message
    assert factory.opened == ["openai"]


@pytest.mark.asyncio
async def test_fallback_uses_the_provider_default_model():
    adapter = FakeAdapter("openrouter", [TextDelta("ok")])
    factory = Factory({"openai": FakeAdapter("openai", failure=rate_limited("openai")), "openrouter": adapter})
    await open_with_failover(REQUEST, "openai", {"openai": "k", "openrouter": "k"}, adapter_factory=factory)
    assert adapter.requests[0].model == "mistralai/mistral-small-3.1-24b-instruct"
    assert adapter.requests[0].use_tools


@pytest.mark.asyncio
async def test_no_fallback_key_with_auto_fallback_on():
    factory = Factory({"openai": FakeAdapter("openai", failure=rate_limited("openai"))})
    result = await open_with_failover(REQUEST, "openai", {"openai": "k"}, adapter_factory=factory)
    assert result.code == ServiceCode.RATE_LIMITED
    assert result.message == ALL_RATE_LIMITED


@pytest.mark.asyncio
async def test_rate_limit_with_auto_fallback_off_suggests_enabling_it():
    factory = Factory({"openai": FakeAdapter("openai", failure=rate_limited("openai"))})
    result = await open_with_failover(
        REQUEST, "openai", {"openai": "k", "gemini": "k"}, auto_fallback=False, adapter_factory=factory
    )
    assert result.message == "OpenAI is rate limited. Enable auto-fallback in settings or wait a moment."


@pytest.mark.asyncio
async def test_billing_with_no_fallback_key_names_billing():
    factory = Factory({"openai": FakeAdapter("openai", failure=out_of_credit("openai"))})
    result = await open_with_failover(REQUEST, "openai", {"openai": "k"}, adapter_factory=factory)
    assert result.code == ServiceCode.BILLING
    assert "billing issue" in result.message
    assert "auto-fallback" not in result.message
