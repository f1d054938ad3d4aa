import dataclasses
import typing

import config


@dataclasses.dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    supports_tools: bool = True
    recommended: bool = False


@dataclasses.dataclass(frozen=True)
class ProviderInfo:
    id: str
    name: str
    kind: typing.Literal["openai", "anthropic", "gemini"]
    models: tuple[ModelInfo, ...]
    base_url: str | None = None
    default_headers: dict[str, str] | None = None

    def model(self, model_id: str | None) -> ModelInfo | None:
        return next((m for m in self.models if m.id == model_id), None)

    @property
    def default_model(self) -> ModelInfo:
        return next((m for m in self.models if m.recommended), self.models[0])


PROVIDERS: dict[str, ProviderInfo] = {
    "openai": ProviderInfo(
        id="openai",
        name="OpenAI",
        kind="openai",
        models=(
            ModelInfo("gpt-4o", "GPT-4o", recommended=True),
            ModelInfo("gpt-4o-mini", "GPT-4o Mini"),
            ModelInfo("gpt-4-turbo", "GPT-4 Turbo"),
        ),
    ),
    "anthropic": ProviderInfo(
        id="anthropic",
        name="Anthropic",
        kind="anthropic",
        models=(
            ModelInfo("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", recommended=True),
            ModelInfo("claude-3-5-haiku-20241022", "Claude 3.5 Haiku"),
            ModelInfo("claude-3-opus-20240229", "Claude 3 Opus"),
        ),
    ),
    "gemini": ProviderInfo(
        id="gemini",
        name="Google Gemini",
        kind="gemini",
        models=(
            ModelInfo("gemini-2.0-flash", "Gemini 2.0 Flash", recommended=True),
            ModelInfo("gemini-1.5-pro", "Gemini 1.5 Pro"),
        ),
    ),
    "deepseek": ProviderInfo(
        id="deepseek",
        name="DeepSeek",
        kind="openai",
        base_url="https://api.deepseek.com",
        models=(
            ModelInfo("deepseek-chat", "DeepSeek Chat", recommended=True),
            ModelInfo("deepseek-reasoner", "DeepSeek Reasoner", supports_tools=False),
        ),
    ),
    "openrouter": ProviderInfo(
        id="openrouter",
        name="OpenRouter",
        kind="openai",
        base_url="https://openrouter.ai/api/v1",
        default_headers={"HTTP-Referer": config.APP_REFERER, "X-Title": config.APP_TITLE},
        models=(
            ModelInfo("mistralai/mistral-small-3.1-24b-instruct", "Mistral Small 3.1", recommended=True),
            ModelInfo("google/gemma-3-4b-it", "Gemma 3 4B", supports_tools=False),
        ),
    ),
}

DEFAULT_FALLBACK_ORDER: tuple[str, ...] = ("gemini", "openai", "anthropic", "deepseek", "openrouter")


def get_provider(provider: str) -> ProviderInfo | None:
    return PROVIDERS.get(provider)


def resolve_model(provider: str, model: str | None) -> ModelInfo:
    info = PROVIDERS[provider]
    return info.model(model) or info.default_model


def fallback_providers(
    primary: str,
    api_keys: dict[str, str],
    order: typing.Sequence[str] | None = None,
) -> list[tuple[str, ModelInfo]]:
    result = []
    seen = set()
    for provider in order or DEFAULT_FALLBACK_ORDER:
        if provider in seen:
            continue
        seen.add(provider)
        if provider == primary or provider not in PROVIDERS or not api_keys.get(provider):
            continue
        result.append((provider, PROVIDERS[provider].default_model))
    return result
