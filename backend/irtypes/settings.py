import dataclasses
import typing

AiProvider = typing.Literal["openai", "anthropic", "gemini", "deepseek", "openrouter"]
AI_PROVIDERS: tuple[str, ...] = typing.get_args(AiProvider)

MASKED_KEY = "********"


@dataclasses.dataclass
class AISettings:
    default_provider: str = "openai"
    default_model: str = "gpt-4o"
    temperature: float = 0.8
    max_tokens: int = 2000
    global_prompt: str | None = None
    api_keys: dict[str, str] = dataclasses.field(default_factory=dict)
    auto_fallback: bool = True
    fallback_order: list[str] | None = None
    image_provider: typing.Literal["openai", "none"] = "openai"
    image_model: str = "dall-e-3"

    def to_dict(self) -> dict[str, typing.Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, typing.Any]) -> "AISettings":
        fields = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in fields})
