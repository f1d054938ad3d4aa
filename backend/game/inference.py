import argparse
import asyncio
import contextlib
import dataclasses
import json
import time
import typing
import uuid
from typing import Any, AsyncIterator

import anthropic
import openai
from anthropic import AsyncAnthropic
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from openai import AsyncOpenAI

import config
from game.history import WireMessage
from game.logger import gl_log
from game.providers import PROVIDERS, ProviderInfo
from game.tools import (
    anthropic_tool_choice,
    anthropic_tools,
    gemini_tool_config,
    gemini_tools,
    openai_tool_choice,
    openai_tools,
)

DEFAULT_PROMPT = "Write one short sentence greeting the player as a dungeon master."
BILLING_KEYWORDS = ("credit balance", "billing", "quota", "payment")


@dataclasses.dataclass
class ToolCall:
    id: str
    name: str
    arguments: str = "{}"

    @property
    def args(self) -> dict[str, Any]:
        if not self.arguments:
            return {}
        try:
            parsed = json.loads(self.arguments)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments or "{}"},
        }


@dataclasses.dataclass
class InferenceEvent: ...


@dataclasses.dataclass
class TextDelta(InferenceEvent):
    text: str


@dataclasses.dataclass
class ToolCallsReady(InferenceEvent):
    tool_calls: list[ToolCall]


@dataclasses.dataclass
class InferenceRequest:
    model: str
    messages: list[WireMessage]
    temperature: float = config.DEFAULT_TEMPERATURE
    max_tokens: int = config.DEFAULT_MAX_TOKENS
    force_next_tool: str | None = None
    use_tools: bool = True


class ProviderError(Exception):
    def __init__(
        self,
        provider: str,
        message: str,
        status: int | None = None,
        retryable: bool = False,
        billing: bool = False,
    ):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status = status
        self.retryable = retryable
        self.billing = billing


def classify_failure(provider: str, status: int | None, message: str) -> ProviderError:
    """
    Decide whether a provider failure should trigger failover.

    Rate limits (429) and payment problems (402, or a 400 whose message
    talks about credits, billing, quota or payment) are retryable on
    another provider. Anything else is fatal for this request.
    """
    lower = (message or "").lower()
    if provider == "anthropic" and ("credit balance" in lower or "billing" in lower):
        status = 402
    billing_text = any(k in lower for k in BILLING_KEYWORDS)
    billing = status == 402 or (status in (400, 402) and billing_text)
    retryable = status in (429, 402) or billing
    return ProviderError(provider, message, status=status, retryable=retryable, billing=billing)


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def _parse_arguments(arguments: str | None) -> dict[str, Any]:
    return ToolCall(id="", name="", arguments=arguments or "{}").args


class ProviderAdapter:
    provider: str

    async def open_stream(self, request: InferenceRequest) -> AsyncIterator[InferenceEvent]:
        """
        Start a streaming completion.

        The HTTP request is made before this returns, so authentication,
        rate limit and billing failures are raised here as ProviderError
        and never after an event has been produced.
        """
        log = gl_log.bind(provider=self.provider, model=request.model)
        try:
            started = await self._start(request)
        except ProviderError:
            raise
        except Exception as e:
            failure = self._classify(e)
            await log.awarn(
                "Provider request failed",
                status=failure.status,
                retryable=failure.retryable,
                error=failure.message,
            )
            raise failure from e
        return self._guard(self._events(started))

    async def _guard(self, events: AsyncIterator[InferenceEvent]) -> AsyncIterator[InferenceEvent]:
        try:
            async for event in events:
                yield event
        except ProviderError:
            raise
        except Exception as e:
            raise self._classify(e) from e

    async def _start(self, request: InferenceRequest) -> Any:
        raise NotImplementedError

    def _events(self, started: Any) -> AsyncIterator[InferenceEvent]:
        raise NotImplementedError

    def _classify(self, e: Exception) -> ProviderError:
        raise NotImplementedError

    async def test(self, model: str) -> None:
        raise NotImplementedError


class OpenaiAdapter(ProviderAdapter):
    """OpenAI Chat Completions, also used for DeepSeek and OpenRouter."""

    def __init__(self, provider: ProviderInfo, api_key: str, client: AsyncOpenAI | None = None):
        self.provider = provider.id
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=provider.base_url,
            default_headers=provider.default_headers,
        )

    async def _start(self, request: InferenceRequest) -> Any:
        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": request.messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "stream": True,
        }
        if request.use_tools:
            kwargs["tools"] = openai_tools()
            kwargs["tool_choice"] = openai_tool_choice(request.force_next_tool)
        return await self.client.chat.completions.create(**kwargs)

    async def _events(self, stream: Any) -> AsyncIterator[InferenceEvent]:
        pending: dict[int, dict[str, str]] = {}
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta is None:
                continue
            if delta.content:
                yield TextDelta(delta.content)
            for tc in delta.tool_calls or []:
                acc = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                if tc.id:
                    acc["id"] = tc.id
                if tc.function is not None:
                    if tc.function.name:
                        acc["name"] = tc.function.name
                    if tc.function.arguments:
                        acc["arguments"] += tc.function.arguments

        calls = [
            ToolCall(id=acc["id"] or _new_call_id(), name=acc["name"], arguments=acc["arguments"] or "{}")
            for _, acc in sorted(pending.items())
            if acc["name"]
        ]
        if calls:
            yield ToolCallsReady(calls)

    def _classify(self, e: Exception) -> ProviderError:
        if isinstance(e, openai.APIStatusError):
            return classify_failure(self.provider, e.status_code, e.message)
        return ProviderError(self.provider, str(e) or e.__class__.__name__)

    async def test(self, model: str) -> None:
        try:
            await self.client.chat.completions.create(
                model=model,
                max_tokens=10,
                messages=[{"role": "user", "content": "Test"}],
            )
        except Exception as e:
            raise self._classify(e) from e


def to_anthropic_messages(messages: list[WireMessage]) -> tuple[str, list[dict[str, Any]]]:
    """
    Convert OpenAI-shaped history into Anthropic's alternating turns.

    Assistant tool calls become `tool_use` blocks, tool results become
    `tool_result` blocks inside user turns, and consecutive turns with
    the same role are merged because the API requires strict alternation
    starting with a user turn.
    """
    system_parts: list[str] = []
    turns: list[dict[str, Any]] = []

    for message in messages:
        role = message["role"]
        content = message.get("content") or ""
        blocks: list[dict[str, Any]] = []

        if role == "system":
            if content:
                system_parts.append(content)
            continue
        if role == "tool":
            role = "user"
            blocks.append(
                {"type": "tool_result", "tool_use_id": message.get("tool_call_id"), "content": content}
            )
        else:
            if content.strip():
                blocks.append({"type": "text", "text": content})
            if role == "assistant":
                for call in message.get("tool_calls") or []:
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": call["id"],
                            "name": call["function"]["name"],
                            "input": _parse_arguments(call["function"].get("arguments")),
                        }
                    )
        if not blocks:
            continue
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"].extend(blocks)
        else:
            turns.append({"role": role, "content": blocks})

    while turns and turns[0]["role"] == "assistant":
        turns.pop(0)
    return "\n\n".join(system_parts), turns


class AnthropicAdapter(ProviderAdapter):
    def __init__(self, provider: ProviderInfo, api_key: str, client: AsyncAnthropic | None = None):
        self.provider = provider.id
        self.client = client or AsyncAnthropic(api_key=api_key)

    async def _start(self, request: InferenceRequest) -> Any:
        system, turns = to_anthropic_messages(request.messages)
        if not turns:
            raise ProviderError(self.provider, "No user message to respond to", status=400)
        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": turns,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if system:
            kwargs["system"] = system
        if request.use_tools:
            kwargs["tools"] = anthropic_tools()
            kwargs["tool_choice"] = anthropic_tool_choice(request.force_next_tool)

        stack = contextlib.AsyncExitStack()
        try:
            stream = await stack.enter_async_context(self.client.messages.stream(**kwargs))
        except BaseException:
            await stack.aclose()
            raise
        return stack, stream

    async def _events(self, started: Any) -> AsyncIterator[InferenceEvent]:
        stack, stream = started
        async with stack:
            async for text in stream.text_stream:
                if text:
                    yield TextDelta(text)
            final = await stream.get_final_message()

        calls = [
            ToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input or {}))
            for block in final.content
            if block.type == "tool_use"
        ]
        if calls:
            yield ToolCallsReady(calls)

    def _classify(self, e: Exception) -> ProviderError:
        if isinstance(e, anthropic.APIStatusError):
            return classify_failure(self.provider, e.status_code, e.message)
        return ProviderError(self.provider, str(e) or e.__class__.__name__)

    async def test(self, model: str) -> None:
        try:
            await self.client.messages.create(
                model=model,
                max_tokens=10,
                messages=[{"role": "user", "content": "Test"}],
            )
        except Exception as e:
            raise self._classify(e) from e


GEMINI_SAFETY_SETTINGS = [
    genai_types.SafetySetting(category=category, threshold=genai_types.HarmBlockThreshold.BLOCK_NONE)
    for category in (
        genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    )
]


def _function_response_payload(content: str) -> dict[str, Any]:
    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return {"result": content}
    return parsed if isinstance(parsed, dict) else {"result": parsed}


def to_gemini_contents(messages: list[WireMessage]) -> tuple[str, list[genai_types.Content]]:
    """
    Convert OpenAI-shaped history into Gemini contents.

    Assistant turns use the `model` role and carry `function_call` parts;
    results of one assistant turn are grouped into a single user turn of
    `function_response` parts named after the call they answer.
    """
    system_parts: list[str] = []
    contents: list[genai_types.Content] = []
    call_names: dict[str, str] = {}
    previous_role: str | None = None

    for message in messages:
        role = message["role"]
        content = message.get("content") or ""

        if role == "system":
            if content:
                system_parts.append(content)
            continue

        if role == "tool":
            name = call_names.get(message.get("tool_call_id"), "unknown_tool")
            part = genai_types.Part.from_function_response(
                name=name, response=_function_response_payload(content)
            )
            if previous_role == "tool" and contents:
                contents[-1].parts.append(part)
            else:
                contents.append(genai_types.Content(role="user", parts=[part]))
            previous_role = "tool"
            continue

        parts: list[genai_types.Part] = []
        if content.strip():
            parts.append(genai_types.Part.from_text(text=content))
        if role == "assistant":
            for call in message.get("tool_calls") or []:
                name = call["function"]["name"]
                call_names[call["id"]] = name
                parts.append(
                    genai_types.Part(
                        function_call=genai_types.FunctionCall(
                            name=name, args=_parse_arguments(call["function"].get("arguments"))
                        )
                    )
                )
        if not parts:
            continue
        contents.append(genai_types.Content(role="model" if role == "assistant" else "user", parts=parts))
        previous_role = role

    while contents and contents[0].role == "model":
        contents.pop(0)
    return "\n\n".join(system_parts), contents


class GeminiAdapter(ProviderAdapter):
    def __init__(self, provider: ProviderInfo, api_key: str, client: genai.Client | None = None):
        self.provider = provider.id
        self.client = client or genai.Client(api_key=api_key)

    async def _start(self, request: InferenceRequest) -> Any:
        system, contents = to_gemini_contents(request.messages)
        if not contents or contents[-1].role != "user":
            raise ProviderError(self.provider, "Gemini requires the conversation to end with a user turn", status=400)

        config_kwargs: dict[str, Any] = {
            "temperature": request.temperature,
            "max_output_tokens": request.max_tokens,
            "safety_settings": GEMINI_SAFETY_SETTINGS,
            "automatic_function_calling": genai_types.AutomaticFunctionCallingConfig(disable=True),
        }
        if system:
            config_kwargs["system_instruction"] = system
        if request.use_tools:
            config_kwargs["tools"] = gemini_tools()
            config_kwargs["tool_config"] = gemini_tool_config(request.force_next_tool)

        stream = await self.client.aio.models.generate_content_stream(
            model=request.model,
            contents=contents,
            config=genai_types.GenerateContentConfig(**config_kwargs),
        )
        iterator = aiter(stream)
        try:
            first = await anext(iterator)
        except StopAsyncIteration:
            first = None
        return first, iterator

    async def _events(self, started: Any) -> AsyncIterator[InferenceEvent]:
        first, iterator = started
        calls: list[ToolCall] = []
        stamp = int(time.time() * 1000)

        async def chunks():
            if first is not None:
                yield first
            async for chunk in iterator:
                yield chunk

        async for chunk in chunks():
            for candidate in chunk.candidates or []:
                if candidate.content is None:
                    continue
                for part in candidate.content.parts or []:
                    if part.function_call is not None and part.function_call.name:
                        fc = part.function_call
                        calls.append(
                            ToolCall(
                                id=fc.id or f"gemini-call-{stamp}-{len(calls)}",
                                name=fc.name,
                                arguments=json.dumps(dict(fc.args or {})),
                            )
                        )
                    elif part.text and not part.thought:
                        yield TextDelta(part.text)

        if calls:
            yield ToolCallsReady(calls)

    def _classify(self, e: Exception) -> ProviderError:
        if isinstance(e, genai_errors.APIError):
            return classify_failure(self.provider, e.code, e.message or str(e))
        return ProviderError(self.provider, str(e) or e.__class__.__name__)

    async def test(self, model: str) -> None:
        try:
            await self.client.aio.models.generate_content(
                model=model,
                contents="Test",
                config=genai_types.GenerateContentConfig(max_output_tokens=10),
            )
        except Exception as e:
            raise self._classify(e) from e


def create_adapter(provider: str, api_key: str) -> ProviderAdapter:
    info = PROVIDERS[provider]
    match info.kind:
        case "anthropic":
            return AnthropicAdapter(info, api_key)
        case "gemini":
            return GeminiAdapter(info, api_key)
        case _:
            return OpenaiAdapter(info, api_key)


AdapterFactory = typing.Callable[[str, str], ProviderAdapter]


async def probe_connection(provider: str, api_key: str, factory: AdapterFactory = create_adapter) -> str:
    model = PROVIDERS[provider].default_model.id
    await factory(provider, api_key).test(model)
    return model


async def collect(events: AsyncIterator[InferenceEvent]) -> tuple[str, list[ToolCall]]:
    parts: list[str] = []
    calls: list[ToolCall] = []
    async for event in events:
        match event:
            case TextDelta(text=text):
                parts.append(text)
            case ToolCallsReady(tool_calls=tool_calls):
                calls.extend(tool_calls)
    return "".join(parts), calls


def _parse_args():
    parser = argparse.ArgumentParser(description="Stream a test prompt from an AI provider.")
    parser.add_argument("--provider", default="openai", choices=sorted(PROVIDERS))
    parser.add_argument("--model", default=None)
    parser.add_argument("--api-key", default=None)
    parser.add_argument("--prompt", default=DEFAULT_PROMPT)
    parser.add_argument("--no-tools", action="store_true")
    return parser.parse_args()


async def main():
    args = _parse_args()
    api_key = args.api_key or config.load_secret(f"{args.provider.upper()}_API_KEY")
    model = args.model or PROVIDERS[args.provider].default_model.id
    adapter = create_adapter(args.provider, api_key)
    events = await adapter.open_stream(
        InferenceRequest(
            model=model,
            messages=[{"role": "user", "content": args.prompt}],
            use_tools=not args.no_tools,
        )
    )
    print(f"Prompt: {args.prompt}")
    async for event in events:
        match event:
            case TextDelta(text=text):
                print(text, end="", flush=True)
            case ToolCallsReady(tool_calls=tool_calls):
                print()
                for call in tool_calls:
                    print(f"[tool] {call.name}({call.arguments})")
    print()


if __name__ == "__main__":
    asyncio.run(main())
