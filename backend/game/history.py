"""
Conversation history sanitizer.

Stored chat history can be left inconsistent by interrupted streams,
retried tool continuations or a provider switch half way through a
turn: assistant messages that declared tool calls whose results never
arrived, tool results without a matching call, duplicated results.
Every provider rejects such histories, so before each request the
stored messages are rebuilt into an OpenAI-shaped message list where
each assistant `tool_calls` list is immediately followed by exactly one
tool message per call id, and tool messages appear nowhere else.
"""
import json
import typing

INCOMPLETE_TOOLS_PLACEHOLDER = "(The DM processed an action but the tool results were incomplete.)"
STRIPPED_TOOLS_PLACEHOLDER = "(The DM processed an action.)"

WireMessage = dict[str, typing.Any]


class StoredMessage(typing.Protocol):
    role: typing.Any
    content: str
    tool_calls: list[dict[str, typing.Any]] | None
    tool_call_id: str | None


def _role(message: typing.Any) -> str:
    role = message.role
    return getattr(role, "value", role)


def normalize_tool_call(call: dict[str, typing.Any]) -> dict[str, typing.Any]:
    """Bring a stored tool call into OpenAI `{id, type, function}` shape."""
    function = call.get("function") or {}
    name = function.get("name") or call.get("name") or ""
    arguments = function.get("arguments", call.get("arguments", call.get("args")))
    if arguments is None:
        arguments = "{}"
    elif not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return {
        "id": call.get("id") or "",
        "type": "function",
        "function": {"name": name, "arguments": arguments},
    }


def _drop_orphaned_tool_messages(messages: typing.Sequence[typing.Any]) -> list[typing.Any]:
    kept = []
    for i, message in enumerate(messages):
        if _role(message) != "tool":
            kept.append(message)
            continue
        j = i - 1
        while j >= 0 and _role(messages[j]) == "tool":
            j -= 1
        if j >= 0 and _role(messages[j]) == "assistant" and messages[j].tool_calls:
            kept.append(message)
    return kept


def _to_wire(messages: list[typing.Any]) -> list[WireMessage]:
    wire: list[WireMessage] = []
    for i, message in enumerate(messages):
        role = _role(message)
        content = message.content or ""

        if role == "tool":
            wire.append({"role": "tool", "content": content, "tool_call_id": message.tool_call_id})
            continue

        if role == "assistant" and message.tool_calls:
            responses = 0
            j = i + 1
            while j < len(messages) and _role(messages[j]) == "tool":
                responses += 1
                j += 1
            if responses >= len(message.tool_calls):
                wire.append(
                    {
                        "role": "assistant",
                        "content": content or None,
                        "tool_calls": [normalize_tool_call(c) for c in message.tool_calls],
                    }
                )
            else:
                wire.append({"role": "assistant", "content": content or INCOMPLETE_TOOLS_PLACEHOLDER})
            continue

        wire.append({"role": role, "content": content})
    return wire


def _dedupe_user_messages(wire: list[WireMessage]) -> list[WireMessage]:
    result: list[WireMessage] = []
    for message in wire:
        if (
            message["role"] == "user"
            and result
            and result[-1]["role"] == "user"
            and result[-1]["content"] == message["content"]
        ):
            continue
        result.append(message)
    return result


def _is_empty(message: WireMessage) -> bool:
    if message["role"] in ("system", "tool"):
        return False
    if message["role"] == "assistant" and message.get("tool_calls"):
        return False
    return not (message.get("content") or "").strip()


def _validate_tool_responses(wire: list[WireMessage]) -> list[WireMessage]:
    result: list[WireMessage] = []
    seen_ids: set[str] = set()
    owner: WireMessage | None = None
    owner_ids: set[str] = set()
    owner_responses = 0

    for message in wire:
        if message["role"] != "tool":
            if message["role"] == "assistant" and message.get("tool_calls"):
                owner = message
                owner_ids = {c["id"] for c in message["tool_calls"]}
                owner_responses = 0
            else:
                owner = None
            result.append(message)
            continue

        call_id = message.get("tool_call_id")
        if owner is None or call_id not in owner_ids or call_id in seen_ids:
            continue
        if owner_responses >= len(owner["tool_calls"]):
            continue
        seen_ids.add(call_id)
        owner_responses += 1
        result.append(message)
    return result


def _strip_unbalanced_tool_calls(wire: list[WireMessage]) -> list[WireMessage]:
    result: list[WireMessage] = []
    i = 0
    while i < len(wire):
        message = wire[i]
        if message["role"] == "assistant" and message.get("tool_calls"):
            j = i + 1
            while j < len(wire) and wire[j]["role"] == "tool":
                j += 1
            if j - (i + 1) != len(message["tool_calls"]):
                result.append(
                    {"role": "assistant", "content": message.get("content") or STRIPPED_TOOLS_PLACEHOLDER}
                )
                i = j
                continue
        result.append(message)
        i += 1
    return result


def sanitize_history(
    messages: typing.Sequence[StoredMessage],
    system_prompt: str | None = None,
) -> list[WireMessage]:
    cleaned = _drop_orphaned_tool_messages(messages)
    wire = _dedupe_user_messages(_to_wire(cleaned))
    if system_prompt is not None:
        wire.insert(0, {"role": "system", "content": system_prompt})
    wire = [m for m in wire if not _is_empty(m)]
    wire = _validate_tool_responses(wire)
    return _strip_unbalanced_tool_calls(wire)