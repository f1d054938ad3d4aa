"""
Events streamed to the browser, and their line encoding.

Each event is written as one line prefixed with its kind:

    0:<json string>          a piece of narrative text
    1:<json list>            tool calls, OpenAI `{id, type, function}` shape
    2:<json list>            tool results executed on the server
    3:<json object>          notices: limits reached, provider errors
"""
import dataclasses
import json
import typing

from game.inference import InferenceEvent, TextDelta, ToolCallsReady


@dataclasses.dataclass
class ToolResponse:
    tool_call_id: str
    content: str


@dataclasses.dataclass
class ToolCallResult:
    id: str
    name: str
    result: str
    force_next_tool: str | None = None

    def to_tool_response(self) -> ToolResponse:
        return ToolResponse(tool_call_id=self.id, content=self.result)


@dataclasses.dataclass
class ToolResultsReady(InferenceEvent):
    results: list[ToolCallResult]


NoticeKind = typing.Literal["continuation_limit", "npc_chain_limit", "error"]


@dataclasses.dataclass
class Notice(InferenceEvent):
    kind: NoticeKind
    message: str


def encode_event(event: InferenceEvent) -> str:
    match event:
        case TextDelta(text=text):
            return f"0:{json.dumps(text)}\n"
        case ToolCallsReady(tool_calls=calls):
            return f"1:{json.dumps([c.to_openai() for c in calls])}\n"
        case ToolResultsReady(results=results):
            return f"2:{json.dumps([dataclasses.asdict(r) for r in results])}\n"
        case Notice(kind=kind, message=message):
            return f"3:{json.dumps({'kind': kind, 'message': message})}\n"
        case _:
            raise ValueError(f"Unknown event {event!r}")


def decode_line(line: str) -> tuple[str, typing.Any]:
    kind, _, payload = line.rstrip("\n").partition(":")
    return kind, json.loads(payload)

