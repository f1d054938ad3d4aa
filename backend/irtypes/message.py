import dataclasses
import datetime
import uuid
from typing import Any

from irtypes.utils import PgEnum


class MessageRole(metaclass=PgEnum):
    __pg_enum_name__ = "message_role"

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


@dataclasses.dataclass
class MessageOut:
    id: uuid.UUID
    campaign_id: uuid.UUID
    role: MessageRole
    content: str
    tool_calls: list[dict[str, Any]] | None
    tool_call_id: str | None
    created_at: datetime.datetime
