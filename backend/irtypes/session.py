import dataclasses
import datetime
import uuid


@dataclasses.dataclass
class SessionLogOut:
    id: uuid.UUID
    campaign_id: uuid.UUID
    session_number: int
    started_at: datetime.datetime
    ended_at: datetime.datetime | None
    summary: str | None
    highlights: list[str]
    message_count: int


@dataclasses.dataclass
class SessionsOut:
    current: SessionLogOut | None
    logs: list[SessionLogOut]


@dataclasses.dataclass
class SessionNarrativeOut:
    narrative: str
    message_count: int
