import dataclasses
import datetime
import uuid
import typing


@dataclasses.dataclass
class CampaignOut:
    id: uuid.UUID
    name: str
    description: str
    world_setting: str
    current_scene: str
    current_location: str
    themes: list[str]
    difficulty_level: str
    rules_enforcement: str
    dm_personality: str
    npcs: list[dict[str, typing.Any]]
    quests: list[dict[str, typing.Any]]
    session_count: int
    created_at: datetime.datetime
    updated_at: datetime.datetime
    last_played_at: datetime.datetime
