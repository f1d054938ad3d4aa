import dataclasses
import datetime
import uuid
import typing


@dataclasses.dataclass
class InitiativeEntry:
    id: str
    name: str
    initiative: int
    is_player: bool
    hp: int
    max_hp: int
    ac: int = 10
    character_id: str | None = None
    conditions: list[str] = dataclasses.field(default_factory=list)
    speed: int = 30

    @property
    def defeated(self) -> bool:
        return self.hp <= 0

    def to_dict(self) -> dict[str, typing.Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, typing.Any]) -> "InitiativeEntry":
        fields = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in fields})


@dataclasses.dataclass
class GameStateOut:
    id: uuid.UUID
    campaign_id: uuid.UUID
    in_combat: bool
    initiative_order: list[InitiativeEntry]
    current_turn: int
    round: int
    current_scene: str
    current_scene_image_url: str | None
    time_of_day: str
    weather: str
    party_gold: int
    party_inventory: list[dict[str, typing.Any]]
    xp_tracker: dict[str, typing.Any]
    updated_at: datetime.datetime
