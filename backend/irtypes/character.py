import dataclasses
import datetime
import uuid


@dataclasses.dataclass
class InventoryItemOut:
    id: uuid.UUID
    character_id: uuid.UUID
    name: str
    type: str
    quantity: int
    weight: float
    value: int
    description: str
    equipped: bool
    attuned: bool
    requires_attunement: bool
    magical: bool
    rarity: str | None
    properties: list[str]
    created_at: datetime.datetime


@dataclasses.dataclass
class SpellOut:
    id: uuid.UUID
    character_id: uuid.UUID
    name: str
    level: int
    school: str
    casting_time: str
    range: str
    components: str
    duration: str
    description: str
    prepared: bool
    ritual: bool
    concentration: bool


@dataclasses.dataclass
class CharacterOut:
    id: uuid.UUID
    campaign_id: uuid.UUID
    name: str
    race: str
    character_class: str
    subclass: str | None
    level: int
    background: str
    alignment: str
    experience: int
    ability_scores: dict[str, int]
    max_hp: int
    current_hp: int
    temp_hp: int
    armor_class: int
    initiative: int
    speed: int
    proficiency_bonus: int
    saving_throws: dict[str, bool]
    skills: dict[str, bool]
    hit_dice: str
    hit_dice_remaining: int
    death_saves: dict[str, int]
    spellcasting_ability: str | None
    spell_save_dc: int | None
    spell_attack_bonus: int | None
    spell_slots: dict[str, dict[str, int]]
    portrait_url: str | None
    notes: str
    created_at: datetime.datetime
    updated_at: datetime.datetime


@dataclasses.dataclass
class CharacterWithExtrasOut(CharacterOut):
    inventory: list[InventoryItemOut] | None = None
    spells: list[SpellOut] | None = None


@dataclasses.dataclass
class EquipResultOut:
    character: CharacterOut
    inventory: list[InventoryItemOut]


@dataclasses.dataclass
class InventoryOut:
    inventory: list[InventoryItemOut]