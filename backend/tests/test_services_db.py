import uuid

import pytest

import game.campaign
import game.character
import game.chat
import game.messages
import game.settings
from game.events import ToolResponse
from irtypes.error import ServiceCode, ServiceError
from irtypes.message import MessageRole
from irtypes.settings import MASKED_KEY


@pytest.mark.asyncio
async def test_campaign_starts_with_game_state(db):
    campaign = await game.campaign.create_campaign(db, "Lost Mine")
    assert campaign.world_setting == "Generic Fantasy"
    assert campaign.difficulty_level == "normal"

    state = await game.campaign.get_game_state(db, campaign.id)
    assert not isinstance(state, ServiceError)
    assert state.in_combat is False
    assert state.initiative_order == []

    assert await game.campaign.delete_campaign(db, campaign.id) is None
    missing = await game.campaign.get_campaign(db, campaign.id)
    assert isinstance(missing, ServiceError)
    assert missing.code == ServiceCode.CAMPAIGN_NOT_FOUND


@pytest.mark.asyncio
async def test_campaign_update_requires_fields(db):
    campaign = await game.campaign.create_campaign(db, "Lost Mine")
    empty = await game.campaign.update_campaign(db, campaign.id, {"unknown": 1})
    assert isinstance(empty, ServiceError)
    assert empty.code == ServiceCode.NO_UPDATE_FIELDS

    updated = await game.campaign.update_campaign(db, campaign.id, {"current_location": "Phandalin"})
    assert updated.current_location == "Phandalin"


@pytest.mark.asyncio
async def test_messages_come_back_oldest_first(db):
    campaign = await game.campaign.create_campaign(db, "Lost Mine")
    for i in range(5):
        await game.messages.create_message(db, campaign.id, MessageRole.USER, f"message {i}")

    recent = await game.messages.get_recent_messages(db, campaign.id, 3)
    assert [m.content for m in recent] == ["message 2", "message 3", "message 4"]
    assert await game.messages.clear_messages(db, campaign.id) == 5


@pytest.mark.asyncio
async def test_repeated_tool_responses_are_stored_once(db):
    campaign = await game.campaign.create_campaign(db, "Lost Mine")
    await game.messages.create_message(
        db,
        campaign.id,
        MessageRole.ASSISTANT,
        "",
        tool_calls=[{"id": "call_1", "type": "function", "function": {"name": "setScene", "arguments": "{}"}}],
    )
    responses = [ToolResponse("call_1", "Scene set")]

    assert await game.chat.record_input(db, campaign.id, tool_responses=responses) == 1
    assert await game.chat.record_input(db, campaign.id, tool_responses=responses) == 0
    tool_messages = [
        m for m in await game.messages.get_recent_messages(db, campaign.id) if m.role == MessageRole.TOOL
    ]
    assert len(tool_messages) == 1


@pytest.mark.asyncio
async def test_turn_without_api_key_is_refused(db):
    campaign = await game.campaign.create_campaign(db, "Lost Mine")
    opened = await game.chat.open_turn(db, campaign.id)
    assert isinstance(opened, ServiceError)
    assert opened.code == ServiceCode.NO_API_KEY


@pytest.mark.asyncio
async def test_api_keys_are_stored_encrypted_and_returned_masked(db):
    settings = await game.settings.update_settings(db, {"api_keys": {"openai": "sk-live"}})
    assert settings.api_keys["openai"] == MASKED_KEY

    stored = await db.fetchval("SELECT settings FROM app_settings WHERE id = 1")
    assert "sk-live" not in str(stored)

    await game.settings.update_settings(db, {"api_keys": {"openai": MASKED_KEY}})
    decrypted = await game.settings.get_settings(db, decrypt_keys=True)
    assert decrypted.api_keys["openai"] == "sk-live"


@pytest.mark.asyncio
async def test_character_defaults_and_rests(db):
    campaign = await game.campaign.create_campaign(db, "Lost Mine")
    character = await game.character.create_character(
        db,
        campaign.id,
        "Kael",
        "Human",
        "Fighter",
        fields={"level": 4, "max_hp": 36, "hit_dice": "4d10", "ability_scores": {"constitution": 14}},
        starting_equipment=["Rope", "Torch"],
    )
    assert character.proficiency_bonus == 2
    assert character.hit_dice_remaining == 4
    assert len(await game.character.get_inventory(db, character.id)) == 2

    await game.character.update_character(db, character.id, {"current_hp": 10})
    rested = await game.character.short_rest(db, character.id, 2)
    assert rested.current_hp == 26
    assert rested.hit_dice_remaining == 2

    too_many = await game.character.short_rest(db, character.id, 3)
    assert isinstance(too_many, ServiceError)
    assert too_many.code == ServiceCode.NOT_ENOUGH_HIT_DICE

    restored = await game.character.long_rest(db, character.id)
    assert restored.current_hp == 36
    assert restored.hit_dice_remaining == 4


@pytest.mark.asyncio
async def test_equipping_armor_recalculates_armor_class(db):
    campaign = await game.campaign.create_campaign(db, "Lost Mine")
    character = await game.character.create_character(
        db, campaign.id, "Kael", "Human", "Fighter", fields={"ability_scores": {"dexterity": 14}}
    )
    assert character.armor_class == 12
    armor = await game.character.add_inventory_item(db, character.id, "Chain Mail", "armor")

    result = await game.character.equip_item(db, character.id, armor.id, True)
    assert result.character.armor_class == 16

    removed = await game.character.remove_inventory_item(db, character.id, "chain mail")
    assert removed.id == armor.id
    missing = await game.character.remove_inventory_item(db, character.id, str(uuid.uuid4()))
    assert isinstance(missing, ServiceError)
    assert missing.code == ServiceCode.ITEM_NOT_FOUND
