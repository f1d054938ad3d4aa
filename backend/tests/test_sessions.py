import uuid

import pytest

import game.campaign
import game.messages
import game.sessions
from irtypes.error import ServiceCode, ServiceError
from irtypes.message import MessageRole


@pytest.mark.asyncio
async def test_start_returns_the_open_session(db):
    campaign = await game.campaign.create_campaign(db, "Lost Mine")

    first = await game.sessions.start_session(db, campaign.id)
    again = await game.sessions.start_session(db, campaign.id)

    assert first.session_number == 1
    assert again.id == first.id
    refreshed = await game.campaign.get_campaign(db, campaign.id)
    assert refreshed.session_count == 1


@pytest.mark.asyncio
async def test_ending_counts_messages_since_start(db):
    campaign = await game.campaign.create_campaign(db, "Lost Mine")
    await game.messages.create_message(db, campaign.id, MessageRole.USER, "Before the session")
    session = await game.sessions.start_session(db, campaign.id)
    await game.messages.create_message(db, campaign.id, MessageRole.USER, "I enter the cave")
    await game.messages.create_message(db, campaign.id, MessageRole.ASSISTANT, "It is dark.")

    ended = await game.sessions.end_session(db, session.id, "Found the cave", ["Met Sildar"])

    assert ended.ended_at is not None
    assert ended.message_count == 2
    assert ended.summary == "Found the cave"
    assert ended.highlights == ["Met Sildar"]

    sessions = await game.sessions.get_sessions(db, campaign.id)
    assert sessions.current is None
    assert [s.id for s in sessions.logs] == [session.id]

    second = await game.sessions.start_session(db, campaign.id)
    assert second.session_number == 2
    sessions = await game.sessions.get_sessions(db, campaign.id)
    assert [s.session_number for s in sessions.logs] == [2, 1]
    assert sessions.current.id == second.id


@pytest.mark.asyncio
async def test_missing_session_and_campaign(db):
    ended = await game.sessions.end_session(db, uuid.uuid4())
    assert isinstance(ended, ServiceError)
    assert ended.code == ServiceCode.SESSION_NOT_FOUND

    started = await game.sessions.start_session(db, uuid.uuid4())
    assert isinstance(started, ServiceError)
    assert started.code == ServiceCode.CAMPAIGN_NOT_FOUND


@pytest.mark.asyncio
async def test_narrative_keeps_player_and_dm_lines(db):
    campaign = await game.campaign.create_campaign(db, "Lost Mine")
    await game.messages.create_message(db, campaign.id, MessageRole.USER, "I search the body")
    await game.messages.create_message(
        db,
        campaign.id,
        MessageRole.ASSISTANT,
        "",
        tool_calls=[{"id": "call_1", "type": "function", "function": {"name": "requestDiceRoll", "arguments": "{}"}}],
    )
    await game.messages.create_message(db, campaign.id, MessageRole.TOOL, "Rolling", tool_call_id="call_1")
    await game.messages.create_message(db, campaign.id, MessageRole.ASSISTANT, "You find a map.")

    narrative = await game.sessions.session_narrative(db, campaign.id)
    assert narrative.narrative == "Player: I search the body\nDM: You find a map."
    assert narrative.message_count == 4
