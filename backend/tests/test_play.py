import asyncio
import uuid

import pytest

import game.campaign
import game.play
import game.settings
from game.continuation import LoopOutcome
from game.events import Notice, decode_line
from game.inference import TextDelta
from game.play import PlaySession, start_play
from game.system import SystemException
from irtypes.error import ServiceCode, ServiceError
from irtypes.settings import AISettings


@pytest.mark.asyncio
async def test_session_streams_runner_events():
    async def runner(emit):
        emit(TextDelta("The torch flickers."))
        emit(Notice("continuation_limit", "Stopped"))
        return LoopOutcome("continuation_limit", 20, 0)

    session = PlaySession(uuid.uuid4(), runner)
    lines = [decode_line(line) async for line in session.stream()]

    assert lines == [("0", "The torch flickers."), ("3", {"kind": "continuation_limit", "message": "Stopped"})]
    assert session.outcome.reason == "continuation_limit"
    assert PlaySession.of(session.id) is None


@pytest.mark.asyncio
async def test_runner_crash_becomes_error_notice():
    async def runner(emit):
        emit(TextDelta("Once"))
        raise RuntimeError("database went away")

    session = PlaySession(uuid.uuid4(), runner)
    lines = [decode_line(line) async for line in session.stream()]
    assert lines == [("0", "Once"), ("3", {"kind": "error", "message": "Internal server error"})]


@pytest.mark.asyncio
async def test_one_session_per_campaign():
    release = asyncio.Event()

    async def runner(emit):
        await release.wait()
        return LoopOutcome("finished", 0, 0)

    campaign_id = uuid.uuid4()
    session = PlaySession(campaign_id, runner)
    with pytest.raises(SystemException):
        PlaySession(campaign_id, runner)
    release.set()
    assert [line async for line in session.stream()] == []


@pytest.mark.asyncio
async def test_closing_the_stream_cancels_the_session():
    cancelled = asyncio.Event()

    async def runner(emit):
        emit(TextDelta("First"))
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    campaign_id = uuid.uuid4()
    session = PlaySession(campaign_id, runner)
    stream = session.stream()
    assert decode_line(await anext(stream)) == ("0", "First")
    await stream.aclose()

    assert cancelled.is_set()
    assert PlaySession.of(campaign_id) is None


@pytest.mark.asyncio
async def test_concurrent_starts_for_one_campaign(monkeypatch):
    release = asyncio.Event()

    async def exists(conn, campaign_id):
        await asyncio.sleep(0)
        return True

    async def settings(conn, decrypt_keys=False, log=None):
        await asyncio.sleep(0)
        return AISettings(api_keys={"openai": "sk-test"})

    async def touch(conn, campaign_id):
        await asyncio.sleep(0)

    def runner_for(campaign_id, message, *args, **kwargs):
        async def run(emit):
            await release.wait()
            return LoopOutcome("finished", 0, 0)

        return run

    monkeypatch.setattr(game.campaign, "check_campaign_exists", exists)
    monkeypatch.setattr(game.settings, "get_settings", settings)
    monkeypatch.setattr(game.campaign, "touch_last_played", touch)
    monkeypatch.setattr(game.play, "database_runner", runner_for)

    campaign_id = uuid.uuid4()
    first, second = await asyncio.gather(
        start_play(None, campaign_id, "I open the door"),
        start_play(None, campaign_id, "I open the door"),
    )

    assert isinstance(first, PlaySession)
    assert isinstance(second, ServiceError)
    assert second.code == ServiceCode.PLAY_IN_PROGRESS
    release.set()
    assert [line async for line in first.stream()] == []
