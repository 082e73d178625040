"""
Tests for the agent load test and its echo rooms.
"""

import asyncio
from io import StringIO
from unittest.mock import AsyncMock

import pytest
from rich.console import Console

from lkcli.core.models import ProjectContext
from lkcli.loadtest.agent_loadtest import AgentLoadTest, AgentLoadTestParams, EchoRoom
from lkcli.loadtest.media import RemoteTrack, TrackKind

SECRET = "loadtest-secret-that-is-long-enough-for-hs256"


def _make_project() -> ProjectContext:
    return ProjectContext(name="p", url="ws://localhost:7880", api_key="APIkey", api_secret=SECRET)


def _make_test(sessions, dispatch, **kwargs) -> tuple[AgentLoadTest, StringIO]:
    out = StringIO()
    params = AgentLoadTestParams(**kwargs)
    lt = AgentLoadTest(
        _make_project(),
        params,
        dispatch=dispatch,
        console=Console(file=out, width=200),
        session_factory=sessions,
    )
    return lt, out


class TestEchoRoom:
    @pytest.mark.asyncio
    async def test_echoes_first_audio_track(self, sessions):
        room = EchoRoom("r", _make_project(), AgentLoadTestParams(echo_speech_delay=2.0), sessions)
        await room.start()
        assert room.stats.meet_link.startswith("https://meet.livekit.io/custom?liveKitUrl=ws://localhost:7880&token=")

        await room.publish_echo_track()
        room.on_participant_connected("agent-1", True)
        room.on_track_subscribed(RemoteTrack("TR_1", TrackKind.AUDIO, "agent-1"))
        room.on_track_subscribed(RemoteTrack("TR_2", TrackKind.AUDIO, "someone"))

        assert room.stats.echo_track_published
        assert room.stats.agent_joined
        assert room.stats.agent_track_subscribed
        assert sessions.created[0].echoes == [("TR_1", 2.0)]

    @pytest.mark.asyncio
    async def test_first_participant_leaving_stops_room(self, sessions):
        room = EchoRoom("r", _make_project(), AgentLoadTestParams(), sessions)
        await room.start()
        await room.publish_echo_track()
        room.on_track_subscribed(RemoteTrack("TR_1", TrackKind.AUDIO, "user"))
        room.on_participant_disconnected("user")
        await asyncio.sleep(0)
        assert not room.running

    def test_non_agent_not_counted(self, sessions):
        room = EchoRoom("r", _make_project(), AgentLoadTestParams(), sessions)
        room.on_participant_connected("user", False)
        assert not room.stats.agent_joined


class TestAgentLoadTest:
    @pytest.mark.asyncio
    async def test_rooms_without_agent(self, sessions):
        dispatch = AsyncMock()
        lt, out = _make_test(sessions, dispatch, rooms=2, duration=0.05)
        stats = await lt.run()

        assert len(stats) == 2
        assert all(s.echo_track_published and not s.agent_joined for s in stats)
        dispatch.create_dispatch.assert_not_awaited()
        assert all(not s.connected for s in sessions.created)
        assert "Test Statistics" in out.getvalue()

    @pytest.mark.asyncio
    async def test_dispatches_and_waits_for_agent(self, sessions):
        dispatch = AsyncMock()

        async def create_dispatch(room, agent_name):
            loop = asyncio.get_running_loop()
            loop.call_soon(lt.rooms[room].on_participant_connected, "agent-1", True)
            return {}

        dispatch.create_dispatch.side_effect = create_dispatch
        lt, _ = _make_test(sessions, dispatch, rooms=1, agent_name="my-agent", duration=0.05)
        stats = await lt.run()

        room_name = next(iter(lt.rooms))
        dispatch.create_dispatch.assert_awaited_once_with(room_name, "my-agent")
        assert stats[0].agent_joined
        assert stats[0].join_delay is not None and stats[0].join_delay >= 0
