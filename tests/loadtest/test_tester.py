"""
Tests for LoadTester against a fake media session.
"""

import asyncio

import pytest

from lkcli.core.errors import TransportError
from lkcli.loadtest.media import ReceivedFrame, RemoteTrack, TrackKind
from lkcli.loadtest.params import Layout, TesterParams, VideoQuality
from lkcli.loadtest.stats import ReceiverReport
from lkcli.loadtest.tester import LoadTester

SECRET = "loadtest-secret-that-is-long-enough-for-hs256"
FOLLOWED = frozenset(f"pub-{i}" for i in range(6))


async def _no_sleep(delay):
    pass


def _make_tester(sessions, *, subscriber=True, layout=Layout.SPEAKER, sleep=_no_sleep) -> LoadTester:
    params = TesterParams(
        url="ws://localhost:7880",
        api_key="APIkey",
        api_secret=SECRET,
        room="r",
        identity_prefix="abc",
        layout=layout,
        follow=FOLLOWED if subscriber else frozenset(),
        name="Sub 0" if subscriber else "Pub 0",
        sequence=1,
        expected_tracks=2,
    )
    return LoadTester(params, sessions, sleep=sleep)


def _track(sid: str, identity: str, kind: TrackKind = TrackKind.VIDEO) -> RemoteTrack:
    return RemoteTrack(sid=sid, kind=kind, participant_identity=identity)


class TestJoin:
    @pytest.mark.asyncio
    async def test_retries_failed_joins(self, sessions):
        sessions.kwargs = {"fail_joins": 2}
        delays = []

        async def sleep(delay):
            delays.append(delay)

        tester = _make_tester(sessions, sleep=sleep)
        await tester.start()
        assert tester.running
        assert sessions.created[0].connect_calls == 3
        assert delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up(self, sessions):
        sessions.kwargs = {"fail_joins": 100}
        tester = _make_tester(sessions)
        with pytest.raises(TransportError):
            await tester.start()
        assert sessions.created[0].connect_calls == 10
        assert not tester.running

    @pytest.mark.asyncio
    async def test_existing_tracks_followed(self, sessions):
        tester = _make_tester(sessions)
        original = sessions.__call__

        def factory(handler):
            session = original(handler)
            session.existing = [_track("TR_1", "pub-1")]
            return session

        tester._session_factory = factory
        await tester.start()
        assert sessions.created[0].subscribed == ["TR_1"]


class TestSubscribing:
    @pytest.mark.asyncio
    async def test_follows_only_named_publishers(self, sessions):
        tester = _make_tester(sessions)
        await tester.start()
        for i in range(8):
            tester.on_track_published(_track(f"TR_V{i}", f"pub-{i}"))
        tester.on_track_published(_track("TR_A0", "pub-0", TrackKind.AUDIO))
        tester.on_track_published(_track("TR_X", "someone-else"))
        assert sessions.created[0].subscribed == [f"TR_V{i}" for i in range(6)] + ["TR_A0"]

    @pytest.mark.asyncio
    async def test_publisher_subscribes_to_nothing(self, sessions):
        tester = _make_tester(sessions, subscriber=False)
        await tester.start()
        tester.on_track_published(_track("TR_V0", "pub-0"))
        assert sessions.created[0].subscribed == []

    @pytest.mark.asyncio
    async def test_qualities_follow_layout(self, sessions):
        tester = _make_tester(sessions)
        await tester.start()
        for i in range(7):
            tester.on_track_subscribed(_track(f"TR_V{i}", f"pub-{i}"))
        qualities = [q for _, q in sessions.created[0].qualities]
        assert qualities == [VideoQuality.HIGH] + [VideoQuality.LOW] * 5 + [VideoQuality.OFF]
        assert tester.quality_of("pub-0") is VideoQuality.HIGH
        await tester.stop()

    @pytest.mark.asyncio
    async def test_frames_and_receiver_reports_counted(self, sessions):
        sessions.kwargs = {
            "samples": {
                "TR_A": [
                    ReceivedFrame(),
                    ReceivedFrame(),
                    ReceiverReport(packets=10, bytes=500, lost=1, discarded=2),
                    ReceivedFrame(),
                ],
                "TR_V": [ReceivedFrame()],
            }
        }
        tester = _make_tester(sessions)
        await tester.start()
        tester.on_track_subscribed(_track("TR_A", "pub-0", TrackKind.AUDIO))
        tester.on_track_subscribed(_track("TR_V", "pub-0"))
        session = sessions.created[0]
        await asyncio.gather(*session.tasks)

        tester.on_probe("pub-0", 0.03)
        stats = tester.get_stats()
        assert stats.name == "Sub 0"
        assert stats.expected_tracks == 2
        audio, video = stats.tracks["TR_A"], stats.tracks["TR_V"]
        assert audio.frames == 3
        assert (audio.packets, audio.bytes, audio.dropped, audio.out_of_order) == (10, 500, 1, 2)
        assert audio.latency_count == 1
        assert (video.frames, video.packets) == (1, 0)

    @pytest.mark.asyncio
    async def test_reset(self, sessions):
        sessions.kwargs = {"samples": {"TR_A": [ReceivedFrame(), ReceiverReport(packets=4, bytes=40)]}}
        tester = _make_tester(sessions)
        await tester.start()
        tester.on_track_subscribed(_track("TR_A", "pub-0", TrackKind.AUDIO))
        await asyncio.gather(*sessions.created[0].tasks)
        tester.reset()
        snap = tester.get_stats().tracks["TR_A"]
        assert (snap.frames, snap.packets) == (0, 0)


class TestPublishing:
    @pytest.mark.asyncio
    async def test_not_running(self, sessions):
        tester = _make_tester(sessions, subscriber=False)
        assert await tester.publish_audio("audio") == ""

    @pytest.mark.asyncio
    async def test_probe_loop_starts_once(self, sessions):
        async def sleep(delay):
            tester.running = False

        tester = _make_tester(sessions, subscriber=False, sleep=sleep)
        await tester.start()
        assert await tester.publish_audio("audio") == "TR_A_Pub 0"
        await tester.publish_video("video", codec="vp8", simulcast=False)

        session = sessions.created[0]
        assert len(session.tasks) == 1
        await asyncio.gather(*session.tasks)
        assert session.probes == 1
        assert session.video_options == [{"resolution": "high", "codec": "vp8", "simulcast": False, "bitrate": None}]

    @pytest.mark.asyncio
    async def test_speaker_update(self, sessions):
        tester = _make_tester(sessions, subscriber=False)
        await tester.start()
        tester.simulate_speaker_update()
        assert sessions.created[0].speaker_updates == 1
