"""
Tests for probe payloads, join tokens and the RtcSession receive path.

The SDK room and streams are patched out; stats entries are MagicMocks
shaped like the SDK's RtcStats messages.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from livekit import rtc

from lkcli.core.token import decode_token
from lkcli.loadtest.media import (
    PROBE_MAGIC,
    ReceivedFrame,
    RemoteTrack,
    RtcSession,
    TrackKind,
    decode_probe,
    encode_probe,
    join_token,
    receiver_report,
)
from lkcli.loadtest.params import VideoQuality
from lkcli.loadtest.stats import ReceiverReport

SENT = 1_700_000_000_000_000_000


class TestProbe:
    def test_layout(self):
        payload = encode_probe(SENT)
        assert payload[:4] == PROBE_MAGIC
        assert len(payload) == 12

    def test_latency(self):
        assert decode_probe(encode_probe(SENT), now_ns=SENT + 5_000_000) == 0.005

    def test_future_rejected(self):
        assert decode_probe(encode_probe(SENT), now_ns=SENT - 1) is None

    def test_stale_rejected(self):
        assert decode_probe(encode_probe(SENT), now_ns=SENT + 61 * 1_000_000_000) is None

    def test_foreign_payload(self):
        assert decode_probe(b"hello world!", now_ns=SENT) is None
        assert decode_probe(PROBE_MAGIC, now_ns=SENT) is None


class TestJoinToken:
    def test_grants(self):
        secret = "loadtest-secret-that-is-long-enough-for-hs256"
        token = join_token("room-1", "echo", "APIkey", secret, name="Echo", attributes={"k": "v"})
        claims = decode_token(token, secret)
        assert claims.identity == "echo"
        assert claims.name == "Echo"
        assert claims.attributes == {"k": "v"}
        assert claims.video.room == "room-1"
        assert claims.video.room_join and claims.video.can_publish_data


def _inbound(packets=0, size=0, lost=0, discarded=0):
    stat = MagicMock()
    stat.WhichOneof.return_value = "inbound_rtp"
    stat.inbound_rtp.received.packets_received = packets
    stat.inbound_rtp.received.packets_lost = lost
    stat.inbound_rtp.inbound.bytes_received = size
    stat.inbound_rtp.inbound.packets_discarded = discarded
    return stat


def _other():
    stat = MagicMock()
    stat.WhichOneof.return_value = "transport"
    return stat


class _FakeStream:
    """Async iterator standing in for rtc.AudioStream / rtc.VideoStream."""

    def __init__(self, frames: int):
        self.frames = frames
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.frames == 0:
            raise StopAsyncIteration
        self.frames -= 1
        return object()

    async def aclose(self):
        self.closed = True


@pytest.fixture
def session():
    with patch.object(rtc, "Room"):
        yield RtcSession(MagicMock())


def _video_track(**publication) -> RemoteTrack:
    return RemoteTrack(
        sid="TR_V", kind=TrackKind.VIDEO, participant_identity="pub-0", publication=MagicMock(**publication)
    )


class TestReceiverReport:
    def test_sums_inbound_entries(self):
        stats = [_inbound(10, 1000, 1, 0), _other(), _inbound(5, 500, 0, 2)]
        assert receiver_report(stats) == ReceiverReport(packets=15, bytes=1500, lost=1, discarded=2)

    def test_no_inbound_entries(self):
        assert receiver_report([]) is None
        assert receiver_report([_other()]) is None


class TestSetQuality:
    def test_selects_simulcast_layer(self, session):
        track = _video_track()
        session.set_quality(track, VideoQuality.MEDIUM)
        track.publication.set_video_quality.assert_called_once_with(rtc.VideoQuality.VIDEO_QUALITY_MEDIUM)
        track.publication.set_subscribed.assert_not_called()

    def test_off_unsubscribes(self, session):
        track = _video_track()
        session.set_quality(track, VideoQuality.OFF)
        track.publication.set_subscribed.assert_called_once_with(False)
        track.publication.set_video_quality.assert_not_called()

    def test_single_layer_publication(self, session):
        track = _video_track(**{"set_video_quality.side_effect": ValueError("not simulcasted")})
        with patch("lkcli.loadtest.media.logger") as logger:
            session.set_quality(track, VideoQuality.LOW)
        event, kwargs = logger.info.call_args.args[0], logger.info.call_args.kwargs
        assert event == "video_quality_unavailable"
        assert kwargs["quality"] == "low"


class TestReceive:
    @pytest.mark.asyncio
    async def test_every_frame_then_final_report(self, session):
        session.stats_interval = 3600
        stream = _FakeStream(60)
        track = _video_track()
        track.track = MagicMock(get_stats=AsyncMock(return_value=[_inbound(70, 7000, 3, 1)]))

        with patch.object(rtc, "VideoStream", return_value=stream):
            items = [item async for item in session.receive(track)]

        frames = [i for i in items if isinstance(i, ReceivedFrame)]
        reports = [i for i in items if isinstance(i, ReceiverReport)]
        assert len(frames) == 60
        assert reports == [ReceiverReport(packets=70, bytes=7000, lost=3, discarded=1)]
        assert stream.closed

    @pytest.mark.asyncio
    async def test_reports_are_deltas(self, session):
        session.stats_interval = 0
        calls = []

        async def get_stats():
            calls.append(None)
            n = len(calls)
            return [_inbound(10 * n, 100 * n, n, 0)]

        track = RemoteTrack(sid="TR_A", kind=TrackKind.AUDIO, participant_identity="pub-0")
        track.track = MagicMock(get_stats=get_stats)

        with patch.object(rtc, "AudioStream", return_value=_FakeStream(5)):
            items = [item async for item in session.receive(track)]

        reports = [i for i in items if isinstance(i, ReceiverReport)]
        assert len([i for i in items if isinstance(i, ReceivedFrame)]) == 5
        assert all(r.packets == 10 for r in reports)
        assert sum(r.packets for r in reports) == 10 * len(calls)
        assert sum(r.lost for r in reports) == len(calls)

    @pytest.mark.asyncio
    async def test_stats_unavailable(self, session):
        session.stats_interval = 0
        track = _video_track()
        track.track = MagicMock(get_stats=AsyncMock(side_effect=Exception("engine closed")))

        with patch.object(rtc, "VideoStream", return_value=_FakeStream(3)):
            items = [item async for item in session.receive(track)]

        assert len(items) == 3
        assert all(isinstance(i, ReceivedFrame) for i in items)
