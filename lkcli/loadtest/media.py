"""
Media adapter over the LiveKit real-time SDK.

RtcSession is one participant connection. It forwards room events to an
event handler (a tester or an agent-test room), publishes looping audio
and video, and yields what a subscribed track receives.

The SDK hands out decoded frames rather than RTP packets, so a receive
loop yields one ReceivedFrame per decoded frame and, every
RECEIVER_STATS_INTERVAL, a ReceiverReport built from the track's
inbound-rtp statistics. Latency comes from timestamped probe data packets
sent by publishers.

The SDK has no way to ask a publisher for a keyframe; the receiving WebRTC
stack sends picture-loss indications on its own when a decoder needs one.
"""

import asyncio
import math
import struct
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np
import structlog
from livekit import rtc

from lkcli.core.errors import TransportError
from lkcli.core.token import AccessToken, VideoGrant

from .params import DIMENSIONS, VideoQuality
from .stats import ReceiverReport

logger = structlog.get_logger()

AUDIO_SAMPLE_RATE = 48000
AUDIO_CHANNELS = 1
AUDIO_FRAME_MS = 10
VIDEO_FPS = 30

# Minimum gap between two speaker updates from the same participant.
SPEAKER_UPDATE_INTERVAL = 5.0

PROBE_TOPIC = "lk-loadtest-probe"
PROBE_MAGIC = b"\xfa\xfa\xfa\xfa"
PROBE_MAX_AGE_NS = 60 * 1_000_000_000

VIDEO_CODECS = {
    "h264": rtc.VideoCodec.H264,
    "vp8": rtc.VideoCodec.VP8,
}

SIMULCAST_LAYERS = {
    VideoQuality.HIGH: rtc.VideoQuality.VIDEO_QUALITY_HIGH,
    VideoQuality.MEDIUM: rtc.VideoQuality.VIDEO_QUALITY_MEDIUM,
    VideoQuality.LOW: rtc.VideoQuality.VIDEO_QUALITY_LOW,
}

RECEIVER_STATS_INTERVAL = 1.0


class TrackKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


@dataclass
class RemoteTrack:
    """A remote publication, and its track once subscribed."""

    sid: str
    kind: TrackKind
    participant_identity: str
    participant_sid: str = ""
    publication: Any = field(default=None, repr=False)
    track: Any = field(default=None, repr=False)


@dataclass
class ReceivedFrame:
    """One decoded frame."""


def receiver_report(stats: list) -> ReceiverReport | None:
    """Cumulative receiver counters from a track's RtcStats, or None without inbound-rtp entries."""
    inbound = [s.inbound_rtp for s in stats if s.WhichOneof("stats") == "inbound_rtp"]
    if not inbound:
        return None
    return ReceiverReport(
        packets=sum(s.received.packets_received for s in inbound),
        bytes=sum(s.inbound.bytes_received for s in inbound),
        lost=sum(s.received.packets_lost for s in inbound),
        discarded=sum(s.inbound.packets_discarded for s in inbound),
    )


def encode_probe(now_ns: int | None = None) -> bytes:
    """Probe payload: 4 magic bytes then the send time in ns, little endian."""
    now_ns = time.time_ns() if now_ns is None else now_ns
    return PROBE_MAGIC + struct.pack("<Q", now_ns)


def decode_probe(payload: bytes, now_ns: int | None = None) -> float | None:
    """One-way latency in seconds, or None if the payload is not a fresh probe."""
    if len(payload) != len(PROBE_MAGIC) + 8 or not payload.startswith(PROBE_MAGIC):
        return None
    now_ns = time.time_ns() if now_ns is None else now_ns
    (sent_ns,) = struct.unpack("<Q", payload[len(PROBE_MAGIC):])
    if sent_ns > now_ns or now_ns - sent_ns > PROBE_MAX_AGE_NS:
        return None
    return (now_ns - sent_ns) / 1e9


def join_token(
    room: str,
    identity: str,
    api_key: str,
    api_secret: str,
    name: str = "",
    attributes: dict[str, str] | None = None,
) -> str:
    grant = VideoGrant(
        room_join=True,
        room=room,
        can_publish=True,
        can_subscribe=True,
        can_publish_data=True,
    )
    at = AccessToken(api_key, api_secret).with_identity(identity).with_grants(grant)
    if name:
        at.with_name(name)
    if attributes:
        at.with_attributes(attributes)
    return at.to_jwt()


class AudioLooper:
    """
    Feeds an audio source with 10ms frames.

    Frames are silent unless the participant is "speaking", in which case
    a tone loud enough to trip the server's speaker detection is sent.
    """

    def __init__(self, source: "rtc.AudioSource"):
        self.source = source
        self.speaking_until = 0.0
        self._samples = AUDIO_SAMPLE_RATE * AUDIO_FRAME_MS // 1000
        t = np.arange(self._samples) / AUDIO_SAMPLE_RATE
        self._tone = (np.sin(2 * math.pi * 440 * t) * 8000).astype(np.int16)

    def speak_for(self, seconds: float):
        self.speaking_until = time.monotonic() + seconds

    def next_frame(self) -> "rtc.AudioFrame":
        frame = rtc.AudioFrame.create(AUDIO_SAMPLE_RATE, AUDIO_CHANNELS, self._samples)
        if time.monotonic() < self.speaking_until:
            np.copyto(np.frombuffer(frame.data, dtype=np.int16), self._tone)
        return frame

    async def run(self):
        while True:
            # capture_frame waits while the source queue is full
            await self.source.capture_frame(self.next_frame())


class VideoLooper:
    """Feeds a video source with shaded RGBA frames at VIDEO_FPS."""

    def __init__(self, source: "rtc.VideoSource", width: int, height: int):
        self.source = source
        self.width = width
        self.height = height
        self._buffer = np.zeros((height, width, 4), dtype=np.uint8)
        self._buffer[:, :, 3] = 255

    async def run(self):
        interval = 1.0 / VIDEO_FPS
        frame_no = 0
        while True:
            shade = (frame_no * 4) % 256
            self._buffer[:, :, 0] = shade
            self._buffer[:, :, 2] = 255 - shade
            frame = rtc.VideoFrame(self.width, self.height, rtc.VideoBufferType.RGBA, self._buffer.tobytes())
            self.source.capture_frame(frame)
            frame_no += 1
            await asyncio.sleep(interval)


class RtcSession:
    """
    One participant in a room.

    The handler receives on_track_published, on_track_subscribed,
    on_track_subscription_failed, on_participant_connected,
    on_participant_disconnected and on_probe callbacks.
    """

    def __init__(self, handler: Any):
        self.handler = handler
        self.room = rtc.Room()
        self._audio: AudioLooper | None = None
        self._tasks: set[asyncio.Task] = set()
        self.stats_interval = RECEIVER_STATS_INTERVAL
        self.room.on("track_published", self._on_track_published)
        self.room.on("track_subscribed", self._on_track_subscribed)
        self.room.on("track_subscription_failed", self._on_track_subscription_failed)
        self.room.on("participant_connected", self._on_participant_connected)
        self.room.on("participant_disconnected", self._on_participant_disconnected)
        self.room.on("data_received", self._on_data_received)

    @property
    def identity(self) -> str:
        return self.room.local_participant.identity

    @property
    def room_name(self) -> str:
        return self.room.name

    async def connect(self, url: str, token: str, *, auto_subscribe: bool = False):
        try:
            await self.room.connect(url, token, options=rtc.RoomOptions(auto_subscribe=auto_subscribe))
        except rtc.ConnectError as e:
            raise TransportError(f"could not join room: {e}") from e

    async def disconnect(self):
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.wait(self._tasks)
        await self.room.disconnect()

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("media_task_failed", error=repr(task.exception()))

    # Events

    @staticmethod
    def _wrap(publication, participant, track=None) -> RemoteTrack:
        kind = TrackKind.VIDEO if publication.kind == rtc.TrackKind.KIND_VIDEO else TrackKind.AUDIO
        return RemoteTrack(
            sid=publication.sid,
            kind=kind,
            participant_identity=participant.identity,
            participant_sid=participant.sid,
            publication=publication,
            track=track,
        )

    def remote_tracks(self) -> list[RemoteTrack]:
        return [
            self._wrap(pub, participant)
            for participant in self.room.remote_participants.values()
            for pub in participant.track_publications.values()
        ]

    def _on_track_published(self, publication, participant):
        self.handler.on_track_published(self._wrap(publication, participant))

    def _on_track_subscribed(self, track, publication, participant):
        self.handler.on_track_subscribed(self._wrap(publication, participant, track))

    def _on_track_subscription_failed(self, participant, track_sid, error):
        self.handler.on_track_subscription_failed(participant.identity, track_sid, str(error))

    def _on_participant_connected(self, participant):
        is_agent = participant.kind == rtc.ParticipantKind.PARTICIPANT_KIND_AGENT
        self.handler.on_participant_connected(participant.identity, is_agent)

    def _on_participant_disconnected(self, participant):
        self.handler.on_participant_disconnected(participant.identity)

    def _on_data_received(self, packet):
        if packet.topic != PROBE_TOPIC or packet.participant is None:
            return
        latency = decode_probe(bytes(packet.data))
        if latency is not None:
            self.handler.on_probe(packet.participant.identity, latency)

    # Publishing

    async def publish_audio(self, name: str) -> str:
        source = rtc.AudioSource(AUDIO_SAMPLE_RATE, AUDIO_CHANNELS)
        track = rtc.LocalAudioTrack.create_audio_track(name, source)
        options = rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE)
        publication = await self.room.local_participant.publish_track(track, options)
        self._audio = AudioLooper(source)
        self.spawn(self._audio.run())
        return publication.sid

    async def publish_video(
        self,
        name: str,
        *,
        resolution: str = "high",
        codec: str = "",
        simulcast: bool = True,
        bitrate: int | None = None,
    ) -> str:
        width, height = DIMENSIONS[VideoQuality(resolution)]
        source = rtc.VideoSource(width, height)
        track = rtc.LocalVideoTrack.create_video_track(name, source)
        options = rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_CAMERA, simulcast=simulcast)
        if codec:
            options.video_codec = VIDEO_CODECS[codec]
        if bitrate:
            options.video_encoding.max_bitrate = bitrate
            options.video_encoding.max_framerate = VIDEO_FPS
        publication = await self.room.local_participant.publish_track(track, options)
        self.spawn(VideoLooper(source, width, height).run())
        return publication.sid

    async def send_probe(self):
        await self.room.local_participant.publish_data(encode_probe(), reliable=False, topic=PROBE_TOPIC)

    def simulate_speaker_update(self):
        if self._audio is not None:
            self._audio.speak_for(SPEAKER_UPDATE_INTERVAL)

    # Subscribing

    def set_subscribed(self, track: RemoteTrack, subscribed: bool):
        track.publication.set_subscribed(subscribed)

    def set_quality(self, track: RemoteTrack, quality: VideoQuality):
        """OFF unsubscribes; other qualities select a simulcast layer."""
        if quality is VideoQuality.OFF:
            track.publication.set_subscribed(False)
            return
        try:
            track.publication.set_video_quality(SIMULCAST_LAYERS[quality])
        except ValueError as e:
            # single-layer publication: the one layer it has keeps arriving
            logger.info("video_quality_unavailable", track=track.sid, quality=quality.value, reason=str(e))

    async def receiver_counters(self, track: RemoteTrack) -> ReceiverReport | None:
        """Cumulative inbound-rtp counters of a subscribed track, or None when unavailable."""
        try:
            stats = await track.track.get_stats()
        except Exception as e:  # the SDK raises a plain Exception carrying the FFI error
            logger.debug("receiver_stats_unavailable", track=track.sid, error=str(e))
            return None
        return receiver_report(stats)

    async def receive(self, track: RemoteTrack) -> AsyncIterator[ReceivedFrame | ReceiverReport]:
        """
        Decoded frames of `track` as they arrive, interleaved with receiver
        reports holding the RTP counters gathered since the previous one.

        Reports are taken on a timer so a stalled stream still shows its
        losses, and once more when the stream ends.
        """
        if track.kind is TrackKind.AUDIO:
            stream = rtc.AudioStream(track.track)
        else:
            stream = rtc.VideoStream(track.track)
        last = ReceiverReport()
        pending = asyncio.ensure_future(anext(stream))
        deadline = time.monotonic() + self.stats_interval
        try:
            while True:
                done, _ = await asyncio.wait({pending}, timeout=max(0.0, deadline - time.monotonic()))
                if pending in done:
                    try:
                        pending.result()
                    except StopAsyncIteration:
                        break
                    pending = asyncio.ensure_future(anext(stream))
                    yield ReceivedFrame()
                if time.monotonic() >= deadline:
                    deadline = time.monotonic() + self.stats_interval
                    current = await self.receiver_counters(track)
                    if current is not None:
                        yield current.since(last)
                        last = current

            current = await self.receiver_counters(track)
            if current is not None:
                yield current.since(last)
        finally:
            pending.cancel()
            await stream.aclose()

    # Echo

    async def publish_echo(self, name: str) -> tuple[str, "rtc.AudioSource"]:
        source = rtc.AudioSource(AUDIO_SAMPLE_RATE, AUDIO_CHANNELS)
        track = rtc.LocalAudioTrack.create_audio_track(name, source)
        options = rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE)
        publication = await self.room.local_participant.publish_track(track, options)
        return publication.sid, source

    def start_echo(self, track: RemoteTrack, source: "rtc.AudioSource", delay: float):
        """Replay a remote audio track into `source`, each frame `delay` seconds late."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=1000)

        async def read():
            stream = rtc.AudioStream(track.track, sample_rate=AUDIO_SAMPLE_RATE, num_channels=AUDIO_CHANNELS)
            try:
                async for event in stream:
                    await queue.put((time.monotonic(), event.frame))
            finally:
                await stream.aclose()

        async def write():
            while True:
                received, frame = await queue.get()
                wait = received + delay - time.monotonic()
                if wait > 0:
                    await asyncio.sleep(wait)
                await source.capture_frame(frame)

        self.spawn(read())
        self.spawn(write())
