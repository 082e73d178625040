"""
LoadTester: one virtual participant.

A tester joins the room, optionally publishes audio and video, and (for
subscribers) follows the publishers named in its parameters: the first
publishers by sequence, up to its layout's participant count.
Every subscribed track gets a receive loop that is the only writer of the
track's statistics.
"""

import asyncio
import time
from collections import Counter
from collections.abc import Callable
from typing import Any

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from lkcli.core.errors import TransportError

from .media import RemoteTrack, RtcSession, TrackKind, join_token
from .params import TesterParams, VideoQuality, choose_quality
from .stats import ReceiverReport, TesterStats, TrackStats

logger = structlog.get_logger()

JOIN_ATTEMPTS = 10
JOIN_RETRY_DELAY = 1.0
PROBE_INTERVAL = 1.0


class LoadTester:
    def __init__(
        self,
        params: TesterParams,
        session_factory: Callable[[Any], Any] = RtcSession,
        *,
        sleep=asyncio.sleep,
    ):
        self.params = params
        self.session: Any = None
        self.running = False
        self._session_factory = session_factory
        self._sleep = sleep
        # remote participant identity -> requested video quality
        self._qualities: dict[str, VideoQuality] = {}
        self._stats: dict[str, TrackStats] = {}
        self._tracks_by_participant: dict[str, list[str]] = {}
        self._probing = False

    @property
    def name(self) -> str:
        return self.params.name

    async def start(self) -> None:
        """Join the room, retrying failed joins once a second."""
        if self.running:
            return

        session = self._session_factory(self)
        token = join_token(self.params.room, self.params.identity, self.params.api_key, self.params.api_secret)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(JOIN_ATTEMPTS),
            wait=wait_fixed(JOIN_RETRY_DELAY),
            retry=retry_if_exception_type(TransportError),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "tester_join_retry",
                        tester=self.name,
                        attempt=attempt.retry_state.attempt_number,
                    )
                await session.connect(self.params.url, token)

        self.session = session
        self.running = True
        logger.debug("tester_joined", tester=self.name, identity=self.params.identity, room=self.params.room)
        for track in session.remote_tracks():
            self.on_track_published(track)

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        await self.session.disconnect()

    # Publishing

    async def publish_audio(self, name: str) -> str:
        if not self.running:
            return ""
        logger.info("publishing_audio_track", identity=self.params.identity)
        sid = await self.session.publish_audio(name)
        self._start_probes()
        return sid

    async def publish_video(
        self,
        name: str,
        *,
        resolution: str = "high",
        codec: str = "",
        simulcast: bool = True,
        bitrate: int | None = None,
    ) -> str:
        if not self.running:
            return ""
        logger.info("publishing_video_track", identity=self.params.identity, simulcast=simulcast, codec=codec)
        sid = await self.session.publish_video(
            name, resolution=resolution, codec=codec, simulcast=simulcast, bitrate=bitrate
        )
        self._start_probes()
        return sid

    def _start_probes(self) -> None:
        if self._probing:
            return
        self._probing = True
        self.session.spawn(self._probe_loop())

    async def _probe_loop(self) -> None:
        while self.running:
            await self.session.send_probe()
            await self._sleep(PROBE_INTERVAL)

    def simulate_speaker_update(self) -> None:
        if self.running:
            self.session.simulate_speaker_update()

    # Subscribing

    def on_track_published(self, track: RemoteTrack) -> None:
        if track.participant_identity in self.params.follow:
            self.session.set_subscribed(track, True)

    def on_track_subscribed(self, track: RemoteTrack) -> None:
        stats = TrackStats(track.sid, track.kind.value)
        self._stats[track.sid] = stats
        self._tracks_by_participant.setdefault(track.participant_identity, []).append(track.sid)
        logger.info(
            "track_subscribed",
            tester=self.name,
            track=track.sid,
            kind=track.kind.value,
            subscribed=f"{len(self._stats)}/{self.params.expected_tracks}",
        )
        self.session.spawn(self._consume(track, stats))

        if track.kind is not TrackKind.VIDEO:
            return
        quality = choose_quality(self.params.layout, Counter(self._qualities.values()))
        self._qualities[track.participant_identity] = quality
        self.session.set_quality(track, quality)

    def on_track_subscription_failed(self, participant_identity: str, track_sid: str, error: str) -> None:
        logger.warning(
            "track_subscription_failed",
            tester=self.name,
            participant=participant_identity,
            track=track_sid,
            error=error,
        )

    def on_participant_connected(self, identity: str, is_agent: bool) -> None:
        pass

    def on_participant_disconnected(self, identity: str) -> None:
        pass

    def on_probe(self, participant_identity: str, latency: float) -> None:
        sids = self._tracks_by_participant.get(participant_identity)
        if sids:
            self._stats[sids[0]].record_latency(latency)

    async def _consume(self, track: RemoteTrack, stats: TrackStats) -> None:
        stats.start()
        async for item in self.session.receive(track):
            # reset() may have swapped in a fresh counter
            current = self._stats[track.sid]
            if isinstance(item, ReceiverReport):
                current.record_receiver(item)
            else:
                current.record_frame()

    # Stats

    def quality_of(self, participant_identity: str) -> VideoQuality | None:
        return self._qualities.get(participant_identity)

    def get_stats(self, now: float | None = None) -> TesterStats:
        now = time.monotonic() if now is None else now
        return TesterStats(
            name=self.name,
            expected_tracks=self.params.expected_tracks,
            tracks={sid: s.snapshot(now) for sid, s in self._stats.items()},
        )

    def reset(self) -> None:
        """Start every track's counters over."""
        now = time.monotonic()
        fresh = {}
        for sid, old in self._stats.items():
            stats = TrackStats(sid, old.kind)
            stats.start(now)
            fresh[sid] = stats
        self._stats = fresh
