"""
Agent load test.

Opens N rooms, each with an echo participant that plays whatever the
first audio track it hears back after a delay, dispatches the named agent
into every room and reports per room whether (and how fast) the agent
joined.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from rich.console import Console
from rich.table import Table
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from lkcli.core.errors import TransportError
from lkcli.core.models import ProjectContext
from lkcli.core.strings import format_duration
from lkcli.services.media import DispatchClient

from .media import RemoteTrack, RtcSession, TrackKind, join_token

logger = structlog.get_logger()

ECHO_IDENTITY = "echo-participant"
MEET_URL = "https://meet.livekit.io/custom?liveKitUrl={url}&token={token}"
JOIN_ATTEMPTS = 10
JOIN_RETRY_DELAY = 1.0


@dataclass
class AgentLoadTestParams:
    rooms: int = 1
    agent_name: str = ""
    echo_speech_delay: float = 0.0
    duration: float = 0.0
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class RoomStats:
    agent_dispatched_at: datetime | None = None
    agent_joined_at: datetime | None = None
    agent_joined: bool = False
    agent_track_subscribed: bool = False
    echo_track_published: bool = False
    meet_link: str = ""

    @property
    def join_delay(self) -> float | None:
        if self.agent_dispatched_at is None or self.agent_joined_at is None:
            return None
        return (self.agent_joined_at - self.agent_dispatched_at).total_seconds()


class EchoRoom:
    """One test room and its echo participant."""

    def __init__(self, name: str, project: ProjectContext, params: AgentLoadTestParams, session_factory=RtcSession):
        self.name = name
        self.project = project
        self.params = params
        self.stats = RoomStats()
        self.running = False
        self.session = session_factory(self)
        self._echo_source = None
        self._first_participant: str | None = None
        self._agents: set[str] = set()
        self._stop_task: asyncio.Task | None = None
        self.agent_joined = asyncio.Event()

    async def start(self, sleep=asyncio.sleep) -> None:
        token = join_token(
            self.name, ECHO_IDENTITY, self.project.api_key, self.project.api_secret, attributes=self.params.attributes
        )
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(JOIN_ATTEMPTS),
            wait=wait_fixed(JOIN_RETRY_DELAY),
            retry=retry_if_exception_type(TransportError),
            sleep=sleep,
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning("echo_room_join_retry", room=self.name, attempt=attempt.retry_state.attempt_number)
                await self.session.connect(self.project.url, token, auto_subscribe=True)

        viewer = join_token(self.name, "meet-participant", self.project.api_key, self.project.api_secret, name="meet-participant")
        self.stats.meet_link = MEET_URL.format(url=self.project.url, token=viewer)
        logger.debug("inspect_room", room=self.name, url=self.stats.meet_link)
        self.running = True

    async def publish_echo_track(self) -> str:
        sid, self._echo_source = await self.session.publish_echo("echo-track")
        self.stats.echo_track_published = True
        return sid

    async def dispatch_agent(self, dispatch: DispatchClient) -> None:
        await dispatch.create_dispatch(self.name, self.params.agent_name)
        self.stats.agent_dispatched_at = datetime.now()

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        await self.session.disconnect()

    # Session events

    def on_participant_connected(self, identity: str, is_agent: bool) -> None:
        if is_agent:
            self._agents.add(identity)
        if is_agent and not self.stats.agent_joined:
            self.stats.agent_joined = True
            self.stats.agent_joined_at = datetime.now()
            self.agent_joined.set()

    def on_participant_disconnected(self, identity: str) -> None:
        logger.info("participant_disconnected", room=self.name, participant=identity)
        if identity == self._first_participant and self._stop_task is None:
            self._stop_task = asyncio.create_task(self.stop())

    def on_track_published(self, track: RemoteTrack) -> None:
        pass

    def on_track_subscribed(self, track: RemoteTrack) -> None:
        if self._echo_source is None or self._first_participant is not None or track.kind is not TrackKind.AUDIO:
            return
        self._first_participant = track.participant_identity
        if track.participant_identity in self._agents:
            self.stats.agent_track_subscribed = True
        self.session.start_echo(track, self._echo_source, self.params.echo_speech_delay)

    def on_track_subscription_failed(self, participant_identity: str, track_sid: str, error: str) -> None:
        logger.warning("track_subscription_failed", room=self.name, participant=participant_identity, track=track_sid)

    def on_probe(self, participant_identity: str, latency: float) -> None:
        pass


class AgentLoadTest:
    def __init__(
        self,
        project: ProjectContext,
        params: AgentLoadTestParams,
        *,
        dispatch: DispatchClient | None = None,
        console: Console | None = None,
        session_factory=RtcSession,
        sleep=asyncio.sleep,
    ):
        self.project = project
        self.params = params
        self.dispatch = dispatch or DispatchClient(project)
        self.console = console or Console()
        self.rooms: dict[str, EchoRoom] = {}
        self._session_factory = session_factory
        self._sleep = sleep

    async def _run_room(self, room: EchoRoom) -> None:
        await room.start(self._sleep)
        try:
            await room.publish_echo_track()
            if self.params.agent_name:
                await room.dispatch_agent(self.dispatch)
        except BaseException:
            await room.stop()
            raise

    async def run(self) -> list[RoomStats]:
        """Start every room, hold for the duration, then print the room table."""
        logger.info("agent_load_test_started", rooms=self.params.rooms)
        self.console.print(f"Starting agent load test with {self.params.rooms} rooms", highlight=False)
        try:
            async with asyncio.timeout(self.params.duration or None):
                for i in range(self.params.rooms):
                    name = f"room-{i}-{uuid.uuid4().hex[:12]}"
                    room = EchoRoom(name, self.project, self.params, self._session_factory)
                    self.rooms[name] = room
                    await self._run_room(room)
                    if self.params.agent_name:
                        # rooms open one after another, each once its agent is in
                        await room.agent_joined.wait()
                self.console.print(
                    f"Agent load tester started, waiting {format_duration(self.params.duration) if self.params.duration else 'until interrupted'}",
                    highlight=False,
                )
                await asyncio.Event().wait()
        except TimeoutError:
            logger.info("agent_load_test_completed")
        finally:
            stats = self.print_stats()
            for room in self.rooms.values():
                await room.stop()
        return stats

    def print_stats(self) -> list[RoomStats]:
        rooms = sorted(
            self.rooms.values(),
            key=lambda r: r.stats.agent_dispatched_at or datetime.max,
        )
        table = Table(title="Test Statistics", title_justify="left")
        for header in ("#", "Room", "Agent Dispatched At", "Agent Joined", "Agent Join Delay", "Agent Track Subscribed", "Echo Track Published"):
            table.add_column(header)
        for index, room in enumerate(rooms, start=1):
            s = room.stats
            delay = s.join_delay
            table.add_row(
                str(index),
                room.name,
                s.agent_dispatched_at.astimezone().isoformat(timespec="seconds") if s.agent_dispatched_at else "-",
                _mark(s.agent_joined),
                format_duration(delay) if delay is not None else "-",
                _mark(s.agent_track_subscribed),
                _mark(s.echo_track_published),
            )
        self.console.print()
        self.console.print(table)
        return [r.stats for r in rooms]


def _mark(ok: bool) -> str:
    return "[green]✓[/green]" if ok else "[red]✗[/red]"
