"""
Shared fakes for load-test tests.

FakeSession stands in for RtcSession: it records what the tester asks of
the media layer and yields canned frames and receiver reports per track sid.
"""

import asyncio

import pytest

from lkcli.core.errors import TransportError


class FakeSession:
    def __init__(self, handler, *, fail_joins: int = 0, samples=None, hang_on_connect: bool = False):
        self.handler = handler
        self.fail_joins = fail_joins
        self.hang_on_connect = hang_on_connect
        self.samples = samples or {}
        self.existing = []
        self.connected = False
        self.connect_calls = 0
        self.subscribed: list[str] = []
        self.qualities: list[tuple] = []
        self.video_options: list[dict] = []
        self.echoes: list[tuple] = []
        self.probes = 0
        self.speaker_updates = 0
        self.tasks: list[asyncio.Task] = []

    async def connect(self, url, token, *, auto_subscribe=False):
        self.connect_calls += 1
        if self.connect_calls <= self.fail_joins:
            raise TransportError("could not join room: refused")
        if self.hang_on_connect:
            await asyncio.Event().wait()
        self.connected = True

    async def disconnect(self):
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.connected = False

    def spawn(self, coro):
        task = asyncio.create_task(coro)
        self.tasks.append(task)
        return task

    def remote_tracks(self):
        return list(self.existing)

    async def publish_audio(self, name):
        return f"TR_A_{self.handler.name}"

    async def publish_video(self, name, **options):
        self.video_options.append(options)
        return f"TR_V_{self.handler.name}"

    async def send_probe(self):
        self.probes += 1

    def simulate_speaker_update(self):
        self.speaker_updates += 1

    def set_subscribed(self, track, subscribed):
        self.subscribed.append(track.sid)

    def set_quality(self, track, quality):
        self.qualities.append((track.participant_identity, quality))

    async def receive(self, track):
        for sample in self.samples.get(track.sid, []):
            yield sample

    async def publish_echo(self, name):
        return "TR_ECHO", object()

    def start_echo(self, track, source, delay):
        self.echoes.append((track.sid, delay))


@pytest.fixture
def sessions():
    """Factory creating FakeSessions, with every created session kept in `.created`."""

    class Factory:
        def __init__(self):
            self.created: list[FakeSession] = []
            self.kwargs: dict = {}

        def __call__(self, handler):
            session = FakeSession(handler, **self.kwargs)
            self.created.append(session)
            return session

    return Factory()
