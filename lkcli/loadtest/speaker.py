"""
SpeakerSimulator: rotates the active speaker among publishers.
"""

import asyncio
import random

import structlog

from .media import SPEAKER_UPDATE_INTERVAL

logger = structlog.get_logger()


class SpeakerSimulator:
    """
    Every `pause` seconds plus the speaker-update interval, a random
    connected tester emits a speaker update.

    The simulator runs once: start() after the first has no effect, and
    stop() is idempotent.
    """

    def __init__(self, testers: list, pause: float = 1.0, *, sleep=asyncio.sleep, choice=random.choice):
        if pause < 0:
            raise ValueError("pause must not be negative")
        self.testers = testers
        self.pause = pause
        self._sleep = sleep
        self._choice = choice
        self._task: asyncio.Task | None = None
        self._started = False
        self.updates = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._started or not self.testers:
            return
        self._started = True
        self._task = asyncio.create_task(self._worker())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _worker(self) -> None:
        await self._sleep(self.pause)
        while True:
            active = [t for t in self.testers if t.running]
            if active:
                speaker = self._choice(active)
                speaker.simulate_speaker_update()
                self.updates += 1
                logger.debug("speaker_update", tester=speaker.name)
            await self._sleep(self.pause + SPEAKER_UPDATE_INTERVAL)
