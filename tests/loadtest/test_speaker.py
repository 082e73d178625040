"""
Tests for the active speaker rotation.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from lkcli.loadtest.speaker import SpeakerSimulator


def _make_tester(name: str):
    tester = MagicMock()
    tester.name = name
    return tester


class TestSpeakerSimulator:
    @pytest.mark.asyncio
    async def test_rotates_and_stops(self):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)
            if len(delays) > 3:
                await asyncio.Event().wait()

        tester = _make_tester("Pub 0")
        sim = SpeakerSimulator([tester], sleep=fake_sleep, choice=lambda testers: testers[0])
        sim.start()
        sim.start()
        for _ in range(5):
            await asyncio.sleep(0)

        assert sim.running
        assert sim.updates == 3
        assert tester.simulate_speaker_update.call_count == 3
        assert delays == [1.0, 6.0, 6.0, 6.0]

        await sim.stop()
        await sim.stop()
        assert not sim.running

    @pytest.mark.asyncio
    async def test_no_testers(self):
        sim = SpeakerSimulator([])
        sim.start()
        assert not sim.running

    @pytest.mark.asyncio
    async def test_zero_pause(self):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)
            if len(delays) > 2:
                await asyncio.Event().wait()

        sim = SpeakerSimulator([_make_tester("Pub 0")], pause=0, sleep=fake_sleep)
        sim.start()
        for _ in range(5):
            await asyncio.sleep(0)
        assert delays == [0, 5.0, 5.0]
        await sim.stop()

    def test_negative_pause(self):
        with pytest.raises(ValueError):
            SpeakerSimulator([_make_tester("Pub 0")], pause=-1)

    @pytest.mark.asyncio
    async def test_not_restarted_after_stop(self):
        async def fake_sleep(delay):
            await asyncio.Event().wait()

        sim = SpeakerSimulator([_make_tester("Pub 0")], sleep=fake_sleep)
        sim.start()
        await sim.stop()
        sim.start()
        assert not sim.running

    @pytest.mark.asyncio
    async def test_skips_testers_not_connected(self):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)
            if len(delays) > 3:
                await asyncio.Event().wait()

        offline = _make_tester("Pub 0")
        offline.running = False
        online = _make_tester("Pub 1")
        sim = SpeakerSimulator([offline, online], sleep=fake_sleep, choice=lambda testers: testers[0])
        sim.start()
        for _ in range(5):
            await asyncio.sleep(0)

        assert sim.updates == 3
        offline.simulate_speaker_update.assert_not_called()
        assert online.simulate_speaker_update.call_count == 3
        await sim.stop()
