"""
LoadTest: drives a room full of virtual participants.

Testers are released by a RampTicker, connect concurrently, publish or
subscribe according to their role, and are torn down when the duration
elapses or the run is interrupted. Results are rendered as the "Track
loading" and "Subscriber summaries" tables.
"""

import asyncio
import time
from dataclasses import replace

import structlog
from rich.console import Console

from lkcli.core.errors import InputError, OperationCancelled, TransportError
from lkcli.core.strings import format_duration

from .media import RtcSession
from .params import CODECS, LoadTestParams
from .ramp import RampTicker
from .report import LoadTestReport, SuiteRow, suite_table
from .speaker import SpeakerSimulator
from .stats import TesterStats, format_latency
from .tester import LoadTester

logger = structlog.get_logger()

SUITE_DURATION = 15.0

# (publishers, subscribers, video)
SUITE_CASES = [
    (10, 10, False),
    (10, 100, False),
    (10, 500, False),
    (10, 1000, False),
    (50, 50, False),
    (100, 50, False),
    (10, 10, True),
    (10, 100, True),
    (10, 500, True),
    (1, 100, True),
    (1, 1000, True),
]


class LoadTest:
    def __init__(
        self,
        params: LoadTestParams,
        *,
        console: Console | None = None,
        session_factory=RtcSession,
        clock=time.monotonic,
        sleep=asyncio.sleep,
    ):
        self.params = params.normalized()
        self.console = console or Console()
        self.track_names: dict[str, str] = {}
        self._session_factory = session_factory
        self._clock = clock
        self._sleep = sleep

    def _say(self, message: str):
        self.console.print(message, highlight=False)

    async def run(self) -> LoadTestReport:
        """One run with the configured parameters; prints and returns the report."""
        self.params.check_cloud_limits()
        stats, _ = await self._run(self.params)
        report = LoadTestReport.from_stats(stats, self.track_names)
        for table in (report.track_table(), report.summary_table()):
            if table is not None:
                self.console.print()
                self.console.print(table)
        return report

    async def run_suite(self) -> list[SuiteRow]:
        """Run the canned publisher/subscriber matrix, one row per case."""
        rows: list[SuiteRow] = []
        for publishers, subscribers, video in SUITE_CASES:
            params = replace(
                self.params,
                video_publishers=publishers if video else 0,
                audio_publishers=0 if video else publishers,
                subscribers=subscribers,
                simulcast=True,
                duration=self.params.duration or SUITE_DURATION,
            )
            self._say(f"\nRunning test: {publishers} pub, {subscribers} sub, video: {'Yes' if video else 'No'}")
            stats, cancelled = await self._run(params)
            if cancelled:
                raise OperationCancelled()

            row = SuiteRow(publishers, subscribers, video)
            for tester in stats.values():
                for track in tester.tracks.values():
                    row.tracks += 1
                    row.packets += track.packets
                    row.dropped += track.dropped
                if tester.error:
                    row.errors += 1
            rows.append(row)

        table = suite_table(rows)
        if table is not None:
            self.console.print()
            self.console.print(table)
        return rows

    async def find_max(self, max_latency: float, *, start: int = 10, limit: int = 1000) -> int:
        """
        Largest subscriber count whose average latency stays within
        `max_latency` seconds.

        Doubles the count until a run fails, then bisects between the last
        passing and the first failing count.
        """
        if self.params.publisher_count == 0:
            raise InputError("finding the maximum subscriber count needs at least one publisher")

        best = 0
        failed: int | None = None
        count = max(1, min(start, limit))
        while failed is None:
            if await self._passes(count, max_latency):
                best = count
                if count >= limit:
                    return best
                count = min(count * 2, limit)
            else:
                failed = count

        while failed - best > max(1, failed // 10):
            mid = (best + failed) // 2
            if await self._passes(mid, max_latency):
                best = mid
            else:
                failed = mid
        self._say(f"Maximum subscribers within {max_latency * 1000:.0f}ms: {best}")
        return best

    async def _passes(self, subscribers: int, max_latency: float) -> bool:
        params = replace(self.params, subscribers=subscribers, duration=self.params.duration or SUITE_DURATION)
        stats, cancelled = await self._run(params)
        if cancelled:
            raise OperationCancelled()
        total = LoadTestReport.from_stats(stats).total()
        avg = total.avg_latency
        ok = total.error_count == 0 and avg is not None and avg <= max_latency
        self._say(f"{subscribers} subscribers: avg latency {format_latency(total)}, {'ok' if ok else 'over limit'}")
        return ok

    def _describe(self, params: LoadTestParams) -> str:
        parts = []
        if params.video_publishers:
            parts.append(f"{params.video_publishers} video publishers")
        if params.audio_publishers:
            parts.append(f"{params.audio_publishers} audio publishers")
        if params.subscribers:
            parts.append(f"{params.subscribers} subscribers")
        return ", ".join(parts)

    async def _start_tester(self, tester: LoadTester, params: LoadTestParams, errors: dict[str, str]):
        seq = tester.params.sequence
        try:
            await tester.start()
        except TransportError as e:
            self._say(f"could not connect {tester.name}: {e}")
            errors[tester.name] = str(e)
            return

        try:
            if seq < params.audio_publishers:
                sid = await tester.publish_audio("audio")
                self.track_names[sid] = f"{seq}A"
            if seq < params.video_publishers:
                codec = params.video_codec or CODECS[seq % len(CODECS)]
                sid = await tester.publish_video(
                    "video-simulcast" if params.simulcast else "video",
                    resolution=params.video_resolution,
                    codec=codec,
                    simulcast=params.simulcast,
                    bitrate=params.video_bitrate,
                )
                self.track_names[sid] = f"{seq}V"
        except Exception as e:
            # a failed publish is reported against the tester, the run goes on
            logger.error("tester_publish_failed", tester=tester.name, error=repr(e))
            errors[tester.name] = str(e)

    async def _run(self, params: LoadTestParams) -> tuple[dict[str, TesterStats], bool]:
        """Ramp up, hold for the duration, tear down. Returns stats and whether the run was interrupted."""
        params = params.with_run_defaults()
        self.track_names.clear()
        self._say(f"Starting load test with {self._describe(params)}, room: {params.room}")

        ticker = RampTicker(params.num_per_second, clock=self._clock, sleep=self._sleep)
        testers: list[LoadTester] = []
        publishers: list[LoadTester] = []
        errors: dict[str, str] = {}
        starts: list[asyncio.Task] = []
        speaker: SpeakerSimulator | None = None
        cancelled = False

        try:
            try:
                for i in range(params.tester_count):
                    tester = LoadTester(params.tester_params(i), self._session_factory, sleep=self._sleep)
                    testers.append(tester)
                    if i < params.publisher_count:
                        publishers.append(tester)
                    await ticker.acquire()
                    starts.append(asyncio.create_task(self._start_tester(tester, params, errors)))

                if publishers and params.simulate_speakers:
                    speaker = SpeakerSimulator(publishers, sleep=self._sleep)
                    speaker.start()
                await asyncio.gather(*starts)

                if params.duration:
                    self._say(f"Finished connecting to room, waiting {format_duration(params.duration)}")
                    await self._sleep(params.duration)
                else:
                    self._say("Finished connecting to room, waiting until interrupted")
                    await asyncio.Event().wait()
            except asyncio.CancelledError:
                # an interrupt ends the ramp or the hold; the report is still produced
                current = asyncio.current_task()
                if current is not None:
                    current.uncancel()
                cancelled = True
                logger.info("load_test_interrupted", room=params.room, testers=len(testers))
        finally:
            for task in starts:
                task.cancel()
            await asyncio.gather(*starts, return_exceptions=True)
            if speaker is not None:
                await speaker.stop()
            stats: dict[str, TesterStats] = {}
            for tester in testers:
                if cancelled and not tester.running:
                    errors.setdefault(tester.name, "interrupted before joining")
                await tester.stop()
                tester_stats = tester.get_stats()
                tester_stats.error = errors.get(tester.name)
                stats[tester.name] = tester_stats

        return stats, cancelled
