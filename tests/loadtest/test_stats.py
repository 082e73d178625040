"""
Tests for per-track counters and the report formatting helpers.
"""

from lkcli.loadtest.stats import (
    ReceiverReport,
    Summary,
    TesterStats,
    TrackSnapshot,
    TrackStats,
    format_bitrate,
    format_latency,
    format_loss_rate,
    format_percentage,
    summarize_run,
    summarize_tester,
)


class TestReceiverReport:
    def test_since(self):
        later = ReceiverReport(packets=30, bytes=900, lost=4, discarded=2)
        earlier = ReceiverReport(packets=10, bytes=300, lost=1, discarded=2)
        assert later.since(earlier) == ReceiverReport(packets=20, bytes=600, lost=3, discarded=0)

    def test_recovered_loss_is_negative(self):
        later = ReceiverReport(packets=12, lost=2)
        assert later.since(ReceiverReport(packets=10, lost=3)).lost == -1


class TestTrackStats:
    def test_frames_counted(self):
        s = TrackStats("TR_1", "video")
        for _ in range(3):
            s.record_frame()
        assert s.frames == 3
        assert s.packets == 0

    def test_receiver_reports_accumulate(self):
        s = TrackStats("TR_1", "audio")
        s.record_receiver(ReceiverReport(packets=50, bytes=5000, lost=3, discarded=1))
        s.record_receiver(ReceiverReport(packets=50, bytes=5000, lost=-1, discarded=0))
        assert (s.packets, s.bytes, s.dropped, s.out_of_order) == (100, 10000, 2, 1)

    def test_latency_and_snapshot(self):
        s = TrackStats("TR_1", "audio")
        s.start(now=10.0)
        s.start(now=11.0)
        s.record_frame()
        s.record_latency(0.02)
        snap = s.snapshot(now=12.5)
        assert snap.elapsed == 2.5
        assert snap.frames == 1
        assert (snap.latency_total, snap.latency_count) == (0.02, 1)


class TestSummaries:
    def test_summarize_tester(self):
        stats = TesterStats(
            name="Sub 0",
            expected_tracks=2,
            tracks={
                "a": TrackSnapshot("a", "audio", packets=10, bytes=100, dropped=1, elapsed=2.0),
                "b": TrackSnapshot("b", "video", packets=20, bytes=400, elapsed=3.0),
            },
            error="boom",
        )
        s = summarize_tester(stats)
        assert (s.tracks, s.expected, s.packets, s.bytes, s.dropped) == (2, 2, 30, 500, 1)
        assert s.elapsed == 3.0
        assert (s.error, s.error_count) == ("boom", 1)

    def test_summarize_run(self):
        total = summarize_run([Summary(tracks=1, packets=5, elapsed=1.0, error_count=1), Summary(tracks=2, elapsed=4.0)])
        assert (total.tracks, total.packets, total.elapsed) == (3, 5, 4.0)
        assert total.error == "1"


class TestFormatting:
    def test_percentage(self):
        assert format_percentage(1, 2) == "50"
        assert format_percentage(1, 3) == "33.333"
        assert format_percentage(0, 0) == "0"

    def test_loss_rate(self):
        assert format_loss_rate(0, 5) == " - "
        assert format_loss_rate(98, 2) == "2 (2%)"

    def test_bitrate(self):
        assert format_bitrate(100, 1.0) == "800bps"
        assert format_bitrate(125, 1.0) == "1.0kbps"
        assert format_bitrate(250_000, 1.0) == "2.0mbps"
        assert format_bitrate(100, 0) == "0bps"

    def test_latency(self):
        assert format_latency(Summary()) == "-"
        assert format_latency(Summary(latency_total=0.05, latency_count=2)) == "25.0ms"
