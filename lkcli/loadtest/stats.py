"""
Per-track counters and report aggregation.

A TrackStats instance is written only by the receive loop of the tester
that owns it. Aggregation copies the counters once into a TrackSnapshot,
so a report is consistent per tester but not across testers.

Decoded frames are counted as they arrive. Packets, bytes, loss and late
packets come from the receiver's RTP statistics, which the media layer
reports as deltas between two readings.
"""

import time
from dataclasses import dataclass, field


@dataclass
class ReceiverReport:
    """RTP receiver counters; cumulative from the SDK, or a delta between two readings."""

    packets: int = 0
    bytes: int = 0
    lost: int = 0
    discarded: int = 0

    def since(self, earlier: "ReceiverReport") -> "ReceiverReport":
        return ReceiverReport(
            packets=self.packets - earlier.packets,
            bytes=self.bytes - earlier.bytes,
            lost=self.lost - earlier.lost,
            discarded=self.discarded - earlier.discarded,
        )


@dataclass
class TrackSnapshot:
    track_id: str
    kind: str
    packets: int = 0
    bytes: int = 0
    dropped: int = 0
    out_of_order: int = 0
    frames: int = 0
    latency_total: float = 0.0
    latency_count: int = 0
    elapsed: float = 0.0


@dataclass
class TrackStats:
    """Counters for one received track."""

    track_id: str
    kind: str
    started_at: float | None = None
    frames: int = 0
    packets: int = 0
    bytes: int = 0
    dropped: int = 0
    out_of_order: int = 0
    latency_total: float = 0.0
    latency_count: int = 0

    def start(self, now: float | None = None) -> None:
        if self.started_at is None:
            self.started_at = time.monotonic() if now is None else now

    def record_frame(self) -> None:
        self.frames += 1

    def record_receiver(self, report: ReceiverReport) -> None:
        """
        Fold in receiver counters accumulated since the previous report.

        Lost packets count as dropped; packets the jitter buffer discarded
        for arriving late count as out-of-order. The SDK may revise its lost
        count downwards when a late packet is recovered, so `lost` can be
        negative.
        """
        self.packets += report.packets
        self.bytes += report.bytes
        self.dropped += report.lost
        self.out_of_order += report.discarded

    def record_latency(self, latency: float) -> None:
        self.latency_total += latency
        self.latency_count += 1

    def snapshot(self, now: float | None = None) -> TrackSnapshot:
        now = time.monotonic() if now is None else now
        elapsed = now - self.started_at if self.started_at is not None else 0.0
        return TrackSnapshot(
            track_id=self.track_id,
            kind=self.kind,
            packets=self.packets,
            bytes=self.bytes,
            dropped=self.dropped,
            out_of_order=self.out_of_order,
            frames=self.frames,
            latency_total=self.latency_total,
            latency_count=self.latency_count,
            elapsed=elapsed,
        )


@dataclass
class TesterStats:
    name: str
    expected_tracks: int = 0
    tracks: dict[str, TrackSnapshot] = field(default_factory=dict)
    error: str | None = None


@dataclass
class Summary:
    tracks: int = 0
    expected: int = 0
    packets: int = 0
    bytes: int = 0
    dropped: int = 0
    out_of_order: int = 0
    latency_total: float = 0.0
    latency_count: int = 0
    elapsed: float = 0.0
    error: str = "-"
    error_count: int = 0

    @property
    def avg_latency(self) -> float | None:
        if not self.latency_count:
            return None
        return self.latency_total / self.latency_count


def summarize_tester(stats: TesterStats) -> Summary:
    s = Summary(expected=stats.expected_tracks)
    for track in stats.tracks.values():
        s.tracks += 1
        s.packets += track.packets
        s.bytes += track.bytes
        s.dropped += track.dropped
        s.out_of_order += track.out_of_order
        s.latency_total += track.latency_total
        s.latency_count += track.latency_count
        s.elapsed = max(s.elapsed, track.elapsed)
    if stats.error:
        s.error = stats.error
        s.error_count = 1
    return s


def summarize_run(summaries: list[Summary]) -> Summary:
    """Totals across testers; elapsed is the longest tester's."""
    total = Summary(error="")
    for s in summaries:
        total.tracks += s.tracks
        total.expected += s.expected
        total.packets += s.packets
        total.bytes += s.bytes
        total.dropped += s.dropped
        total.out_of_order += s.out_of_order
        total.latency_total += s.latency_total
        total.latency_count += s.latency_count
        total.elapsed = max(total.elapsed, s.elapsed)
        total.error_count += s.error_count
    total.error = str(total.error_count)
    return total


def format_percentage(num: int, total: int) -> str:
    if total == 0:
        return "0"
    return f"{num / total * 100:.3f}".rstrip("0").rstrip(".")


def format_loss_rate(packets: int, dropped: int) -> str:
    if packets <= 0:
        return " - "
    return f"{dropped} ({format_percentage(dropped, packets + dropped)}%)"


def format_bitrate(num_bytes: int, elapsed: float) -> str:
    if elapsed <= 0:
        return "0bps"
    bps = num_bytes * 8 / elapsed
    if bps < 1000:
        return f"{int(bps)}bps"
    if bps < 1_000_000:
        return f"{bps / 1000:.1f}kbps"
    return f"{bps / 1_000_000:.1f}mbps"


def format_latency(summary: Summary) -> str:
    avg = summary.avg_latency
    if avg is None:
        return "-"
    return f"{avg * 1000:.1f}ms"
