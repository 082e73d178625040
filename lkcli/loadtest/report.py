"""
LoadTestReport: per-tester results and their rendering as rich tables.
"""

from dataclasses import dataclass, field
from typing import Any

from rich.table import Table

from .stats import (
    Summary,
    TesterStats,
    format_bitrate,
    format_latency,
    format_loss_rate,
    format_percentage,
    summarize_run,
    summarize_tester,
)


def _table(*headers: str, title: str | None = None) -> Table:
    table = Table(title=title, title_justify="left", show_lines=False)
    for header in headers:
        table.add_column(header)
    return table


@dataclass
class LoadTestReport:
    """Results of one run, keyed by tester name. Publishers are left out."""

    testers: dict[str, TesterStats] = field(default_factory=dict)
    track_names: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_stats(cls, stats: dict[str, TesterStats], track_names: dict[str, str] | None = None) -> "LoadTestReport":
        return cls(
            testers={name: s for name, s in stats.items() if not name.startswith("Pub")},
            track_names=dict(track_names or {}),
        )

    @property
    def names(self) -> list[str]:
        return sorted(self.testers)

    def summaries(self) -> dict[str, Summary]:
        return {name: summarize_tester(self.testers[name]) for name in self.names}

    def total(self) -> Summary:
        return summarize_run(list(self.summaries().values()))

    def track_table(self) -> Table | None:
        if not self.testers:
            return None
        table = _table("Tester", "Track", "Kind", "Pkts.", "Bitrate", "Pkt. Loss", title="Track loading")
        for n, name in enumerate(self.names):
            tracks = sorted(self.testers[name].tracks.values(), key=lambda t: t.kind)
            for i, track in enumerate(tracks):
                table.add_row(
                    name if i == 0 else "",
                    self.track_names.get(track.track_id, track.track_id),
                    track.kind,
                    str(track.packets),
                    format_bitrate(track.bytes, track.elapsed),
                    format_loss_rate(track.packets, track.dropped),
                )
            if n != len(self.names) - 1:
                table.add_section()
        return table

    def summary_table(self) -> Table | None:
        summaries = self.summaries()
        if not summaries:
            return None
        table = _table(
            "Tester", "Tracks", "Bitrate", "Latency", "OOO", "Total Pkt. Loss", "Error",
            title="Subscriber summaries",
        )
        for name, s in summaries.items():
            table.add_row(
                name,
                f"{s.tracks}/{s.expected}",
                format_bitrate(s.bytes, s.elapsed),
                format_latency(s),
                f"{s.out_of_order} ({format_percentage(s.out_of_order, s.packets + s.dropped)}%)",
                format_loss_rate(s.packets, s.dropped),
                s.error,
            )
        total = self.total()
        avg_bytes = total.bytes // len(summaries)
        table.add_section()
        table.add_row(
            "Total",
            f"{total.tracks}/{total.expected}",
            f"{format_bitrate(total.bytes, total.elapsed)} ({format_bitrate(avg_bytes, total.elapsed)} avg)",
            format_latency(total),
            f"{total.out_of_order} ({format_percentage(total.out_of_order, total.packets + total.dropped)}%)",
            format_loss_rate(total.packets, total.dropped),
            total.error,
            style="bold reverse",
        )
        return table

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"testers": {}}
        for name, s in self.summaries().items():
            out["testers"][name] = {
                "tracks": s.tracks,
                "expected": s.expected,
                "packets": s.packets,
                "bytes": s.bytes,
                "dropped": s.dropped,
                "out_of_order": s.out_of_order,
                "avg_latency": s.avg_latency,
                "error": None if s.error == "-" else s.error,
            }
        total = self.total()
        out["total"] = {
            "tracks": total.tracks,
            "expected": total.expected,
            "packets": total.packets,
            "dropped": total.dropped,
            "errors": total.error_count,
        }
        return out


@dataclass
class SuiteRow:
    publishers: int
    subscribers: int
    video: bool
    tracks: int = 0
    packets: int = 0
    dropped: int = 0
    errors: int = 0


def suite_table(rows: list[SuiteRow]) -> Table | None:
    rows = [r for r in rows if r.tracks > 0]
    if not rows:
        return None
    table = _table("Pubs", "Subs", "Tracks", "Audio", "Video", "Pkt. Loss", "Errors", title="Suite results")
    for r in rows:
        table.add_row(
            str(r.publishers),
            str(r.subscribers),
            str(r.tracks),
            "Yes",
            "Yes" if r.video else "No",
            format_loss_rate(r.packets, r.dropped),
            str(r.errors),
        )
    return table
