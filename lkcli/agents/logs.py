"""
Log stream rendering.

The agents service sends build and runtime logs as newline-delimited
frames. Plain text is shown dimmed; JSON frames carry build progress
(vertexes and their log chunks). `ERROR:` and `BUILD ERROR:` end the
stream with a failure; a `build complete` frame ends it successfully.
Malformed frames are skipped.
"""

import base64
import binascii
import json
from collections.abc import AsyncIterator, Callable

import structlog

from lkcli.core.errors import ProtocolError

logger = structlog.get_logger()

ERROR_PREFIXES = ("BUILD ERROR:", "ERROR:")
DONE_MARKERS = ("build complete",)


class StreamFailed(ProtocolError):
    """Raised when the stream reports a terminal error frame."""


def _decode_chunk(data: str) -> str:
    try:
        return base64.b64decode(data).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return data


def render_status_frame(frame: dict, seen: set[str]) -> list[str]:
    """Lines for one build-progress frame; each vertex is announced once per state."""
    out: list[str] = []
    for vertex in frame.get("vertexes") or []:
        name = vertex.get("name") or vertex.get("digest", "")
        digest = vertex.get("digest", name)
        if vertex.get("error"):
            out.append(f"ERROR {name}: {vertex['error']}")
        elif vertex.get("completed") and f"done:{digest}" not in seen:
            seen.add(f"done:{digest}")
            out.append(f"DONE {name}")
        elif vertex.get("started") and f"start:{digest}" not in seen:
            seen.add(f"start:{digest}")
            out.append(f"=> {name}")
    for entry in frame.get("logs") or []:
        text = _decode_chunk(entry.get("data", ""))
        out.extend(line for line in text.splitlines() if line.strip())
    return out


class LogRenderer:
    """
    Turns raw frames into display lines.

    feed() returns the lines to show, raises StreamFailed on an error
    frame, and sets `done` once a completion marker arrives.
    """

    def __init__(self):
        self.done = False
        self.skipped = 0
        self._seen: set[str] = set()

    def feed(self, line: str) -> list[str]:
        line = line.rstrip("\r\n")
        if not line.strip():
            return []

        for prefix in ERROR_PREFIXES:
            if line.startswith(prefix):
                raise StreamFailed(line[len(prefix):].strip())

        if line.lstrip().startswith("{"):
            try:
                frame = json.loads(line)
            except json.JSONDecodeError:
                self.skipped += 1
                logger.debug("log_frame_skipped", frame=line[:200])
                return []
            return render_status_frame(frame, self._seen)

        if line.strip().lower().startswith(DONE_MARKERS):
            self.done = True
        return [line]


async def stream_until_closed(
    lines: AsyncIterator[str],
    sink: Callable[[str], None],
) -> LogRenderer:
    """Render lines until the source closes, a completion marker or an error frame."""
    renderer = LogRenderer()
    async for raw in lines:
        for text in renderer.feed(raw):
            sink(text)
        if renderer.done:
            break
    if renderer.skipped:
        logger.info("log_frames_skipped", count=renderer.skipped)
    return renderer
