"""
Tests for log frame rendering.
"""

import base64
import json
from unittest.mock import patch

import pytest

from lkcli.agents.logs import LogRenderer, StreamFailed, stream_until_closed


async def _lines(items):
    for item in items:
        yield item


class TestLogRenderer:
    def test_plain_text(self):
        assert LogRenderer().feed("hello\n") == ["hello"]

    def test_blank_lines_dropped(self):
        assert LogRenderer().feed("   \n") == []

    def test_error_frame(self):
        with pytest.raises(StreamFailed, match="pip failed"):
            LogRenderer().feed("BUILD ERROR: pip failed")

    def test_malformed_json_skipped(self):
        renderer = LogRenderer()
        with patch("lkcli.agents.logs.logger") as logger:
            assert renderer.feed("{not json") == []
        assert renderer.skipped == 1
        logger.debug.assert_called_once_with("log_frame_skipped", frame="{not json")

    def test_object_frame_without_progress(self):
        assert LogRenderer().feed(json.dumps({"status": "queued"})) == []

    def test_build_progress_frame(self):
        renderer = LogRenderer()
        frame = {
            "vertexes": [{"digest": "d1", "name": "[1/2] RUN pip install", "started": "t"}],
            "logs": [{"data": base64.b64encode(b"Collecting x\n\nDone\n").decode()}],
        }
        assert renderer.feed(json.dumps(frame)) == ["=> [1/2] RUN pip install", "Collecting x", "Done"]
        # started is announced once
        assert renderer.feed(json.dumps({"vertexes": frame["vertexes"]})) == []

    def test_done_marker(self):
        renderer = LogRenderer()
        renderer.feed("Build complete")
        assert renderer.done


class TestStreamUntilClosed:
    @pytest.mark.asyncio
    async def test_stops_after_done(self):
        out = []
        renderer = await stream_until_closed(_lines(["a", "build complete", "after"]), out.append)
        assert out == ["a", "build complete"]
        assert renderer.done

    @pytest.mark.asyncio
    async def test_error_propagates(self):
        out = []
        with pytest.raises(StreamFailed):
            await stream_until_closed(_lines(["a", "ERROR: crashed"]), out.append)
        assert out == ["a"]
