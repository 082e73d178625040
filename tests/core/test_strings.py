"""
Tests for the string helpers: durations, project names and secret masking.
"""

import pytest

from lkcli.core.strings import (
    extract_subdomain,
    format_duration,
    mask_secret,
    parse_duration,
    url_safe_name,
    wrap_to_lines,
)


class TestParseDuration:
    """Go style durations are read into seconds."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("5m", 300.0),
            ("1h10m", 4200.0),
            ("1.5s", 1.5),
            ("250ms", 0.25),
            ("30", 30.0),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "abc", "5x", "m5", "5m garbage"])
    def test_invalid_raises(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestFormatDuration:
    def test_hours_minutes_seconds(self):
        assert format_duration(3725) == "1h2m5s"

    def test_minutes_keep_zero_seconds(self):
        assert format_duration(90) == "1m30s"

    def test_sub_second_in_millis(self):
        assert format_duration(0.25) == "250ms"


class TestProjectNames:
    """Names derived from project urls."""

    def test_extract_subdomain(self):
        assert extract_subdomain("wss://myproj-ab12.livekit.cloud") == "myproj-ab12"

    def test_url_safe_name_drops_last_suffix(self):
        assert url_safe_name("wss://my-proj-ab12.livekit.cloud") == "my-proj"

    def test_url_safe_name_without_dash(self):
        assert url_safe_name("https://myproj.livekit.cloud") == "myproj"

    def test_url_safe_name_rejects_garbage(self):
        with pytest.raises(ValueError):
            url_safe_name("not a url")


class TestMisc:
    def test_mask_secret(self):
        assert mask_secret("abcdefgh") == "ab****gh"
        assert mask_secret("abc") == "***"

    def test_wrap_to_lines(self):
        assert wrap_to_lines("one two three four", 9) == ["one two", "three", "four"]
