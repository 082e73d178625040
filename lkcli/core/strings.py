"""
String helpers shared by the config store, auth broker and tokens.
"""

import hashlib
import re
from urllib.parse import urlparse

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def extract_subdomain(url: str) -> str:
    """First DNS label of a project url, e.g. `myproj-ab12` for wss://myproj-ab12.livekit.cloud."""
    host = urlparse(url).hostname or ""
    return host.split(".")[0]


def url_safe_name(url: str) -> str:
    """Project name derived from its url: the first label minus its last `-suffix`."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        raise ValueError("invalid URL")
    subdomain = parsed.hostname.split(".")[0]
    head, sep, _ = subdomain.rpartition("-")
    return head if sep else subdomain


def hash_string(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


def mask_secret(secret: str) -> str:
    if len(secret) <= 4:
        return "*" * len(secret)
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]


def parse_duration(value: str) -> float:
    """
    Parse a duration such as "5m", "1h10m", "1.5s" or "250ms" into seconds.

    A bare number is read as seconds.
    """
    value = value.strip()
    if not value:
        raise ValueError("empty duration")
    try:
        return float(value)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(value):
        raise ValueError(f"invalid duration: {value}")
    return total


def format_duration(seconds: float) -> str:
    """Render seconds the way durations are accepted, e.g. 3725 -> 1h2m5s."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    whole = int(seconds)
    hours, rest = divmod(whole, 3600)
    minutes, secs = divmod(rest, 60)
    frac = seconds - whole
    out = ""
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
    out += f"{secs + frac:g}s"
    return out


def wrap_to_lines(text: str, max_len: int) -> list[str]:
    lines: list[str] = []
    current = ""
    for word in text.split():
        if current and len(current) + len(word) + 1 > max_len:
            lines.append(current)
            current = ""
        current = f"{current} {word}" if current else word
    if current:
        lines.append(current)
    return lines
