"""
Placeholder expansion for generated names and identities.

Supported placeholders:
- %t compact UTC timestamp, %T RFC 3339 timestamp
- %Y %m %d %H %M %S date and time parts
- %x and {.} random hex
- %U current user, %h hostname, %p process id
"""

import os
import secrets
import socket
from datetime import datetime, timezone


def _random_hex(n: int = 6) -> str:
    return secrets.token_hex(n)


def _hostname() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


def expand_template(template: str) -> str:
    if "%" not in template and "{." not in template:
        return template

    now = datetime.now(timezone.utc)
    replacements = {
        "%t": now.strftime("%Y%m%d%H%M%S"),
        "%T": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "%Y": now.strftime("%Y"),
        "%m": now.strftime("%m"),
        "%d": now.strftime("%d"),
        "%H": now.strftime("%H"),
        "%M": now.strftime("%M"),
        "%S": now.strftime("%S"),
        "%U": os.environ.get("USER", ""),
        "%h": _hostname(),
        "%p": str(os.getpid()),
    }

    out = []
    i = 0
    while i < len(template):
        pair = template[i:i + 2]
        if pair == "%x":
            out.append(_random_hex())
            i += 2
        elif pair in replacements:
            out.append(replacements[pair])
            i += 2
        elif template.startswith("{.}", i):
            out.append(_random_hex())
            i += 3
        else:
            out.append(template[i])
            i += 1
    return "".join(out)
