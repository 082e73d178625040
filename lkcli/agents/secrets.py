"""
Agent secrets from the command line and dotenv files.

`--secrets KEY=VALUE` pairs take precedence over values read from a
secrets file. Names starting with LIVEKIT_ are dropped: the platform
injects the project's own credentials into every agent.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from dotenv import dotenv_values

from lkcli.core.errors import InputError

logger = structlog.get_logger()

RESERVED_PREFIX = "LIVEKIT_"
CREDENTIAL_NAMES = ("LIVEKIT_URL", "LIVEKIT_API_KEY", "LIVEKIT_API_SECRET")
ENV_FILE_CANDIDATES = (".env.local", ".env")


@dataclass
class SecretsResult:
    secrets: dict[str, str] = field(default_factory=dict)
    file: Path | None = None
    ignored: list[str] = field(default_factory=list)


def parse_secret_pairs(pairs: list[str]) -> dict[str, str]:
    """Parse KEY=VALUE items; each item may itself be comma separated."""
    out: dict[str, str] = {}
    for item in pairs:
        for pair in item.split(","):
            pair = pair.strip()
            if not pair:
                continue
            name, sep, value = pair.partition("=")
            name = name.strip()
            if not sep or not name:
                raise InputError(f"invalid secret [{pair}], expected KEY=VALUE")
            out[name] = value
    return out


def read_secrets_file(path: Path | str) -> dict[str, str]:
    path = Path(path)
    if not path.is_file():
        raise InputError(f"secrets file [{path}] does not exist")
    values = dotenv_values(path)
    # `KEY` without `=` parses to None
    return {k: v for k, v in values.items() if v is not None}


def detect_env_file(directory: Path | str, explicit: str | None = None) -> Path | None:
    if explicit:
        return Path(explicit)
    for name in ENV_FILE_CANDIDATES:
        candidate = Path(directory) / name
        if candidate.is_file():
            return candidate
    return None


def collect_secrets(
    pairs: list[str] | None,
    *,
    directory: Path | str = ".",
    secrets_file: str | None = None,
    required: bool = False,
    lazy: bool = True,
    select: Callable[[str, list[str]], list[str]] | None = None,
) -> SecretsResult:
    """
    Merge CLI pairs with a secrets file.

    The file is read when one is named, when `lazy` is off, or when
    secrets are required and none came from the command line. With a
    `select` callback the user picks which file entries to keep.
    """
    result = SecretsResult(secrets=parse_secret_pairs(pairs or []))

    read_file = bool(secrets_file) or not lazy or (required and not result.secrets)
    if read_file:
        path = detect_env_file(directory, secrets_file)
        if path is not None:
            values = read_secrets_file(path)
            result.file = path
            if select is not None and values:
                keep = set(select("Select secrets to include", sorted(values)))
                values = {k: v for k, v in values.items() if k in keep}
            for name, value in values.items():
                result.secrets.setdefault(name, value)

    for name in list(result.secrets):
        if name.startswith(RESERVED_PREFIX):
            del result.secrets[name]
            result.ignored.append(name)
    if result.ignored:
        logger.debug("secrets_ignored", names=result.ignored)

    if required and not result.secrets:
        if result.ignored:
            raise InputError(
                "no valid secrets provided, LIVEKIT_ secrets are ignored and injected automatically to your agent"
            )
        raise InputError("no secrets provided")
    return result


def missing_credentials(result: SecretsResult) -> list[str]:
    """Credential names the user did not set themselves."""
    provided = set(result.ignored)
    return [n for n in CREDENTIAL_NAMES[1:] if n not in provided]
