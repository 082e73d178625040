"""
Per-directory project file (livekit.toml).

Nested form:

    [project]
    subdomain = "myproj-ab12"

    [agent]
    id = "CA_xxx"
    name = "my-agent"
    cpu = "1"
    replicas = 1
    max_replicas = 10
    regions = ["us-east"]

The legacy flat form (project_subdomain, name, cpu, ... at top level) is
read and upgraded in memory; saving always writes the nested form.
"""

import tomllib
from pathlib import Path
from typing import Any

import structlog
import tomli_w
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError, InvalidReplicaCountError

logger = structlog.get_logger()

PROJECT_FILE_NAME = "livekit.toml"

DEFAULT_CPU = "1"
DEFAULT_REPLICAS = 1
DEFAULT_MAX_REPLICAS = 10

_LEGACY_KEYS = {"project_subdomain", "name", "cpu", "replicas", "max_replicas", "regions"}


def _format_cpu(value: Any) -> str:
    if isinstance(value, bool):
        raise ValueError("cpu must be a number or string")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return f"{value:g}"
    if isinstance(value, str):
        return value
    raise ValueError("cpu must be a number or string")


class ProjectSection(BaseModel):
    subdomain: str = ""


class AgentSection(BaseModel):
    id: str = ""
    name: str = ""
    cpu: str = DEFAULT_CPU
    replicas: int = DEFAULT_REPLICAS
    max_replicas: int = DEFAULT_MAX_REPLICAS
    regions: list[str] = Field(default_factory=list)

    @field_validator("cpu", mode="before")
    @classmethod
    def _normalize_cpu(cls, v: Any) -> str:
        return _format_cpu(v)


class ProjectFile(BaseModel):
    """In-memory livekit.toml."""

    project: ProjectSection = Field(default_factory=ProjectSection)
    agent: AgentSection | None = None

    def validate_replicas(self) -> None:
        if self.agent is not None and self.agent.replicas > self.agent.max_replicas:
            raise InvalidReplicaCountError()

    def to_toml(self) -> dict:
        data: dict[str, Any] = {"project": self.project.model_dump()}
        if self.agent is not None:
            agent = self.agent.model_dump()
            if not agent["regions"]:
                del agent["regions"]
            data["agent"] = agent
        return data

    @classmethod
    def new_agent_file(cls, subdomain: str, name: str = "") -> "ProjectFile":
        return cls(project=ProjectSection(subdomain=subdomain), agent=AgentSection(name=name))


def _upgrade_legacy(raw: dict) -> dict:
    """Turn the flat single-table form into the nested form."""
    upgraded: dict[str, Any] = {"project": {"subdomain": raw.get("project_subdomain", "")}}
    agent = {k: raw[k] for k in ("name", "cpu", "replicas", "max_replicas", "regions") if k in raw}
    if agent:
        upgraded["agent"] = agent
    return upgraded


def parse_project_file(raw: dict) -> ProjectFile:
    if "project" not in raw and "agent" not in raw and _LEGACY_KEYS & raw.keys():
        logger.debug("project_file_legacy_upgrade")
        raw = _upgrade_legacy(raw)
    try:
        parsed = ProjectFile.model_validate(raw)
    except ValidationError as e:
        err = e.errors()[0]
        where = ".".join(str(p) for p in err["loc"])
        raise ConfigError(f"invalid {PROJECT_FILE_NAME}: {where}: {err['msg']}") from e
    parsed.validate_replicas()
    return parsed


def project_file_path(directory: Path | str = ".") -> Path:
    return Path(directory) / PROJECT_FILE_NAME


def project_file_exists(directory: Path | str = ".") -> bool:
    return project_file_path(directory).is_file()


def load_project_file(directory: Path | str = ".") -> ProjectFile | None:
    """Load livekit.toml from a directory; None when absent."""
    path = project_file_path(directory)
    if not path.is_file():
        return None
    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"could not parse {PROJECT_FILE_NAME}: {e}") from e
    return parse_project_file(raw)


def save_project_file(project_file: ProjectFile, directory: Path | str = ".") -> Path:
    project_file.validate_replicas()
    path = project_file_path(directory)
    with open(path, "wb") as f:
        tomli_w.dump(project_file.to_toml(), f)
    logger.debug("project_file_saved", path=str(path))
    return path
