"""
Config Store: durable storage of projects and the default pointer.

The store is a single TOML file under the user's config directory:

    default_project = "myproj"

    [[projects]]
    name = "myproj"
    url = "wss://myproj-ab12.livekit.cloud"
    api_key = "APIxxx"
    api_secret = "..."
    project_id = "p_xxx"

The file is rewritten only when the in-memory state differs from what was
last read or written.
"""

import os
import stat
import tomllib
from pathlib import Path

import structlog
import tomli_w
from pydantic import ValidationError

from .config import get_settings
from .errors import ConfigError, DuplicateNameError, InputError, NotFoundError
from .models import CLIConfig, Project
from .strings import extract_subdomain

logger = structlog.get_logger()

DIR_MODE = 0o700
FILE_MODE = 0o600


def make_project(
    name: str,
    url: str,
    api_key: str,
    api_secret: str,
    project_id: str = "",
) -> Project:
    """Build a validated Project, reporting the first bad field as an InputError."""
    try:
        return Project(
            name=name,
            url=url,
            api_key=api_key,
            api_secret=api_secret,
            project_id=project_id,
        )
    except ValidationError as e:
        err = e.errors()[0]
        field = str(err["loc"][0]) if err.get("loc") else "project"
        raise InputError(f"invalid {field.replace('_', '-')}: {err['msg'].removeprefix('Value error, ')}") from e


class ConfigStore:
    """Multi-project CLI configuration backed by a TOML file."""

    def __init__(self, path: Path, config: CLIConfig | None = None, persisted: dict | None = None):
        self.path = path
        self.config = config or CLIConfig()
        # Snapshot of the on-disk state; None until the file exists
        self._persisted = persisted

    @classmethod
    def load(cls, path: Path | str | None = None) -> "ConfigStore":
        """Load the store, returning an empty one if the file is absent."""
        path = Path(path) if path else get_settings().config_path
        if not path.exists():
            return cls(path)

        mode = path.stat().st_mode
        if mode & (stat.S_IRWXG | stat.S_IRWXO):
            logger.warning(
                "config_file_permissions_too_open",
                path=str(path),
                mode=oct(stat.S_IMODE(mode)),
            )

        try:
            with open(path, "rb") as f:
                raw = tomllib.load(f)
            config = CLIConfig.model_validate(raw)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"could not parse config file {path}: {e}") from e
        except ValidationError as e:
            raise ConfigError(f"invalid config file {path}: {e.errors()[0]['msg']}") from e

        return cls(path, config, config.model_dump())

    @property
    def has_persisted(self) -> bool:
        return self._persisted is not None

    @property
    def projects(self) -> list[Project]:
        return list(self.config.projects)

    @property
    def default_name(self) -> str:
        return self.config.default_project

    @property
    def default(self) -> Project | None:
        if not self.config.default_project:
            return None
        return self.lookup(self.config.default_project)

    def lookup(self, name: str) -> Project | None:
        for p in self.config.projects:
            if p.name == name:
                return p
        return None

    def get(self, name: str) -> Project:
        project = self.lookup(name)
        if project is None:
            raise NotFoundError("project not found")
        return project

    def lookup_by_subdomain(self, subdomain: str) -> Project | None:
        for p in self.config.projects:
            if extract_subdomain(p.url) == subdomain:
                return p
        return None

    def add(self, project: Project, make_default: bool = False) -> None:
        """Add a project; the first project added becomes the default."""
        if self.lookup(project.name) is not None:
            raise DuplicateNameError(f"project {project.name} already exists")
        self.config.projects.append(project)
        if make_default or len(self.config.projects) == 1:
            self.config.default_project = project.name

    def remove(self, name: str) -> bool:
        """Remove a project by name. Returns False when nothing matched."""
        before = len(self.config.projects)
        self.config.projects = [p for p in self.config.projects if p.name != name]
        if self.config.default_project == name:
            self.config.default_project = ""
        return len(self.config.projects) != before

    def set_default(self, name: str) -> None:
        if self.lookup(name) is None:
            raise NotFoundError("project not found")
        self.config.default_project = name

    def is_dirty(self) -> bool:
        current = self.config.model_dump()
        if self._persisted is None:
            return bool(self.config.projects) or bool(self.config.default_project)
        return current != self._persisted

    def save(self) -> bool:
        """Write the store if it changed. Returns True when the file was written."""
        if not self.is_dirty():
            return False

        data = self.config.model_dump()
        self.path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
        with os.fdopen(fd, "wb") as f:
            tomli_w.dump(data, f)
        os.chmod(tmp, FILE_MODE)
        os.replace(tmp, self.path)

        self._persisted = data
        logger.debug("config_saved", path=str(self.path), projects=len(self.config.projects))
        return True
