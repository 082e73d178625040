"""
Core data models for projects and CLI configuration.
"""

import re
from enum import Enum

from pydantic import BaseModel, Field, field_validator

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")
URL_PATTERN = re.compile(r"^(http|https|ws|wss)://[^\s/$.?#].[^\s]*$")
MIN_CREDENTIAL_LENGTH = 3


class Project(BaseModel):
    """A named set of credentials bound to a server URL."""

    name: str
    url: str
    api_key: str
    api_secret: str
    project_id: str = ""

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        if not v or not NAME_PATTERN.match(v):
            raise ValueError("name must consist of letters, digits, '-' or '_'")
        return v

    @field_validator("url")
    @classmethod
    def _check_url(cls, v: str) -> str:
        if not URL_PATTERN.match(v):
            raise ValueError("url must begin with http, https, ws or wss")
        return v

    @field_validator("api_key", "api_secret")
    @classmethod
    def _check_credential(cls, v: str) -> str:
        if len(v) < MIN_CREDENTIAL_LENGTH:
            raise ValueError(f"must be at least {MIN_CREDENTIAL_LENGTH} characters")
        return v


class CLIConfig(BaseModel):
    """Persisted CLI state: ordered projects plus the default pointer."""

    default_project: str = ""
    projects: list[Project] = Field(default_factory=list)


class ProjectSource(str, Enum):
    """Where the resolver found the effective project."""

    PROJECT_FLAG = "project_flag"
    SUBDOMAIN_FLAG = "subdomain_flag"
    EXPLICIT = "explicit"  # --url/--api-key/--api-secret or LIVEKIT_* env
    DEV = "dev"
    PROJECT_FILE = "project_file"  # livekit.toml
    DEFAULT = "default"
    PROMPT = "prompt"


class ProjectContext(BaseModel):
    """The effective project a command runs against."""

    name: str = ""
    url: str = ""
    api_key: str = ""
    api_secret: str = ""
    project_id: str = ""
    source: ProjectSource = ProjectSource.EXPLICIT

    @classmethod
    def from_project(cls, project: Project, source: ProjectSource) -> "ProjectContext":
        return cls(
            name=project.name,
            url=project.url,
            api_key=project.api_key,
            api_secret=project.api_secret,
            project_id=project.project_id,
            source=source,
        )

    @property
    def http_url(self) -> str:
        """Server URL with ws(s) rewritten to http(s)."""
        if self.url.startswith("ws"):
            return "http" + self.url[2:]
        return self.url
