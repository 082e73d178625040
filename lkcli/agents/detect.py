"""
Detect the project type of an agent source directory.
"""

import tomllib
from enum import Enum
from pathlib import Path

import structlog

from lkcli.core.errors import InputError

logger = structlog.get_logger()

PYTHON_PIP_MARKERS = ("poetry.lock", "Pipfile", "pyproject.toml", "requirements.txt", "setup.py", "setup.cfg")
NODE_MARKERS = ("package.json", "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "bun.lockb")


class ProjectType(str, Enum):
    """Kind of agent project found in a directory."""

    PYTHON_PIP = "python.pip"
    PYTHON_UV = "python.uv"
    NODE = "node"
    UNKNOWN = "unknown"

    @property
    def is_python(self) -> bool:
        return self in (ProjectType.PYTHON_PIP, ProjectType.PYTHON_UV)

    @property
    def is_node(self) -> bool:
        return self is ProjectType.NODE

    @property
    def language(self) -> str:
        if self.is_python:
            return "Python"
        if self.is_node:
            return "Node.js"
        return ""

    @property
    def file_ext(self) -> str:
        if self.is_python:
            return ".py"
        if self.is_node:
            return ".js"
        return ""

    @property
    def default_entrypoint(self) -> str:
        if self.is_python:
            return "agent.py"
        if self.is_node:
            return "agent.js"
        return ""


def _pyproject_uses_uv(path: Path) -> bool:
    try:
        text = path.read_text(encoding="utf-8")
        doc = tomllib.loads(text)
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        logger.debug("pyproject_unreadable", path=str(path), error=str(e))
        return False
    if "dependency-groups" in doc:
        return True
    if "uv" in doc.get("tool", {}):
        return True
    return "uv sync" in text


def detect_project_type(directory: Path | str) -> ProjectType:
    """Return the project type of a directory, first match wins."""
    root = Path(directory)

    if (root / "uv.lock").is_file():
        return ProjectType.PYTHON_UV
    pyproject = root / "pyproject.toml"
    if pyproject.is_file() and _pyproject_uses_uv(pyproject):
        return ProjectType.PYTHON_UV
    if any((root / m).is_file() for m in PYTHON_PIP_MARKERS):
        return ProjectType.PYTHON_PIP
    if any((root / m).is_file() for m in NODE_MARKERS):
        return ProjectType.NODE
    return ProjectType.UNKNOWN


def require_project_type(directory: Path | str) -> ProjectType:
    project_type = detect_project_type(directory)
    if project_type is ProjectType.UNKNOWN:
        raise InputError(
            "unable to determine project type, expected package.json, requirements.txt, "
            "pyproject.toml, or lock files"
        )
    return project_type
