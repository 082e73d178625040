"""
Dockerfile generation for agent projects.

Each project type has a Dockerfile and .dockerignore template. The
generated image runs as an unprivileged user, installs build tooling for
native wheels/addons, installs dependencies, pre-fetches model files with
the `download-files` subcommand and starts the agent with `start`.
"""

import json
from collections.abc import Callable
from pathlib import Path

import pathspec
import structlog

from lkcli.core.errors import ConflictError, InputError, ProtocolError

from .detect import ProjectType

logger = structlog.get_logger()

DOCKERFILE = "Dockerfile"
DOCKERIGNORE = ".dockerignore"
HEALTH_PORT = 8081

ENTRYPOINT_KEYS = {"python": "python_entrypoint", "node": "node_entrypoint"}

_PYTHON_PIP_DOCKERFILE = """\
# syntax=docker/dockerfile:1
ARG PYTHON_VERSION=3.11
FROM python:${PYTHON_VERSION}-slim

ENV PYTHONUNBUFFERED=1

# Create a non-privileged user that the app will run under
ARG UID=10001
RUN adduser \\
    --disabled-password \\
    --gecos "" \\
    --home "/home/appuser" \\
    --shell "/sbin/nologin" \\
    --uid "${UID}" \\
    appuser

# Build tools for packages with native extensions
RUN apt-get update && apt-get install -y --no-install-recommends \\
    gcc \\
    g++ \\
    python3-dev \\
    build-essential \\
    && rm -rf /var/lib/apt/lists/*

USER appuser
RUN mkdir -p /home/appuser/.cache
WORKDIR /home/appuser

COPY --chown=appuser:appuser . .
RUN if [ -f requirements.txt ]; then \\
        python -m pip install --user --no-cache-dir -r requirements.txt; \\
    else \\
        python -m pip install --user --no-cache-dir .; \\
    fi

ARG PROGRAM_MAIN="agent.py"
ENV PROGRAM_MAIN=${PROGRAM_MAIN}

# Pre-download models used by the agent
RUN python "$PROGRAM_MAIN" download-files

EXPOSE 8081

CMD ["python", "agent.py", "start"]
"""

_PYTHON_UV_DOCKERFILE = """\
# syntax=docker/dockerfile:1
FROM ghcr.io/astral-sh/uv:python3.11-bookworm-slim

ENV PYTHONUNBUFFERED=1

ARG UID=10001
RUN adduser \\
    --disabled-password \\
    --gecos "" \\
    --home "/home/appuser" \\
    --shell "/sbin/nologin" \\
    --uid "${UID}" \\
    appuser

RUN apt-get update && apt-get install -y --no-install-recommends \\
    gcc \\
    g++ \\
    python3-dev \\
    build-essential \\
    && rm -rf /var/lib/apt/lists/*

USER appuser
RUN mkdir -p /home/appuser/.cache
WORKDIR /home/appuser

COPY --chown=appuser:appuser pyproject.toml uv.lock ./
RUN uv sync --locked --no-install-project

COPY --chown=appuser:appuser . .
RUN uv sync --locked

ARG PROGRAM_MAIN="agent.py"
ENV PROGRAM_MAIN=${PROGRAM_MAIN}

RUN uv run "$PROGRAM_MAIN" download-files

EXPOSE 8081

CMD ["uv", "run", "agent.py", "start"]
"""

_NODE_DOCKERFILE = """\
# syntax=docker/dockerfile:1
ARG NODE_VERSION=22
FROM node:${NODE_VERSION}-slim

RUN apt-get update && apt-get install -y --no-install-recommends \\
    ca-certificates \\
    build-essential \\
    python3 \\
    && rm -rf /var/lib/apt/lists/*

USER node
WORKDIR /home/node/app

COPY --chown=node:node package*.json ./
RUN npm ci --no-audit --no-fund

COPY --chown=node:node . .
RUN npm run build --if-present

ARG PROGRAM_MAIN="agent.js"
ENV PROGRAM_MAIN=${PROGRAM_MAIN}

RUN node "$PROGRAM_MAIN" download-files

EXPOSE 8081

CMD ["node", "agent.js", "start"]
"""

_PYTHON_DOCKERIGNORE = """\
# Python
__pycache__/
*.py[cod]
*.egg-info/
.venv/
venv/
.pytest_cache/
.mypy_cache/

# Environment
.env
.env.*

# VCS and editors
.git/
.idea/
.vscode/
*.swp

# LiveKit
livekit.toml
"""

_NODE_DOCKERIGNORE = """\
node_modules/
dist/
npm-debug.log*
yarn-error.log*

.env
.env.*

.git/
.idea/
.vscode/

livekit.toml
"""

TEMPLATES = {
    ProjectType.PYTHON_PIP: (_PYTHON_PIP_DOCKERFILE, _PYTHON_DOCKERIGNORE),
    ProjectType.PYTHON_UV: (_PYTHON_UV_DOCKERFILE, _PYTHON_DOCKERIGNORE),
    ProjectType.NODE: (_NODE_DOCKERFILE, _NODE_DOCKERIGNORE),
}


def has_dockerfile(directory: Path | str) -> bool:
    return (Path(directory) / DOCKERFILE).is_file()


def dockerignore_template(project_type: ProjectType) -> str:
    if project_type not in TEMPLATES:
        raise InputError(f"no Dockerfile template for project type {project_type.value}")
    return TEMPLATES[project_type][1]


def validate_settings(settings: dict[str, str], keys: list[str]) -> None:
    for key in keys:
        if not settings.get(key):
            raise ProtocolError(f"client setting {key} is required, please try again later")


def entrypoint_key(project_type: ProjectType) -> str:
    return ENTRYPOINT_KEYS["python" if project_type.is_python else "node"]


def find_source_files(directory: Path | str, project_type: ProjectType, dockerignore: str) -> list[str]:
    """Source files that could serve as an entrypoint, relative and sorted."""
    root = Path(directory)
    spec = pathspec.GitIgnoreSpec.from_lines(dockerignore.splitlines())
    found = []
    for path in root.rglob(f"*{project_type.file_ext}"):
        if not path.is_file():
            continue
        rel = path.relative_to(root).as_posix()
        if spec.match_file(rel):
            continue
        found.append(rel)
    return sorted(found)


def choose_entrypoint(
    directory: Path | str,
    project_type: ProjectType,
    settings: dict[str, str],
    select: Callable[[str, list[str]], str] | None = None,
) -> str:
    """
    Pick the file the image should run.

    The server lists preferred entrypoint names; the first that exists
    wins. Otherwise the user chooses among the project's source files.
    """
    key = entrypoint_key(project_type)
    validate_settings(settings, [key])
    candidates = [c.strip() for c in settings[key].split(",") if c.strip()]

    root = Path(directory)
    for candidate in candidates:
        if (root / candidate).is_file():
            return candidate

    files = find_source_files(root, project_type, dockerignore_template(project_type))
    if not files:
        raise InputError(
            f"no {project_type.language} entrypoint found, expected one of: {', '.join(candidates)}"
        )
    if len(files) == 1:
        return files[0]
    if select is None:
        raise InputError(f"multiple {project_type.language} files found, please create a Dockerfile")
    return select(f"Select {project_type.language} file to use as entrypoint", files)


def render_dockerfile(template: str, entrypoint: str, project_type: ProjectType) -> str:
    """Point the template's PROGRAM_MAIN argument and CMD at the entrypoint."""
    out = []
    for line in template.splitlines():
        stripped = line.strip()
        if stripped.startswith("ARG PROGRAM_MAIN"):
            line = f'ARG PROGRAM_MAIN="{entrypoint}"'
        elif stripped.startswith("CMD [") or stripped.startswith("ENTRYPOINT ["):
            instruction, _, body = stripped.partition(" ")
            args = json.loads(body)
            for i, arg in enumerate(args):
                if arg.endswith(project_type.file_ext):
                    args[i] = entrypoint
                    break
            line = f"{instruction} {json.dumps(args)}"
        out.append(line)
    return "\n".join(out) + "\n"


def create_dockerfile(
    directory: Path | str,
    project_type: ProjectType,
    settings: dict[str, str],
    *,
    overwrite: bool = False,
    select: Callable[[str, list[str]], str] | None = None,
) -> Path:
    """Write Dockerfile (and .dockerignore when absent) for the project."""
    if not settings:
        raise ProtocolError("unable to fetch client settings from server, please try again later")
    if project_type not in TEMPLATES:
        raise InputError("unable to determine project type, please create a Dockerfile in the current directory")

    root = Path(directory)
    target = root / DOCKERFILE
    if target.exists() and not overwrite:
        raise ConflictError("Dockerfile already exists")

    template, ignore = TEMPLATES[project_type]
    entrypoint = choose_entrypoint(root, project_type, settings, select)
    target.write_text(render_dockerfile(template, entrypoint, project_type), encoding="utf-8")

    ignore_path = root / DOCKERIGNORE
    if not ignore_path.exists():
        ignore_path.write_text(ignore, encoding="utf-8")

    logger.info("dockerfile_created", project_type=project_type.value, entrypoint=entrypoint)
    return target
