"""
Application templates.

Templates are listed in a YAML index, cloned with git and turned into a
working app by instantiating `.env.local` from the template's
`.env.example`. Install and dev steps are delegated to the `task` runner
through the template's taskfile.
"""

import shutil
import subprocess
from collections.abc import Callable
from enum import Enum
from pathlib import Path

import httpx
import structlog
import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError

from lkcli.core.config import get_settings
from lkcli.core.errors import ConfigError, ConflictError, InputError, NotFoundError, ProtocolError, TransportError
from lkcli.core.models import ProjectContext

logger = structlog.get_logger()

TASK_FILE = "taskfile.yaml"
TEMPLATE_INDEX_URL = "https://raw.githubusercontent.com/livekit-examples/index/main/templates.yaml"
TEMPLATE_BASE_URL = "https://github.com/livekit-examples"
ENV_EXAMPLE = ".env.example"
ENV_LOCAL = ".env.local"

TEMPLATE_IGNORE_FILES = [
    ".git",
    ".task",
    "renovate.json",
    TASK_FILE,
    "TEMPLATE.md",
    "LICENSE",
    "LICENSE.md",
    "NOTICE",
]


class KnownTask(str, Enum):
    POST_CREATE = "post_create"
    INSTALL = "install"
    DEV = "dev"


class Template(BaseModel):
    name: str
    desc: str = ""
    url: str = ""
    docs: str = ""
    image: str = ""
    tags: list[str] = Field(default_factory=list)
    attrs: dict[str, str] = Field(default_factory=dict)
    requires: list[str] = Field(default_factory=list)
    is_sandbox: bool = False
    is_hidden: bool = False


def parse_template_index(text: str) -> list[Template]:
    try:
        data = yaml.safe_load(text) or []
        return [Template.model_validate(item) for item in data]
    except (yaml.YAMLError, ValidationError, TypeError) as e:
        raise ProtocolError(f"unable to read template index: {e}") from e


async def fetch_templates(client: httpx.AsyncClient | None = None, url: str = TEMPLATE_INDEX_URL) -> list[Template]:
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=get_settings().http_timeout)
    try:
        response = await client.get(url)
    except httpx.RequestError as e:
        raise TransportError(f"unable to fetch templates: {type(e).__name__}: {e}") from e
    finally:
        if owns_client:
            await client.aclose()
    if response.status_code != 200:
        raise ProtocolError(f"unable to fetch templates: {response.status_code}", status=response.status_code)
    templates = parse_template_index(response.text)
    logger.debug("templates_fetched", count=len(templates))
    return templates


def find_template(templates: list[Template], name: str) -> Template:
    for template in templates:
        if template.name == name:
            return template
    raise NotFoundError(f"template not found: {name}")


def template_url(template: Template) -> str:
    return template.url or f"{TEMPLATE_BASE_URL}/{template.name}"


def clone_template(url: str, directory: Path | str) -> None:
    directory = Path(directory)
    if directory.exists():
        raise ConflictError(f"directory {directory} already exists")
    if shutil.which("git") is None:
        raise InputError("git is required to create an app, please install it")
    logger.info("cloning_template", url=url, directory=str(directory))
    result = subprocess.run(
        ["git", "clone", "--depth=1", url, str(directory)],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise TransportError(f"unable to clone template: {result.stderr.strip() or result.returncode}")


def cleanup_template(directory: Path | str) -> None:
    """Remove files that only make sense in the template repository."""
    directory = Path(directory)
    for name in TEMPLATE_IGNORE_FILES:
        path = directory / name
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()


def project_substitutions(project: ProjectContext) -> dict[str, str]:
    return {
        "LIVEKIT_URL": project.url,
        "LIVEKIT_API_KEY": project.api_key,
        "LIVEKIT_API_SECRET": project.api_secret,
        "NEXT_PUBLIC_LIVEKIT_URL": project.url,
    }


def instantiate_env(
    directory: Path | str,
    substitutions: dict[str, str],
    prompt: Callable[[str, str], str],
    example: str = ENV_EXAMPLE,
) -> dict[str, str]:
    """
    Values for the app's environment.

    Keys of the example file are filled from `substitutions` or, failing
    that, by asking through `prompt(key, example_value)`. Without an
    example file the substitutions are used as is.
    """
    path = Path(directory) / example
    if not path.exists():
        return dict(substitutions)
    if path.is_dir():
        raise ConfigError(f"{example} file is a directory")

    env: dict[str, str] = {}
    for key, old in dotenv_values(path).items():
        if key in substitutions:
            env[key] = substitutions[key]
        else:
            env[key] = prompt(key, old or "")
    return env


def _quote(value: str) -> str:
    if value.isdigit():
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def render_env(env: dict[str, str]) -> str:
    return "\n".join(f"{key}={_quote(value)}" for key, value in sorted(env.items()))


def write_env(directory: Path | str, env: dict[str, str], name: str = ENV_LOCAL) -> Path:
    path = Path(directory) / name
    path.write_text(render_env(env) + "\n", encoding="utf-8")
    path.chmod(0o600)
    logger.info("env_written", path=str(path), keys=len(env))
    return path


def load_taskfile(directory: Path | str) -> dict | None:
    path = Path(directory) / TASK_FILE
    if not path.exists():
        return None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"unable to parse {TASK_FILE}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"unable to parse {TASK_FILE}: expected a mapping")
    return data


def has_task(taskfile: dict | None, name: str) -> bool:
    return taskfile is not None and name in (taskfile.get("tasks") or {})


def env_file_names(taskfile: dict | None) -> tuple[str, str]:
    """(example, output) env file names, overridable through the taskfile's env_example and env_file vars."""
    variables = (taskfile or {}).get("vars") or {}
    example = variables.get("env_example")
    output = variables.get("env_file")
    return (
        example if isinstance(example, str) and example else ENV_EXAMPLE,
        output if isinstance(output, str) and output else ENV_LOCAL,
    )


def run_task(directory: Path | str, name: str, *, verbose: bool = False) -> None:
    """Run one task of the app's taskfile with the `task` runner."""
    taskfile = load_taskfile(directory)
    if taskfile is None:
        raise NotFoundError(f"no {TASK_FILE} found in {directory}")
    if not has_task(taskfile, name):
        raise NotFoundError(f'task "{name}" not found')
    runner = shutil.which("task")
    if runner is None:
        raise InputError("the task runner is required to run app tasks, see https://taskfile.dev/installation")

    args = [runner, name] if verbose else [runner, "--silent", name]
    logger.info("running_task", task=name, directory=str(directory))
    result = subprocess.run(args, cwd=str(directory), check=False)
    if result.returncode != 0:
        raise ProtocolError(f'task "{name}" failed with exit code {result.returncode}')
