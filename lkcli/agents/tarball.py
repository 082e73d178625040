"""
Build-context packaging and presigned upload.

The working directory is archived as a gzipped tar in memory. Files
matched by the default exclusions, the caller's exclusions, .gitignore or
.dockerignore are left out; the Dockerfile and .dockerignore always go in
and livekit.toml never does.
"""

import io
import os
import tarfile
from pathlib import Path

import httpx
import pathspec
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from lkcli.core.config import get_settings
from lkcli.core.errors import InputError, ProtocolError, TransportError
from lkcli.core.project_file import PROJECT_FILE_NAME

from .detect import ProjectType
from .docker import DOCKERFILE, DOCKERIGNORE, dockerignore_template

logger = structlog.get_logger()

DEFAULT_EXCLUDES = [
    ".git",
    "node_modules",
    ".env",
    ".env.*",
    "__pycache__",
    ".venv",
    PROJECT_FILE_NAME,
]
ALWAYS_INCLUDE = {DOCKERFILE, DOCKERIGNORE}
IGNORE_FILES = (".gitignore", DOCKERIGNORE)

UPLOAD_OK = {200, 201, 204}


def _read_ignore_file(path: Path) -> list[str]:
    try:
        return path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        logger.debug("ignore_file_unreadable", path=str(path), error=str(e))
        return []


def build_exclude_spec(
    root: Path,
    project_type: ProjectType,
    exclude: list[str] | None = None,
) -> pathspec.GitIgnoreSpec:
    """Gitignore-style matcher over every exclusion source."""
    lines = list(DEFAULT_EXCLUDES) + list(exclude or [])
    for name in IGNORE_FILES:
        path = root / name
        if path.is_file():
            lines += _read_ignore_file(path)
    if not (root / DOCKERIGNORE).is_file() and project_type is not ProjectType.UNKNOWN:
        lines += dockerignore_template(project_type).splitlines()
    return pathspec.GitIgnoreSpec.from_lines(lines)


def _walk_error(e: OSError):
    raise e


def collect_files(root: Path, spec: pathspec.GitIgnoreSpec) -> list[tuple[Path, str]]:
    """(path, archive name) for every file that goes into the archive."""
    files: list[tuple[Path, str]] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=_walk_error):
        rel_dir = Path(dirpath).relative_to(root)
        # Prune ignored directories before descending
        dirnames[:] = sorted(
            d for d in dirnames if not spec.match_file((rel_dir / d).as_posix() + "/")
        )
        for name in sorted(filenames):
            path = Path(dirpath) / name
            arcname = (rel_dir / name).as_posix()
            if arcname == PROJECT_FILE_NAME:
                continue
            if arcname not in ALWAYS_INCLUDE and spec.match_file(arcname):
                continue
            # Symlinks resolve to their target; sockets, fifos and broken links are skipped
            if not path.is_file():
                continue
            files.append((path, arcname))
    return files


def build_tarball(
    directory: Path | str,
    project_type: ProjectType,
    exclude: list[str] | None = None,
) -> bytes:
    root = Path(directory)
    if not root.is_dir():
        raise InputError(f"directory {root} does not exist")

    spec = build_exclude_spec(root, project_type, exclude)
    buffer = io.BytesIO()
    try:
        files = collect_files(root, spec)
        with tarfile.open(fileobj=buffer, mode="w:gz", dereference=True) as tar:
            for path, arcname in files:
                tar.add(str(path), arcname=arcname, recursive=False)
    except OSError as e:
        raise InputError(f"failed to archive {root}: {e}") from e

    data = buffer.getvalue()
    logger.debug("tarball_built", files=len(files), bytes=len(data))
    return data


async def _send_once(
    client: httpx.AsyncClient,
    data: bytes,
    presigned_url: str | None,
    presigned_post: dict | None,
) -> None:
    if presigned_post:
        fields = dict(presigned_post.get("values") or {})
        filename = fields.get("key", "upload.tar.gz")
        response = await client.post(
            presigned_post["url"],
            data=fields,
            files={"file": (filename, data, "application/gzip")},
        )
    else:
        response = await client.put(
            presigned_url,
            content=data,
            headers={"Content-Type": "application/gzip"},
        )
    if response.status_code not in UPLOAD_OK:
        raise ProtocolError(
            f"failed to upload tarball: {response.status_code}: {response.text}",
            status=response.status_code,
        )


async def upload_tarball(
    data: bytes,
    *,
    presigned_url: str | None = None,
    presigned_post: dict | None = None,
    client: httpx.AsyncClient | None = None,
    attempts: int | None = None,
    wait=None,
) -> None:
    """
    Upload an archive to a presigned PUT url or presigned POST form.

    Transport failures are retried with exponential backoff; an HTTP error
    status is final.
    """
    if not presigned_url and not presigned_post:
        raise ProtocolError("no upload url returned by server")

    settings = get_settings()
    attempts = attempts or settings.upload_attempts
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=None)
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait or wait_exponential(multiplier=0.5, max=8),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning("tarball_upload_retry", attempt=attempt.retry_state.attempt_number)
                await _send_once(client, data, presigned_url, presigned_post)
    except httpx.TransportError as e:
        raise TransportError(f"failed to upload tarball: {type(e).__name__}: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    logger.info("tarball_uploaded", bytes=len(data))


async def package_and_upload(
    directory: Path | str,
    project_type: ProjectType,
    *,
    presigned_url: str | None = None,
    presigned_post: dict | None = None,
    exclude: list[str] | None = None,
    client: httpx.AsyncClient | None = None,
) -> int:
    """Archive the directory and upload it; returns the archive size."""
    data = build_tarball(directory, project_type, exclude)
    await upload_tarball(data, presigned_url=presigned_url, presigned_post=presigned_post, client=client)
    return len(data)
