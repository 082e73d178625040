"""Agent source analysis, packaging and deployment."""

from .client import AgentClient, agents_base_url
from .detect import ProjectType, detect_project_type, require_project_type
from .docker import create_dockerfile, has_dockerfile
from .logs import LogRenderer, stream_until_closed
from .orchestrator import AgentOrchestrator, DeployState, SecretOptions
from .sdk_version import CheckStatus, check_sdk_version, is_version_satisfied, normalize_version
from .secrets import collect_secrets
from .tarball import build_tarball, upload_tarball

__all__ = [
    # Source analysis
    "ProjectType",
    "detect_project_type",
    "require_project_type",
    "CheckStatus",
    "check_sdk_version",
    "is_version_satisfied",
    "normalize_version",
    # Packaging
    "create_dockerfile",
    "has_dockerfile",
    "build_tarball",
    "upload_tarball",
    # Service
    "AgentClient",
    "agents_base_url",
    "LogRenderer",
    "stream_until_closed",
    # Orchestration
    "AgentOrchestrator",
    "DeployState",
    "SecretOptions",
    "collect_secrets",
]
