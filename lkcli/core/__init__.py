"""Credentials, configuration and shared models."""

from .auth import AuthBroker, ClaimedKey, VerificationToken
from .config import ProjectEnv, Settings, get_project_env, get_settings
from .errors import (
    CLIError,
    ConfigError,
    ConflictError,
    CredentialsError,
    DuplicateNameError,
    FatalError,
    InputError,
    InvalidReplicaCountError,
    MissingCredentialsError,
    NotFoundError,
    OperationCancelled,
    OperationTimeoutError,
    PermissionDeniedError,
    ProtocolError,
    TransportError,
)
from .models import CLIConfig, Project, ProjectContext, ProjectSource
from .project_file import AgentSection, ProjectFile, load_project_file, save_project_file
from .resolver import ProjectResolver, ResolveOptions
from .store import ConfigStore, make_project
from .templates import expand_template
from .token import AccessToken, AgentGrant, SIPGrant, VideoGrant, decode_token

__all__ = [
    # Config
    "Settings",
    "ProjectEnv",
    "get_settings",
    "get_project_env",
    # Errors
    "CLIError",
    "InputError",
    "ConfigError",
    "InvalidReplicaCountError",
    "CredentialsError",
    "MissingCredentialsError",
    "TransportError",
    "ProtocolError",
    "PermissionDeniedError",
    "ConflictError",
    "DuplicateNameError",
    "NotFoundError",
    "OperationTimeoutError",
    "OperationCancelled",
    "FatalError",
    # Models
    "Project",
    "CLIConfig",
    "ProjectContext",
    "ProjectSource",
    # Store
    "ConfigStore",
    "make_project",
    "ProjectFile",
    "AgentSection",
    "load_project_file",
    "save_project_file",
    # Auth
    "AuthBroker",
    "VerificationToken",
    "ClaimedKey",
    "ProjectResolver",
    "ResolveOptions",
    # Tokens
    "AccessToken",
    "VideoGrant",
    "SIPGrant",
    "AgentGrant",
    "decode_token",
    "expand_template",
]
