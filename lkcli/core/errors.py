"""
Error kinds surfaced by the CLI.

Every error a command reports to the user derives from CLIError. The
entrypoint prints `str(error)` on a single line and exits non-zero.
"""


class CLIError(Exception):
    """Base class for all user-facing CLI errors."""

    exit_code = 1


class InputError(CLIError):
    """Raised on a bad flag combination or a missing argument."""

    pass


class ConfigError(CLIError):
    """Raised when a config file is malformed or holds invalid values."""

    pass


class InvalidReplicaCountError(ConfigError):
    """Raised when replicas exceeds max_replicas in a project file."""

    def __init__(self, message: str = "replicas cannot be greater than max_replicas"):
        super().__init__(message)


class CredentialsError(CLIError):
    """Raised when no usable project credentials are available."""

    pass


class MissingCredentialsError(CredentialsError):
    """Raised when one or more of url/api-key/api-secret is missing."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"{missing[0]} is required" if len(missing) == 1 else
                         f"missing required project details: {', '.join(missing)}")


class TransportError(CLIError):
    """Raised on a network-level failure talking to a service."""

    pass


class ProtocolError(CLIError):
    """Raised when a service answers with an error status."""

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None):
        self.status = status
        self.code = code
        super().__init__(message)

    @property
    def msg(self) -> str:
        return str(self)


class PermissionDeniedError(ProtocolError):
    """Raised when the service rejects the caller's credentials for an action."""

    pass


class ConflictError(CLIError):
    """Raised when a resource already exists."""

    pass


class DuplicateNameError(ConflictError):
    """Raised when adding a project whose name is taken."""

    pass


class NotFoundError(CLIError):
    """Raised when a named resource does not exist."""

    pass


class OperationTimeoutError(CLIError):
    """Raised when an operation exceeds its deadline."""

    pass


class OperationCancelled(CLIError):
    """Raised when the user aborts an interactive flow or sends a signal."""

    exit_code = 130

    def __init__(self, message: str = "cancelled"):
        super().__init__(message)


class FatalError(CLIError):
    """Raised on an internal inconsistency."""

    pass
