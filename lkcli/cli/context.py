"""
Per-invocation state handed to every command handler.

Handlers never reach for globals: the config store, the resolver and the
terminal UI all hang off the CommandContext, so tests can swap any of
them.
"""

import argparse
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from lkcli import __version__
from lkcli.core.errors import CLIError, OperationCancelled
from lkcli.core.models import Project, ProjectContext
from lkcli.core.resolver import ProjectResolver, ResolveOptions
from lkcli.core.store import ConfigStore

from .output import TerminalUI

logger = structlog.get_logger()


class StepStatus(str, Enum):
    OK = "ok"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class StepResult:
    """Outcome of one step of a command flow."""

    status: StepStatus = StepStatus.OK
    error: CLIError | None = None

    @classmethod
    def ok(cls) -> "StepResult":
        return cls()

    @classmethod
    def cancelled(cls) -> "StepResult":
        return cls(StepStatus.CANCELLED)

    @classmethod
    def failed(cls, error: CLIError) -> "StepResult":
        return cls(StepStatus.ERROR, error)


Step = Callable[[dict[str, Any]], StepResult | Awaitable[StepResult]]


async def run_steps(steps: list[Step], state: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Run Resolve -> Prompt -> Confirm -> Execute -> Render style steps in
    order over a shared state dict, stopping at the first non-ok result.
    """
    state = {} if state is None else state
    for step in steps:
        result = step(state)
        if inspect.isawaitable(result):
            result = await result
        if result.status is StepStatus.CANCELLED:
            logger.debug("command_step_cancelled", step=getattr(step, "__name__", repr(step)))
            raise OperationCancelled()
        if result.status is StepStatus.ERROR:
            raise result.error
    return state


@dataclass
class CommandContext:
    args: argparse.Namespace
    ui: TerminalUI
    store: ConfigStore
    working_dir: Path = field(default_factory=Path.cwd)
    _project: ProjectContext | None = None

    @property
    def verbose(self) -> bool:
        return bool(getattr(self.args, "verbose", False))

    @property
    def on_curl(self) -> Callable[[str], None] | None:
        if getattr(self.args, "curl", False):
            return self.ui.log_line
        return None

    def client_kwargs(self) -> dict[str, Any]:
        return {"on_curl": self.on_curl, "extra_headers": {"User-Agent": f"livekit-cli-py/{__version__}"}}

    def resolver(self) -> ProjectResolver:
        interactive = self.ui.interactive
        return ProjectResolver(
            self.store,
            notify=self.ui.notice,
            confirm=(lambda msg: self.ui.confirm(msg, default=True)) if interactive else None,
            select=self._select_project if interactive else None,
        )

    def _select_project(self, projects: list[Project]) -> Project:
        name = self.ui.select("Select a project", [p.name for p in projects])
        return next(p for p in projects if p.name == name)

    def project(self, *, require_url: bool = True, confirm_default: bool = False, silent: bool = False) -> ProjectContext:
        """The effective project for this invocation, resolved once."""
        if self._project is None:
            a = self.args
            opts = ResolveOptions(
                project=getattr(a, "project", "") or "",
                subdomain=getattr(a, "subdomain", "") or "",
                url=getattr(a, "url", "") or "",
                api_key=getattr(a, "api_key", "") or "",
                api_secret=getattr(a, "api_secret", "") or "",
                dev=bool(getattr(a, "dev", False)),
                verbose=self.verbose,
                silent=silent,
                require_url=require_url,
                confirm_default=confirm_default,
                working_dir=str(self.working_dir),
            )
            self._project = self.resolver().resolve(opts)
        return self._project
