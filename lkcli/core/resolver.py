"""
Project Resolver: unify flags, environment, livekit.toml and the default
project into one effective project context.

Priority (first hit wins):
1. --project NAME
2. --subdomain SUB
3. --url/--api-key/--api-secret (flags or LIVEKIT_* env)
4. --dev
5. livekit.toml in the working directory
6. default project in the config store
"""

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import structlog

from .config import ProjectEnv, get_project_env
from .errors import InputError, MissingCredentialsError, NotFoundError
from .models import Project, ProjectContext, ProjectSource
from .project_file import load_project_file
from .store import ConfigStore
from .strings import mask_secret

logger = structlog.get_logger()

DEV_API_KEY = "devkey"
DEV_API_SECRET = "secret"
DEV_URL = "http://localhost:7880"


@dataclass
class ResolveOptions:
    """Project-selection flags of a single invocation."""

    project: str = ""
    subdomain: str = ""
    url: str = ""
    api_key: str = ""
    api_secret: str = ""
    dev: bool = False
    verbose: bool = False
    silent: bool = False
    require_url: bool = True
    confirm_default: bool = False  # ask before using the default when several exist
    working_dir: str = "."


class ProjectResolver:
    """Resolves the effective project for a command."""

    def __init__(
        self,
        store: ConfigStore,
        *,
        env: ProjectEnv | None = None,
        notify: Callable[[str], None] | None = None,
        confirm: Callable[[str], bool] | None = None,
        select: Callable[[list[Project]], Project] | None = None,
    ):
        self.store = store
        self.env = env if env is not None else get_project_env()
        self.notify = notify or (lambda _msg: None)
        # Interactive hooks; None in non-interactive sessions
        self.confirm = confirm
        self.select = select

    def _log_details(self, opts: ResolveOptions, ctx: ProjectContext) -> None:
        if opts.verbose:
            self.notify(f"URL: {ctx.url}, api-key: {ctx.api_key}, api-secret: {mask_secret(ctx.api_secret)}")

    def resolve(self, opts: ResolveOptions) -> ProjectContext:
        if opts.project:
            if opts.dev:
                raise InputError("both project and dev flags are set")
            project = self.store.get(opts.project)
            ctx = ProjectContext.from_project(project, ProjectSource.PROJECT_FLAG)
            self.notify(f"Using project [{project.name}]")
            self._log_details(opts, ctx)
            return ctx

        if opts.subdomain:
            if opts.dev:
                raise InputError("both subdomain and dev flags are set")
            project = self.store.lookup_by_subdomain(opts.subdomain)
            if project is None:
                raise NotFoundError(f"project with subdomain {opts.subdomain} not found")
            ctx = ProjectContext.from_project(project, ProjectSource.SUBDOMAIN_FLAG)
            self.notify(f"Using project [{project.name}]")
            self._log_details(opts, ctx)
            return ctx

        url = opts.url or self.env.url
        api_key = opts.api_key or self.env.api_key
        api_secret = opts.api_secret or self.env.api_secret
        if opts.dev and (opts.api_key or opts.api_secret):
            which = "api-key" if opts.api_key else "api-secret"
            raise InputError(f"both {which} and dev flags are set")

        if not opts.dev and api_key and api_secret and (url or not opts.require_url):
            ctx = ProjectContext(url=url, api_key=api_key, api_secret=api_secret, source=ProjectSource.EXPLICIT)
            from_env = []
            if url and not opts.url and self.env.url == url:
                from_env.append("url")
            if not opts.api_key and self.env.api_key == api_key:
                from_env.append("api-key")
            if not opts.api_secret and self.env.api_secret == api_secret:
                from_env.append("api-secret")
            if from_env:
                self.notify(f"Using {', '.join(from_env)} from environment")
                self._log_details(opts, ctx)
            return ctx

        if opts.dev:
            self.notify("Using dev credentials")
            return ProjectContext(
                name="dev",
                url=opts.url or DEV_URL,
                api_key=DEV_API_KEY,
                api_secret=DEV_API_SECRET,
                source=ProjectSource.DEV,
            )

        project_file = load_project_file(Path(opts.working_dir))
        if project_file is not None and project_file.project.subdomain:
            project = self.store.lookup_by_subdomain(project_file.project.subdomain)
            if project is None:
                raise NotFoundError(
                    f"project with subdomain {project_file.project.subdomain} from livekit.toml not found; "
                    "run `lk cloud auth` or `lk project add`"
                )
            ctx = ProjectContext.from_project(project, ProjectSource.PROJECT_FILE)
            if not opts.silent:
                self.notify(f"Using project [{project.name}] from livekit.toml")
            return ctx

        default = self.store.default
        if default is not None:
            return self._use_default(opts, default)

        if self.select is not None and self.store.projects:
            chosen = self.select(self.store.projects)
            self.notify(f"Using project [{chosen.name}]")
            return ProjectContext.from_project(chosen, ProjectSource.PROMPT)

        missing = []
        if opts.require_url and not url:
            missing.append("url")
        if not api_key:
            missing.append("api-key")
        if not api_secret:
            missing.append("api-secret")
        logger.debug("project_resolution_failed", missing=missing)
        raise MissingCredentialsError(missing or ["project"])

    def _use_default(self, opts: ResolveOptions, default: Project) -> ProjectContext:
        if (
            opts.confirm_default
            and not opts.silent
            and len(self.store.projects) > 1
            and self.confirm is not None
            and self.select is not None
        ):
            if not self.confirm(f"Use project [{default.name}] ({default.url})?"):
                chosen = self.select(self.store.projects)
                self.notify(f"Using project [{chosen.name}]")
                return ProjectContext.from_project(chosen, ProjectSource.PROMPT)
            return ProjectContext.from_project(default, ProjectSource.DEFAULT)

        ctx = ProjectContext.from_project(default, ProjectSource.DEFAULT)
        if not opts.silent:
            self.notify(f"Using default project [{default.name}]")
            self._log_details(opts, ctx)
        return ctx
