"""
project {add,list,remove,set-default} and cloud auth.
"""

import socket
import webbrowser

import structlog

from lkcli.core.auth import AuthBroker, ClaimedKey
from lkcli.core.config import get_settings
from lkcli.core.errors import InputError, NotFoundError
from lkcli.core.models import Project
from lkcli.core.store import make_project
from lkcli.core.strings import url_safe_name

from ..args import add_command, add_group, add_json_flag, duration
from ..context import CommandContext
from ..output import resolve_value

logger = structlog.get_logger()


def _prompt(ui, label: str, password: bool = False):
    if not ui.interactive:
        return None
    return lambda: ui.ask(label, password=password)


async def add_project(ctx: CommandContext) -> None:
    a = ctx.args
    ui = ctx.ui
    url = resolve_value(a.url, None, _prompt(ui, "URL"), name="url")
    api_key = resolve_value(a.api_key, None, _prompt(ui, "API Key"), name="api-key")
    api_secret = resolve_value(a.api_secret, None, _prompt(ui, "API Secret", password=True), name="api-secret")
    name = resolve_value(a.name, None, _prompt(ui, "Project name"), name="name")

    project = make_project(name, url, api_key, api_secret)
    ctx.store.add(project, make_default=a.default)
    ctx.store.save()
    ui.message(f"Saved project {project.name}")
    if ctx.store.default_name == project.name:
        ui.message(f"Project {project.name} is now the default")


async def list_projects(ctx: CommandContext) -> None:
    store = ctx.store
    if not store.projects:
        ctx.ui.message("No projects configured, use `lk project add` to add a new project.")
        return
    if ctx.args.json:
        ctx.ui.print_json(
            [{**p.model_dump(exclude={"api_secret"}), "default": p.name == store.default_name} for p in store.projects]
        )
        return
    rows = [
        [("* " if p.name == store.default_name else "  ") + p.name, p.url, p.api_key]
        for p in store.projects
    ]
    ctx.ui.print_table(["Name", "URL", "API Key"], rows)


async def remove_project(ctx: CommandContext) -> None:
    name = ctx.args.name
    if not ctx.store.remove(name):
        logger.debug("project_remove_missing", project=name)
    ctx.store.save()
    ctx.ui.message(f"Removed project {name}")


async def set_default_project(ctx: CommandContext) -> None:
    ctx.store.set_default(ctx.args.name)
    ctx.store.save()
    ctx.ui.message(f"Default project set to [{ctx.args.name}]")


def _claimed_project(ctx: CommandContext, key: ClaimedKey) -> Project:
    """Project for freshly claimed credentials, re-using the name of an older key for the same url."""
    store = ctx.store
    for existing in store.projects:
        if existing.url == key.url:
            store.remove(existing.name)
            return make_project(existing.name, key.url, key.key, key.secret, key.project_id)

    try:
        name = url_safe_name(key.url)
    except ValueError as e:
        raise InputError(f"invalid project url: {key.url}") from e
    if store.lookup(name) is not None:
        if not ctx.ui.interactive:
            raise InputError(f"project {name} already exists")
        name = ctx.ui.ask(f"Project {name} already exists, enter another name")
    return make_project(name, key.url, key.key, key.secret, key.project_id)


async def cloud_auth(ctx: CommandContext) -> None:
    a = ctx.args
    settings = get_settings()
    broker = AuthBroker()
    try:
        if a.revoke:
            await _revoke(ctx, broker)
            return

        device_name = socket.gethostname()
        with ctx.ui.spinner("Requesting verification token..."):
            await broker.request_verification_token(device_name)
        url = broker.confirm_url()
        ctx.ui.message(f"Please confirm access by visiting:\n\n   {url}\n")
        if ctx.ui.interactive:
            # best effort, the link above is enough
            webbrowser.open(url)

        with ctx.ui.spinner("Awaiting confirmation..."):
            key = await broker.poll_for_key(
                interval=a.poll_interval or settings.auth_poll_interval,
                timeout=a.timeout or settings.auth_timeout,
            )
        logger.info("cli_key_claimed", project_id=key.project_id)

        project = _claimed_project(ctx, key)
        make_default = not ctx.store.projects or ctx.store.default is None
        if not make_default and ctx.ui.interactive:
            make_default = ctx.ui.confirm(f"Make {project.name} the default project?", default=False)
        ctx.store.add(project, make_default=make_default)
        ctx.store.save()
        ctx.ui.message(f"Device paired with project [{project.name}]")
    finally:
        await broker.close()


async def _revoke(ctx: CommandContext, broker: AuthBroker) -> None:
    pctx = ctx.project(require_url=False)
    project = ctx.store.lookup(pctx.name) if pctx.name else None
    if project is None:
        raise NotFoundError("revoke needs a configured project, pass --project")
    if not ctx.ui.confirm(f"Revoke CLI credentials for project [{project.name}]?", default=False):
        return
    await broker.revoke(project)
    ctx.store.remove(project.name)
    ctx.store.save()
    ctx.ui.message(f"Revoked access to project [{project.name}]")


def _auth_flags(parser) -> None:
    parser.add_argument("--timeout", "-t", type=duration, default=0.0, help="how long to wait for confirmation")
    parser.add_argument("--poll-interval", "-i", type=duration, default=0.0, help="how often to poll for the claim")
    parser.add_argument("--revoke", "-R", action="store_true", help="revoke the credentials of the current project")


def register(subparsers) -> None:
    group = add_group(subparsers, "project", "Add or remove projects and set the default")

    p = add_command(group, "add", add_project, "Add a new project")
    p.add_argument("name", nargs="?", default="", help="project name")
    p.add_argument("--default", action="store_true", help="set this project as default")

    p = add_command(group, "list", list_projects, "List all configured projects")
    add_json_flag(p)

    p = add_command(group, "remove", remove_project, "Remove an existing project from config")
    p.add_argument("name")

    p = add_command(group, "set-default", set_default_project, "Set a project as default to use with other commands")
    p.add_argument("name")

    cloud = add_group(subparsers, "cloud", "Interact with LiveKit Cloud")
    _auth_flags(add_command(cloud, "auth", cloud_auth, "Authenticate the CLI with LiveKit Cloud"))

    _auth_flags(add_command(subparsers, "auth", cloud_auth, "Authenticate the CLI (deprecated, use `cloud auth`)"))
