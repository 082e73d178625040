"""
app {list-templates,create,env,install,run}: bootstrap applications from
the template index.
"""

from pathlib import Path

from lkcli import bootstrap
from lkcli.core.errors import InputError

from ..args import add_command, add_group, add_json_flag
from ..context import CommandContext


def _env_prompt(ctx: CommandContext):
    def prompt(key: str, old: str) -> str:
        if not ctx.ui.interactive:
            return old
        return ctx.ui.ask(f"Enter {key}", default=old)

    return prompt


def _instantiate(ctx: CommandContext, directory: Path, example: str = bootstrap.ENV_EXAMPLE) -> dict[str, str]:
    project = ctx.project()
    return bootstrap.instantiate_env(directory, bootstrap.project_substitutions(project), _env_prompt(ctx), example)


async def list_templates(ctx: CommandContext) -> None:
    templates = [t for t in await bootstrap.fetch_templates() if not t.is_hidden]
    rows = [[t.name, t.desc, ", ".join(t.tags)] for t in templates]
    ctx.ui.render([t.model_dump() for t in templates], ["Template", "Description", "Tags"], rows)


async def create_app(ctx: CommandContext) -> None:
    a = ctx.args
    if a.template and a.template_url:
        raise InputError("only one of --template or --template-url can be set")

    url = a.template_url
    if not url:
        with ctx.ui.spinner("Fetching templates..."):
            templates = await bootstrap.fetch_templates()
        if a.template:
            template = bootstrap.find_template(templates, a.template)
        else:
            visible = [t for t in templates if not t.is_hidden]
            name = ctx.ui.select("Select a template", [t.name for t in visible])
            template = bootstrap.find_template(visible, name)
        url = bootstrap.template_url(template)

    name = a.name or (ctx.ui.ask("Application name") if ctx.ui.interactive else "")
    if not name:
        raise InputError("application name is required")
    directory = ctx.working_dir / name

    with ctx.ui.spinner(f"Cloning template from {url}..."):
        bootstrap.clone_template(url, directory)
    taskfile = bootstrap.load_taskfile(directory)
    example, output = bootstrap.env_file_names(taskfile)
    env = _instantiate(ctx, directory, example)
    bootstrap.write_env(directory, env, output)

    if a.install:
        with ctx.ui.spinner("Installing..."):
            bootstrap.run_task(directory, bootstrap.KnownTask.INSTALL.value, verbose=ctx.verbose)
    if bootstrap.has_task(taskfile, bootstrap.KnownTask.POST_CREATE.value):
        ctx.ui.message("Cleaning up...")
        bootstrap.run_task(directory, bootstrap.KnownTask.POST_CREATE.value, verbose=ctx.verbose)
    bootstrap.cleanup_template(directory)

    ctx.ui.message(f"Created app in [{directory}]")


async def app_env(ctx: CommandContext) -> None:
    env = _instantiate(ctx, ctx.working_dir)
    if ctx.args.write:
        path = bootstrap.write_env(ctx.working_dir, env, ctx.args.destination)
        ctx.ui.message(f"Wrote {path.name}")
        return
    if ctx.args.json:
        ctx.ui.print_json(env)
        return
    ctx.ui.log_line(bootstrap.render_env(env))


async def install_app(ctx: CommandContext) -> None:
    bootstrap.run_task(ctx.working_dir, bootstrap.KnownTask.INSTALL.value, verbose=ctx.verbose)


async def run_app_task(ctx: CommandContext) -> None:
    bootstrap.run_task(ctx.working_dir, ctx.args.task, verbose=ctx.verbose)


def register(subparsers) -> None:
    group = add_group(subparsers, "app", "Bootstrap applications from templates")

    p = add_command(group, "list-templates", list_templates, "List available app templates")
    add_json_flag(p)

    p = add_command(group, "create", create_app, "Create an app from a template")
    p.add_argument("name", nargs="?", default="", help="directory of the new app")
    p.add_argument("--template", default="", help="template name, see list-templates")
    p.add_argument("--template-url", default="", help="git url of a custom template")
    p.add_argument("--install", action="store_true", help="run the template's install task after cloning")

    p = add_command(group, "env", app_env, "Print or write the app environment for the current project")
    p.add_argument("--write", "-w", action="store_true", help="write the environment to a file")
    p.add_argument("--destination", "-d", default=bootstrap.ENV_LOCAL, help="file written by --write")
    add_json_flag(p)

    add_command(group, "install", install_app, "Install the app's dependencies")

    p = add_command(group, "run", run_app_task, "Run a task of the app's taskfile")
    p.add_argument("task", nargs="?", default=bootstrap.KnownTask.DEV.value)
