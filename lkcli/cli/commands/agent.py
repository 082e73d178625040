"""
agent {create,config,deploy,update,rollback,status,logs,delete,versions,list,secrets,update-secrets}
and agent private-link {create,list,delete,health-status}.
"""

import structlog

from lkcli.agents.client import AgentClient
from lkcli.agents.orchestrator import AgentOrchestrator, SecretOptions
from lkcli.services.gather import gather_settled

from ..args import add_command, add_group, add_json_flag
from ..context import CommandContext

logger = structlog.get_logger()

STATUS_HEADERS = ["Region", "Status", "CPU", "Mem", "Replicas (cur/min/max)", "Deployed At"]
PRIVATE_LINK_HEADERS = ["ID", "Name", "Region", "Port", "Endpoint", "Health", "Updated At"]
GATEWAY_DNS = "{name}-{project_id}.plg.svc"


def _client(ctx: CommandContext) -> AgentClient:
    return AgentClient(ctx.project(), **ctx.client_kwargs())


def _orchestrator(ctx: CommandContext, client: AgentClient) -> AgentOrchestrator:
    return AgentOrchestrator(
        client,
        ctx.project(),
        ctx.ui,
        ctx.working_dir,
        silent=getattr(ctx.args, "silent", False),
    )


def _secret_options(args) -> SecretOptions:
    return SecretOptions(pairs=list(args.secrets or []), secrets_file=args.secrets_file or None)


async def _with_orchestrator(ctx: CommandContext, fn):
    client = _client(ctx)
    try:
        return await fn(_orchestrator(ctx, client))
    finally:
        await client.close()


async def create_agent(ctx: CommandContext) -> None:
    await _with_orchestrator(ctx, lambda o: o.create(ctx.args.name, _secret_options(ctx.args)))


async def deploy_agent(ctx: CommandContext) -> None:
    await _with_orchestrator(ctx, lambda o: o.deploy(_secret_options(ctx.args)))


async def update_agent(ctx: CommandContext) -> None:
    await _with_orchestrator(ctx, lambda o: o.update(_secret_options(ctx.args)))


async def rollback_agent(ctx: CommandContext) -> None:
    await _with_orchestrator(ctx, lambda o: o.rollback(ctx.args.version, ctx.args.name))


async def delete_agent(ctx: CommandContext) -> None:
    await _with_orchestrator(ctx, lambda o: o.delete(ctx.args.name))


async def agent_logs(ctx: CommandContext) -> None:
    await _with_orchestrator(ctx, lambda o: o.logs(ctx.args.name, ctx.args.log_type))


async def write_agent_config(ctx: CommandContext) -> None:
    path = await _with_orchestrator(ctx, lambda o: o.write_config(ctx.args.name))
    ctx.ui.message(f"Created config file [{path.name}]")


async def agent_status(ctx: CommandContext) -> None:
    client = _client(ctx)
    try:
        orchestrator = _orchestrator(ctx, client)
        if ctx.args.json:
            name = orchestrator.resolve_agent_name(ctx.args.name)
            ctx.ui.print_json(await client.list_agents(name))
            return
        rows = await orchestrator.status(ctx.args.name)
    finally:
        await client.close()
    ctx.ui.print_table(STATUS_HEADERS, rows)


async def agent_versions(ctx: CommandContext) -> None:
    rows = await _with_orchestrator(ctx, lambda o: o.versions(ctx.args.name))
    ctx.ui.print_table(["Version", "Current", "Created At"], rows)


async def list_agents(ctx: CommandContext) -> None:
    client = _client(ctx)
    try:
        if ctx.args.json:
            ctx.ui.print_json(await client.list_agents())
            return
        rows = await _orchestrator(ctx, client).list_agents(ctx.args.id)
    finally:
        await client.close()
    if not rows:
        ctx.ui.message("No agents found")
        return
    ctx.ui.print_table(["ID", "Name", "Regions"], rows)


async def agent_secrets(ctx: CommandContext) -> None:
    rows = await _with_orchestrator(ctx, lambda o: o.secrets(ctx.args.name))
    ctx.ui.print_table(["Name", "Created At", "Updated At"], rows)


async def update_agent_secrets(ctx: CommandContext) -> None:
    await _with_orchestrator(
        ctx, lambda o: o.update_secrets(_secret_options(ctx.args), ctx.args.name, overwrite=ctx.args.overwrite)
    )


# Private links


def private_link_rows(links: list[dict], health: dict[str, dict | None], errors: dict[str, Exception]) -> list[list[str]]:
    """Table rows; a failed health lookup shows ERROR and its message."""
    rows = []
    for link in links:
        link_id = link.get("private_link_id", "")
        if link_id in errors:
            status, updated = "ERROR", str(errors[link_id])
        else:
            h = health.get(link_id) or {}
            status = h.get("status") or "UNKNOWN"
            updated = h.get("updated_at") or "-"
        rows.append(
            [
                link_id,
                link.get("name", ""),
                link.get("region", ""),
                str(link.get("port", "")),
                (link.get("aws") or {}).get("endpoint", ""),
                status,
                updated,
            ]
        )
    return rows


async def create_private_link(ctx: CommandContext) -> None:
    a = ctx.args
    project = ctx.project()
    async with _client(ctx) as client:
        resp = await client.create_private_link(a.name, a.region, a.port, a.endpoint)
    link = resp.get("private_link") or resp
    if ctx.args.json:
        ctx.ui.print_json(resp)
        return
    ctx.ui.message(f"Created private link [{link.get('private_link_id', '')}]")
    ctx.ui.message(f"Gateway DNS: {GATEWAY_DNS.format(name=a.name, project_id=project.project_id)}")


async def list_private_links(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        links = await client.list_private_links()
        ids = [link.get("private_link_id", "") for link in links]
        health, errors = await gather_settled(ids, client.get_private_link_health_status)
    for link_id, error in errors.items():
        logger.warning("private_link_health_failed", link=link_id, error=str(error))
    if ctx.args.json:
        ctx.ui.print_json({"items": links, "health": health, "errors": {k: str(v) for k, v in errors.items()}})
        return
    if not links:
        ctx.ui.message("No private links found")
        return
    ctx.ui.print_table(PRIVATE_LINK_HEADERS, private_link_rows(links, health, errors))


async def delete_private_link(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        await client.destroy_private_link(ctx.args.id)
    ctx.ui.message(f"Deleted private link [{ctx.args.id}]")


async def private_link_health(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        health = await client.get_private_link_health_status(ctx.args.id)
    if ctx.args.json:
        ctx.ui.print_json(health or {})
        return
    health = health or {}
    ctx.ui.print_table(
        ["ID", "Health", "Updated At"],
        [[ctx.args.id, health.get("status") or "UNKNOWN", health.get("updated_at") or "-"]],
    )


def _secret_flags(parser) -> None:
    parser.add_argument("--secrets", action="append", default=[], metavar="KEY=VALUE", help="secret to set, repeatable")
    parser.add_argument("--secrets-file", default="", help="dotenv file holding secrets")


def _name_flag(parser) -> None:
    parser.add_argument("name", nargs="?", default="", help="agent name (defaults to the one in livekit.toml)")


def register(subparsers) -> None:
    group = add_group(subparsers, "agent", "Manage LiveKit Cloud agents")

    p = add_command(group, "create", create_agent, "Create a new agent from the working directory")
    _name_flag(p)
    _secret_flags(p)
    p.add_argument("--silent", action="store_true", help="do not prompt")

    p = add_command(group, "config", write_agent_config, "Write livekit.toml for an existing agent")
    _name_flag(p)

    p = add_command(group, "deploy", deploy_agent, "Build and deploy a new version of the agent")
    _secret_flags(p)
    p.add_argument("--silent", action="store_true", help="do not prompt")

    p = add_command(group, "update", update_agent, "Update agent settings without a new build")
    _secret_flags(p)

    p = add_command(group, "rollback", rollback_agent, "Roll back to a previous version")
    _name_flag(p)
    p.add_argument("--version", required=True, help='version to roll back to, or "latest" for the previous one')

    p = add_command(group, "status", agent_status, "Show the status of the agent's deployments")
    _name_flag(p)
    add_json_flag(p)

    p = add_command(group, "logs", agent_logs, "Tail the agent's logs", aliases=["tail"])
    _name_flag(p)
    p.add_argument("--log-type", default="deploy", choices=["deploy", "build"], help="which logs to show")

    p = add_command(group, "delete", delete_agent, "Delete the agent", aliases=["destroy"])
    _name_flag(p)
    p.add_argument("--yes", "-y", action="store_true", help="do not ask for confirmation")

    p = add_command(group, "versions", agent_versions, "List versions of the agent")
    _name_flag(p)

    p = add_command(group, "list", list_agents, "List agents in the project")
    p.add_argument("--id", action="append", default=[], help="only these agent ids, repeatable")
    add_json_flag(p)

    p = add_command(group, "secrets", agent_secrets, "List the names of the agent's secrets")
    _name_flag(p)

    p = add_command(group, "update-secrets", update_agent_secrets, "Set secrets of the agent")
    _name_flag(p)
    _secret_flags(p)
    p.add_argument("--overwrite", action="store_true", help="replace all existing secrets")

    links = add_group(group, "private-link", "Manage private network links of the project's agents")
    p = add_command(links, "create", create_private_link, "Create a private link")
    p.add_argument("--name", required=True)
    p.add_argument("--region", required=True)
    p.add_argument("--port", type=int, required=True, help="destination port")
    p.add_argument("--endpoint", required=True, help="VPC endpoint service name")
    add_json_flag(p)

    p = add_command(links, "list", list_private_links, "List private links with their health")
    add_json_flag(p)

    p = add_command(links, "delete", delete_private_link, "Delete a private link")
    p.add_argument("id")

    p = add_command(links, "health-status", private_link_health, "Show the health of a private link")
    p.add_argument("id")
    add_json_flag(p)
