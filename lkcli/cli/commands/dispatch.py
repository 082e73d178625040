"""
dispatch {create,list,delete}: explicit agent dispatch into a room.
"""

from lkcli.services.media import DispatchClient

from ..args import add_command, add_group, add_json_flag
from ..context import CommandContext


def _client(ctx: CommandContext) -> DispatchClient:
    return DispatchClient(ctx.project(), **ctx.client_kwargs())


async def create_dispatch(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        info = await client.create_dispatch(a.room, a.agent_name, a.metadata)
    ctx.ui.message(f"Dispatch ID: {info.get('id', '')}")


async def list_dispatch(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        items = await client.list_dispatch(ctx.args.room)
    rows = [[d.get("id", ""), d.get("agent_name", ""), d.get("room", ""), d.get("metadata", "") or "-"] for d in items]
    ctx.ui.render(items, ["Dispatch ID", "Agent", "Room", "Metadata"], rows)


async def delete_dispatch(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        await client.delete_dispatch(ctx.args.room, ctx.args.id)
    ctx.ui.message(f"Deleted dispatch [{ctx.args.id}]")


def register(subparsers) -> None:
    group = add_group(subparsers, "dispatch", "Dispatch agents to rooms")

    p = add_command(group, "create", create_dispatch, "Dispatch an agent to a room")
    p.add_argument("--room", required=True)
    p.add_argument("--agent-name", required=True)
    p.add_argument("--metadata", default="")

    p = add_command(group, "list", list_dispatch, "List agent dispatches of a room")
    p.add_argument("--room", required=True)
    add_json_flag(p)

    p = add_command(group, "delete", delete_dispatch, "Delete an agent dispatch")
    p.add_argument("--room", required=True)
    p.add_argument("--id", required=True)
