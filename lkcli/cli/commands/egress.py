"""
egress {start,list,update-layout,update-stream,stop}
"""

from lkcli.core.errors import InputError
from lkcli.services.media import EgressClient

from ..args import add_command, add_group, add_json_flag, csv_list, load_json_request
from ..context import CommandContext


def _client(ctx: CommandContext) -> EgressClient:
    return EgressClient(ctx.project(), **ctx.client_kwargs())


def egress_rows(items: list[dict]) -> list[list[str]]:
    rows = []
    for item in items:
        started = item.get("started_at") or "-"
        rows.append(
            [
                item.get("egress_id", ""),
                item.get("room_name", ""),
                item.get("status", "").removeprefix("EGRESS_"),
                str(started),
                item.get("error", "") or "-",
            ]
        )
    return rows


async def start_egress(ctx: CommandContext) -> None:
    a = ctx.args
    request = load_json_request(a.request)
    if not request:
        raise InputError("a request file is required to start an egress")
    if a.room:
        request["room_name"] = a.room
    async with _client(ctx) as client:
        info = await client.start(a.type, request)
    if a.json:
        ctx.ui.print_json(info)
        return
    ctx.ui.message(f"EgressID: {info.get('egress_id', '')} Status: {info.get('status', '')}")


async def list_egress(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        items = await client.list_egress(a.room, a.id, a.active)
    ctx.ui.render(items, ["EgressID", "Room", "Status", "Started At", "Error"], egress_rows(items))


async def update_layout(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        await client.update_layout(ctx.args.id, ctx.args.layout)
    ctx.ui.message(f"Updated layout of egress [{ctx.args.id}]")


async def update_stream(ctx: CommandContext) -> None:
    a = ctx.args
    if not a.add_urls and not a.remove_urls:
        raise InputError("nothing to update, pass --add-urls or --remove-urls")
    async with _client(ctx) as client:
        await client.update_stream(a.id, a.add_urls, a.remove_urls)
    ctx.ui.message(f"Updated streams of egress [{a.id}]")


async def stop_egress(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        info = await client.stop_egress(ctx.args.id)
    ctx.ui.message(f"Stopped egress [{info.get('egress_id', ctx.args.id)}]")


def register(subparsers) -> None:
    group = add_group(subparsers, "egress", "Record or stream media from rooms")

    p = add_command(group, "start", start_egress, "Start an egress from a JSON request")
    p.add_argument("request", help="JSON request file, or - for stdin")
    p.add_argument("--type", choices=sorted(EgressClient.START_METHODS), default="room-composite")
    p.add_argument("--room", default="", help="override the room of the request")
    add_json_flag(p)

    p = add_command(group, "list", list_egress, "List egresses")
    p.add_argument("--room", default="")
    p.add_argument("--id", default="")
    p.add_argument("--active", action="store_true", help="only egresses still running")
    add_json_flag(p)

    p = add_command(group, "update-layout", update_layout, "Change the layout of a room composite egress")
    p.add_argument("--id", required=True)
    p.add_argument("--layout", required=True)

    p = add_command(group, "update-stream", update_stream, "Add or remove stream output urls")
    p.add_argument("--id", required=True)
    p.add_argument("--add-urls", type=csv_list, default=[])
    p.add_argument("--remove-urls", type=csv_list, default=[])

    p = add_command(group, "stop", stop_egress, "Stop an egress")
    p.add_argument("id")
