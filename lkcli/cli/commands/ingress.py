"""
ingress {create,update,list,delete}
"""

from lkcli.core.errors import InputError
from lkcli.services.media import IngressClient

from ..args import add_command, add_group, add_json_flag, load_json_request
from ..context import CommandContext

INPUT_TYPES = {"rtmp": "RTMP_INPUT", "whip": "WHIP_INPUT", "url": "URL_INPUT"}


def _client(ctx: CommandContext) -> IngressClient:
    return IngressClient(ctx.project(), **ctx.client_kwargs())


def ingress_rows(items: list[dict]) -> list[list[str]]:
    rows = []
    for item in items:
        state = item.get("state") or {}
        rows.append(
            [
                item.get("ingress_id", ""),
                item.get("name", ""),
                item.get("room_name", ""),
                item.get("stream_key", "") or "-",
                item.get("url", ""),
                state.get("status", "").removeprefix("ENDPOINT_"),
                state.get("error", "") or "-",
            ]
        )
    return rows


def _request_from_args(args) -> dict:
    request = load_json_request(args.request)
    for key, value in (
        ("name", args.name),
        ("room_name", args.room),
        ("participant_identity", args.identity),
        ("participant_name", args.participant_name),
        ("url", args.source_url),
    ):
        if value:
            request[key] = value
    if getattr(args, "input_type", ""):
        request["input_type"] = INPUT_TYPES[args.input_type]
    return request


async def create_ingress(ctx: CommandContext) -> None:
    request = _request_from_args(ctx.args)
    if "input_type" not in request:
        raise InputError("an ingress needs --input-type or a request file")
    async with _client(ctx) as client:
        info = await client.create_ingress(request)
    if ctx.args.json:
        ctx.ui.print_json(info)
        return
    ctx.ui.message(f"IngressID: {info.get('ingress_id', '')} Status: {(info.get('state') or {}).get('status', '')}")
    if info.get("url"):
        ctx.ui.message(f"URL: {info['url']}")
    if info.get("stream_key"):
        ctx.ui.message(f"Stream Key: {info['stream_key']}")


async def update_ingress(ctx: CommandContext) -> None:
    request = _request_from_args(ctx.args)
    if not request:
        raise InputError("nothing to update")
    async with _client(ctx) as client:
        info = await client.update_ingress(ctx.args.id, request)
    ctx.ui.message(f"Updated ingress [{info.get('ingress_id', ctx.args.id)}]")


async def list_ingress(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        items = await client.list_ingress(ctx.args.room, ctx.args.id)
    ctx.ui.render(
        items, ["IngressID", "Name", "Room", "StreamKey", "URL", "Status", "Error"], ingress_rows(items)
    )


async def delete_ingress(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        info = await client.delete_ingress(ctx.args.id)
    ctx.ui.message(f"Deleted ingress [{info.get('ingress_id', ctx.args.id)}]")


def _request_flags(p, create: bool) -> None:
    p.add_argument("request", nargs="?", default="", help="JSON request file")
    if create:
        p.add_argument("--input-type", choices=sorted(INPUT_TYPES), default="", help="stream protocol")
    p.add_argument("--name", default="")
    p.add_argument("--room", default="", help="room to publish into")
    p.add_argument("--identity", default="", help="identity of the ingress participant")
    p.add_argument("--participant-name", default="")
    p.add_argument("--source-url", default="", help="media URL to pull, for url input")


def register(subparsers) -> None:
    group = add_group(subparsers, "ingress", "Import outside RTMP, WHIP or URL media into rooms")

    p = add_command(group, "create", create_ingress, "Create an ingress")
    _request_flags(p, create=True)
    add_json_flag(p)

    p = add_command(group, "update", update_ingress, "Update an ingress")
    p.add_argument("--id", required=True)
    _request_flags(p, create=False)

    p = add_command(group, "list", list_ingress, "List ingresses")
    p.add_argument("--room", default="")
    p.add_argument("--id", default="")
    add_json_flag(p)

    p = add_command(group, "delete", delete_ingress, "Delete an ingress")
    p.add_argument("id")
