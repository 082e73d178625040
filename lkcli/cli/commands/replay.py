"""
replay {list,load,seek,close,delete}
"""

from datetime import datetime, timezone

from lkcli.services.media import ReplayClient

from ..args import add_command, add_group, add_json_flag, duration
from ..context import CommandContext


def _client(ctx: CommandContext) -> ReplayClient:
    return ReplayClient(ctx.project(), **ctx.client_kwargs())


def _format_start(value) -> str:
    if not value:
        return "-"
    # start_time is in nanoseconds
    return datetime.fromtimestamp(int(value) / 1e9, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def replay_rows(replays: list[dict]) -> list[list[str]]:
    return [[r.get("replay_id", ""), r.get("room_name", ""), _format_start(r.get("start_time"))] for r in replays]


async def list_replays(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        replays = await client.list_replays(ctx.args.room)
    ctx.ui.render(replays, ["Replay ID", "Room", "Started At"], replay_rows(replays))


async def load_replay(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        resp = await client.load(a.id, a.room, int(a.offset * 1000))
    ctx.ui.message(f"Playback ID: {resp.get('playback_id', '')}")


async def seek_replay(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        await client.seek(a.playback_id, int(a.offset * 1000))
    ctx.ui.message(f"Seeked playback [{a.playback_id}]")


async def close_replay(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        await client.close_playback(ctx.args.playback_id)
    ctx.ui.message(f"Closed playback [{ctx.args.playback_id}]")


async def delete_replay(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        await client.delete(ctx.args.id)
    ctx.ui.message(f"Deleted replay [{ctx.args.id}]")


def register(subparsers) -> None:
    group = add_group(subparsers, "replay", "Play back recorded room sessions")

    p = add_command(group, "list", list_replays, "List replays")
    p.add_argument("--room", default="", help="only replays of this room")
    add_json_flag(p)

    p = add_command(group, "load", load_replay, "Play a replay into a room")
    p.add_argument("--id", required=True, help="replay id")
    p.add_argument("--room", required=True, help="room to play back into")
    p.add_argument("--offset", type=duration, default=0.0, help="start offset, e.g. 1m30s")

    p = add_command(group, "seek", seek_replay, "Seek an active playback")
    p.add_argument("--playback-id", required=True)
    p.add_argument("--offset", type=duration, required=True)

    p = add_command(group, "close", close_replay, "Stop an active playback")
    p.add_argument("--playback-id", required=True)

    p = add_command(group, "delete", delete_replay, "Delete a replay")
    p.add_argument("--id", required=True)
