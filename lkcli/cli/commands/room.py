"""
room {create,list,update,delete,participants,send-data, ...}
"""

from lkcli.core.errors import InputError
from lkcli.core.templates import expand_template
from lkcli.services.rooms import RoomClient

from ..args import add_command, add_group, add_json_flag, csv_list, key_value, load_json_request
from ..context import CommandContext


def _client(ctx: CommandContext) -> RoomClient:
    return RoomClient(ctx.project(), **ctx.client_kwargs())


def room_rows(rooms: list[dict]) -> list[list[str]]:
    return [
        [r.get("sid", ""), r.get("name", ""), str(r.get("num_participants", 0)), str(r.get("num_publishers", 0))]
        for r in rooms
    ]


def participant_rows(participants: list[dict]) -> list[list[str]]:
    rows = []
    for p in participants:
        tracks = ", ".join(f"{t.get('sid', '')} ({t.get('type', '')})" for t in p.get("tracks", []))
        rows.append([p.get("sid", ""), p.get("identity", ""), p.get("name", ""), p.get("state", ""), tracks or "-"])
    return rows


async def create_room(ctx: CommandContext) -> None:
    a = ctx.args
    options = load_json_request(a.room_configuration)
    if a.empty_timeout is not None:
        options["empty_timeout"] = a.empty_timeout
    if a.departure_timeout is not None:
        options["departure_timeout"] = a.departure_timeout
    if a.max_participants is not None:
        options["max_participants"] = a.max_participants
    if a.metadata:
        options["metadata"] = a.metadata
    if a.agents:
        options["agents"] = [{"agent_name": name} for name in a.agents]
    name = expand_template(a.name)
    async with _client(ctx) as client:
        room = await client.create_room(name, **options)
    if a.json:
        ctx.ui.print_json(room)
        return
    ctx.ui.message(f"Created room [{room.get('name', name)}] with SID [{room.get('sid', '')}]")


async def list_rooms(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        rooms = await client.list_rooms(ctx.args.names or None)
    if not rooms and not ctx.args.json:
        ctx.ui.message("No rooms found")
        return
    ctx.ui.render(rooms, ["Room ID", "Name", "Participants", "Publishers"], room_rows(rooms))


async def update_room(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        room = await client.update_room_metadata(ctx.args.room, ctx.args.metadata)
    ctx.ui.message(f"Updated room [{room.get('name', ctx.args.room)}]")


async def delete_room(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        await client.delete_room(ctx.args.room)
    ctx.ui.message(f"Deleted room [{ctx.args.room}]")


async def list_participants(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        participants = await client.list_participants(ctx.args.room)
    ctx.ui.render(participants, ["SID", "Identity", "Name", "State", "Tracks"], participant_rows(participants))


async def get_participant(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        participant = await client.get_participant(ctx.args.room, ctx.args.identity)
    ctx.ui.print_json(participant)


async def remove_participant(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        await client.remove_participant(ctx.args.room, ctx.args.identity)
    ctx.ui.message(f"Removed participant [{ctx.args.identity}]")


async def update_participant(ctx: CommandContext) -> None:
    a = ctx.args
    permission = load_json_request(a.permissions) or None
    attributes = dict(a.attribute) or None
    if a.metadata is None and a.name is None and permission is None and attributes is None:
        raise InputError("nothing to update, pass --metadata, --name, --permissions or --attribute")
    async with _client(ctx) as client:
        await client.update_participant(
            a.room, a.identity, metadata=a.metadata, name=a.name, permission=permission, attributes=attributes
        )
    ctx.ui.message(f"Updated participant [{a.identity}]")


async def move_participant(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        if a.forward:
            await client.forward_participant(a.room, a.identity, a.destination_room)
        else:
            await client.move_participant(a.room, a.identity, a.destination_room)
    verb = "Forwarded" if a.forward else "Moved"
    ctx.ui.message(f"{verb} participant [{a.identity}] to room [{a.destination_room}]")


async def mute_track(ctx: CommandContext) -> None:
    a = ctx.args
    muted = not a.unmute
    async with _client(ctx) as client:
        await client.mute_published_track(a.room, a.identity, a.track_sid, muted)
    ctx.ui.message(f"{'Muted' if muted else 'Unmuted'} track [{a.track_sid}]")


async def update_subscriptions(ctx: CommandContext) -> None:
    a = ctx.args
    subscribe = not a.unsubscribe
    async with _client(ctx) as client:
        await client.update_subscriptions(a.room, a.identity, a.track_sids, subscribe)
    ctx.ui.message(f"{'Subscribed' if subscribe else 'Unsubscribed'} [{a.identity}] to {', '.join(a.track_sids)}")


async def send_data(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        await client.send_data(
            a.room, a.data.encode(), topic=a.topic, destination_identities=a.identities or None
        )
    ctx.ui.message("Sent data")


def register(subparsers) -> None:
    group = add_group(subparsers, "room", "Create or delete rooms and manage existing room properties")

    p = add_command(group, "create", create_room, "Create a room")
    p.add_argument("name", help="room name, supports templates")
    p.add_argument("--room-configuration", default="", help="JSON file with room options")
    p.add_argument("--empty-timeout", type=int, default=None, help="seconds to keep the room open when empty")
    p.add_argument("--departure-timeout", type=int, default=None, help="seconds to keep the room open after everyone leaves")
    p.add_argument("--max-participants", type=int, default=None)
    p.add_argument("--metadata", default="")
    p.add_argument("--agents", type=csv_list, default=[], help="comma separated agent names to dispatch")
    add_json_flag(p)

    p = add_command(group, "list", list_rooms, "List or search for active rooms by name")
    p.add_argument("names", nargs="*", help="only these rooms")
    add_json_flag(p)

    p = add_command(group, "update", update_room, "Modify properties of an active room")
    p.add_argument("room")
    p.add_argument("--metadata", required=True)

    p = add_command(group, "delete", delete_room, "Delete a room")
    p.add_argument("room")

    participants = add_group(group, "participants", "Inspect participants of a room")
    p = add_command(participants, "list", list_participants, "List participants in a room")
    p.add_argument("room")
    add_json_flag(p)
    p = add_command(participants, "get", get_participant, "Show one participant")
    p.add_argument("room")
    p.add_argument("identity")

    p = add_command(group, "remove-participant", remove_participant, "Remove a participant from a room")
    p.add_argument("room")
    p.add_argument("identity")

    p = add_command(group, "update-participant", update_participant, "Change the metadata or permissions of a participant")
    p.add_argument("room")
    p.add_argument("identity")
    p.add_argument("--metadata", default=None)
    p.add_argument("--name", default=None)
    p.add_argument("--permissions", default="", help="JSON file with the new ParticipantPermission")
    p.add_argument("--attribute", type=key_value, action="append", default=[], metavar="KEY=VALUE")

    p = add_command(group, "move-participant", move_participant, "Move or forward a participant to another room")
    p.add_argument("room")
    p.add_argument("identity")
    p.add_argument("destination_room")
    p.add_argument("--forward", action="store_true", help="keep the participant in the source room as well")

    p = add_command(group, "mute-track", mute_track, "Mute or unmute a track")
    p.add_argument("room")
    p.add_argument("identity")
    p.add_argument("track_sid")
    p.add_argument("--unmute", action="store_true")

    p = add_command(group, "update-subscriptions", update_subscriptions, "Subscribe or unsubscribe a participant")
    p.add_argument("room")
    p.add_argument("identity")
    p.add_argument("track_sids", nargs="+")
    p.add_argument("--unsubscribe", action="store_true")

    p = add_command(group, "send-data", send_data, "Send a data packet to a room")
    p.add_argument("room")
    p.add_argument("data")
    p.add_argument("--topic", default="")
    p.add_argument("--identities", type=csv_list, default=[], help="comma separated destination identities")
