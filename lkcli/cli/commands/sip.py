"""
sip {inbound,outbound,dispatch,participant} commands.

Create and update take an optional JSON request file; flags given on the
command line override fields of the file.
"""

from lkcli.core.config import get_settings
from lkcli.core.errors import InputError, NotFoundError
from lkcli.services.sip import SIPClient

from ..args import add_command, add_group, add_json_flag, csv_list, duration, load_json_request
from ..context import CommandContext


def _client(ctx: CommandContext) -> SIPClient:
    return SIPClient(ctx.project(), **ctx.client_kwargs())


def _trunk_from_args(args) -> dict:
    trunk = load_json_request(args.request)
    trunk = trunk.get("trunk", trunk)
    if args.name:
        trunk["name"] = args.name
    if args.numbers:
        trunk["numbers"] = args.numbers
    if getattr(args, "address", ""):
        trunk["address"] = args.address
    if getattr(args, "auth_user", ""):
        trunk["auth_username"] = args.auth_user
    if getattr(args, "auth_pass", ""):
        trunk["auth_password"] = args.auth_pass
    return trunk


def trunk_rows(trunks: list[dict]) -> list[list[str]]:
    return [
        [
            t.get("sip_trunk_id", ""),
            t.get("name", ""),
            ", ".join(t.get("numbers", [])),
            t.get("address", "") or ", ".join(t.get("allowed_addresses", [])) or "-",
            "****" if t.get("auth_password") else "-",
        ]
        for t in trunks
    ]


def dispatch_rule_rows(rules: list[dict]) -> list[list[str]]:
    rows = []
    for r in rules:
        rule = r.get("rule") or {}
        kind = next(iter(rule), "")
        rows.append(
            [
                r.get("sip_dispatch_rule_id", ""),
                r.get("name", ""),
                ", ".join(r.get("trunk_ids", [])) or "<any>",
                kind.removeprefix("dispatch_rule_"),
                ", ".join(a.get("agent_name", "") for a in (r.get("room_config") or {}).get("agents", [])) or "-",
            ]
        )
    return rows


def _trunk_commands(kind: str):
    async def create(ctx: CommandContext) -> None:
        trunk = _trunk_from_args(ctx.args)
        async with _client(ctx) as client:
            fn = client.create_inbound_trunk if kind == "inbound" else client.create_outbound_trunk
            info = await fn(trunk)
        ctx.ui.message(f"SIPTrunkID: {info.get('sip_trunk_id', '')}")

    async def list_(ctx: CommandContext) -> None:
        async with _client(ctx) as client:
            fn = client.list_inbound_trunks if kind == "inbound" else client.list_outbound_trunks
            trunks = await fn(ctx.args.ids or None)
        ctx.ui.render(trunks, ["SipTrunkID", "Name", "Numbers", "Address", "Authentication"], trunk_rows(trunks))

    async def update(ctx: CommandContext) -> None:
        replace = _trunk_from_args(ctx.args)
        if not replace:
            raise InputError("nothing to update")
        async with _client(ctx) as client:
            fn = client.update_inbound_trunk if kind == "inbound" else client.update_outbound_trunk
            info = await fn(ctx.args.id, replace)
        ctx.ui.message(f"Updated trunk [{info.get('sip_trunk_id', ctx.args.id)}]")

    return create, list_, update


async def delete_trunk(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        await client.delete_trunk(ctx.args.id)
    ctx.ui.message(f"Deleted trunk [{ctx.args.id}]")


def _rule_from_args(args) -> dict:
    rule = load_json_request(args.request)
    rule = rule.get("dispatch_rule", rule)
    if args.name:
        rule["name"] = args.name
    if args.trunks:
        rule["trunk_ids"] = args.trunks
    if args.direct and args.individual:
        raise InputError("only one of --direct or --individual can be set")
    if args.direct:
        rule["rule"] = {"dispatch_rule_direct": {"room_name": args.direct}}
    elif args.individual:
        rule["rule"] = {"dispatch_rule_individual": {"room_prefix": args.individual}}
    if args.agents:
        rule["room_config"] = {"agents": [{"agent_name": name} for name in args.agents]}
    return rule


async def create_dispatch_rule(ctx: CommandContext) -> None:
    rule = _rule_from_args(ctx.args)
    if "rule" not in rule:
        raise InputError("a dispatch rule needs --direct, --individual or a request file")
    async with _client(ctx) as client:
        info = await client.create_dispatch_rule(rule)
    ctx.ui.message(f"SIPDispatchRuleID: {info.get('sip_dispatch_rule_id', '')}")


async def list_dispatch_rules(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        rules = await client.list_dispatch_rules(ctx.args.ids or None)
    ctx.ui.render(rules, ["SipDispatchRuleID", "Name", "SipTrunks", "Type", "Agents"], dispatch_rule_rows(rules))


async def update_dispatch_rule(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        current = await client.list_dispatch_rules([a.id])
        if not current:
            raise NotFoundError(f"dispatch rule {a.id} not found")
        info = await client.update_dispatch_rule(a.id, {**current[0], **_rule_from_args(a)})
    ctx.ui.message(f"Updated dispatch rule [{info.get('sip_dispatch_rule_id', a.id)}]")


async def delete_dispatch_rule(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        await client.delete_dispatch_rule(ctx.args.id)
    ctx.ui.message(f"Deleted dispatch rule [{ctx.args.id}]")


async def create_participant(ctx: CommandContext) -> None:
    a = ctx.args
    request = load_json_request(a.request)
    for key, value in (
        ("sip_trunk_id", a.trunk),
        ("sip_call_to", a.call),
        ("room_name", a.room),
        ("participant_identity", a.identity),
        ("participant_name", a.name),
    ):
        if value:
            request[key] = value
    if a.wait:
        request["wait_until_answered"] = True
    missing = [k for k in ("sip_trunk_id", "sip_call_to", "room_name") if not request.get(k)]
    if missing:
        raise InputError(f"missing required fields: {', '.join(missing)}")
    timeout = a.timeout or get_settings().sip_participant_timeout
    async with _client(ctx) as client:
        info = await client.create_participant(request, timeout=timeout)
    ctx.ui.message(
        f"SIPCallID: {info.get('sip_call_id', '')}\n"
        f"ParticipantID: {info.get('participant_id', '')}\n"
        f"ParticipantIdentity: {info.get('participant_identity', '')}\n"
        f"RoomName: {info.get('room_name', '')}"
    )


async def transfer_participant(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        await client.transfer_participant(a.room, a.identity, a.to, play_dialtone=a.play_dialtone)
    ctx.ui.message(f"Transferred [{a.identity}] to {a.to}")


def _trunk_flags(p, outbound: bool) -> None:
    p.add_argument("request", nargs="?", default="", help="JSON request file")
    p.add_argument("--name", default="")
    p.add_argument("--numbers", type=csv_list, default=[], help="comma separated phone numbers")
    if outbound:
        p.add_argument("--address", default="", help="SIP server address")
        p.add_argument("--auth-user", default="")
        p.add_argument("--auth-pass", default="")


def _rule_flags(p) -> None:
    p.add_argument("request", nargs="?", default="", help="JSON request file")
    p.add_argument("--name", default="")
    p.add_argument("--trunks", type=csv_list, default=[], help="comma separated trunk ids")
    p.add_argument("--direct", default="", metavar="ROOM", help="send every call to this room")
    p.add_argument("--individual", default="", metavar="PREFIX", help="one room per caller with this prefix")
    p.add_argument("--agents", type=csv_list, default=[], help="comma separated agents to dispatch")


def register(subparsers) -> None:
    sip = add_group(subparsers, "sip", "Manage SIP trunks, dispatch rules and participants")

    for kind in ("inbound", "outbound"):
        outbound = kind == "outbound"
        create, list_, update = _trunk_commands(kind)
        group = add_group(sip, kind, f"Manage {kind} SIP trunks", aliases=["out" if outbound else "in"])
        _trunk_flags(add_command(group, "create", create, f"Create an {kind} trunk"), outbound)
        p = add_command(group, "list", list_, f"List {kind} trunks")
        p.add_argument("--ids", type=csv_list, default=[])
        add_json_flag(p)
        p = add_command(group, "update", update, f"Update an {kind} trunk")
        p.add_argument("--id", required=True)
        _trunk_flags(p, outbound)
        p = add_command(group, "delete", delete_trunk, f"Delete an {kind} trunk")
        p.add_argument("id")

    group = add_group(sip, "dispatch", "Manage dispatch rules", aliases=["dispatch-rule"])
    _rule_flags(add_command(group, "create", create_dispatch_rule, "Create a dispatch rule"))
    p = add_command(group, "list", list_dispatch_rules, "List dispatch rules")
    p.add_argument("--ids", type=csv_list, default=[])
    add_json_flag(p)
    p = add_command(group, "update", update_dispatch_rule, "Update a dispatch rule")
    p.add_argument("--id", required=True)
    _rule_flags(p)
    p = add_command(group, "delete", delete_dispatch_rule, "Delete a dispatch rule")
    p.add_argument("id")

    group = add_group(sip, "participant", "Create and transfer SIP participants")
    p = add_command(group, "create", create_participant, "Dial out and join the call to a room")
    p.add_argument("request", nargs="?", default="", help="JSON request file")
    p.add_argument("--trunk", default="")
    p.add_argument("--call", default="", help="number to call")
    p.add_argument("--room", default="")
    p.add_argument("--identity", default="")
    p.add_argument("--name", default="")
    p.add_argument("--wait", action="store_true", help="wait until the call is answered")
    p.add_argument("--timeout", type=duration, default=0.0, help="request timeout (default 30s)")
    p = add_command(group, "transfer", transfer_participant, "Transfer a SIP participant")
    p.add_argument("--room", required=True)
    p.add_argument("--identity", required=True)
    p.add_argument("--to", required=True, help="SIP URI or tel: number")
    p.add_argument("--play-dialtone", action="store_true")
