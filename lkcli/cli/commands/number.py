"""
number {search,purchase,list,get,update,release}
"""

from lkcli.services.phone_numbers import PhoneNumberClient

from ..args import add_command, add_group, add_json_flag, csv_list
from ..context import CommandContext

NUMBER_HEADERS = ["ID", "E164", "Country", "Area Code", "Type", "Locality", "Region", "Capabilities", "Status", "Dispatch Rules"]


def _client(ctx: CommandContext) -> PhoneNumberClient:
    return PhoneNumberClient(ctx.project(), **ctx.client_kwargs())


def _status(value: str) -> str:
    return value.removeprefix("PHONE_NUMBER_STATUS_").lower()


def number_rows(numbers: list[dict]) -> list[list[str]]:
    return [
        [
            n.get("id", ""),
            n.get("e164_format", ""),
            n.get("country_code", ""),
            n.get("area_code", ""),
            n.get("number_type", ""),
            n.get("locality", ""),
            n.get("region", ""),
            ", ".join(n.get("capabilities", [])),
            _status(n.get("status", "")),
            ", ".join(n.get("sip_dispatch_rule_ids", [])) or "-",
        ]
        for n in numbers
    ]


async def search_numbers(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        items = await client.search(a.country_code, a.area_code, a.limit)
    rows = [
        [n.get("e164_format", ""), n.get("country_code", ""), n.get("area_code", ""), n.get("locality", ""),
         n.get("region", ""), ", ".join(n.get("capabilities", []))]
        for n in items
    ]
    ctx.ui.render(items, ["E164", "Country", "Area Code", "Locality", "Region", "Capabilities"], rows)


async def purchase_numbers(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        numbers = await client.purchase(ctx.args.numbers)
    if ctx.args.json:
        ctx.ui.print_json(numbers)
        return
    ctx.ui.message(f"Purchased {len(numbers)} phone number(s)")
    ctx.ui.print_table(NUMBER_HEADERS, number_rows(numbers))


async def list_numbers(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        page = await client.list_numbers(a.limit, a.offset, a.status or None, a.sip_dispatch_rule_id)
    if a.json:
        ctx.ui.print_json(page)
        return
    ctx.ui.message(f"Total phone numbers: {page['total_count']} ({page['offline_count']} offline)")
    ctx.ui.print_table(NUMBER_HEADERS, number_rows(page["items"]))
    if page["next_offset"] is not None:
        ctx.ui.message(f"More results available, use --offset {page['next_offset']}")


async def get_number(ctx: CommandContext) -> None:
    async with _client(ctx) as client:
        number = await client.get(ctx.args.id, ctx.args.number)
    ctx.ui.render(number, NUMBER_HEADERS, number_rows([number]))


async def update_number(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        number = await client.update(a.id, a.number, a.sip_dispatch_rule_id)
    if a.json:
        ctx.ui.print_json(number)
        return
    ctx.ui.message(f"Updated phone number [{number.get('e164_format', '')}]")
    ctx.ui.print_table(NUMBER_HEADERS, number_rows([number]))


async def release_numbers(ctx: CommandContext) -> None:
    a = ctx.args
    async with _client(ctx) as client:
        await client.release(a.ids or None, a.numbers or None)
    ctx.ui.message(f"Released {len(a.ids or a.numbers)} phone number(s)")


def _lookup_flags(p) -> None:
    p.add_argument("--id", default="", help="phone number id")
    p.add_argument("--number", default="", help="phone number in E.164 format")


def register(subparsers) -> None:
    group = add_group(subparsers, "number", "Search, purchase and manage phone numbers", aliases=["numbers"])

    p = add_command(group, "search", search_numbers, "Search available phone numbers")
    p.add_argument("--country-code", default="")
    p.add_argument("--area-code", default="")
    p.add_argument("--limit", type=int, default=50)
    add_json_flag(p)

    p = add_command(group, "purchase", purchase_numbers, "Purchase phone numbers")
    p.add_argument("--numbers", type=csv_list, required=True, help="comma separated E.164 numbers")
    add_json_flag(p)

    p = add_command(group, "list", list_numbers, "List phone numbers of the project")
    p.add_argument("--limit", type=int, default=50)
    p.add_argument("--offset", type=int, default=0)
    p.add_argument("--status", action="append", default=[], help="filter by status, repeatable")
    p.add_argument("--sip-dispatch-rule-id", default="", help="only numbers attached to this rule")
    add_json_flag(p)

    p = add_command(group, "get", get_number, "Show one phone number")
    _lookup_flags(p)
    add_json_flag(p)

    p = add_command(group, "update", update_number, "Attach a phone number to a dispatch rule")
    _lookup_flags(p)
    p.add_argument("--sip-dispatch-rule-id", default="")
    add_json_flag(p)

    p = add_command(group, "release", release_numbers, "Release phone numbers")
    p.add_argument("--ids", type=csv_list, default=[])
    p.add_argument("--numbers", type=csv_list, default=[])
