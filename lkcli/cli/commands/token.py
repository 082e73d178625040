"""
token create: mint an access token for the current project.
"""

import json

from lkcli.core.errors import InputError
from lkcli.core.templates import expand_template
from lkcli.core.token import AccessToken, RoomAgentDispatch, RoomConfiguration, VideoGrant

from ..args import add_command, add_group, duration
from ..context import CommandContext, StepResult, run_steps

DEFAULT_VALID_FOR = 5 * 60
DEFAULT_IDENTITY = "participant-%x"
DEFAULT_ROOM = "room-%t"

PERMISSIONS = ["create", "list", "join", "admin", "egress", "ingress"]


def _apply_permissions(grant: VideoGrant, permissions: set[str], room: str) -> None:
    if "create" in permissions:
        grant.room_create = True
    if "list" in permissions:
        grant.room_list = True
    if "join" in permissions:
        grant.room_join = True
        grant.room = room
    if "admin" in permissions:
        grant.room_admin = True
        grant.room = room
    if "egress" in permissions:
        grant.room_record = True
    if "ingress" in permissions:
        grant.ingress_admin = True


def _flag_permissions(args) -> set[str]:
    return {p for p in PERMISSIONS if getattr(args, p, False)}


def build_token(args, state: dict) -> tuple[str, VideoGrant]:
    """Signed token and the video grant it carries."""
    project = state["project"]
    grant = VideoGrant()
    _apply_permissions(grant, state["permissions"], state["room"])

    if args.allow_update_metadata:
        grant.can_update_own_metadata = True
    if args.allow_source:
        grant.set_publish_sources(args.allow_source)
    if args.grant:
        try:
            extra = json.loads(args.grant)
        except json.JSONDecodeError as e:
            raise InputError(f"invalid --grant: {e}") from e
        if not isinstance(extra, dict):
            raise InputError("invalid --grant: expected a JSON object")
        grant = VideoGrant.model_validate({**grant.to_claims(), **extra})

    at = (
        AccessToken(project.api_key, project.api_secret)
        .with_identity(state["identity"])
        .with_ttl(args.valid_for)
        .with_grants(grant)
    )
    if args.name:
        at.with_name(expand_template(args.name))
    if args.metadata:
        at.with_metadata(args.metadata)
    if args.agent:
        at.with_room_config(
            RoomConfiguration(agents=[RoomAgentDispatch(agent_name=args.agent, metadata=args.job_metadata)])
        )
    return at.to_jwt(), grant


async def create_token(ctx: CommandContext) -> None:
    a = ctx.args

    def resolve(state: dict) -> StepResult:
        state["project"] = ctx.project()
        state["permissions"] = _flag_permissions(a)
        return StepResult.ok()

    def prompt(state: dict) -> StepResult:
        if not state["permissions"]:
            if not ctx.ui.interactive:
                return StepResult.failed(InputError("no permissions were given in this grant, see --help"))
            chosen = ctx.ui.multi_select("Token permissions", PERMISSIONS)
            if not chosen:
                return StepResult.cancelled()
            state["permissions"] = set(chosen)
        needs_room = state["permissions"] & {"join", "admin"}
        state["room"] = expand_template(a.room or (DEFAULT_ROOM if needs_room else ""))
        state["identity"] = expand_template(a.identity or DEFAULT_IDENTITY)
        return StepResult.ok()

    def execute(state: dict) -> StepResult:
        state["token"], state["grant"] = build_token(a, state)
        return StepResult.ok()

    def render(state: dict) -> StepResult:
        ui = ctx.ui
        ui.message("Token grants:")
        ui.print_json(state["grant"].to_claims())
        ui.message(f"Project URL: {state['project'].url}")
        ui.message(f"Access token: {state['token']}")
        return StepResult.ok()

    await run_steps([resolve, prompt, execute, render])


def register(subparsers) -> None:
    group = add_group(subparsers, "token", "Create access tokens with granular capabilities")
    p = add_command(group, "create", create_token, "Create an access token")
    p.add_argument("--create", action="store_true", help="permission to create rooms")
    p.add_argument("--list", action="store_true", help="permission to list rooms")
    p.add_argument("--join", action="store_true", help="permission to join a room as a participant")
    p.add_argument("--admin", action="store_true", help="permission to moderate a room")
    p.add_argument("--egress", action="store_true", help="permission to interact with egress")
    p.add_argument("--ingress", action="store_true", help="permission to interact with ingress")
    p.add_argument("--allow-update-metadata", action="store_true", help="allow the participant to update its own metadata")
    p.add_argument(
        "--allow-source",
        action="append",
        default=[],
        help="allow one or more sources to be published (camera, microphone, screen_share, screen_share_audio)",
    )
    p.add_argument("--identity", "-i", default="", help="participant identity, supports templates such as %%x and {.}")
    p.add_argument("--name", "-n", default="", help="participant display name")
    p.add_argument("--room", "-r", default="", help="room name or template")
    p.add_argument("--metadata", default="", help="JSON metadata to encode in the token")
    p.add_argument("--valid-for", type=duration, default=DEFAULT_VALID_FOR, help="validity of the token (default 5m)")
    p.add_argument("--grant", default="", help="additional VideoGrant fields as JSON")
    p.add_argument("--agent", default="", help="agent to dispatch to the room when the participant joins")
    p.add_argument("--job-metadata", default="", help="metadata of the agent job")

