"""
perf {load-test,agent-load-test}
"""

from lkcli.loadtest import AgentLoadTest, AgentLoadTestParams, Layout, LoadTest, LoadTestParams
from lkcli.services.media import DispatchClient

from ..args import add_command, add_group, duration, key_value
from ..context import CommandContext


def load_test_params(ctx: CommandContext) -> LoadTestParams:
    a = ctx.args
    project = ctx.project()
    return LoadTestParams(
        url=project.url,
        api_key=project.api_key,
        api_secret=project.api_secret,
        room=a.room,
        identity_prefix=a.identity_prefix,
        layout=Layout.from_string(a.layout),
        video_publishers=a.video_publishers,
        audio_publishers=a.audio_publishers,
        subscribers=a.subscribers,
        video_resolution=a.video_resolution,
        video_codec=a.video_codec,
        video_bitrate=a.video_bitrate,
        duration=a.duration,
        num_per_second=a.num_per_second,
        simulcast=not a.no_simulcast,
        simulate_speakers=a.simulate_speakers,
    )


async def load_test(ctx: CommandContext) -> None:
    a = ctx.args
    test = LoadTest(load_test_params(ctx), console=ctx.ui.console)
    if a.suite:
        await test.run_suite()
    elif a.find_max_latency:
        await test.find_max(a.find_max_latency)
    else:
        await test.run()


async def agent_load_test(ctx: CommandContext) -> None:
    a = ctx.args
    project = ctx.project()
    params = AgentLoadTestParams(
        rooms=a.rooms,
        agent_name=a.agent_name,
        echo_speech_delay=a.echo_speech_delay,
        duration=a.duration,
        attributes=dict(a.attribute),
    )
    async with DispatchClient(project, **ctx.client_kwargs()) as dispatch:
        await AgentLoadTest(project, params, dispatch=dispatch, console=ctx.ui.console).run()


def register(subparsers) -> None:
    group = add_group(subparsers, "perf", "Performance testing commands")

    p = add_command(group, "load-test", load_test, "Run a load test against a room", aliases=["load"])
    p.add_argument("--room", default="", help="room name (default testroom<random>)")
    p.add_argument("--duration", type=duration, default=0.0, help="how long to run, e.g. 1m (default until interrupted)")
    p.add_argument("--video-publishers", type=int, default=0)
    p.add_argument("--audio-publishers", type=int, default=0)
    p.add_argument("--subscribers", type=int, default=0)
    p.add_argument("--identity-prefix", default="", help="prefix of tester identities (default random)")
    p.add_argument("--layout", default="speaker", choices=[layout.value for layout in Layout], help="subscriber layout")
    p.add_argument("--num-per-second", type=float, default=5, help="testers to start every second, at most 10")
    p.add_argument("--video-resolution", default="high", help="high, medium or low")
    p.add_argument("--video-codec", default="", help="h264 or vp8 (default alternates)")
    p.add_argument("--video-bitrate", type=int, default=None, help="bits per second of the top layer")
    p.add_argument("--no-simulcast", action="store_true", help="publish a single video layer")
    p.add_argument("--simulate-speakers", action="store_true", help="rotate an active speaker every few seconds")
    p.add_argument("--suite", action="store_true", help="run the canned publisher and subscriber matrix")
    p.add_argument(
        "--find-max-latency",
        type=duration,
        default=0.0,
        metavar="LATENCY",
        help="search the most subscribers whose average latency stays below LATENCY",
    )

    p = add_command(group, "agent-load-test", agent_load_test, "Load test an agent with echo rooms")
    p.add_argument("--rooms", type=int, default=1)
    p.add_argument("--agent-name", default="")
    p.add_argument("--echo-speech-delay", type=duration, default=5.0, help="delay before echoing speech back")
    p.add_argument("--duration", type=duration, default=0.0)
    p.add_argument("--attribute", type=key_value, action="append", default=[], metavar="KEY=VALUE")
