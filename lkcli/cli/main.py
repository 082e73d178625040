"""
Entrypoint of the `lk` command.

Builds the argparse tree from the command modules, resolves the config
store and terminal UI, and runs the selected handler as the root asyncio
task. Signals cancel that task; errors are reported as one line on
stderr.
"""

import argparse
import asyncio
import signal
import sys
import traceback
from pathlib import Path

import structlog

from lkcli import __version__
from lkcli.core.errors import CLIError, OperationCancelled
from lkcli.core.logging_config import configure_logging
from lkcli.core.store import ConfigStore

from .args import GLOBAL_PARENT, apply_global_defaults
from .commands import COMMAND_MODULES
from .context import CommandContext
from .output import TerminalUI

logger = structlog.get_logger()

CANCEL_SIGNALS = [signal.SIGINT, signal.SIGTERM]
if hasattr(signal, "SIGQUIT"):
    CANCEL_SIGNALS.append(signal.SIGQUIT)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lk",
        description="CLI client to LiveKit",
        parents=[GLOBAL_PARENT],
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.set_defaults(handler=None, command_parser=parser)
    subparsers = parser.add_subparsers(metavar="COMMAND")
    for module in COMMAND_MODULES:
        module.register(subparsers)
    return parser


def _install_signal_handlers(task: asyncio.Task) -> list[int]:
    loop = asyncio.get_running_loop()
    installed = []
    for sig in CANCEL_SIGNALS:
        try:
            loop.add_signal_handler(sig, task.cancel)
        except (NotImplementedError, RuntimeError, ValueError):
            # not supported on this platform or outside the main thread
            continue
        installed.append(sig)
    return installed


async def _run_handler(ctx: CommandContext) -> None:
    task = asyncio.current_task()
    installed = _install_signal_handlers(task) if task is not None else []
    try:
        await ctx.args.handler(ctx)
    except asyncio.CancelledError as e:
        raise OperationCancelled() from e
    finally:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)


def run(argv: list[str] | None = None, *, ui: TerminalUI | None = None, store: ConfigStore | None = None) -> int:
    """Parse `argv`, run the command and return the process exit code."""
    parser = build_parser()
    args = apply_global_defaults(parser.parse_args(argv))
    configure_logging(args.verbose)

    if args.handler is None:
        args.command_parser.print_help()
        return 0

    ui = ui or TerminalUI(
        json_output=bool(getattr(args, "json", False)),
        assume_yes=bool(getattr(args, "yes", False)),
    )
    try:
        store = store or ConfigStore.load(Path(args.config) if args.config else None)
        ctx = CommandContext(args=args, ui=ui, store=store)
        asyncio.run(_run_handler(ctx))
    except KeyboardInterrupt:
        ui.err_console.print("error: cancelled", highlight=False, markup=False)
        return OperationCancelled.exit_code
    except CLIError as e:
        logger.debug("command_failed", error_type=type(e).__name__)
        if args.verbose:
            ui.err_console.print(traceback.format_exc(), highlight=False, markup=False)
        ui.err_console.print(f"error: {e}", highlight=False, markup=False)
        return e.exit_code
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
