"""argparse command tree and terminal presentation."""

from .context import CommandContext, StepResult, StepStatus, run_steps
from .output import TerminalUI, build_table, parse_selection, resolve_value

__all__ = [
    "CommandContext",
    "StepResult",
    "StepStatus",
    "run_steps",
    # Presentation
    "TerminalUI",
    "build_table",
    "parse_selection",
    "resolve_value",
]
