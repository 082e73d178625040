"""
Terminal presentation: tables, JSON, spinners and prompts.

Commands talk to the user only through `TerminalUI`. Prompts raise
InputError when stdin is not a terminal instead of blocking.
"""

import json
import os
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.prompt import Confirm, Prompt
from rich.table import Table

from lkcli.core.errors import InputError


def build_table(headers: list[str], rows: list[list[str]], title: str | None = None) -> Table:
    table = Table(title=title, title_justify="left")
    for header in headers:
        table.add_column(header)
    for row in rows:
        table.add_row(*[escape(str(cell)) for cell in row])
    return table


def parse_selection(answer: str, count: int) -> list[int]:
    """
    Indexes picked in a numbered list. Accepts "1,3", "2-4", "all" or "".
    An empty answer keeps everything.
    """
    answer = answer.strip().lower()
    if answer in ("", "all", "*"):
        return list(range(count))
    picked: list[int] = []
    for part in answer.replace(" ", "").split(","):
        if not part:
            continue
        try:
            if "-" in part:
                lo, hi = part.split("-", 1)
                indexes = range(int(lo), int(hi) + 1)
            else:
                indexes = [int(part)]
        except ValueError as e:
            raise InputError(f"invalid selection: {part}") from e
        for i in indexes:
            if not 1 <= i <= count:
                raise InputError(f"selection out of range: {i}")
            if i - 1 not in picked:
                picked.append(i - 1)
    return picked


class TerminalUI:
    """rich-backed implementation of the message/prompt hooks used by commands."""

    def __init__(
        self,
        console: Console | None = None,
        err_console: Console | None = None,
        *,
        interactive: bool | None = None,
        assume_yes: bool = False,
        json_output: bool = False,
    ):
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)
        self.interactive = sys.stdin.isatty() if interactive is None else interactive
        self.assume_yes = assume_yes
        self.json_output = json_output

    def _require_tty(self, prompt: str) -> None:
        if not self.interactive:
            raise InputError(f"{prompt}: input required, but not running interactively")

    # Output

    def message(self, text: str) -> None:
        self.console.print(escape(text), highlight=False)

    def notice(self, text: str) -> None:
        """Side information that must not pollute stdout."""
        self.err_console.print(escape(text), highlight=False, style="dim")

    def log_line(self, line: str) -> None:
        self.console.print(escape(line), highlight=False, soft_wrap=True)

    def print_json(self, data: Any) -> None:
        self.console.print_json(json.dumps(data, default=str))

    def print_table(self, headers: list[str], rows: list[list[str]], title: str | None = None) -> None:
        self.console.print(build_table(headers, rows, title))

    def render(self, data: Any, headers: list[str], rows: list[list[str]], title: str | None = None) -> None:
        """JSON when --json was given, otherwise a table."""
        if self.json_output:
            self.print_json(data)
        else:
            self.print_table(headers, rows, title)

    @contextmanager
    def spinner(self, text: str) -> Iterator[None]:
        if not self.console.is_terminal:
            yield
            return
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.err_console,
            transient=True,
        ) as progress:
            progress.add_task(text, total=None)
            yield

    # Prompts

    def confirm(self, prompt: str, default: bool = False) -> bool:
        if self.assume_yes:
            return True
        self._require_tty(prompt)
        return Confirm.ask(prompt, default=default, console=self.console)

    def ask(self, prompt: str, default: str = "", password: bool = False) -> str:
        self._require_tty(prompt)
        return Prompt.ask(prompt, default=default or None, password=password, console=self.console) or ""

    def select(self, prompt: str, options: list[str]) -> str:
        if not options:
            raise InputError(f"{prompt}: nothing to choose from")
        self._require_tty(prompt)
        for i, option in enumerate(options, start=1):
            self.console.print(f"  {i}. {escape(option)}", highlight=False)
        choice = Prompt.ask(
            prompt,
            choices=[str(i) for i in range(1, len(options) + 1)],
            default="1",
            console=self.console,
        )
        return options[int(choice) - 1]

    def multi_select(self, prompt: str, options: list[str]) -> list[str]:
        """Numbered multi-select; everything is preselected."""
        if not options:
            return []
        self._require_tty(prompt)
        for i, option in enumerate(options, start=1):
            self.console.print(f"  [x] {i}. {escape(option)}", highlight=False)
        answer = Prompt.ask(f"{prompt} (e.g. 1,3 or 2-4)", default="all", console=self.console)
        return [options[i] for i in parse_selection(answer, len(options))]


def resolve_value(
    flag: str | None,
    env_var: str | None,
    ask: Callable[[], str] | None,
    *,
    name: str,
    required: bool = True,
) -> str:
    """
    A value from its flag, then its environment variable, then a prompt.

    `ask` is only called when neither flag nor environment provide one.
    """
    if flag:
        return flag
    if env_var and os.environ.get(env_var):
        return os.environ[env_var]
    value = ask() if ask is not None else ""
    if required and not value:
        raise InputError(f"{name} is required")
    return value
