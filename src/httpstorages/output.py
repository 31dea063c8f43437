"""Terminal output for the admin CLI.

Data that scripts consume (key lists, index views, purge counts, decoded
responses, raw payloads) goes to **stdout**; everything addressed to a human
(progress, warnings, errors) goes to **stderr**. That keeps
``httpstorages keys | xargs ...`` safe no matter how chatty a command is.

The format is chosen once per invocation: ``--json`` and ``--plain`` force
one, otherwise Rich styling is used only when stdout is a terminal and colour
is allowed (``NO_COLOR`` unset, ``TERM`` not ``dumb``, no ``--no-color``).

:func:`~httpstorages.app.main_callback` installs an :class:`OutputManager`
with :func:`set_output`; commands reach it through :func:`get_output` or the
module-level :func:`info` / :func:`warning` / :func:`error` helpers.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from httpstorages.models import SerializedResponse


class OutputFormat(str, Enum):
    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """``NO_COLOR`` set to anything, or a dumb terminal."""
    return "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb"


class OutputManager:
    """Formats command results and diagnostics for one CLI invocation.

    Args:
        format: Requested format; ``AUTO`` picks ``RICH`` on a colour TTY
            and ``PLAIN`` otherwise.
        no_color: Strip colour and markup from everything.
        quiet: Drop :meth:`info` and :meth:`success` messages.
        verbose: Show :meth:`debug` messages.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        if format is OutputFormat.AUTO:
            format = OutputFormat.RICH if _is_tty() and not self._no_color else OutputFormat.PLAIN
        self._format = format
        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=format is OutputFormat.RICH,
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    # -- stdout ---------------------------------------------------------

    def print_data(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)

    def write_bytes(self, data: bytes) -> None:
        """Write stored bytes as-is, e.g. for ``get --raw | lz4 -d``."""
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()

    def format_data(self, data: Any) -> None:
        """Print a scalar, list or dict.

        JSON mode dumps it; plain mode prints one item (or ``key<TAB>value``
        pair) per line; rich mode shows highlighted JSON.
        """
        if self._format is OutputFormat.PLAIN:
            if isinstance(data, dict):
                lines = [f"{key}\t{value}" for key, value in data.items()]
            elif isinstance(data, list):
                lines = [str(item) for item in data]
            else:
                lines = [str(data)]
            for line in lines:
                self.print_data(line)
            return

        text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        if self._format is OutputFormat.JSON:
            self.print_data(text)
        else:
            self._stdout.print(Syntax(text, "json", theme="monokai", word_wrap=True))

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Print rows as JSON records, tab-separated lines, or a Rich table."""
        if self._format is OutputFormat.JSON:
            self.print_data(
                json.dumps([dict(zip(headers, row)) for row in rows], indent=2, ensure_ascii=False)
            )
        elif self._format is OutputFormat.PLAIN:
            for row in [headers, *rows]:
                self.print_data("\t".join(row))
        else:
            table = Table(title=title, header_style="bold cyan")
            for header in headers:
                table.add_column(header)
            for row in rows:
                table.add_row(*row)
            self._stdout.print(table)

    def print_response(self, key: str, response: SerializedResponse) -> None:
        """Show a decoded response: status line, header table and body size."""
        if self._format is OutputFormat.JSON:
            self.format_data(
                {
                    "key": key,
                    "status_code": response.status_code,
                    "reason": response.reason,
                    "http_version": response.http_version,
                    "headers": [list(pair) for pair in response.headers],
                    "body_length": len(response.body),
                }
            )
            return
        self.print_data(response.status_line)
        self.print_table(
            ["Header", "Value"], [[name, value] for name, value in response.headers], title=key
        )
        self.print_data(f"body: {len(response.body)} bytes")

    # -- stderr ---------------------------------------------------------

    def info(self, message: str) -> None:
        if not self._quiet:
            self._emit(message, message)

    def success(self, message: str) -> None:
        if not self._quiet:
            self._emit(message, f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        self._emit(f"Warning: {message}", f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        self._emit(f"Error: {message}", f"[bold red]Error:[/bold red] {message}")

    def debug(self, message: str) -> None:
        if self._verbose:
            self._emit(f"[debug] {message}", f"[dim]\\[debug] {message}[/dim]")

    def _emit(self, plain: str, markup: str) -> None:
        if self._no_color:
            print(plain, file=sys.stderr, flush=True)
        else:
            self._stderr.print(markup)


_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """The installed manager; a default one is created on first use."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    global _output
    _output = None


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def debug(message: str) -> None:
    get_output().debug(message)
