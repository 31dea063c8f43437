"""Typer application and CLI entry point for httpstorages.

The ``httpstorages`` console script is the administration surface of a
response store: it opens the configured backend, inspects entries and index
views, and triggers surrogate-key purges (e.g. from a deploy hook or a cron
job).

:func:`main` wraps the Typer app: Ctrl-C exits with 130, a
:class:`~httpstorages.exceptions.StorageError` exits with its own code, and
anything else leaves a traceback in ``<data dir>/logs/``.

See Also:
    :mod:`httpstorages.config`: Storage configuration resolution.
    :mod:`httpstorages.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from httpstorages import __version__
from httpstorages.commands.config import config_app
from httpstorages.commands.storage import (
    delete_command,
    get_command,
    init_command,
    keys_command,
    purge_command,
    reset_command,
    stats_command,
    tags_command,
    variants_command,
)
from httpstorages.exit_codes import EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="httpstorages",
    help="Inspect and invalidate a compressed HTTP response store.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.command("init")(init_command)
app.command("get")(get_command)
app.command("delete")(delete_command)
app.command("purge")(purge_command)
app.command("variants")(variants_command)
app.command("tags")(tags_command)
app.command("keys")(keys_command)
app.command("stats")(stats_command)
app.command("reset")(reset_command)
app.add_typer(config_app, name="config", help="Configuration management.")


def _version_callback(value: bool) -> None:
    """``--version``"""
    if value:
        typer.echo(f"httpstorages {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """Send library log records to stderr through Rich."""
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    root = logging.getLogger("httpstorages")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.propagate = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    backend: Optional[str] = typer.Option(
        None, "--backend", "-b", help="Storage engine: diskcache, sqlite, memory."
    ),
    path: Optional[str] = typer.Option(
        None, "--path", help="Storage directory or database file."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Global flags: output mode, logging, and the backend override that
    every storage command resolves through ``ctx.obj``."""
    from httpstorages.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["backend"] = backend
    ctx.obj["path"] = path
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Ctrl-C during a long purge or reset exits with 130 instead of a traceback."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from httpstorages.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """Console-script entry point; always ends in ``SystemExit``."""
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from httpstorages.exceptions import StorageError
        from httpstorages.output import error

        if isinstance(exc, StorageError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
