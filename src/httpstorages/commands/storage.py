"""Storage commands -- inspect entries and invalidate them.

Every command resolves the effective
:class:`~httpstorages.models.StorageConfig` (see
:func:`~httpstorages.config.resolve_config`), opens a storer for the duration
of the command, and closes it on the way out. Storage errors are reported on
stderr and mapped to their exit code.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

import typer

from httpstorages.backends import create_storer
from httpstorages.config import resolve_config
from httpstorages.core.storer import CacheStorer
from httpstorages.exceptions import PurgeError, StorageError
from httpstorages.exit_codes import EXIT_NOT_FOUND
from httpstorages.output import error, get_output, info, success, warning


@contextmanager
def _open_storer(ctx: typer.Context) -> Iterator[CacheStorer]:
    """Open the configured storer, translating storage errors into exits."""
    obj = ctx.obj or {}
    try:
        config = resolve_config(cli_backend=obj.get("backend"), cli_path=obj.get("path"))
        with create_storer(config) as storer:
            yield storer
    except PurgeError as exc:
        for key, reason in exc.failures.items():
            warning(f"{key}: {reason}")
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    except StorageError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def init_command(ctx: typer.Context) -> None:
    """Open (and create if needed) the configured storage.

    Example::

        httpstorages --backend sqlite --path ./cache.db init
    """
    with _open_storer(ctx) as storer:
        dropped = storer.rebuild_index()
        success(f"Storage ready: {storer.name()} ({storer.stats()['location'] or 'in-memory'})")
        if dropped:
            info(f"Dropped {dropped} dangling index references")


def get_command(
    ctx: typer.Context,
    key: str = typer.Argument(help="Entry key (variant key)."),
    raw: bool = typer.Option(False, "--raw", help="Write the stored bytes unmodified."),
) -> None:
    """Show a cached response: status line, headers and body size.

    Exits with :data:`~httpstorages.exit_codes.EXIT_NOT_FOUND` when the key is absent.
    """
    with _open_storer(ctx) as storer:
        if raw:
            data = storer.get(key)
            if not data:
                error(f"No entry for '{key}'")
                raise typer.Exit(code=EXIT_NOT_FOUND)
            get_output().write_bytes(data)
            return
        response = storer.load_response(key)
        if response is None:
            error(f"No entry for '{key}'")
            raise typer.Exit(code=EXIT_NOT_FOUND)
        get_output().print_response(key, response)


def delete_command(
    ctx: typer.Context,
    key: str = typer.Argument(help="Entry key to delete."),
) -> None:
    """Delete one entry and its index references."""
    with _open_storer(ctx) as storer:
        storer.delete(key)
        success(f"Deleted {key}")


def purge_command(
    ctx: typer.Context,
    tag: str = typer.Argument(help="Surrogate key to purge."),
) -> None:
    """Delete every entry tagged with a surrogate key.

    Prints the number of removed entries on stdout so scripts can read it.

    Example::

        httpstorages purge product-42
    """
    with _open_storer(ctx) as storer:
        count = storer.purge_by_surrogate(tag)
        get_output().print_data(str(count))
        info(f"Purged {count} entries tagged '{tag}'")


def variants_command(
    ctx: typer.Context,
    real_key: str = typer.Argument(help="Real (resource) key."),
) -> None:
    """List the variant keys stored for a resource, newest last."""
    with _open_storer(ctx) as storer:
        rows = []
        for variant in storer.index.lookup_variants(real_key):
            record = storer.index.variant_record(variant)
            varied = ", ".join(f"{k}={v}" for k, v in (record.varied_headers if record else {}).items())
            rows.append([variant, varied, record.variant_label if record else ""])
        get_output().print_table(["Variant", "Varied headers", "Label"], rows, title=real_key)


def tags_command(
    ctx: typer.Context,
    tag: str = typer.Argument(help="Surrogate key."),
) -> None:
    """List the variant keys tagged with a surrogate key."""
    with _open_storer(ctx) as storer:
        get_output().format_data(storer.index.lookup_by_surrogate(tag))


def keys_command(
    ctx: typer.Context,
    prefix: Optional[str] = typer.Option(None, "--prefix", help="Only keys starting with this."),
) -> None:
    """List live entry keys."""
    with _open_storer(ctx) as storer:
        if prefix:
            found = sorted(prefix + key for key in storer.map_keys(prefix))
        else:
            found = sorted(storer.list_keys())
        get_output().format_data(found)


def stats_command(ctx: typer.Context) -> None:
    """Show backend name, location, entry count and default TTL."""
    with _open_storer(ctx) as storer:
        get_output().format_data(storer.stats())


def reset_command(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Remove every entry and index record."""
    if not force and not typer.confirm("Remove every stored response?"):
        info("Aborted.")
        raise typer.Exit(code=0)
    with _open_storer(ctx) as storer:
        storer.reset()
        success("Storage reset")
