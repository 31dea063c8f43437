"""``httpstorages config``: the user settings file.

``show`` prints :class:`~httpstorages.models.GlobalConfig` (or, with
``--effective``, the merged :class:`~httpstorages.models.StorageConfig` the
storage commands would use), ``set`` edits one dotted key and ``reset``
restores defaults.
"""

from __future__ import annotations

import typer

from httpstorages.output import error, get_output, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    effective: bool = typer.Option(
        False, "--effective", help="Show settings after env, project and CLI overrides."
    ),
) -> None:
    """Print the saved settings, or the effective ones.

    Example::

        httpstorages config show
        httpstorages --json --backend sqlite config show --effective
    """
    from httpstorages.config import get_config_dir, load_global_config, resolve_config
    from httpstorages.exceptions import ConfigError

    info(f"Settings file: {get_config_dir() / 'config.json'}")
    try:
        if effective:
            obj = ctx.obj or {}
            storage = resolve_config(obj.get("backend"), obj.get("path"))
            get_output().format_data(storage.model_dump(mode="json"))
        else:
            get_output().format_data(load_global_config().model_dump(mode="json"))
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'storage.backend')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Change one setting, addressed as ``section.field``.

    The whole file is re-validated after the edit, so the string is coerced
    to the field type (``storage.default_ttl_seconds 60``) or rejected.

    Raises:
        typer.Exit: With code 2 if the key path is unknown or validation fails.

    Example::

        httpstorages config set storage.backend sqlite
        httpstorages config set storage.path /var/cache/responses.db
    """
    from httpstorages.config import load_global_config, save_global_config
    from httpstorages.models import GlobalConfig

    data = load_global_config().model_dump(mode="json")

    *parents, final_key = key.split(".")
    target = data
    for k in parents:
        if not isinstance(target.get(k), dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]
    if final_key not in target:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    target[final_key] = None if value.lower() in ("none", "null") else value

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_global_config(new_config)
    success(f"Set {key} = {value}")


@config_app.command("reset")
def config_reset(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Overwrite the settings file with defaults.

    Example::

        httpstorages config reset --force
    """
    from httpstorages.config import save_global_config
    from httpstorages.models import GlobalConfig

    if not force and not typer.confirm("Reset all config to defaults?"):
        info("Cancelled.")
        raise typer.Exit()

    defaults = GlobalConfig()
    save_global_config(defaults)
    success(
        f"Settings reset: {defaults.storage.backend} backend, "
        f"default TTL {defaults.storage.default_ttl_seconds}s."
    )
