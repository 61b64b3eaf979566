"""pgtune command-line entry point.

The detect and tune command groups live in pgtune.commands; the small
config group is defined here.
"""

from typing import Annotated

import typer

from pgtune import __version__
from pgtune.commands.common import (
    ConfigOption,
    ForceOption,
    NoColorOption,
    VerboseOption,
    handle_error,
)
from pgtune.core.config import (
    AppConfig,
    PgTuneConfig,
    get_example_config,
    init_config,
)
from pgtune.core.context import create_context
from pgtune.core.exceptions import PgTuneError
from pgtune.core.output import console


app = typer.Typer(
    name="pgtune",
    help="Resource-aware PostgreSQL tuning.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)

# Import sub-commands
from pgtune.commands.detect import app as detect_app
from pgtune.commands.tune import app as tune_app

# Register command groups
app.add_typer(detect_app, name="detect")
app.add_typer(tune_app, name="tune")
app.add_typer(config_app, name="config")


def version_callback(value: bool) -> None:
    """Eager --version handler."""
    if value:
        console.print(f"pgtune version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """pgtune - Resource-aware PostgreSQL tuning.

    Detects host and container CPU/memory limits and calculates PostgreSQL
    parameters for a workload profile.

    [bold]Examples:[/bold]
        pgtune detect
        pgtune tune --workload oltp
        pgtune tune --memory 16GB --cpus 8 --output json
        pgtune config show
    """
    pass


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Print the loaded configuration and the resolved PostgreSQL version."""
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Configuration")

        versions = app_config.versions
        ctx.console.summary("PostgreSQL version (from environment)", {
            "TARGET_VERSION": versions.target_version or "Not set",
            "PG_VERSION": versions.pg_version or "Not set",
            "POSTGRES_VERSION": versions.postgres_version or "Not set",
            "Resolved": app_config.pg_version,
        })

    except PgTuneError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: ForceOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Write a commented starter config file (refuses to overwrite without --force)."""
    ctx = create_context(no_color=no_color, config=config)
    config_path = ctx.config_path

    try:
        init_config(config_path, force=force)
        ctx.console.success(f"Configuration file created: {config_path}")
        ctx.console.info("Edit the file to pin resources or the workload, then run: pgtune tune")

    except PgTuneError as e:
        handle_error(e)
    except PermissionError:
        ctx.console.error(f"Cannot write configuration file: {config_path}")
        ctx.console.hint("Run with sudo or pass --config with a writable path")
        raise typer.Exit(1)


@config_app.command("validate")
def config_validate(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Load the config file and run every override through validation.

    Exits with status 2 when the file is missing, is not YAML or holds an
    invalid value.
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        loaded = PgTuneConfig.load(ctx.config_path)
        app_config = AppConfig(config_path=ctx.config_path, config=loaded)

        ctx.console.success(f"Configuration is valid: {ctx.config_path}")

        if ctx.is_verbose:
            ctx.console.yaml(app_config.config.to_yaml())

        warnings = []
        tuning = app_config.tuning
        if tuning.max_connections and tuning.max_connections > 1000:
            warnings.append(
                f"max_connections = {tuning.max_connections} is high; "
                "consider a connection pooler"
            )
        if tuning.memory and tuning.cpus is None:
            warnings.append("memory is pinned but cpus is still detected")

        if warnings:
            ctx.console.print()
            for warning in warnings:
                ctx.console.warn(warning)

    except PgTuneError as e:
        handle_error(e)


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print the starter config file to stdout."""
    ctx = create_context(no_color=no_color)
    ctx.console.raw(get_example_config())
