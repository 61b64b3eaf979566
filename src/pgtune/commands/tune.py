"""PostgreSQL tuning command.

Detects system resources and prints workload-based parameter
recommendations.

Commands:
- pgtune tune (table of recommendations)
- pgtune tune --output json|yaml (machine-readable recommendations)
"""

import json
from typing import Any, Optional

import typer
import yaml
from rich import box
from rich.table import Table

from pgtune.commands.common import (
    ConfigOption,
    NoColorOption,
    QuietOption,
    VerboseOption,
    handle_error,
)
from pgtune.core import (
    PgTuneError,
    TuningOverrides,
    console,
    create_context,
)
from pgtune.core.types import DiskType, OSType, WorkloadType
from pgtune.core.units import format_size
from pgtune.services.resources import SystemInfo, detect_system_info
from pgtune.services.tuning import PARAMETERS, TunedParameters, TuningConfig, tune


app = typer.Typer(
    name="tune",
    help="PostgreSQL tuning recommendations.",
    no_args_is_help=False,
)


def merge_overrides(file_overrides: TuningOverrides, **cli_values: Any) -> TuningOverrides:
    """Layer command-line values over the config file's overrides.

    None means "not given on the command line". The result is validated
    again, so bad values from either source raise InvalidOverrideError.
    """
    data = file_overrides.model_dump(exclude_none=True)
    data.update({key: value for key, value in cli_values.items() if value is not None})
    return TuningOverrides(**data)


def _display_system_info(info: SystemInfo, config: TuningConfig) -> None:
    """Display detected resources and the values used for tuning."""
    console.print()
    console.print("[bold]System Detection[/bold]")
    console.print(f"  RAM:           {format_size(info.system.memory)}")
    console.print(f"  CPU Cores:     {info.system.cpus}")
    if info.container.memory or info.container.cpus:
        console.print(f"  Container:     {info.container}")
    console.print(f"  Disk Type:     {info.disk_type.value.upper()} (detected)")
    console.print()
    console.print("[bold]Tuning For[/bold]")
    console.print(f"  RAM:           {format_size(config.memory)}")
    console.print(f"  CPU Cores:     {config.cpus}")
    console.print(f"  OS:            {config.os_type.value}")
    console.print(f"  Disk Type:     {config.disk_type.value.upper()}")
    console.print(f"  PostgreSQL:    {config.pg_version}")
    console.print()
    console.print(f"[bold]Workload Profile:[/bold] {config.workload.value.upper()}")
    console.print(f"  {config.workload.description}")


def _display_recommendations(params: TunedParameters) -> None:
    """Display the recommendation table."""
    console.print()

    table = Table(
        title="Tuning Recommendations",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold",
    )
    table.add_column("Parameter", style="cyan", no_wrap=True)
    table.add_column("Recommended", style="green", no_wrap=True)
    table.add_column("Description", style="dim")
    table.add_column("", width=1, justify="center")  # Restart indicator

    settings = params.to_settings()
    for spec in PARAMETERS:
        if spec.name not in settings:
            continue
        table.add_row(
            spec.name,
            settings[spec.name],
            spec.description,
            "*" if spec.requires_restart else "",
        )

    console.print(table)
    console.print()
    console.print("[dim]* = Requires PostgreSQL restart to take effect[/dim]")


def _payload(info: SystemInfo, config: TuningConfig, params: TunedParameters) -> dict[str, Any]:
    return {
        "system": info.to_dict(),
        "input": {
            "memory": config.memory,
            "cpus": config.cpus,
            "os_type": config.os_type.value,
            "disk_type": config.disk_type.value,
            "pg_version": config.pg_version,
            "workload": config.workload.value,
            "max_connections": config.resolved_max_connections,
        },
        "parameters": params.to_dict(),
        "settings": params.to_settings(),
    }


@app.callback(invoke_without_command=True)
def tune_command(
    workload: Optional[str] = typer.Option(
        None,
        "--workload", "-w",
        help="Workload profile: web, oltp, dw, desktop, mixed (default: mixed)",
    ),
    max_connections: Optional[int] = typer.Option(
        None,
        "--max-connections",
        help="Override max_connections (default depends on workload)",
    ),
    memory: Optional[str] = typer.Option(
        None,
        "--memory", "-m",
        help="Override detected memory, e.g. 16GB",
    ),
    cpus: Optional[int] = typer.Option(
        None,
        "--cpus",
        help="Override detected CPU count",
    ),
    disk_type: Optional[str] = typer.Option(
        None,
        "--disk-type",
        help="Override detected disk type: ssd, hdd, san",
    ),
    disk_device: Optional[str] = typer.Option(
        None,
        "--disk-device",
        help="Block device holding the data directory (e.g. /dev/nvme0n1p1)",
    ),
    os_type: Optional[str] = typer.Option(
        None,
        "--os-type",
        help="Override detected OS: linux, windows, mac",
    ),
    pg_version: Optional[int] = typer.Option(
        None,
        "--pg-version",
        help="Target PostgreSQL major version",
    ),
    output: Optional[str] = typer.Option(
        None,
        "--output", "-o",
        help="Output format: table, json, yaml",
    ),
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Calculate PostgreSQL parameters for this machine.

    Detects memory and CPUs (respecting container limits), then calculates
    memory budgets, WAL sizing, parallelism and planner settings for the
    selected workload profile.

    Workload Profiles:

    - WEB: Web applications, many short queries
    - OLTP: High concurrency, fast transactions
    - DW: Data warehouse, complex queries over large datasets
    - DESKTOP: Developer machine, minimal footprint
    - MIXED: Balanced workload (general purpose, default)

    Values are taken from command-line options first, then the config
    file, then detection.

    Examples:

        pgtune tune

        pgtune tune --workload oltp

        pgtune tune --memory 16GB --cpus 8 --output json
    """
    ctx = create_context(verbose=verbose, quiet=quiet, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        overrides = merge_overrides(
            app_config.tuning,
            workload=WorkloadType.parse(workload) if workload else None,
            max_connections=max_connections,
            memory=memory,
            cpus=cpus,
            disk_type=DiskType.parse(disk_type) if disk_type else None,
            disk_device=disk_device,
            os_type=OSType.parse(os_type) if os_type else None,
            pg_version=pg_version,
        )

        fmt = ctx.output_format(output)
        machine_readable = fmt != "table"

        target_version = (
            overrides.pg_version if overrides.pg_version is not None else app_config.pg_version
        )

        if not machine_readable:
            console.step("Detecting system resources...")
        info = detect_system_info(pg_version=target_version, disk_device=overrides.disk_device)
        console.verbose(f"Detected {info.system}")

        tuning_config = TuningConfig.from_system_info(info, overrides)
        console.debug(f"Tuning input: {tuning_config}")
        params = tune(tuning_config)

        if fmt == "json":
            console.raw(json.dumps(_payload(info, tuning_config, params), indent=2))
            return
        if fmt == "yaml":
            console.raw(
                yaml.safe_dump(
                    _payload(info, tuning_config, params),
                    default_flow_style=False,
                    sort_keys=False,
                )
            )
            return

        _display_system_info(info, tuning_config)
        _display_recommendations(params)

        if params.warnings:
            console.print()
            for warning in params.warnings:
                console.warn(warning)

    except PgTuneError as e:
        handle_error(e)
