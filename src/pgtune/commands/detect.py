"""Resource detection command.

Commands:
- pgtune detect (show the detected resource snapshot)
- pgtune detect --json (machine-readable snapshot)
"""

import json
from typing import Optional

import typer

from pgtune.commands.common import (
    ConfigOption,
    NoColorOption,
    QuietOption,
    VerboseOption,
    handle_error,
)
from pgtune.core import DetectionError, PgTuneError, console, create_context
from pgtune.core.units import format_size
from pgtune.services.resources import SystemInfo, detect_system_info


app = typer.Typer(
    name="detect",
    help="Detect host and container resources.",
    no_args_is_help=False,
)


def _display_system_info(info: SystemInfo) -> None:
    """Display the detected snapshot."""
    console.print()
    console.print("[bold]Host[/bold]")
    console.print(f"  RAM:           {format_size(info.system.memory)}")
    console.print(f"  CPU Cores:     {info.system.cpus}")
    console.print(f"  OS:            {info.os_type.value}")
    console.print(f"  Disk Type:     {info.disk_type.value.upper()}")

    console.print()
    console.print("[bold]Container[/bold]")
    console.print(f"  Detected:      {'yes' if info.is_container else 'no'}")
    if info.container.memory:
        console.print(f"  Memory Limit:  {format_size(info.container.memory)}")
    else:
        console.print("  Memory Limit:  none")
    if info.container.millis:
        console.print(
            f"  CPU Quota:     {info.container.millis / 1000:g} cores "
            f"({info.container.cpus} usable)"
        )
    else:
        console.print("  CPU Quota:     none")

    console.print()
    console.summary(
        "Effective Resources",
        {
            "Memory": format_size(info.effective_memory),
            "CPUs": info.effective_cpus,
            "PostgreSQL": info.pg_version,
            "Addresses": ", ".join(info.ip_addresses) or "none",
        },
    )


@app.callback(invoke_without_command=True)
def detect(
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the snapshot as JSON.",
    ),
    disk_device: Optional[str] = typer.Option(
        None,
        "--disk-device",
        help="Block device holding the data directory (e.g. /dev/nvme0n1p1).",
    ),
    require_container: bool = typer.Option(
        False,
        "--require-container",
        help="Fail unless running inside a container.",
    ),
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Show detected CPU, memory, container limits and disk type.

    Container limits come from cgroup v2 (memory.high/memory.max, cpu.max)
    with a cgroup v1 fallback. Effective values are the container limits when
    they are smaller than the host's.

    Examples:

        pgtune detect

        pgtune detect --json

        pgtune detect --disk-device /dev/sdb1
    """
    ctx = create_context(verbose=verbose, quiet=quiet, no_color=no_color, config=config)

    try:
        app_config = ctx.config
        device = disk_device or app_config.tuning.disk_device

        info = detect_system_info(pg_version=app_config.pg_version, disk_device=device)

        if require_container and not info.is_container:
            raise DetectionError(
                "No container environment detected",
                hint="Drop --require-container to tune for the host instead",
            )

        if as_json:
            console.raw(json.dumps(info.to_dict(), indent=2))
            return

        _display_system_info(info)

    except PgTuneError as e:
        handle_error(e)
