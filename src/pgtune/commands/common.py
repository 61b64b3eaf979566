"""Options and error handling shared by all commands."""

from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer

from pgtune.core.config import DEFAULT_CONFIG_PATH
from pgtune.core.exceptions import PgTuneError
from pgtune.core.output import console


# Type aliases for common options
VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]

ForceOption = Annotated[
    bool,
    typer.Option(
        "--force",
        "-f",
        help="Overwrite existing files.",
        is_flag=True,
    ),
]


def handle_error(error: PgTuneError) -> NoReturn:
    """Handle a PgTuneError by printing formatted error and exiting."""
    console.error(error.message)

    for detail in error.details:
        console.error_detail(detail)

    if error.hint:
        console.hint(error.hint)

    raise typer.Exit(error.exit_code)
