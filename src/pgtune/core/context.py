"""Per-invocation command state.

Every command starts by turning its global-style options (-v, -q,
--no-color, --config) into an ExecutionContext. Creating one configures the
shared console; the configuration file is only read when first needed.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pgtune.core.config import AppConfig, DEFAULT_CONFIG_PATH, OUTPUT_FORMATS
from pgtune.core.exceptions import ValidationError
from pgtune.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Options shared by all commands plus the lazily loaded config."""

    verbosity: int = Verbosity.NORMAL
    no_color: bool = False
    config_path: Path = DEFAULT_CONFIG_PATH

    _config: Optional[AppConfig] = field(default=None, repr=False)
    _console: Console = field(default=console, repr=False)

    def __post_init__(self) -> None:
        self._console.configure(verbosity=self.verbosity, no_color=self.no_color)

    @property
    def config(self) -> AppConfig:
        """Configuration file plus environment, loaded on first access.

        Raises:
            ConfigurationError: If the file exists but is invalid
        """
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def console(self) -> Console:
        return self._console

    @property
    def is_verbose(self) -> bool:
        return self.verbosity >= Verbosity.VERBOSE

    def output_format(self, requested: Optional[str] = None) -> str:
        """Pick the output format: command line, then config file.

        Raises:
            ValidationError: If the requested format is unknown
        """
        fmt = (requested or self.config.output.format).strip().lower()
        if fmt not in OUTPUT_FORMATS:
            raise ValidationError(
                f"Invalid output format: {fmt!r}",
                hint=f"Valid values: {', '.join(OUTPUT_FORMATS)}",
            )
        return fmt


def create_context(
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create an execution context from CLI options.

    Args:
        verbose: Number of -v flags
        quiet: Only show errors and warnings (wins over verbose)
        no_color: Disable colored output
        config: Path to configuration file
    """
    if quiet:
        verbosity = Verbosity.QUIET
    else:
        verbosity = min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)

    return ExecutionContext(
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
    )
