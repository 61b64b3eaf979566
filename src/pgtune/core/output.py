"""Console output for pgtune, built on Rich.

This is the only logging channel in the package. Detection reports its
fallbacks through `console.debug`, commands report progress through
`console.step`, and results go to stdout. Everything diagnostic goes to
stderr so `pgtune tune --output json` can be piped straight into jq.
"""

from enum import IntEnum
from typing import Any

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.syntax import Syntax


class Verbosity(IntEnum):
    """Output verbosity levels."""
    QUIET = 0    # Errors and warnings only
    NORMAL = 1   # Progress and results
    VERBOSE = 2  # Detected values
    DEBUG = 3    # Every probe fallback


def _make_consoles(no_color: bool) -> tuple[RichConsole, RichConsole]:
    return (
        RichConsole(highlight=False, no_color=no_color),
        RichConsole(stderr=True, highlight=False, no_color=no_color),
    )


class Console:
    """Verbosity-aware wrapper around a stdout and a stderr Rich console."""

    def __init__(self) -> None:
        self.verbosity = Verbosity.NORMAL
        self.no_color = False
        self._out, self._err = _make_consoles(no_color=False)

    def configure(self, verbosity: int = Verbosity.NORMAL, no_color: bool = False) -> None:
        """Apply the command-line verbosity and color settings."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        if no_color != self.no_color:
            self._out, self._err = _make_consoles(no_color)
            self.no_color = no_color

    def _log(self, level: Verbosity, tag: str, message: str) -> None:
        if self.verbosity >= level:
            self._err.print(f"{tag} {message}")

    # Diagnostics (stderr)
    def warn(self, message: str) -> None:
        self._log(Verbosity.QUIET, "[yellow][WARN][/yellow]", message)

    def error(self, message: str) -> None:
        self._log(Verbosity.QUIET, "[red][ERROR][/red]", message)

    def error_detail(self, message: str) -> None:
        """Indented context line printed under an error."""
        self._log(Verbosity.QUIET, " ", f"[dim]{message}[/dim]")

    def hint(self, message: str) -> None:
        self._log(Verbosity.QUIET, "[cyan]Hint:[/cyan]", message)

    def step(self, message: str) -> None:
        self._log(Verbosity.NORMAL, "[blue]->[/blue]", message)

    def verbose(self, message: str) -> None:
        self._log(Verbosity.VERBOSE, "[dim]..[/dim]", message)

    def debug(self, message: str) -> None:
        self._log(Verbosity.DEBUG, "[cyan][DEBUG][/cyan]", message)

    # Results (stdout)
    def info(self, message: str) -> None:
        if self.verbosity >= Verbosity.NORMAL:
            self._out.print(f"[green][INFO][/green] {message}")

    def success(self, message: str) -> None:
        if self.verbosity >= Verbosity.NORMAL:
            self._out.print(f"[green][OK][/green] {message}")

    def print(self, message: Any = "", **kwargs: Any) -> None:
        """Print a markup string or any Rich renderable."""
        self._out.print(message, **kwargs)

    def raw(self, text: str) -> None:
        """Print text verbatim: no markup, emoji codes, highlighting or wrapping."""
        self._out.print(text, markup=False, highlight=False, emoji=False, soft_wrap=True)

    def yaml(self, yaml_text: str, title: str = "Configuration") -> None:
        """Print syntax-highlighted YAML in a panel."""
        syntax = Syntax(yaml_text, "yaml", theme="monokai", line_numbers=False)
        self._out.print(Panel(syntax, title=title, border_style="cyan"))

    def summary(self, title: str, items: dict[str, Any]) -> None:
        """Print key/value pairs in a panel; booleans render as Yes/No."""
        lines = []
        for key, value in items.items():
            if isinstance(value, bool):
                value = "[green]Yes[/green]" if value else "[red]No[/red]"
            lines.append(f"[bold]{key}:[/bold] {value}")
        self._out.print(Panel("\n".join(lines), title=title, border_style="blue"))


# Global console instance
console = Console()
