"""Terminal output for conversion runs.

Status lines (files written, conversion warnings, failures) go to stderr;
reports and JSON go to stdout so they can be piped.
"""

from __future__ import annotations

from pathlib import Path

from rich.console import Console

# stderr console for conversion status
err_console = Console(stderr=True)

# stdout console for analysis reports
out_console = Console()


def success(message: str, *, console: Console | None = None) -> None:
    """Print a success message (green checkmark) to stderr."""
    c = console or err_console
    c.print(f"[green]  ✓ {message}[/green]")


def error(message: str, *, console: Console | None = None) -> None:
    """Print an error message (red X) to stderr."""
    c = console or err_console
    c.print(f"[red]  ✗ {message}[/red]")


def warn(message: str, *, console: Console | None = None) -> None:
    """Print a warning message (yellow) to stderr."""
    c = console or err_console
    c.print(f"[yellow]  ⚠ {message}[/yellow]")


def info(message: str, *, console: Console | None = None) -> None:
    """Print an info message (dim) to stderr."""
    c = console or err_console
    c.print(f"[dim]  {message}[/dim]")


def file_written(path: Path, *, console: Console | None = None) -> None:
    success(f"Wrote {path}", console=console)


def write_failed(reason: object, *, console: Console | None = None) -> None:
    error(f"Failed to write output: {reason}", console=console)


def conversion_warnings(warnings: list[dict], *, limit: int = 5, console: Console | None = None) -> None:
    """Print the first ``limit`` report warnings, tagged with their request.

    The rest are summarized in one line pointing at ``analysis.json``.
    """
    for warning in warnings[:limit]:
        where = f" ({warning['request']})" if warning.get("request") else ""
        warn(f"{warning['message']}{where}", console=console)
    if len(warnings) > limit:
        info(f"... and {len(warnings) - limit} more (see analysis.json)", console=console)


def unreadable_items(count: int, *, console: Console | None = None) -> None:
    warn(f"{count} collection item(s) could not be read", console=console)
