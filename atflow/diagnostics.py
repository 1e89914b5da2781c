"""
AtFlow Diagnostics - Console Reports for Static Errors
======================================================

Renders the diagnostics collected by `lower_module` as a rich table, one row
per failed declaration.
"""

from typing import Iterable, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .errors import LoweringError


def diagnostics_table(diagnostics: Iterable[LoweringError]) -> Table:
    """Build a table with location, error kind, identifier and message columns."""
    table = Table(box=box.SIMPLE_HEAVY, show_lines=False)
    table.add_column("Location", style="cyan", no_wrap=True)
    table.add_column("Kind", style="bold red")
    table.add_column("Identifier", style="magenta")
    table.add_column("Message")

    for error in diagnostics:
        table.add_row(
            str(error.location),
            error.kind,
            error.identifier or "",
            error.message,
        )
    return table


def render_diagnostics(
    diagnostics: Iterable[LoweringError], console: Optional[Console] = None
) -> None:
    """Print diagnostics to `console` (stderr by default)."""
    console = console or Console(stderr=True)
    diagnostics = list(diagnostics)
    if not diagnostics:
        console.print("[green]No lowering errors[/green]")
        return
    console.print(
        Panel(
            diagnostics_table(diagnostics),
            title=f"[bold red]{len(diagnostics)} declaration(s) failed to lower[/bold red]",
            border_style="red",
        )
    )
