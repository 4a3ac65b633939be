"""User-facing output for the CLI.

Commands receive a ``Reporter`` built once per invocation; tests build one
around a recording ``Console``.
"""

from typing import Iterable, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from selfrefer.core.errors import SelfReferError


class Reporter:
    """Thin wrapper over a rich ``Console`` with the CLI's message styles."""

    def __init__(self, console: Optional[Console] = None, error_console: Optional[Console] = None):
        self.console = console or Console()
        self.error_console = error_console or Console(stderr=True)

    def info(self, message: str) -> None:
        self.console.print(f"[cyan]{escape(message)}[/cyan]")

    def success(self, message: str) -> None:
        self.console.print(f"[green]✅ {escape(message)}[/green]")

    def detail(self, message: str) -> None:
        self.console.print(f"[dim]   {escape(message)}[/dim]")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠️  {escape(message)}[/yellow]")

    def error(self, error: SelfReferError) -> None:
        self.error_console.print(f"[red]❌ {escape(error.message)}[/red]", markup=True, highlight=False)
        if error.hint:
            self.error_console.print(f"[dim]{escape(error.hint)}[/dim]")

    def text(self, content: str) -> None:
        """Print ``content`` verbatim (no markup, no highlighting)."""
        self.console.out(content, highlight=False)

    def table(self, title: str, columns: Sequence[str], rows: Iterable[Sequence[str]]) -> None:
        table = Table(title=title)
        for index, column in enumerate(columns):
            table.add_column(column, style="cyan" if index == 0 else None)
        for row in rows:
            table.add_row(*[escape(str(cell)) for cell in row])
        self.console.print(table)


__all__ = ["Reporter"]
