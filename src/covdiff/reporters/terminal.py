"""Terminal reporter with rich output formatting."""

from __future__ import annotations

import re

from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_STRIKE_RE = re.compile(r"~~(.+?)~~")
_ROW_CELLS = 6
_LEFT_ALIGNED_COLUMNS = 2

_COLUMNS = ("", "File", "Stmts", "Branches", "Funcs", "Lines")


def markdown_cell_to_markup(cell: str) -> str:
    """Translate the bold and strikethrough Markdown of a table cell to rich markup."""
    markup = escape(cell.strip())
    markup = _BOLD_RE.sub(r"[bold]\1[/bold]", markup)
    return _STRIKE_RE.sub(r"[strike]\1[/strike]", markup)


class CLIReporter:
    """Rich terminal output reporter for coverage diffs."""

    def __init__(self, output: Console | None = None) -> None:
        """Initialize the CLI reporter."""
        self.console = output or console

    def print_header(self, title: str) -> None:
        """Print a bold header."""
        self.console.print(f"\n[bold cyan]{title}[/bold cyan]\n")

    def print_success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[green]✓[/green] {message}")

    def print_error(self, message: str) -> None:
        """Print an error message."""
        self.console.print(f"[red]✗[/red] {message}")

    def print_warning(self, message: str) -> None:
        """Print a warning message."""
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def print_info(self, message: str) -> None:
        """Print an info message."""
        self.console.print(f"[dim]{message}[/dim]")

    def print_coverage_table(self, rows: list[str], *, title: str = "Coverage diff") -> None:
        """Render coverage diff rows as a table.

        Args:
            rows: Markdown rows from ``DiffChecker.get_coverage_details``.
            title: Table title.
        """
        if not rows:
            self.print_info("No changes to code coverage.")
            return

        table = Table(title=title, show_header=True, header_style="bold")
        for index, column in enumerate(_COLUMNS):
            table.add_column(column, justify="left" if index < _LEFT_ALIGNED_COLUMNS else "right")

        for row in rows:
            cells = [markdown_cell_to_markup(cell) for cell in row.split(" | ")]
            cells += [""] * (_ROW_CELLS - len(cells))
            table.add_row(*cells[:_ROW_CELLS])

        self.console.print(table)


reporter = CLIReporter()
