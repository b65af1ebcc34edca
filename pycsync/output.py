"""Output formatting for CLI and engine status messages."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Writes user-facing messages to a rich console.

    The formatter is handed to the sync engine, manager and daemon so that
    callers (CLI, tests) decide where output goes instead of relying on
    global state.
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        """Initialize output formatter.

        Args:
            json_output: Emit machine-readable JSON instead of styled text
            quiet: Suppress informational messages (errors are still shown)
            console: Console for regular output
            err_console: Console for warnings and errors
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)

    def print(self, message: str = "") -> None:
        """Print a plain line unless quiet or in JSON mode."""
        if self.quiet or self.json_output:
            return
        self.console.print(message, markup=False)

    def info(self, message: str) -> None:
        """Print an informational message."""
        if self.quiet or self.json_output:
            return
        self.console.print(message, markup=False)

    def success(self, message: str) -> None:
        """Print a success message."""
        if self.quiet or self.json_output:
            return
        self.console.print(f"[green]✓[/green] {message}")

    def warning(self, message: str) -> None:
        """Print a warning message."""
        if self.json_output:
            return
        self.err_console.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        """Print an error message (shown even in quiet mode)."""
        if self.json_output:
            self.err_console.print(json.dumps({"error": message}), markup=False)
            return
        self.err_console.print(f"[red]Error:[/red] {message}")

    def print_json(self, data: Any) -> None:
        """Print data as JSON."""
        self.console.print(
            json.dumps(data, indent=2, default=str), markup=False, soft_wrap=True
        )

    def print_table(
        self,
        columns: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Print rows as a table (or JSON objects in JSON mode).

        Args:
            columns: Column headers
            rows: Row values, one list per row
            title: Optional table title
        """
        if self.json_output:
            self.print_json([dict(zip(columns, row)) for row in rows])
            return
        if self.quiet:
            return

        table = Table(title=title)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        self.console.print(table)
