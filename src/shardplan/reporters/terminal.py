"""Terminal reporter with rich output formatting."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from shardplan.sharding.matrix import RunnerShardPlan

console = Console()

# Display limits for truncation
_MAX_ITEMS_DISPLAY = 8
_MAX_VALUE_LENGTH = 40


def _truncate(value: str, limit: int = _MAX_VALUE_LENGTH) -> str:
    if len(value) > limit:
        return value[: limit - 3] + "..."
    return value


def _format_items(items: list[str]) -> str:
    """Join item names, eliding the tail of long lists."""
    if not items:
        return "[dim]-[/dim]"
    shown = ", ".join(items[:_MAX_ITEMS_DISPLAY])
    hidden = len(items) - _MAX_ITEMS_DISPLAY
    if hidden > 0:
        return f"{shown} [dim](+{hidden} more)[/dim]"
    return shown


class CLIReporter:
    """Rich terminal output for runner matrices and shard plans."""

    def __init__(self) -> None:
        """Initialize the CLI reporter."""
        self.console = console

    def print_success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[green]✓[/green] {message}")

    def print_error(self, message: str) -> None:
        """Print an error message."""
        self.console.print(f"[red]✗[/red] {message}")

    def print_warning(self, message: str) -> None:
        """Print a warning message."""
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def print_matrix(self, rows: list[dict[str, Any]]) -> None:
        """Print matrix rows as a table with one column per distinct key."""
        if not rows:
            self.print_warning("No active runners; the matrix is empty.")
            return

        columns: list[str] = []
        for row in rows:
            columns.extend(key for key in row if key not in columns)

        table = Table(title=f"Runner Matrix ({len(rows)} rows)", title_style="bold cyan")
        for column in columns:
            justify = "right" if column.endswith(("_count", "_index")) else "left"
            table.add_column(column, justify=justify)

        for row in rows:
            table.add_row(*(_truncate(str(row[c])) if c in row else "" for c in columns))

        self.console.print(table)

    def print_shard_plans(self, plans: list[RunnerShardPlan]) -> None:
        """Print per-runner shard membership."""
        table = Table(title="Shard Plan", title_style="bold cyan")
        table.add_column("Runner", style="bold")
        table.add_column("Load", justify="right")
        table.add_column("Shard", justify="right")
        table.add_column("Items", justify="right")
        table.add_column("Members")

        for plan in plans:
            for index, members in enumerate(plan.shards, start=1):
                table.add_row(
                    plan.runner.runner_id if index == 1 else "",
                    str(plan.load) if index == 1 else "",
                    f"{index}/{plan.shard_count}",
                    str(len(members)),
                    _format_items(members),
                )
            table.add_section()

        self.console.print(table)


# Singleton instance for easy import
reporter = CLIReporter()
