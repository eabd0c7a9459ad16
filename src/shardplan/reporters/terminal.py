"""Terminal reporter with rich output formatting.

Tables go to stdout.  Status lines (success, warning, error) go to stderr so
they never mix with JSON printed by the same command.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from shardplan.discovery.playwright import DiscoveredTest
    from shardplan.models.unit import AssignResult, LaneAssignment

console = Console()
err_console = Console(stderr=True)

_MS_PER_SECOND = 1000.0
_SECONDS_PER_MINUTE = 60.0
_MAX_ESTIMATED_DISPLAY = 10
_GOOD_BALANCE = 1.2


def format_duration(duration_ms: float) -> str:
    """Format milliseconds as seconds or minutes."""
    seconds = duration_ms / _MS_PER_SECOND
    if seconds >= _SECONDS_PER_MINUTE:
        return f"{seconds / _SECONDS_PER_MINUTE:.1f}m"
    return f"{seconds:.1f}s"


def _balance_color(ratio: float) -> str:
    return "green" if ratio <= _GOOD_BALANCE else "yellow"


class CLIReporter:
    """Rich terminal output for shardplan commands."""

    def __init__(self, out: Console | None = None, err: Console | None = None) -> None:
        self.console = out or console
        self.err_console = err or err_console

    def print_header(self, title: str) -> None:
        self.console.print(f"\n[bold cyan]{title}[/bold cyan]\n")

    def print_success(self, message: str) -> None:
        self.err_console.print(f"[green]✓[/green] {message}")

    def print_error(self, message: str) -> None:
        self.err_console.print(f"[red]✗[/red] {message}")

    def print_warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]⚠[/yellow] {message}")

    # ── Discovery ─────────────────────────────────────────────────

    def print_discovered_tests(
        self,
        grouped: dict[str, list[DiscoveredTest]],
        *,
        show_ids: bool = False,
    ) -> None:
        """Print tests grouped by file."""
        self.print_header("Discovered Tests")
        total = 0
        for file_path, tests in grouped.items():
            self.console.print(f"[bold]{file_path}[/bold]")
            for test in tests:
                self.console.print(f"  - {' > '.join(test.test_id.title_path)}")
                if show_ids:
                    self.console.print(f"    [dim]ID: {test.id}[/dim]")
            total += len(tests)
        self.console.print(f"\nTotal: [bold]{total}[/bold] tests in [bold]{len(grouped)}[/bold] files")

    # ── Assignment ────────────────────────────────────────────────

    def print_lane_table(self, lanes: list[LaneAssignment], *, item_label: str = "Tests") -> None:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Shard", justify="right")
        table.add_column(item_label, justify="right")
        table.add_column("Expected", justify="right")
        for lane in lanes:
            table.add_row(str(lane.index), str(len(lane.unit_ids)), format_duration(lane.expected_duration))
        self.console.print(table)

    def print_assignment(
        self,
        result: AssignResult,
        *,
        estimated_ids: list[str] | None = None,
        balance_ratio: float | None = None,
    ) -> None:
        """Print a test-level assignment summary."""
        self.console.print()
        self.console.print(
            Panel(
                f"[bold white]{result.total_units} tests across {len(result.lanes)} shards[/bold white]",
                border_style="cyan",
                padding=(0, 2),
            )
        )
        self.print_lane_table(result.lanes)

        optimal = "[green]optimal[/green]" if result.is_optimal else "[yellow]heuristic (LPT)[/yellow]"
        line = f"  Makespan [bold]{format_duration(result.makespan)}[/bold]  {optimal}"
        if balance_ratio is not None:
            color = _balance_color(balance_ratio)
            line += f"  balance [{color}]{balance_ratio:.2f}[/{color}]"
        self.console.print(line)

        if estimated_ids:
            self.console.print(f"\n  [yellow]{len(estimated_ids)} tests without timing data (estimated)[/yellow]")
            for test_id in estimated_ids[:_MAX_ESTIMATED_DISPLAY]:
                self.console.print(f"    [dim]{test_id}[/dim]")
            hidden = len(estimated_ids) - _MAX_ESTIMATED_DISPLAY
            if hidden > 0:
                self.console.print(f"    [dim]... and {hidden} more[/dim]")

    # ── Timing ────────────────────────────────────────────────────

    def print_merge_summary(self, summary: dict[str, int | str]) -> None:
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column(style="bold")
        table.add_column()
        for key, value in summary.items():
            table.add_row(key, str(value))
        self.console.print(table)


reporter = CLIReporter()
