"""Rich-powered console output for MutaGraph."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from mutagraph import __version__
from mutagraph.mutation.models import RunReport, Verdict
from mutagraph.operators.models import Operator

VERDICT_STYLES = {
    Verdict.KILLED: "green",
    Verdict.SURVIVED: "red",
    Verdict.NO_COVERAGE: "yellow",
    Verdict.TIMEOUT: "magenta",
    Verdict.ERROR: "bold red",
    Verdict.EQUIVALENT: "dim",
}


class Console:
    """Terminal output for MutaGraph using Rich."""

    def __init__(self, file=None) -> None:
        self.console = RichConsole(file=file)

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]MutaGraph[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Coverage-guided mutation testing[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def run_progress(self) -> Progress:
        """Progress bar for mutant execution."""
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=self.console,
        )

    def show_report(self, report: RunReport, max_survivors: int = 50) -> None:
        """Verdict counts, score and the surviving mutants."""
        table = Table(title="Mutation Results", border_style="cyan")
        table.add_column("Verdict", style="bold")
        table.add_column("Count", justify="right", style="cyan")
        for verdict, style in VERDICT_STYLES.items():
            table.add_row(f"[{style}]{verdict.value}[/{style}]", str(report.count(verdict)))

        table.add_section()
        table.add_row("Files scanned", str(report.files_scanned))
        table.add_row("Forms changed", str(report.forms_changed))
        table.add_row("Forms reused", str(report.forms_reused))
        table.add_row("Candidates", str(report.candidates))
        table.add_row("Subsumed", str(report.subsumed))
        table.add_row("Executed", str(report.executed))
        self.console.print(table)

        score = report.score
        if score is None:
            self.info("No killed or survived mutants; score undefined")
        else:
            color = "green" if score >= 0.8 else "yellow" if score >= 0.5 else "red"
            self.console.print(f"[bold]Mutation score:[/bold] [{color}]{score:.1%}[/{color}]")

        survivors = report.survivors()
        if not survivors:
            return
        table = Table(title="Surviving mutants", border_style="red")
        table.add_column("Location", style="cyan")
        table.add_column("Operator")
        table.add_column("Replacement", style="bold")
        for result in survivors[:max_survivors]:
            site = result.site
            table.add_row(f"{site.file}:{site.line}", site.operator_id, site.replacement or "")
        self.console.print(table)
        if len(survivors) > max_survivors:
            self.console.print(f"[dim]... {len(survivors) - max_survivors} more[/dim]")

    def show_operators(self, operators: list[Operator]) -> None:
        table = Table(title="Mutation Operators", border_style="cyan")
        table.add_column("Id", style="bold")
        table.add_column("Category")
        table.add_column("Hardness", justify="right")
        table.add_column("Dominates", style="dim")
        table.add_column("Description")
        for op in operators:
            table.add_row(
                op.id,
                op.category,
                f"{op.hardness:.2f}",
                ", ".join(sorted(d.split("->", 1)[1] for d in op.dominates)),
                op.description,
            )
        self.console.print(table)

    def show_status(self, info: dict) -> None:
        table = Table(title="MutaGraph Status", border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right", style="cyan")
        for key, value in info.items():
            table.add_row(key, str(value))
        self.console.print(table)
