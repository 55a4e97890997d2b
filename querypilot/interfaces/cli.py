"""
Rich 控制台界面
Console presentation for the step-execution loop and for query results
"""

import asyncio
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.syntax import Syntax
from rich.table import Table

from ..core.interfaces import StepInterface
from ..core.step_executor import StepAction
from ..models import Candidate, HistoryEntry, QueryResultWithTiming

MAX_DISPLAY_ROWS = 50

ACTION_LABELS = {
    StepAction.EXECUTE: "[green]Execute[/green] - run this query",
    StepAction.EXPLAIN: "[cyan]Explain[/cyan] - describe what the query does",
    StepAction.REGENERATE: "[yellow]Regenerate[/yellow] - ask for a different approach",
    StepAction.EDIT: "[magenta]Edit[/magenta] - modify the query manually",
    StepAction.HISTORY: "[blue]History[/blue] - pick a previous query",
    StepAction.EXTERNAL: "[blue]Portal[/blue] - open the query in Azure Portal",
    StepAction.CANCEL: "[red]Cancel[/red] - discard this query",
}


def _confidence_style(confidence: float) -> str:
    if confidence >= 0.8:
        return "green"
    if confidence >= 0.6:
        return "yellow"
    return "red"


def render_result(console: Console, result: QueryResultWithTiming, max_rows: int = MAX_DISPLAY_ROWS) -> None:
    """显示查询结果"""
    tables = result.result.tables
    if not tables or result.result.row_count == 0:
        console.print("[yellow]Query returned no rows.[/yellow]")
    for query_table in tables:
        table = Table(title=f"{query_table.name} ({len(query_table.rows)} rows)")
        for column in query_table.columns:
            table.add_column(column.name, style="cyan" if column.type == "datetime" else "white")
        for row in query_table.rows[:max_rows]:
            table.add_row(*("" if value is None else str(value) for value in row))
        console.print(table)
        if len(query_table.rows) > max_rows:
            console.print(f"[dim]... {len(query_table.rows) - max_rows} more rows not shown[/dim]")

    console.print(f"[dim]Executed in {result.execution_time_ms:.0f}ms[/dim]")


def render_history(console: Console, entries: List[HistoryEntry], title: str = "Query History") -> None:
    table = Table(title=title)
    table.add_column("#", style="cyan", no_wrap=True)
    table.add_column("Action", style="green")
    table.add_column("Confidence", style="yellow")
    table.add_column("Time", style="dim")
    table.add_column("Query", style="white")

    for index, entry in enumerate(entries, 1):
        query = entry.query.replace("\n", " ")
        table.add_row(
            str(index),
            entry.action.value,
            f"{entry.confidence:.0%}",
            entry.timestamp.strftime("%H:%M:%S"),
            query[:80] + "..." if len(query) > 80 else query
        )
    console.print(table)


class ConsoleStepInterface(StepInterface):
    """StepInterface rendered with rich"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def show_candidate(self, candidate: Candidate, original_question: str) -> None:
        style = _confidence_style(candidate.confidence)
        header = (
            f"[bold]Question:[/bold] {original_question}\n"
            f"[bold]Confidence:[/bold] [{style}]{candidate.confidence:.0%}[/{style}]"
            f"   [bold]Attempt:[/bold] {candidate.attempt_number}"
            f"   [bold]Source:[/bold] {candidate.provenance.value}"
        )
        if candidate.reasoning:
            header += f"\n[bold]Reasoning:[/bold] [dim]{candidate.reasoning}[/dim]"

        self.console.print(Panel.fit(header, title="Generated Query"))
        self.console.print(Syntax(candidate.text, "sql", word_wrap=True))

    def show_warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠ {message}[/yellow]")

    def show_info(self, message: str) -> None:
        self.console.print(f"[dim]{message}[/dim]")

    def show_error(self, message: str) -> None:
        self.console.print(f"[red]✗ {message}[/red]")

    def show_explanation(self, explanation: str) -> None:
        self.console.print(Panel(explanation, title="Query Explanation", border_style="cyan"))

    async def choose_action(self, actions: List[StepAction]) -> StepAction:
        self.console.print("\n[bold]What would you like to do?[/bold]")
        for index, action in enumerate(actions, 1):
            self.console.print(f"{index}. {ACTION_LABELS.get(action, action.value)}")

        choices = [str(i) for i in range(1, len(actions) + 1)]
        choice = await self._ask("Select an action", choices=choices, default="1")
        return actions[int(choice) - 1]

    async def choose_history_entry(self, entries: List[HistoryEntry]) -> Optional[int]:
        if not entries:
            self.show_info("No previous queries in this session.")
            return None

        render_history(self.console, entries)
        choices = ["0"] + [str(i) for i in range(1, len(entries) + 1)]
        choice = await self._ask("Select a query (0 to keep the current one)", choices=choices, default="0")
        index = int(choice)
        return index - 1 if index > 0 else None

    async def _ask(self, prompt: str, choices: List[str], default: str) -> str:
        return await asyncio.get_running_loop().run_in_executor(
            None,
            lambda: Prompt.ask(prompt, choices=choices, default=default, console=self.console)
        )
