"""
命令处理器模块 - 处理各种CLI命令
"""

from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..models import ExecutionMode
from ..utils.exceptions import QueryPilotError
from .cli import render_history, render_result

# Settings that can be changed with "set <key> <value>"
SETTABLE_OPTIONS = {
    "language": str,
    "default_mode": ExecutionMode,
    "confidence_threshold": float,
    "allow_editing": lambda v: v.lower() in ("true", "1", "yes", "on"),
    "max_regeneration_attempts": int,
}


class CommandHandler:
    """基础命令处理器"""

    def __init__(self, console: Console):
        self.console = console

    def can_handle(self, command: str) -> bool:
        """检查是否能处理该命令"""
        raise NotImplementedError

    async def handle(self, command: str, context: Dict[str, Any]) -> Any:
        """处理命令"""
        raise NotImplementedError


class HelpCommandHandler(CommandHandler):

    def can_handle(self, command: str) -> bool:
        return command.lower() in ['help', '?']

    async def handle(self, command: str, context: Dict[str, Any]) -> None:
        table = Table(title="Available Commands")
        table.add_column("Command", style="cyan", no_wrap=True)
        table.add_column("Description", style="white")
        table.add_column("Example", style="green")

        table.add_row("help", "Show this help", "help")
        table.add_row("history", "Show queries of this session", "history")
        table.add_row("settings", "Show session settings", "settings")
        table.add_row("set <key> <value>", "Change a session setting", "set max_regeneration_attempts 5")
        table.add_row("mode <mode>", "Default mode: direct, step or raw", "mode direct")
        table.add_row("templates [category]", "List query templates", "templates Performance")
        table.add_row("template <id> [k=v ...]", "Run a template", "template requests-overview timespan=1d")
        table.add_row("status", "Show system status", "status")
        table.add_row("quit/exit", "Leave QueryPilot", "quit")
        table.add_row("anything else", "Ask a question or type KQL", "failed requests in the last hour")

        self.console.print(table)


class StatusCommandHandler(CommandHandler):

    def can_handle(self, command: str) -> bool:
        return command.lower() == 'status'

    async def handle(self, command: str, context: Dict[str, Any]) -> None:
        status = context['service'].get_system_status()

        table = Table(title="System Status", show_header=True, header_style="bold magenta")
        table.add_column("Property", style="cyan", width=24)
        table.add_column("Value", style="white")
        for key, value in status.items():
            table.add_row(key.replace("_", " "), str(value))

        self.console.print(table)


class HistoryCommandHandler(CommandHandler):

    def can_handle(self, command: str) -> bool:
        return command.lower() == 'history'

    async def handle(self, command: str, context: Dict[str, Any]) -> None:
        entries = context['service'].get_session_history(context['session_id'])
        if not entries:
            self.console.print("[yellow]No queries in this session yet.[/yellow]")
            return
        render_history(self.console, entries, title="Session History")


class SettingsCommandHandler(CommandHandler):
    """settings / set <key> <value> / mode <mode>"""

    def can_handle(self, command: str) -> bool:
        head = command.split(maxsplit=1)[0].lower()
        return head in ['settings', 'set', 'mode']

    async def handle(self, command: str, context: Dict[str, Any]) -> None:
        service = context['service']
        session_id = context['session_id']
        parts = command.split()
        head = parts[0].lower()

        if head == 'mode':
            if len(parts) != 2:
                self.console.print("[yellow]Usage: mode <direct|step|raw>[/yellow]")
                return
            parts = ['set', 'default_mode', parts[1]]

        if parts[0].lower() == 'set':
            if len(parts) != 3 or parts[1] not in SETTABLE_OPTIONS:
                self.console.print(f"[yellow]Usage: set <{'|'.join(SETTABLE_OPTIONS)}> <value>[/yellow]")
                return
            key, raw_value = parts[1], parts[2]
            try:
                service.update_session_options(session_id, {key: SETTABLE_OPTIONS[key](raw_value)})
            except (ValueError, QueryPilotError) as e:
                self.console.print(f"[red]Invalid value for {key}: {str(e)}[/red]")
                return
            self.console.print(f"[green]✓ {key} = {raw_value}[/green]")

        options = service.get_session(session_id).options
        table = Table(title="Session Settings")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="white")
        for key, value in options.model_dump(mode="json").items():
            table.add_row(key, str(value))
        self.console.print(table)


class TemplatesCommandHandler(CommandHandler):
    """templates [category] / template <id> [name=value ...]"""

    def can_handle(self, command: str) -> bool:
        head = command.split(maxsplit=1)[0].lower()
        return head in ['templates', 'template']

    async def handle(self, command: str, context: Dict[str, Any]) -> None:
        service = context['service']
        if service.template_repository is None:
            self.console.print("[yellow]Templates are not configured.[/yellow]")
            return

        parts = command.split()
        if parts[0].lower() == 'templates':
            category = parts[1] if len(parts) > 1 else None
            await self._list(service, category)
            return

        if len(parts) < 2:
            self.console.print("[yellow]Usage: template <id> [name=value ...][/yellow]")
            return

        parameters = self._parse_parameters(parts[2:])
        result = await service.process_user_query(
            context['session_id'], parts[1], mode=ExecutionMode.TEMPLATE, parameters=parameters
        )
        render_result(self.console, result)

    async def _list(self, service, category) -> None:
        templates = await service.template_repository.list_templates(category)
        if not templates:
            self.console.print("[yellow]No templates found.[/yellow]")
            return

        table = Table(title="Query Templates")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Category", style="green")
        table.add_column("Description", style="white")
        table.add_column("Parameters", style="yellow")
        for template in templates:
            params = ", ".join(
                f"{p.name}={p.default_value}" if p.default_value is not None else p.name
                for p in template.parameters
            )
            table.add_row(template.id, template.category, template.description, params)
        self.console.print(table)

    @staticmethod
    def _parse_parameters(tokens: List[str]) -> Dict[str, str]:
        parameters = {}
        for token in tokens:
            if "=" in token:
                name, value = token.split("=", 1)
                parameters[name] = value
        return parameters


def build_command_handlers(console: Console) -> List[CommandHandler]:
    return [
        HelpCommandHandler(console),
        StatusCommandHandler(console),
        HistoryCommandHandler(console),
        SettingsCommandHandler(console),
        TemplatesCommandHandler(console),
    ]


def show_banner(console: Console, status: Dict[str, Any]) -> None:
    console.print(Panel.fit(
        "[bold blue]QueryPilot[/bold blue] - natural language to KQL for Application Insights\n"
        f"Model: {status.get('ai_model')}   "
        f"Templates: {'on' if status.get('templates_enabled') else 'off'}   "
        f"Portal: {'on' if status.get('external_enabled') else 'off'}\n"
        "[dim]Type 'help' for commands, 'quit' to exit.[/dim]",
        title="Welcome"
    ))
