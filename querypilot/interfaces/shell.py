"""
交互式命令行
Interactive shell around a QueryService
"""

import re
from typing import Optional

from rich.console import Console

from ..core.coordinator import QueryService
from ..models import ExecutionMode, QueryResultWithTiming
from ..utils.exceptions import QueryPilotError
from ..utils.logging import get_logger
from .command_handlers import build_command_handlers, show_banner
from .cli import render_result

logger = get_logger(__name__)

KQL_TABLES = (
    "requests", "dependencies", "exceptions", "pageViews", "customEvents",
    "traces", "performanceCounters", "availabilityResults"
)
BARE_TABLE = re.compile(rf"^\s*({'|'.join(KQL_TABLES)})\s*$", re.IGNORECASE)


def looks_like_kql(text: str) -> bool:
    """A pipe, or nothing but a table name, marks input as KQL rather than a question"""
    return "|" in text or bool(BARE_TABLE.match(text))


class QueryPilotCLI:
    """交互式CLI"""

    def __init__(self, service: QueryService, console: Optional[Console] = None):
        self.service = service
        self.console = console or Console()
        self.handlers = build_command_handlers(self.console)
        self.session_id: Optional[str] = None

    def _ensure_session(self) -> str:
        if self.session_id is None or self.service.get_session(self.session_id) is None:
            self.session_id = self.service.create_session().session_id
        return self.session_id

    async def run_interactive_mode(self):
        """运行交互模式"""
        self._ensure_session()
        self.service.start_idle_sweeper()
        show_banner(self.console, self.service.get_system_status())

        try:
            while True:
                try:
                    user_input = self.console.input("\n[bold cyan]QueryPilot>[/bold cyan] ").strip()
                    if not user_input:
                        continue
                    if user_input.lower() in ['quit', 'exit', 'q']:
                        self.console.print("[yellow]Goodbye![/yellow]")
                        break
                    await self.handle_input(user_input)
                except KeyboardInterrupt:
                    self.console.print("\n[yellow]Interrupted[/yellow]")
                    break
                except EOFError:
                    break
        finally:
            await self.cleanup()

    async def handle_input(self, user_input: str) -> None:
        """Dispatch a command, or process the input as a query"""
        session_id = self._ensure_session()
        context = {"service": self.service, "session_id": session_id, "cli": self}

        try:
            for handler in self.handlers:
                if handler.can_handle(user_input):
                    await handler.handle(user_input, context)
                    return

            result = await self.process_single_query(user_input)
            if result is None:
                self.console.print("[yellow]Query execution was cancelled.[/yellow]")
            else:
                render_result(self.console, result)
        except QueryPilotError as e:
            logger.error(f"Query failed: {str(e)}")
            self.console.print(f"[red]✗ {str(e)}[/red]")

    async def process_single_query(self, user_input: str) -> Optional[QueryResultWithTiming]:
        """处理单个查询"""
        session_id = self._ensure_session()
        mode = ExecutionMode.RAW if looks_like_kql(user_input) else None
        if mode is ExecutionMode.RAW:
            self.console.print("[dim]Detected KQL input, executing as raw query[/dim]")
        return await self.service.process_user_query(session_id, user_input, mode=mode)

    async def cleanup(self):
        if self.session_id is not None:
            await self.service.end_session(self.session_id, reason="shell exit")
            self.session_id = None
        await self.service.close()
