"""
Query editor backed by $EDITOR or an inline prompt
"""

import asyncio
import os
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

from rich.console import Console

from ..core.interfaces import QueryEditor
from ..utils.logging import get_logger

logger = get_logger(__name__)


class ConsoleQueryEditor(QueryEditor):
    """
    Opens the query in the user's editor when ``$VISUAL``/``$EDITOR`` is set,
    otherwise reads replacement lines from the console until an empty line.
    """

    def __init__(self, console: Optional[Console] = None, editor_command: Optional[str] = None):
        self.console = console or Console()
        self.editor_command = editor_command or os.getenv("VISUAL") or os.getenv("EDITOR")

    async def edit_query(self, current_query: str) -> Optional[str]:
        loop = asyncio.get_running_loop()
        if self.editor_command:
            edited = await loop.run_in_executor(None, self._edit_in_editor, current_query)
        else:
            edited = await loop.run_in_executor(None, self._edit_inline, current_query)

        if edited is None or not edited.strip() or edited.strip() == current_query.strip():
            return None
        return edited.strip()

    def _edit_in_editor(self, current_query: str) -> Optional[str]:
        with tempfile.NamedTemporaryFile('w', suffix='.kql', delete=False, encoding='utf-8') as f:
            f.write(current_query)
            path = Path(f.name)

        try:
            command = shlex.split(self.editor_command) + [str(path)]
            completed = subprocess.run(command)
            if completed.returncode != 0:
                logger.warning(f"Editor exited with status {completed.returncode}")
                return None
            return path.read_text(encoding='utf-8')
        finally:
            path.unlink(missing_ok=True)

    def _edit_inline(self, current_query: str) -> Optional[str]:
        self.console.print("[bold]Current query:[/bold]")
        self.console.print(current_query)
        self.console.print("[dim]Enter the new query. Finish with an empty line; "
                           "an empty first line keeps the current query.[/dim]")

        lines = []
        while True:
            line = self.console.input("")
            if not line.strip():
                break
            lines.append(line)
        return "\n".join(lines) if lines else None
