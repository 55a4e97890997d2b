"""
QueryPilot 界面模块
"""

from .cli import ConsoleStepInterface, render_result, render_history
from .editor import ConsoleQueryEditor
from .shell import QueryPilotCLI, looks_like_kql

__all__ = [
    "ConsoleStepInterface",
    "ConsoleQueryEditor",
    "QueryPilotCLI",
    "looks_like_kql",
    "render_result",
    "render_history"
]
