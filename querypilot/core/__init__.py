"""
QueryPilot 核心模块

包含系统的核心组件：
- session: 会话存储
- orchestrator: 查询编排器
- step_executor: 逐步执行引擎
- coordinator: 查询服务
"""

from .session import SessionManager, QuerySession
from .orchestrator import QueryOrchestrator
from .step_executor import (
    StepAction, StepPhase, StepState, StepContext, StepExecutionEngine,
    available_actions, transition
)
from .coordinator import QueryService, QueryServiceFactory
from .events import EventBus

__all__ = [
    "SessionManager",
    "QuerySession",
    "QueryOrchestrator",
    "StepAction",
    "StepPhase",
    "StepState",
    "StepContext",
    "StepExecutionEngine",
    "available_actions",
    "transition",
    "QueryService",
    "QueryServiceFactory",
    "EventBus"
]
