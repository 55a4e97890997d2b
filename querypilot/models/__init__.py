"""
QueryPilot 数据模型模块

包含所有数据结构定义：
- session: 会话相关模型
- query: 查询 / 结果 / 模板模型
- config: 配置相关模型
"""

from .session import ExecutionMode, HistoryAction, SessionOptions, HistoryEntry
from .query import (
    Candidate, RegenerationContext, ExplanationOptions, TechnicalLevel,
    QueryColumn, QueryTable, QueryResult, QueryResultWithTiming, ValidationResult,
    NLQueryRequest, TemplateQueryRequest, TemplateParameter, TemplateParameterType,
    QueryTemplate, ExternalExecutionResult
)
from .config import SystemConfig

__all__ = [
    # Session models
    "ExecutionMode",
    "HistoryAction",
    "SessionOptions",
    "HistoryEntry",

    # Query models
    "Candidate",
    "RegenerationContext",
    "ExplanationOptions",
    "TechnicalLevel",
    "QueryColumn",
    "QueryTable",
    "QueryResult",
    "QueryResultWithTiming",
    "ValidationResult",
    "NLQueryRequest",
    "TemplateQueryRequest",
    "TemplateParameter",
    "TemplateParameterType",
    "QueryTemplate",
    "ExternalExecutionResult",

    # Config models
    "SystemConfig"
]
