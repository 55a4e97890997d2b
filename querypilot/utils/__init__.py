"""
QueryPilot 工具模块

包含各种工具函数：
- logging: 日志工具
- exceptions: 自定义异常
- config: 配置加载
- paths: 项目路径
"""

from .logging import setup_logging, get_logger
from .exceptions import (
    QueryPilotError, ConfigurationError, ProviderError, SessionNotFound,
    GenerationFailed, ExecutionFailed, TemplateRepositoryNotConfigured,
    TemplateNotFound, TemplateExecutionFailed, TemplateParameterError,
    ValidationRejected, RegenerationNoOp
)
from .config import load_config

__all__ = [
    "setup_logging",
    "get_logger",
    "load_config",
    "QueryPilotError",
    "ConfigurationError",
    "ProviderError",
    "SessionNotFound",
    "GenerationFailed",
    "ExecutionFailed",
    "TemplateRepositoryNotConfigured",
    "TemplateNotFound",
    "TemplateExecutionFailed",
    "TemplateParameterError",
    "ValidationRejected",
    "RegenerationNoOp"
]
