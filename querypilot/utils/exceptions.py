"""
自定义异常类
Exception hierarchy for QueryPilot
"""

from typing import Optional


class QueryPilotError(Exception):
    """QueryPilot基础异常"""
    pass


class ConfigurationError(QueryPilotError):
    """配置错误异常"""
    pass


class ProviderError(QueryPilotError):
    """Upstream collaborator (AI / data source) failure"""
    pass


class SessionNotFound(QueryPilotError):
    """Raised when a session id is not registered in the store"""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class GenerationFailed(QueryPilotError):
    """AI collaborator could not produce a query"""
    pass


class ExecutionFailed(QueryPilotError):
    """Data source rejected or failed to run a query"""
    pass


class TemplateRepositoryNotConfigured(QueryPilotError):
    """Template execution requested without a template repository"""

    def __init__(self, message: str = "Template repository is not configured"):
        super().__init__(message)


class TemplateNotFound(QueryPilotError):
    """Unknown template id"""

    def __init__(self, template_id: str):
        super().__init__(f"Template not found: {template_id}")
        self.template_id = template_id


class TemplateExecutionFailed(QueryPilotError):
    """Parameter application or execution of a template failed"""
    pass


class TemplateParameterError(QueryPilotError):
    """Missing or invalid template parameter"""
    pass


class ValidationRejected(QueryPilotError):
    """Local pre-execution check rejected the query"""

    def __init__(self, reason: str, query: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.query = query


class RegenerationNoOp(QueryPilotError):
    """Regeneration produced no new candidate (identical or empty)"""
    pass
