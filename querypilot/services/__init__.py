"""
QueryPilot 服务模块

Concrete collaborators used by the core:
- openai_provider: KQL generation via OpenAI
- appinsights: Application Insights data source
- template_repository: query templates
- external_execution: Azure Portal hand-off
"""

from .openai_provider import OpenAIQueryProvider
from .appinsights import ApplicationInsightsDataSource
from .template_repository import JsonTemplateRepository
from .external_execution import PortalExternalExecutionProvider

__all__ = [
    "OpenAIQueryProvider",
    "ApplicationInsightsDataSource",
    "JsonTemplateRepository",
    "PortalExternalExecutionProvider"
]
