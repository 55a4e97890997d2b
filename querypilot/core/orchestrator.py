"""
Query Orchestrator - validation, routing and timing of query execution
"""

import asyncio
import re
import time
from typing import Awaitable, Optional, Tuple, TypeVar, Union

from ..models import (
    NLQueryRequest, TemplateQueryRequest, QueryResult, QueryResultWithTiming, ValidationResult
)
from ..utils.exceptions import (
    GenerationFailed, ExecutionFailed, ProviderError, TemplateRepositoryNotConfigured,
    TemplateNotFound, TemplateExecutionFailed
)
from ..utils.logging import get_logger
from .events import EventBus, QueryExecutedEvent, QueryFailedEvent
from .interfaces import AIProvider, DataSourceProvider, TemplateRepository

logger = get_logger(__name__)

T = TypeVar("T")

# (keyword, pattern) pairs checked in order
DESTRUCTIVE_PATTERNS = [
    ("drop table", re.compile(r"\bdrop\s+table\b", re.IGNORECASE)),
    ("delete from", re.compile(r"\bdelete\s+from\b", re.IGNORECASE)),
    ("truncate table", re.compile(r"\btruncate\s+table\b", re.IGNORECASE)),
    ("alter table", re.compile(r"\balter\s+table\b", re.IGNORECASE)),
]


class QueryOrchestrator:
    """
    Stateless router between the AI provider, the data source and the
    template repository.

    Every execution path measures wall-clock time around the data source
    call and returns it with the result. Collaborator calls are bounded by
    ``timeout`` seconds.
    """

    def __init__(self,
                 ai_provider: AIProvider,
                 data_source: DataSourceProvider,
                 template_repository: Optional[TemplateRepository] = None,
                 event_bus: Optional[EventBus] = None,
                 timeout: Optional[float] = 60.0):
        self.ai_provider = ai_provider
        self.data_source = data_source
        self.template_repository = template_repository
        self.event_bus = event_bus
        self.timeout = timeout

    async def execute_natural_language(self, request: Union[NLQueryRequest, str]) -> QueryResultWithTiming:
        """Generate a query from natural language and run it"""
        if isinstance(request, str):
            request = NLQueryRequest(user_input=request)

        logger.info(f"Executing natural language query: {request.user_input!r}")

        try:
            candidate = await self.bounded(
                self.ai_provider.generate_query(request.user_input, request.schema_info)
            )
        except Exception as e:
            logger.error(f"Query generation failed: {str(e)}")
            raise GenerationFailed(f"Query generation failed: {str(e)}") from e

        return await self._run(candidate.text, mode="natural_language")

    async def execute_raw(self, query: str) -> QueryResultWithTiming:
        """Run query text as-is"""
        logger.info(f"Executing raw query: {query}")
        return await self._run(query, mode="raw")

    async def execute_template(self, request: TemplateQueryRequest) -> QueryResultWithTiming:
        """Instantiate a template with parameters and run the resulting query"""
        logger.info(f"Executing template query: {request.template_id}")

        if self.template_repository is None:
            raise TemplateRepositoryNotConfigured()

        try:
            template = await self.template_repository.get_template(request.template_id)
        except Exception as e:
            raise TemplateExecutionFailed(f"Template lookup failed: {str(e)}") from e
        if template is None:
            raise TemplateNotFound(request.template_id)

        try:
            query = await self.template_repository.apply_template(template, request.parameters)
            return await self._run(query, mode="template")
        except Exception as e:
            logger.error(f"Template query {request.template_id} failed: {str(e)}")
            raise TemplateExecutionFailed(f"Template query execution failed: {str(e)}") from e

    def validate(self, query: Optional[str]) -> ValidationResult:
        """
        Cheap local sanity check before execution.

        Advisory only; the data source performs its own validation.
        """
        if query is None or not query.strip():
            return ValidationResult(is_valid=False, error="Query cannot be empty")

        for keyword, pattern in DESTRUCTIVE_PATTERNS:
            if pattern.search(query):
                logger.warning(f"Validation rejected query containing '{keyword}'")
                return ValidationResult(
                    is_valid=False,
                    error=f"Potentially destructive operation detected: {keyword}"
                )

        logger.debug("Query validation passed")
        return ValidationResult(is_valid=True)

    async def _run(self, query: str, mode: str) -> QueryResultWithTiming:
        """Execute against the data source and time it"""
        try:
            result, elapsed_ms = await self._timed(self.data_source.execute_query(query))
        except Exception as e:
            logger.error(f"{mode} query execution failed: {str(e)}")
            await self._publish(QueryFailedEvent(data={"query": query, "mode": mode, "error": str(e)}))
            raise ExecutionFailed(f"Query execution failed: {str(e)}") from e

        logger.info(f"{mode} query executed successfully in {elapsed_ms:.0f}ms")
        await self._publish(QueryExecutedEvent(data={
            "query": query,
            "mode": mode,
            "duration_ms": elapsed_ms,
            "row_count": result.row_count
        }))
        return QueryResultWithTiming(result=result, execution_time_ms=elapsed_ms)

    async def _timed(self, call: Awaitable[QueryResult]) -> Tuple[QueryResult, float]:
        start_time = time.perf_counter()
        result = await self.bounded(call)
        return result, (time.perf_counter() - start_time) * 1000

    async def bounded(self, call: Awaitable[T]) -> T:
        if self.timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Collaborator call timed out after {self.timeout}s") from e

    async def _publish(self, event) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event)
