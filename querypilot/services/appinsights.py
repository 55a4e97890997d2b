"""
Application Insights 数据源
Runs KQL against the Application Insights REST API
"""

from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientTimeout

from ..core.interfaces import DataSourceProvider
from ..models import QueryColumn, QueryTable, QueryResult, SystemConfig
from ..utils.exceptions import ConfigurationError, ProviderError
from ..utils.logging import get_logger

logger = get_logger(__name__)


def parse_query_response(data: Dict[str, Any]) -> QueryResult:
    """Map the REST ``tables`` payload to a QueryResult"""
    tables = []
    for table in data.get("tables") or []:
        columns = [
            QueryColumn(name=col.get("name", ""), type=col.get("type", "string"))
            for col in table.get("columns") or []
        ]
        tables.append(QueryTable(
            name=table.get("name", "PrimaryResult"),
            columns=columns,
            rows=table.get("rows") or []
        ))
    return QueryResult(tables=tables)


class ApplicationInsightsDataSource(DataSourceProvider):
    """aiohttp client for ``{endpoint}/v1/apps/{application_id}``"""

    def __init__(self, config: SystemConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.session = session
        self._owns_session = session is None
        self._schema: Optional[Dict[str, Any]] = None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def base_url(self) -> str:
        if not self.config.appinsights_application_id:
            raise ConfigurationError("APPINSIGHTS_APPLICATION_ID is not configured")
        return f"{self.config.appinsights_endpoint.rstrip('/')}/v1/apps/{self.config.appinsights_application_id}"

    async def initialize(self):
        if self.session is not None:
            return

        if not self.config.appinsights_api_key:
            raise ConfigurationError("APPINSIGHTS_API_KEY is not configured")

        timeout = ClientTimeout(total=self.config.collaborator_timeout, connect=min(self.config.collaborator_timeout, 15))
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            headers={
                "x-api-key": self.config.appinsights_api_key,
                "User-Agent": "QueryPilot/1.0"
            }
        )
        self._owns_session = True
        logger.info("Application Insights client initialized")

    async def close(self):
        if self.session is not None and self._owns_session:
            await self.session.close()
        self.session = None

    async def execute_query(self, query: str) -> QueryResult:
        await self.initialize()
        url = f"{self.base_url}/query"
        logger.debug(f"Executing query against {url}")

        try:
            async with self.session.post(url, json={"query": query}) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise ProviderError(f"Query failed with status {response.status}: {error_text}")
                data = await response.json()
        except aiohttp.ClientError as e:
            logger.error(f"Application Insights request failed: {str(e)}")
            raise ProviderError(f"Application Insights request failed: {str(e)}") from e

        result = parse_query_response(data)
        logger.info(f"Query returned {result.row_count} rows in {len(result.tables)} tables")
        return result

    async def get_schema(self) -> Optional[Dict[str, Any]]:
        """Metadata of the application; None when it cannot be retrieved"""
        if self._schema is not None:
            return self._schema

        await self.initialize()
        try:
            async with self.session.get(f"{self.base_url}/metadata") as response:
                if response.status != 200:
                    logger.warning(f"Schema retrieval failed with status {response.status}")
                    return None
                self._schema = await response.json()
        except aiohttp.ClientError as e:
            logger.warning(f"Schema retrieval failed: {str(e)}")
            return None

        return self._schema

    async def validate_connection(self) -> bool:
        """Check credentials by fetching metadata"""
        try:
            return await self.get_schema() is not None
        except ConfigurationError as e:
            logger.warning(f"Application Insights not configured: {str(e)}")
            return False
