"""
Azure Portal 外部执行
Opens a query in the Application Insights Logs blade
"""

import asyncio
import base64
import gzip
import webbrowser
from typing import Callable, List
from urllib.parse import quote

from ..core.interfaces import ExternalExecutionProvider
from ..models import ExternalExecutionResult, SystemConfig
from ..utils.exceptions import ConfigurationError
from ..utils.logging import get_logger

logger = get_logger(__name__)

PORTAL_BASE_URL = "https://portal.azure.com"

REQUIRED_FIELDS = {
    "azure_tenant_id": "tenantId",
    "azure_subscription_id": "subscriptionId",
    "azure_resource_group": "resourceGroup",
    "azure_resource_name": "resourceName",
}


def encode_query(query: str) -> str:
    """gzip, base64 and URL-quote a query for a portal share link"""
    compressed = gzip.compress(query.encode('utf-8'))
    return quote(base64.b64encode(compressed).decode('ascii'), safe='')


class PortalExternalExecutionProvider(ExternalExecutionProvider):
    """Deep links into the Azure Portal Logs blade"""

    def __init__(self, config: SystemConfig, opener: Callable[[str], bool] = webbrowser.open):
        self.config = config
        self._opener = opener

    def missing_fields(self) -> List[str]:
        return [label for field, label in REQUIRED_FIELDS.items() if not getattr(self.config, field)]

    def validate_configuration(self) -> bool:
        return not self.missing_fields()

    def generate_url(self, query: str) -> str:
        missing = self.missing_fields()
        if missing:
            raise ConfigurationError(
                f"Cannot generate Azure Portal URL. Missing required configuration: {', '.join(missing)}"
            )

        resource_id = quote(
            f"/subscriptions/{self.config.azure_subscription_id}"
            f"/resourceGroups/{self.config.azure_resource_group}"
            f"/providers/Microsoft.Insights/components/{self.config.azure_resource_name}",
            safe=''
        )
        url = (
            f"{PORTAL_BASE_URL}/#@{self.config.azure_tenant_id}"
            f"/blade/Microsoft_Azure_Monitoring_Logs/LogsBlade/resourceId/{resource_id}"
            f"/source/LogsBlade.AnalyticsShareLinkToQuery/q/{encode_query(query)}"
        )
        logger.debug(f"Generated Azure Portal URL: {url}")
        return url

    async def open_query(self, query: str) -> ExternalExecutionResult:
        try:
            url = self.generate_url(query)
        except ConfigurationError as e:
            return ExternalExecutionResult(launched=False, error=str(e))

        launched = await asyncio.get_running_loop().run_in_executor(None, self._opener, url)
        if not launched:
            logger.warning("No browser available to open the portal link")
            return ExternalExecutionResult(
                url=url,
                launched=False,
                error=f"Could not open a browser. Open this URL manually: {url}"
            )

        logger.info("Opened query in Azure Portal")
        return ExternalExecutionResult(url=url, launched=True)
