"""
查询模板仓库
Built-in and user supplied KQL templates with ``{{name}}`` placeholders
"""

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..core.interfaces import TemplateRepository
from ..models import QueryTemplate, TemplateParameter, TemplateParameterType
from ..utils.exceptions import ConfigurationError, TemplateParameterError
from ..utils.logging import get_logger

logger = get_logger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

TIMESPAN_VALUES = ["15m", "1h", "6h", "1d", "7d"]
BIN_VALUES = ["1m", "5m", "15m", "1h"]


def _timespan_parameter() -> TemplateParameter:
    return TemplateParameter(
        name="timespan",
        type=TemplateParameterType.TIMESPAN,
        description="Time period to analyze",
        default_value="1h",
        valid_values=TIMESPAN_VALUES
    )


def _bin_parameter() -> TemplateParameter:
    return TemplateParameter(
        name="binSize",
        type=TemplateParameterType.TIMESPAN,
        description="Aggregation bin size",
        default_value="5m",
        valid_values=BIN_VALUES
    )


BUILTIN_TEMPLATES = [
    QueryTemplate(
        id="requests-overview",
        name="Requests Overview",
        description="Get an overview of web requests over a time period",
        category="Performance",
        query_template=(
            "requests\n"
            "| where timestamp > ago({{timespan}})\n"
            "| summarize RequestCount = count(), AvgDuration = avg(duration), "
            "SuccessRate = round(100.0 * countif(success == true) / count(), 2)\n"
            "  by bin(timestamp, {{binSize}})\n"
            "| order by timestamp desc"
        ),
        parameters=[_timespan_parameter(), _bin_parameter()],
        tags=["requests", "performance", "overview"]
    ),
    QueryTemplate(
        id="errors-analysis",
        name="Error Analysis",
        description="Analyze application exceptions and failures over time",
        category="Troubleshooting",
        query_template=(
            "exceptions\n"
            "| where timestamp > ago({{timespan}})\n"
            "| summarize ErrorCount = count(), UniqueErrors = dcount(type)\n"
            "  by bin(timestamp, {{binSize}}), type\n"
            "| order by timestamp desc, ErrorCount desc"
        ),
        parameters=[_timespan_parameter(), _bin_parameter()],
        tags=["exceptions", "errors", "troubleshooting"]
    ),
    QueryTemplate(
        id="performance-insights",
        name="Performance Insights",
        description="Analyze application performance counters and trends",
        category="Performance",
        query_template=(
            "performanceCounters\n"
            "| where timestamp > ago({{timespan}})\n"
            "| where categoryName == \"{{category}}\"\n"
            "| summarize AvgValue = avg(value), MaxValue = max(value)\n"
            "  by bin(timestamp, {{binSize}}), counterName\n"
            "| order by timestamp desc"
        ),
        parameters=[
            _timespan_parameter(),
            TemplateParameter(
                name="category",
                type=TemplateParameterType.STRING,
                description="Performance counter category",
                default_value="Process",
                valid_values=["Process", "Memory", "Processor", "ASP.NET Applications"]
            ),
            _bin_parameter()
        ],
        tags=["performance", "counters"]
    ),
    QueryTemplate(
        id="dependency-analysis",
        name="Dependency Analysis",
        description="Analyze external dependency calls and their performance",
        category="Dependencies",
        query_template=(
            "dependencies\n"
            "| where timestamp > ago({{timespan}})\n"
            "| summarize CallCount = count(), AvgDuration = avg(duration), "
            "FailureCount = countif(success == false)\n"
            "  by bin(timestamp, {{binSize}}), type, target\n"
            "| order by timestamp desc, CallCount desc"
        ),
        parameters=[_timespan_parameter(), _bin_parameter()],
        tags=["dependencies", "performance"]
    ),
]


def format_parameter_value(value: Any, parameter_type: TemplateParameterType) -> str:
    """
    Render a parameter value for substitution.

    Strings are inserted verbatim so the template controls quoting.
    """
    if parameter_type == TemplateParameterType.DATETIME:
        if isinstance(value, datetime):
            return f"datetime({value.isoformat()})"
        text = str(value)
        return text if text.startswith("datetime(") else f"datetime({text})"
    return str(value)


class JsonTemplateRepository(TemplateRepository):
    """
    Template repository backed by the built-in set plus an optional JSON file.

    The file holds either a list of templates or ``{"templates": [...]}``;
    user templates override built-ins with the same id.
    """

    def __init__(self, templates_path: Optional[Union[str, Path]] = None, include_builtin: bool = True):
        self.templates_path = Path(templates_path) if templates_path else None
        self._templates: Dict[str, QueryTemplate] = {}
        if include_builtin:
            for template in BUILTIN_TEMPLATES:
                self._templates[template.id] = template
        if self.templates_path is not None:
            self._load_file(self.templates_path)

    def _load_file(self, path: Path) -> None:
        if not path.exists():
            logger.debug(f"User templates file not found: {path}")
            return

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load templates from {path}: {str(e)}") from e

        entries = data.get("templates", []) if isinstance(data, dict) else data
        loaded = 0
        for entry in entries:
            try:
                template = QueryTemplate(**entry)
                self.validate_template(template)
            except (ValidationError, TemplateParameterError, TypeError) as e:
                logger.warning(f"Skipping invalid template in {path}: {str(e)}")
                continue
            self._templates[template.id] = template
            loaded += 1

        logger.info(f"Loaded {loaded} user template(s) from {path}")

    @staticmethod
    def validate_template(template: QueryTemplate) -> None:
        """Every placeholder must be declared as a parameter"""
        declared = {p.name for p in template.parameters}
        for placeholder in PLACEHOLDER_PATTERN.findall(template.query_template):
            if placeholder not in declared:
                raise TemplateParameterError(
                    f"Template parameter '{placeholder}' not defined in parameters list"
                )

    async def get_template(self, template_id: str) -> Optional[QueryTemplate]:
        template = self._templates.get(template_id)
        if template is None:
            logger.warning(f"Template not found: {template_id}")
        return template

    async def list_templates(self, category: Optional[str] = None) -> List[QueryTemplate]:
        templates = list(self._templates.values())
        if category:
            templates = [t for t in templates if t.category.lower() == category.lower()]
        return sorted(templates, key=lambda t: (t.category, t.name))

    async def apply_template(self, template: QueryTemplate, parameters: Dict[str, Any]) -> str:
        logger.info(f"Applying template: {template.id}")
        self._validate_parameters(template, parameters)

        query = template.query_template
        for param in template.parameters:
            value = parameters.get(param.name)
            if value is None:
                value = param.default_value
            if value is None:
                continue
            query = query.replace(f"{{{{{param.name}}}}}", format_parameter_value(value, param.type))

        return query

    @staticmethod
    def _validate_parameters(template: QueryTemplate, parameters: Dict[str, Any]) -> None:
        for param in template.parameters:
            value = parameters.get(param.name)
            if value is None and param.required and param.default_value is None:
                raise TemplateParameterError(f"Required parameter '{param.name}' is missing")
            if value is not None and param.valid_values and value not in param.valid_values:
                raise TemplateParameterError(
                    f"Invalid value '{value}' for parameter '{param.name}'. "
                    f"Valid values: {', '.join(str(v) for v in param.valid_values)}"
                )
