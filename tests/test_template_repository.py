import json
from datetime import datetime

import pytest

from querypilot.models import QueryTemplate, TemplateParameter, TemplateParameterType
from querypilot.services.template_repository import JsonTemplateRepository, format_parameter_value
from querypilot.utils.exceptions import ConfigurationError, TemplateParameterError


@pytest.fixture
def user_templates(tmp_path):
    path = tmp_path / "templates.json"
    path.write_text(json.dumps({"templates": [
        {
            "id": "slow-requests",
            "name": "Slow Requests",
            "category": "Performance",
            "query_template": "requests | where duration > {{threshold}} | where name == \"{{name}}\"",
            "parameters": [
                {"name": "threshold", "type": "number", "default_value": 1000},
                {"name": "name", "type": "string"}
            ]
        },
        {
            "id": "broken",
            "name": "Broken",
            "query_template": "traces | take {{count}}",
            "parameters": []
        }
    ]}), encoding="utf-8")
    return path


@pytest.mark.asyncio
async def test_builtin_templates_available():
    repository = JsonTemplateRepository()
    template = await repository.get_template("requests-overview")
    assert template is not None
    assert template.category == "Performance"
    assert await repository.get_template("missing") is None


@pytest.mark.asyncio
async def test_list_templates_by_category():
    repository = JsonTemplateRepository()
    performance = await repository.list_templates("performance")
    assert {t.id for t in performance} == {"requests-overview", "performance-insights"}
    assert len(await repository.list_templates()) == 4


@pytest.mark.asyncio
async def test_apply_template_uses_defaults():
    repository = JsonTemplateRepository()
    template = await repository.get_template("performance-insights")
    query = await repository.apply_template(template, {})
    assert "ago(1h)" in query
    assert 'categoryName == "Process"' in query
    assert "{{" not in query


@pytest.mark.asyncio
async def test_apply_template_rejects_invalid_value():
    repository = JsonTemplateRepository()
    template = await repository.get_template("requests-overview")
    with pytest.raises(TemplateParameterError) as exc_info:
        await repository.apply_template(template, {"binSize": "2m"})
    assert "Valid values" in str(exc_info.value)


@pytest.mark.asyncio
async def test_load_user_templates(user_templates):
    """Valid user templates are loaded; templates with undeclared placeholders are skipped"""
    repository = JsonTemplateRepository(user_templates)
    template = await repository.get_template("slow-requests")
    assert template is not None
    assert await repository.get_template("broken") is None

    query = await repository.apply_template(template, {"name": "GET /"})
    assert query == 'requests | where duration > 1000 | where name == "GET /"'


@pytest.mark.asyncio
async def test_missing_required_parameter(user_templates):
    repository = JsonTemplateRepository(user_templates, include_builtin=False)
    template = await repository.get_template("slow-requests")
    with pytest.raises(TemplateParameterError):
        await repository.apply_template(template, {})
    assert await repository.list_templates() == [template]


def test_missing_templates_file_is_ignored(tmp_path):
    repository = JsonTemplateRepository(tmp_path / "nope.json")
    assert repository.templates_path == tmp_path / "nope.json"


def test_malformed_templates_file(tmp_path):
    path = tmp_path / "templates.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        JsonTemplateRepository(path)


def test_validate_template():
    template = QueryTemplate(
        id="t", name="t", query_template="requests | take {{n}}",
        parameters=[TemplateParameter(name="m")]
    )
    with pytest.raises(TemplateParameterError):
        JsonTemplateRepository.validate_template(template)


@pytest.mark.parametrize("value, parameter_type, expected", [
    ("abc", TemplateParameterType.STRING, "abc"),
    (5, TemplateParameterType.NUMBER, "5"),
    ("1h", TemplateParameterType.TIMESPAN, "1h"),
    ("2024-01-01", TemplateParameterType.DATETIME, "datetime(2024-01-01)"),
    ("datetime(2024-01-01)", TemplateParameterType.DATETIME, "datetime(2024-01-01)"),
    (datetime(2024, 1, 1, 12, 0), TemplateParameterType.DATETIME, "datetime(2024-01-01T12:00:00)"),
])
def test_format_parameter_value(value, parameter_type, expected):
    assert format_parameter_value(value, parameter_type) == expected
