import io

import pytest
from rich.console import Console

from querypilot.core.step_executor import StepAction
from querypilot.interfaces.shell import QueryPilotCLI, looks_like_kql


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=200, force_terminal=False)


@pytest.fixture
def cli(service, console):
    return QueryPilotCLI(service, console)


@pytest.mark.parametrize("text, expected", [
    ("requests | take 10", True),
    ("traces", True),
    ("  exceptions  ", True),
    ("failed requests in the last hour", False),
    ("show me the slowest dependencies", False),
])
def test_looks_like_kql(text, expected):
    assert looks_like_kql(text) is expected


@pytest.mark.asyncio
async def test_raw_input_skips_generation(cli, ai_provider, data_source):
    result = await cli.process_single_query("requests | take 3")
    assert result is not None
    assert ai_provider.generate_calls == []
    assert data_source.queries == ["requests | take 3"]


@pytest.mark.asyncio
async def test_question_goes_through_step_review(cli, step_interface, data_source):
    step_interface.actions = [StepAction.EXECUTE]
    await cli.handle_input("how many requests?")
    assert data_source.queries == ["requests | count"]
    assert "PrimaryResult" in cli.console.file.getvalue()


@pytest.mark.asyncio
async def test_errors_are_reported_not_raised(cli, data_source):
    await cli.handle_input("drop table requests | take 1")
    assert "drop table" in cli.console.file.getvalue()
    assert data_source.queries == []


@pytest.mark.asyncio
async def test_set_command_updates_session(cli, service):
    await cli.handle_input("set max_regeneration_attempts 1")
    assert service.get_session(cli.session_id).options.max_regeneration_attempts == 1

    await cli.handle_input("mode direct")
    assert service.get_session(cli.session_id).options.default_mode.value == "direct"


@pytest.mark.asyncio
async def test_set_command_rejects_bad_value(cli, service):
    await cli.handle_input("set confidence_threshold high")
    assert "Invalid value" in cli.console.file.getvalue()
    assert service.get_session(cli.session_id).options.confidence_threshold == 0.7


@pytest.mark.asyncio
async def test_template_commands(cli, data_source):
    await cli.handle_input("templates")
    assert "requests-overview" in cli.console.file.getvalue()

    await cli.handle_input("template requests-overview timespan=7d")
    assert "ago(7d)" in data_source.queries[0]


@pytest.mark.asyncio
async def test_history_and_status_commands(cli):
    await cli.handle_input("history")
    assert "No queries in this session yet." in cli.console.file.getvalue()

    await cli.process_single_query("requests | take 1")
    await cli.handle_input("history")
    await cli.handle_input("status")
    output = cli.console.file.getvalue()
    assert "Session History" in output
    assert "System Status" in output


@pytest.mark.asyncio
async def test_cleanup_ends_session(cli, service, event_bus):
    await cli.handle_input("help")
    session_id = cli.session_id
    await cli.cleanup()
    assert service.get_session(session_id) is None
    assert event_bus.store.get_events("SessionEndedEvent")[0].reason == "shell exit"
