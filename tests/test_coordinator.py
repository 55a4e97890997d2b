import asyncio
from datetime import timedelta

import pytest

from querypilot.core.coordinator import QueryService, QueryServiceFactory
from querypilot.core.session import SessionManager
from querypilot.core.step_executor import StepAction
from querypilot.models import Candidate, ExecutionMode, HistoryAction
from querypilot.services import ApplicationInsightsDataSource, JsonTemplateRepository, OpenAIQueryProvider
from querypilot.utils.exceptions import GenerationFailed, SessionNotFound, ValidationRejected

from conftest import FakeAIProvider, FakeDataSource


@pytest.mark.asyncio
async def test_process_user_query_unknown_session(service):
    with pytest.raises(SessionNotFound) as exc_info:
        await service.process_user_query("missing", "requests | count")
    assert exc_info.value.session_id == "missing"


@pytest.mark.asyncio
async def test_raw_mode_executes_and_records(service, data_source):
    session = service.create_session()
    result = await service.process_user_query(session.session_id, "requests | take 5", mode=ExecutionMode.RAW)

    assert result.result.row_count == 1
    assert data_source.queries == ["requests | take 5"]
    entry = service.get_session_history(session.session_id)[0]
    assert entry.action == HistoryAction.GENERATED
    assert entry.confidence == 1.0
    assert entry.reason == "Raw KQL execution"


@pytest.mark.asyncio
async def test_raw_mode_validation_rejected(service, data_source):
    """Rejected raw queries never reach the data source or the history"""
    session = service.create_session()
    with pytest.raises(ValidationRejected) as exc_info:
        await service.process_user_query(session.session_id, "drop table requests", mode="raw")

    assert "drop table" in exc_info.value.reason
    assert data_source.queries == []
    assert service.get_session_history(session.session_id) == []


@pytest.mark.asyncio
async def test_direct_mode(service, ai_provider, data_source):
    session = service.create_session({"default_mode": "direct"})
    result = await service.process_user_query(session.session_id, "how many requests?")

    assert result is not None
    assert ai_provider.generate_calls == [("how many requests?", None)]
    assert data_source.queries == ["requests | count"]
    assert service.get_session(session.session_id).get_history() == ["requests | count"]


@pytest.mark.asyncio
async def test_direct_mode_rejected_query_is_not_recorded(service, ai_provider, data_source):
    """Direct mode records only what was executed, like raw mode"""
    session = service.create_session({"default_mode": "direct"})
    ai_provider.candidate = Candidate(text="drop table requests", confidence=0.9)

    with pytest.raises(ValidationRejected):
        await service.process_user_query(session.session_id, "remove the requests table")

    assert data_source.queries == []
    assert service.get_session_history(session.session_id) == []


@pytest.mark.asyncio
async def test_step_mode_is_default(service, step_interface, data_source):
    session = service.create_session()
    step_interface.actions = [StepAction.EXECUTE]

    result = await service.process_user_query(session.session_id, "how many requests?")

    assert result is not None
    assert len(step_interface.candidates) == 1
    assert data_source.queries == ["requests | count"]


@pytest.mark.asyncio
async def test_step_mode_cancel(service, step_interface, data_source):
    session = service.create_session()
    step_interface.actions = [StepAction.CANCEL]

    assert await service.process_user_query(session.session_id, "how many requests?") is None
    assert data_source.queries == []


@pytest.mark.asyncio
async def test_generation_failure(service, ai_provider):
    session = service.create_session()
    ai_provider.generate_error = RuntimeError("model unavailable")
    with pytest.raises(GenerationFailed) as exc_info:
        await service.process_user_query(session.session_id, "how many requests?", mode="direct")
    assert isinstance(exc_info.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_template_mode(service, data_source):
    session = service.create_session()
    await service.process_user_query(
        session.session_id, "errors-analysis", mode=ExecutionMode.TEMPLATE, parameters={"binSize": "1h"}
    )
    assert "bin(timestamp, 1h)" in data_source.queries[0]
    assert "exceptions" in data_source.queries[0]


@pytest.mark.asyncio
async def test_run_interactive_step_requires_interface(config):
    service = QueryService(config, FakeAIProvider(), FakeDataSource())
    session = service.create_session()
    with pytest.raises(RuntimeError):
        await service.run_interactive_step(session, Candidate(text="requests | count"), "count")


@pytest.mark.asyncio
async def test_interactive_steps_on_one_session_are_serialised(service, step_interface):
    """A second invocation on the same session waits for the first to finish"""
    session = service.create_session()
    release = asyncio.Event()
    order = []

    async def slow_choose(actions):
        order.append("first prompt")
        await release.wait()
        return StepAction.CANCEL

    step_interface.choose_action = slow_choose
    first = asyncio.ensure_future(service.run_interactive_step(session, Candidate(text="requests | count"), "q"))
    await asyncio.sleep(0)
    second = asyncio.ensure_future(service.run_interactive_step(session, Candidate(text="traces | count"), "q"))
    await asyncio.sleep(0.01)

    assert order == ["first prompt"]
    assert len(session) == 1

    release.set()
    await asyncio.gather(first, second)
    assert order == ["first prompt", "first prompt"]
    assert len(session) == 2


@pytest.mark.asyncio
async def test_ending_session_keeps_lock_of_running_step(service, step_interface):
    """A step started after end_session still waits for the one in progress"""
    session = service.create_session()
    release = asyncio.Event()
    order = []

    async def slow_choose(actions):
        order.append("prompt")
        await release.wait()
        return StepAction.CANCEL

    step_interface.choose_action = slow_choose
    first = asyncio.ensure_future(service.run_interactive_step(session, Candidate(text="requests | count"), "q"))
    await asyncio.sleep(0)
    await service.end_session(session.session_id)
    second = asyncio.ensure_future(service.run_interactive_step(session, Candidate(text="traces | count"), "q"))
    await asyncio.sleep(0.01)

    assert order == ["prompt"]

    release.set()
    await asyncio.gather(first, second)
    assert order == ["prompt", "prompt"]
    assert service._session_locks == {}


@pytest.mark.asyncio
async def test_end_session_publishes_event(service, event_bus):
    session = service.create_session()
    assert await service.end_session(session.session_id) is True
    assert await service.end_session(session.session_id) is False

    events = event_bus.store.get_events("SessionEndedEvent")
    assert [e.session_id for e in events] == [session.session_id]


def test_session_option_updates(service):
    session = service.create_session()
    options = service.update_session_options(session.session_id, {"max_regeneration_attempts": 5})
    assert options.max_regeneration_attempts == 5
    with pytest.raises(SessionNotFound):
        service.update_session_options("missing", {"language": "en"})
    with pytest.raises(SessionNotFound):
        service.get_session_history("missing")


@pytest.mark.asyncio
async def test_evict_idle_sessions(config, clock, event_bus):
    manager = SessionManager(default_options=config.session_defaults(), clock=clock)
    service = QueryService(config, FakeAIProvider(), FakeDataSource(), event_bus=event_bus, session_manager=manager)
    old = service.create_session()
    clock.advance(hours=25)
    fresh = service.create_session()

    removed = await service.evict_idle_sessions(timedelta(hours=24))

    assert removed == 1
    assert service.get_session(old.session_id) is None
    assert service.get_session(fresh.session_id) is fresh
    events = event_bus.store.get_events("SessionEndedEvent")
    assert [(e.session_id, e.reason) for e in events] == [(old.session_id, "idle")]


@pytest.mark.asyncio
async def test_idle_sweeper(service):
    session = service.create_session()
    await asyncio.sleep(0.01)
    service.start_idle_sweeper(interval=0.01, max_age=0)
    assert service.get_system_status()["idle_sweeper_running"] is True

    for _ in range(50):
        if service.get_session(session.session_id) is None:
            break
        await asyncio.sleep(0.01)

    await service.stop_idle_sweeper()
    assert service.get_session(session.session_id) is None
    assert service.get_system_status()["idle_sweeper_running"] is False


@pytest.mark.asyncio
async def test_system_status(service):
    session = service.create_session()
    await service.process_user_query(session.session_id, "requests | count", mode="raw")

    status = service.get_system_status()
    assert status["system_status"] == "running"
    assert status["active_sessions"] == 1
    assert status["templates_enabled"] is True
    assert status["recent_queries"] == 1
    assert status["recent_success_rate"] == "100.0%"


def test_factory_builds_default_collaborators(config):
    service = QueryServiceFactory.create_service(config)
    assert isinstance(service.ai_provider, OpenAIQueryProvider)
    assert isinstance(service.data_source, ApplicationInsightsDataSource)
    assert isinstance(service.template_repository, JsonTemplateRepository)
    assert service.external_provider is None


def test_factory_enables_portal_when_configured(config):
    config = config.model_copy(update={
        "azure_tenant_id": "t", "azure_subscription_id": "s",
        "azure_resource_group": "rg", "azure_resource_name": "app"
    })
    service = QueryServiceFactory.create_service(config)
    assert service.external_provider is not None
