from datetime import datetime, timedelta
from typing import List, Optional

import pytest

from querypilot.core.coordinator import QueryService
from querypilot.core.events import EventBus
from querypilot.core.interfaces import (
    AIProvider, DataSourceProvider, QueryEditor, ExternalExecutionProvider, StepInterface
)
from querypilot.core.orchestrator import QueryOrchestrator
from querypilot.core.session import SessionManager
from querypilot.models import (
    Candidate, ExternalExecutionResult, QueryColumn, QueryResult, QueryTable, SystemConfig
)
from querypilot.services.template_repository import JsonTemplateRepository


def make_result(rows=None) -> QueryResult:
    rows = rows if rows is not None else [["2024-01-01T00:00:00Z", 42]]
    return QueryResult(tables=[QueryTable(
        name="PrimaryResult",
        columns=[QueryColumn(name="timestamp", type="datetime"), QueryColumn(name="count_", type="long")],
        rows=rows
    )])


class FakeAIProvider(AIProvider):
    """Returns scripted candidates and records every call"""

    def __init__(self, candidate: Optional[Candidate] = None, regenerations=None,
                 explanation: str = "This query counts requests."):
        self.candidate = candidate or Candidate(text="requests | count", confidence=0.9, reasoning="count requests")
        self.regenerations = list(regenerations or [])
        self.explanation = explanation
        self.generate_error: Optional[Exception] = None
        self.regenerate_error: Optional[Exception] = None
        self.explain_error: Optional[Exception] = None
        self.generate_calls = []
        self.regenerate_calls = []
        self.explain_calls = []

    async def generate_query(self, user_input, schema=None):
        self.generate_calls.append((user_input, schema))
        if self.generate_error:
            raise self.generate_error
        return self.candidate

    async def regenerate_query(self, user_input, context, schema=None):
        self.regenerate_calls.append((user_input, context, schema))
        if self.regenerate_error:
            raise self.regenerate_error
        return self.regenerations.pop(0) if self.regenerations else None

    async def explain_query(self, query, options):
        self.explain_calls.append((query, options))
        if self.explain_error:
            raise self.explain_error
        return self.explanation


class FakeDataSource(DataSourceProvider):

    def __init__(self, result: Optional[QueryResult] = None, schema=None):
        self.result = result or make_result()
        self.schema = schema
        self.error: Optional[Exception] = None
        self.queries: List[str] = []

    async def execute_query(self, query):
        self.queries.append(query)
        if self.error:
            raise self.error
        return self.result

    async def get_schema(self):
        return self.schema


class FakeEditor(QueryEditor):

    def __init__(self, edits=None):
        self.edits = list(edits or [])
        self.calls = []

    async def edit_query(self, current_query):
        self.calls.append(current_query)
        return self.edits.pop(0) if self.edits else None


class FakeExternalProvider(ExternalExecutionProvider):

    def __init__(self, launched: bool = True):
        self.launched = launched
        self.opened = []

    async def open_query(self, query):
        self.opened.append(query)
        if self.launched:
            return ExternalExecutionResult(url="https://portal.example/q", launched=True)
        return ExternalExecutionResult(launched=False, error="No browser available")


class ScriptedStepInterface(StepInterface):
    """Plays back a list of actions and records what was shown"""

    def __init__(self, actions=None, history_choices=None):
        self.actions = list(actions or [])
        self.history_choices = list(history_choices or [])
        self.candidates: List[Candidate] = []
        self.offered = []
        self.warnings: List[str] = []
        self.infos: List[str] = []
        self.errors: List[str] = []
        self.explanations: List[str] = []

    def show_candidate(self, candidate, original_question):
        self.candidates.append(candidate)

    def show_warning(self, message):
        self.warnings.append(message)

    def show_info(self, message):
        self.infos.append(message)

    def show_error(self, message):
        self.errors.append(message)

    def show_explanation(self, explanation):
        self.explanations.append(explanation)

    async def choose_action(self, actions):
        self.offered.append(list(actions))
        if not self.actions:
            raise AssertionError("Step loop asked for more actions than scripted")
        return self.actions.pop(0)

    async def choose_history_entry(self, entries):
        return self.history_choices.pop(0) if self.history_choices else None


class FakeClock:
    """Manually advanced clock for session timestamps"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def ai_provider():
    return FakeAIProvider()


@pytest.fixture
def data_source():
    return FakeDataSource()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def orchestrator(ai_provider, data_source, event_bus):
    return QueryOrchestrator(
        ai_provider,
        data_source,
        template_repository=JsonTemplateRepository(),
        event_bus=event_bus,
        timeout=5.0
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_manager(clock):
    return SessionManager(clock=clock)


@pytest.fixture
def config():
    return SystemConfig(openai_api_key="test-key", collaborator_timeout=5.0)


@pytest.fixture
def step_interface():
    return ScriptedStepInterface()


@pytest.fixture
def service(config, ai_provider, data_source, step_interface, event_bus):
    return QueryService(
        config,
        ai_provider,
        data_source,
        interface=step_interface,
        template_repository=JsonTemplateRepository(),
        event_bus=event_bus
    )
