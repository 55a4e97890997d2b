"""
QueryService - 查询服务协调器
Wires the session store, the orchestrator and the step-execution engine
into the surface used by the shell and by library callers.
"""

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional, Union

from ..models import (
    SystemConfig, SessionOptions, ExecutionMode, HistoryAction, HistoryEntry, Candidate,
    NLQueryRequest, TemplateQueryRequest, QueryResultWithTiming, ValidationResult
)
from ..utils.exceptions import GenerationFailed, ValidationRejected
from ..utils.logging import get_logger
from .events import EventBus, QueryExecutedEvent, QueryFailedEvent, SessionEndedEvent
from .interfaces import (
    AIProvider, DataSourceProvider, TemplateRepository, QueryEditor,
    ExternalExecutionProvider, StepInterface
)
from .orchestrator import QueryOrchestrator
from .session import SessionManager, QuerySession
from .step_executor import StepExecutionEngine

logger = get_logger(__name__)


class QueryService:
    """查询服务 - the caller-facing surface"""

    def __init__(self,
                 config: SystemConfig,
                 ai_provider: AIProvider,
                 data_source: DataSourceProvider,
                 interface: Optional[StepInterface] = None,
                 template_repository: Optional[TemplateRepository] = None,
                 editor: Optional[QueryEditor] = None,
                 external_provider: Optional[ExternalExecutionProvider] = None,
                 event_bus: Optional[EventBus] = None,
                 session_manager: Optional[SessionManager] = None):
        self.config = config
        self.ai_provider = ai_provider
        self.data_source = data_source
        self.interface = interface
        self.template_repository = template_repository
        self.editor = editor
        self.external_provider = external_provider
        self.event_bus = event_bus or EventBus()
        self.sessions = session_manager or SessionManager(default_options=config.session_defaults())
        self.orchestrator = QueryOrchestrator(
            ai_provider,
            data_source,
            template_repository=template_repository,
            event_bus=self.event_bus,
            timeout=config.collaborator_timeout
        )

        self._session_locks: Dict[str, asyncio.Lock] = {}
        # Steps holding or waiting on each lock
        self._lock_users: Dict[str, int] = {}
        self._sweeper: Optional[asyncio.Task] = None
        self._setup_event_handlers()

    def _setup_event_handlers(self):
        """设置事件处理器"""
        self.event_bus.subscribe("QueryExecutedEvent", self._on_query_executed)
        self.event_bus.subscribe("QueryFailedEvent", self._on_query_failed)
        self.event_bus.subscribe("SessionEndedEvent", self._on_session_ended)

    async def _on_query_executed(self, event: QueryExecutedEvent):
        logger.info(f"Query executed ({event.mode}): {event.row_count} rows in {event.duration_ms:.0f}ms")

    async def _on_query_failed(self, event: QueryFailedEvent):
        logger.error(f"Query failed ({event.mode}): {event.error}")

    async def _on_session_ended(self, event: SessionEndedEvent):
        logger.info(f"Session ended: {event.session_id} ({event.reason})")

    # Sessions

    def create_session(self, options: Union[SessionOptions, Dict[str, Any], None] = None) -> QuerySession:
        return self.sessions.create(options)

    def get_session(self, session_id: str) -> Optional[QuerySession]:
        return self.sessions.get(session_id)

    async def end_session(self, session_id: str, reason: str = "ended") -> bool:
        """结束会话; ending an unknown session is a no-op"""
        ended = self.sessions.end(session_id)
        self._discard_lock(session_id)
        if ended:
            await self.event_bus.publish(SessionEndedEvent(data={"session_id": session_id, "reason": reason}))
        return ended

    def update_session_options(self, session_id: str, partial: Dict[str, Any]) -> SessionOptions:
        return self.sessions.update_options(session_id, partial)

    def get_session_history(self, session_id: str) -> List[HistoryEntry]:
        return self.sessions.require(session_id).get_detailed_history()

    async def evict_idle_sessions(self, max_age: Union[timedelta, float, None] = None) -> int:
        """清理空闲会话"""
        if max_age is None:
            max_age = timedelta(hours=self.config.session_max_age_hours)

        before = set(self.sessions.session_ids())
        removed = self.sessions.evict_idle(max_age)
        for session_id in before - set(self.sessions.session_ids()):
            self._discard_lock(session_id)
            await self.event_bus.publish(SessionEndedEvent(data={"session_id": session_id, "reason": "idle"}))
        return removed

    def start_idle_sweeper(self, interval: Optional[float] = None,
                           max_age: Union[timedelta, float, None] = None) -> asyncio.Task:
        """Start the periodic idle sweep on the running loop"""
        if self._sweeper is not None and not self._sweeper.done():
            return self._sweeper

        interval = interval or self.config.idle_sweep_interval
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop(interval, max_age))
        logger.info(f"Idle session sweeper started (every {interval}s)")
        return self._sweeper

    async def stop_idle_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.info("Idle session sweeper stopped")

    async def _sweep_loop(self, interval: float, max_age) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.evict_idle_sessions(max_age)
            except Exception as e:
                logger.error(f"Idle sweep failed: {str(e)}")

    # Queries

    def validate_query(self, query: Optional[str]) -> ValidationResult:
        return self.orchestrator.validate(query)

    async def execute_raw(self, query: str) -> QueryResultWithTiming:
        """Validate and run a raw query; a rejected query never reaches the data source"""
        validation = self.orchestrator.validate(query)
        if not validation.is_valid:
            raise ValidationRejected(validation.error, query=query)
        return await self.orchestrator.execute_raw(query)

    async def execute_natural_language(self, request: Union[NLQueryRequest, str]) -> QueryResultWithTiming:
        return await self.orchestrator.execute_natural_language(request)

    async def execute_template(self, request: TemplateQueryRequest) -> QueryResultWithTiming:
        return await self.orchestrator.execute_template(request)

    async def generate_candidate(self, user_input: str) -> Candidate:
        """Ask the AI provider for a first candidate"""
        try:
            schema = await self.orchestrator.bounded(self.data_source.get_schema())
            return await self.orchestrator.bounded(self.ai_provider.generate_query(user_input, schema))
        except Exception as e:
            logger.error(f"Query generation failed: {str(e)}")
            raise GenerationFailed(f"Query generation failed: {str(e)}") from e

    async def run_interactive_step(self, session: Union[QuerySession, str], candidate: Candidate,
                                   original_question: str) -> Optional[QueryResultWithTiming]:
        """
        Review ``candidate`` interactively.

        Invocations on the same session are serialised.

        Returns:
            The execution result, or None when the user cancelled
        """
        if self.interface is None:
            raise RuntimeError("Interactive step execution requires a step interface")
        if isinstance(session, str):
            session = self.sessions.require(session)

        session_id = session.session_id
        lock = self._session_locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                engine = StepExecutionEngine(
                    self.orchestrator,
                    self.interface,
                    editor=self.editor,
                    external_provider=self.external_provider
                )
                return await engine.run(session, candidate, original_question)
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                if self.sessions.get(session_id) is None:
                    self._session_locks.pop(session_id, None)

    def _discard_lock(self, session_id: str) -> None:
        """Forget an ended session's lock unless a step still holds or awaits it"""
        if session_id not in self._lock_users:
            self._session_locks.pop(session_id, None)

    async def process_user_query(self, session_id: str, user_input: str,
                                 mode: Optional[ExecutionMode] = None,
                                 parameters: Optional[Dict[str, Any]] = None) -> Optional[QueryResultWithTiming]:
        """
        处理用户查询

        Args:
            session_id: 会话ID
            user_input: natural language, raw query text or a template id
            mode: execution mode, defaults to the session's default mode
            parameters: template parameters for template mode

        Returns:
            The execution result, or None when a step review was cancelled
        """
        session = self.sessions.require(session_id)
        mode = ExecutionMode(mode or session.options.default_mode)
        logger.info(f"Processing user query in {mode.value} mode for session {session_id}")

        if mode is ExecutionMode.RAW:
            result = await self.execute_raw(user_input)
            session.add_to_history(user_input, 1.0, HistoryAction.GENERATED, "Raw KQL execution")
            return result

        if mode is ExecutionMode.TEMPLATE:
            request = TemplateQueryRequest(template_id=user_input.strip(), parameters=parameters or {})
            return await self.execute_template(request)

        candidate = await self.generate_candidate(user_input)

        if mode is ExecutionMode.DIRECT:
            # Recorded only once executed, as in raw mode
            result = await self.execute_raw(candidate.text)
            session.add_to_history(candidate.text, candidate.confidence, HistoryAction.GENERATED,
                                   candidate.reasoning or None)
            return result

        return await self.run_interactive_step(session, candidate, user_input)

    # Status and lifecycle

    def get_system_status(self) -> Dict[str, Any]:
        """获取系统状态"""
        recent = self.event_bus.store.get_events(limit=100)
        executed = [e for e in recent if e.event_type == "QueryExecutedEvent"]
        failed = [e for e in recent if e.event_type == "QueryFailedEvent"]
        success_rate = 0.0
        if executed or failed:
            success_rate = len(executed) / (len(executed) + len(failed)) * 100

        return {
            "system_status": "running",
            "active_sessions": self.sessions.active_count(),
            "ai_model": self.config.openai_model,
            "collaborator_timeout": self.config.collaborator_timeout,
            "templates_enabled": self.template_repository is not None,
            "editor_enabled": self.editor is not None,
            "external_enabled": self.external_provider is not None,
            "idle_sweeper_running": self._sweeper is not None and not self._sweeper.done(),
            "recent_queries": len(executed) + len(failed),
            "recent_success_rate": f"{success_rate:.1f}%",
        }

    async def close(self):
        """清理资源"""
        await self.stop_idle_sweeper()
        for component in (self.data_source, self.ai_provider):
            close = getattr(component, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Failed to close {type(component).__name__}: {str(e)}")


class QueryServiceFactory:
    """查询服务工厂"""

    @staticmethod
    def create_service(config: Optional[SystemConfig] = None,
                       interface: Optional[StepInterface] = None,
                       ai_provider: Optional[AIProvider] = None,
                       data_source: Optional[DataSourceProvider] = None,
                       template_repository: Optional[TemplateRepository] = None,
                       editor: Optional[QueryEditor] = None,
                       external_provider: Optional[ExternalExecutionProvider] = None) -> QueryService:
        """Build a QueryService, filling missing collaborators from configuration"""
        from ..services import (
            OpenAIQueryProvider, ApplicationInsightsDataSource, JsonTemplateRepository,
            PortalExternalExecutionProvider
        )

        config = config or SystemConfig()
        ai_provider = ai_provider or OpenAIQueryProvider(config)
        data_source = data_source or ApplicationInsightsDataSource(config)
        template_repository = template_repository or JsonTemplateRepository(config.templates_path)

        if external_provider is None:
            portal = PortalExternalExecutionProvider(config)
            if portal.validate_configuration():
                external_provider = portal
            else:
                logger.info("Azure resource not configured, portal hand-off disabled")

        logger.info(f"Query service created with model {config.openai_model}")
        return QueryService(
            config,
            ai_provider,
            data_source,
            interface=interface,
            template_repository=template_repository,
            editor=editor,
            external_provider=external_provider
        )
