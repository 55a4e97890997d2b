"""
Step-Execution Engine - interactive review loop for a candidate query

The loop is split in two:

* ``available_actions`` and ``transition`` are pure functions over an
  immutable ``StepState``. They encode the offered-action policy and the
  transition table and can be tested without any I/O.
* ``StepExecutionEngine`` is the driver. It performs the awaited side
  effects (AI calls, editor, data source) between transitions, records new
  candidates in the session history and talks to a ``StepInterface``.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Tuple

from ..models import (
    Candidate, HistoryAction, HistoryEntry, SessionOptions, RegenerationContext,
    ExplanationOptions, QueryResultWithTiming
)
from ..utils.exceptions import RegenerationNoOp
from ..utils.logging import get_logger
from .interfaces import StepInterface, QueryEditor, ExternalExecutionProvider
from .orchestrator import QueryOrchestrator
from .session import QuerySession

logger = get_logger(__name__)


class StepAction(str, Enum):
    """Everything a user can do with a presented candidate"""
    EXECUTE = "execute"
    EXPLAIN = "explain"
    REGENERATE = "regenerate"
    EDIT = "edit"
    HISTORY = "history"
    EXTERNAL = "external"
    CANCEL = "cancel"


class StepPhase(str, Enum):
    PRESENTED = "presented"
    EXECUTED = "executed"
    CANCELLED = "cancelled"


TERMINAL_PHASES = (StepPhase.EXECUTED, StepPhase.CANCELLED)


@dataclass(frozen=True)
class StepState:
    """
    Snapshot of one interactive invocation.

    ``recorded`` tells whether the current candidate already sits in the
    session history; ``needs_record`` asks the driver to record it now.
    """
    phase: StepPhase
    candidate: Candidate
    recorded: bool = False
    needs_record: bool = False

    @classmethod
    def initial(cls, candidate: Candidate) -> "StepState":
        return cls(phase=StepPhase.PRESENTED, candidate=candidate, recorded=False, needs_record=True)

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def mark_recorded(self) -> "StepState":
        return replace(self, recorded=True, needs_record=False)


@dataclass(frozen=True)
class StepContext:
    """Facts outside the state that decide which actions are offered"""
    options: SessionOptions
    history_size: int = 0
    editor_available: bool = False
    external_available: bool = False


def regeneration_allowed(state: StepState, options: SessionOptions) -> bool:
    """Attempts beyond the first candidate are bounded by max_regeneration_attempts"""
    return state.candidate.attempt_number - 1 < options.max_regeneration_attempts


def available_actions(state: StepState, context: StepContext) -> List[StepAction]:
    """Actions offered for a presented candidate, in display order"""
    if state.is_terminal:
        return []

    actions = [StepAction.EXECUTE, StepAction.EXPLAIN]
    if regeneration_allowed(state, context.options):
        actions.append(StepAction.REGENERATE)
    if context.options.allow_editing and context.editor_available:
        actions.append(StepAction.EDIT)
    if context.history_size > 0:
        actions.append(StepAction.HISTORY)
    if context.external_available:
        actions.append(StepAction.EXTERNAL)
    actions.append(StepAction.CANCEL)
    return actions


def transition(state: StepState, action: StepAction, outcome=None) -> StepState:
    """
    Apply ``action`` to a presented state.

    ``outcome`` carries the result of the side effect performed by the driver:
    a Candidate (or None) for REGENERATE, replacement text for EDIT, the
    selected query text for HISTORY. It is ignored for the other actions.

    Raises:
        RegenerationNoOp: REGENERATE produced nothing new
        ValueError: the state is already terminal
    """
    if state.is_terminal:
        raise ValueError(f"Cannot apply {action.value} to a {state.phase.value} step")

    candidate = state.candidate

    if action is StepAction.EXECUTE:
        return replace(state, phase=StepPhase.EXECUTED, needs_record=not state.recorded)

    elif action is StepAction.CANCEL:
        return replace(state, phase=StepPhase.CANCELLED, needs_record=False)

    elif action in (StepAction.EXPLAIN, StepAction.EXTERNAL):
        return state

    elif action is StepAction.REGENERATE:
        new_candidate: Optional[Candidate] = outcome
        if new_candidate is None or not new_candidate.text.strip():
            raise RegenerationNoOp("Regeneration returned no query")
        if candidate.same_text(new_candidate.text):
            raise RegenerationNoOp("Regenerated query is identical to the previous one")
        adopted = new_candidate.model_copy(update={
            "attempt_number": candidate.attempt_number + 1,
            "provenance": HistoryAction.REGENERATED
        })
        return StepState(phase=StepPhase.PRESENTED, candidate=adopted, recorded=False, needs_record=True)

    elif action is StepAction.EDIT:
        edited_text: Optional[str] = outcome
        if edited_text is None or not edited_text.strip() or candidate.same_text(edited_text):
            return state
        edited = candidate.model_copy(update={
            "text": edited_text.strip(),
            "reasoning": "Manually edited query",
            "provenance": HistoryAction.EDITED
        })
        return StepState(phase=StepPhase.PRESENTED, candidate=edited, recorded=False, needs_record=True)

    elif action is StepAction.HISTORY:
        selected: Optional[str] = outcome
        if selected is None or candidate.same_text(selected):
            return state
        # Provenance is kept; the text is recorded again only if executed
        return StepState(
            phase=StepPhase.PRESENTED,
            candidate=candidate.model_copy(update={"text": selected}),
            recorded=False,
            needs_record=False
        )

    raise ValueError(f"Unhandled step action: {action!r}")


class StepExecutionEngine:
    """Drives the review loop for one candidate until it is executed or cancelled"""

    def __init__(self,
                 orchestrator: QueryOrchestrator,
                 interface: StepInterface,
                 editor: Optional[QueryEditor] = None,
                 external_provider: Optional[ExternalExecutionProvider] = None):
        self.orchestrator = orchestrator
        self.interface = interface
        self.editor = editor
        self.external_provider = external_provider

    async def run(self, session: QuerySession, initial_candidate: Candidate,
                  original_question: str) -> Optional[QueryResultWithTiming]:
        """
        Present ``initial_candidate`` and loop on user actions.

        Returns:
            The execution result, or None when the user cancelled

        Raises:
            Whatever the orchestrator raises for the approved execution
        """
        state = self._record(session, StepState.initial(initial_candidate))
        result: Optional[QueryResultWithTiming] = None

        while not state.is_terminal:
            options = session.options
            self.interface.show_candidate(state.candidate, original_question)
            if state.candidate.confidence < options.confidence_threshold:
                self.interface.show_warning(
                    f"Low confidence ({state.candidate.confidence:.0%}). "
                    "Consider reviewing or regenerating this query."
                )

            offered = available_actions(state, self._context(session, state))
            action = await self.interface.choose_action(offered)
            if action not in offered:
                logger.warning(f"Rejected action not on offer: {action}")
                self.interface.show_error(f"Action '{getattr(action, 'value', action)}' is not available")
                continue

            state, result = await self._apply(session, state, action, original_question)

        if state.phase is StepPhase.CANCELLED:
            logger.info(f"Step execution cancelled in session {session.session_id}")
            return None
        return result

    @staticmethod
    def _prior_entries(session: QuerySession, state: StepState) -> List[HistoryEntry]:
        """History before the candidate on screen; a recorded candidate is the newest entry"""
        entries = session.get_detailed_history()
        return entries[:-1] if state.recorded and entries else entries

    def _context(self, session: QuerySession, state: StepState) -> StepContext:
        return StepContext(
            options=session.options,
            history_size=len(self._prior_entries(session, state)),
            editor_available=self.editor is not None,
            external_available=self.external_provider is not None
        )

    def _record(self, session: QuerySession, state: StepState) -> StepState:
        if not state.needs_record:
            return state
        candidate = state.candidate
        reason = candidate.reasoning or None
        if candidate.provenance is HistoryAction.REGENERATED:
            reason = f"Regeneration attempt {candidate.attempt_number}"
        session.add_to_history(candidate.text, candidate.confidence, candidate.provenance, reason)
        return state.mark_recorded()

    async def _apply(self, session: QuerySession, state: StepState, action: StepAction,
                     original_question: str) -> Tuple[StepState, Optional[QueryResultWithTiming]]:
        if action is StepAction.EXECUTE:
            return await self._execute(session, state)

        if action is StepAction.CANCEL:
            self.interface.show_info("Query execution cancelled.")
            return transition(state, action), None

        if action is StepAction.EXPLAIN:
            await self._explain(session, state.candidate)
            return transition(state, action), None

        if action is StepAction.EXTERNAL:
            await self._open_external(state.candidate)
            return transition(state, action), None

        if action is StepAction.REGENERATE:
            return await self._regenerate(session, state, original_question), None

        if action is StepAction.EDIT:
            return await self._edit(session, state), None

        if action is StepAction.HISTORY:
            return await self._pick_from_history(session, state), None

        raise ValueError(f"Unhandled step action: {action!r}")

    async def _execute(self, session: QuerySession,
                       state: StepState) -> Tuple[StepState, Optional[QueryResultWithTiming]]:
        query = state.candidate.text
        validation = self.orchestrator.validate(query)
        if not validation.is_valid:
            self.interface.show_error(f"Query rejected: {validation.error}")
            return state, None

        state = self._record(session, transition(state, StepAction.EXECUTE))
        self.interface.show_info("Executing query...")
        # Failures here belong to the caller
        result = await self.orchestrator.execute_raw(query)
        return state, result

    async def _explain(self, session: QuerySession, candidate: Candidate) -> None:
        options = ExplanationOptions(language=session.options.language)
        try:
            self.interface.show_info("Generating query explanation...")
            explanation = await self.orchestrator.bounded(
                self.orchestrator.ai_provider.explain_query(candidate.text, options)
            )
        except Exception as e:
            logger.error(f"Failed to explain query: {str(e)}")
            self.interface.show_error(f"Failed to generate explanation: {str(e)}")
            return
        self.interface.show_explanation(explanation)

    async def _regenerate(self, session: QuerySession, state: StepState,
                          original_question: str) -> StepState:
        candidate = state.candidate
        context = RegenerationContext(
            previous_query=candidate.text,
            previous_reasoning=candidate.reasoning or None,
            attempt_number=candidate.attempt_number + 1
        )
        try:
            self.interface.show_info(f"Regenerating query (attempt {context.attempt_number})...")
            schema = await self.orchestrator.bounded(self.orchestrator.data_source.get_schema())
            new_candidate = await self.orchestrator.bounded(
                self.orchestrator.ai_provider.regenerate_query(original_question, context, schema)
            )
        except Exception as e:
            logger.error(f"Failed to regenerate query: {str(e)}")
            self.interface.show_error(f"Failed to regenerate query: {str(e)}")
            return state

        try:
            new_state = transition(state, StepAction.REGENERATE, new_candidate)
        except RegenerationNoOp as e:
            logger.info(f"Regeneration produced nothing new: {e}")
            self.interface.show_info("The AI could not find a different query; keeping the current one.")
            return state

        self.interface.show_info("New query generated successfully!")
        return self._record(session, new_state)

    async def _edit(self, session: QuerySession, state: StepState) -> StepState:
        try:
            edited = await self.editor.edit_query(state.candidate.text)
        except Exception as e:
            logger.error(f"Failed to edit query: {str(e)}")
            self.interface.show_error(f"Failed to edit query: {str(e)}")
            return state

        new_state = transition(state, StepAction.EDIT, edited)
        if new_state is state:
            self.interface.show_info("No changes made to the query.")
            return state
        return self._record(session, new_state)

    async def _pick_from_history(self, session: QuerySession, state: StepState) -> StepState:
        entries = self._prior_entries(session, state)
        index = await self.interface.choose_history_entry(entries)
        selected = entries[index].query if index is not None and 0 <= index < len(entries) else None
        return transition(state, StepAction.HISTORY, selected)

    async def _open_external(self, candidate: Candidate) -> None:
        try:
            outcome = await self.external_provider.open_query(candidate.text)
        except Exception as e:
            logger.error(f"External hand-off failed: {str(e)}")
            self.interface.show_error(f"Failed to open query externally: {str(e)}")
            return

        if outcome.launched:
            self.interface.show_info(f"Opened query in {outcome.target}: {outcome.url}")
        else:
            logger.warning(f"External hand-off did not launch: {outcome.error}")
            self.interface.show_error(outcome.error or "External hand-off failed")
