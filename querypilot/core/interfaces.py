"""
Collaborator interfaces consumed by the core

The core depends only on these abstractions, never on concrete providers.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models import (
    Candidate, RegenerationContext, ExplanationOptions, QueryResult,
    QueryTemplate, ExternalExecutionResult, HistoryEntry
)


class AIProvider(ABC):
    """Natural-language to query generation"""

    @abstractmethod
    async def generate_query(self, user_input: str, schema: Optional[Dict[str, Any]] = None) -> Candidate:
        """Produce a first candidate for ``user_input``"""
        pass

    @abstractmethod
    async def regenerate_query(self, user_input: str, context: RegenerationContext,
                               schema: Optional[Dict[str, Any]] = None) -> Optional[Candidate]:
        """Produce an alternative candidate, or None when nothing new was found"""
        pass

    @abstractmethod
    async def explain_query(self, query: str, options: ExplanationOptions) -> str:
        pass


class DataSourceProvider(ABC):
    """Remote data store that actually runs queries"""

    @abstractmethod
    async def execute_query(self, query: str) -> QueryResult:
        pass

    async def get_schema(self) -> Optional[Dict[str, Any]]:
        """Schema hint for generation; providers without one return None"""
        return None


class TemplateRepository(ABC):
    """Named, parameterised query templates"""

    @abstractmethod
    async def get_template(self, template_id: str) -> Optional[QueryTemplate]:
        pass

    @abstractmethod
    async def apply_template(self, template: QueryTemplate, parameters: Dict[str, Any]) -> str:
        pass

    @abstractmethod
    async def list_templates(self, category: Optional[str] = None) -> List[QueryTemplate]:
        pass


class QueryEditor(ABC):
    """Best-effort manual editing of a candidate"""

    @abstractmethod
    async def edit_query(self, current_query: str) -> Optional[str]:
        """Return the replacement text, or None when the user made no usable change"""
        pass


class ExternalExecutionProvider(ABC):
    """Hand a query off to an external tool (e.g. a portal)"""

    @abstractmethod
    async def open_query(self, query: str) -> ExternalExecutionResult:
        pass


class StepInterface(ABC):
    """Presentation and action prompt for the step-execution loop"""

    @abstractmethod
    def show_candidate(self, candidate: Candidate, original_question: str) -> None:
        pass

    @abstractmethod
    def show_warning(self, message: str) -> None:
        pass

    @abstractmethod
    def show_info(self, message: str) -> None:
        pass

    @abstractmethod
    def show_error(self, message: str) -> None:
        pass

    @abstractmethod
    def show_explanation(self, explanation: str) -> None:
        pass

    @abstractmethod
    async def choose_action(self, actions: List[Any]) -> Any:
        """Pick one of ``actions`` (StepAction members)"""
        pass

    @abstractmethod
    async def choose_history_entry(self, entries: List[HistoryEntry]) -> Optional[int]:
        """Index into ``entries`` or None to keep the current candidate"""
        pass
