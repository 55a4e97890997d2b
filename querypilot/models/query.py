"""
Query, result and template data models
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .session import HistoryAction


class Candidate(BaseModel):
    """A query under interactive review"""
    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="Query text")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0, description="Advisory confidence")
    reasoning: str = Field(default="", description="Why the provider chose this query")
    attempt_number: int = Field(default=1, ge=1, description="1 for the first candidate")
    provenance: HistoryAction = Field(default=HistoryAction.GENERATED)

    def same_text(self, other_text: Optional[str]) -> bool:
        """Whitespace-insensitive comparison at the edges"""
        return other_text is not None and self.text.strip() == other_text.strip()


class RegenerationContext(BaseModel):
    """What the AI provider needs to try a different approach"""
    previous_query: str
    previous_reasoning: Optional[str] = None
    attempt_number: int = Field(..., ge=1)


class TechnicalLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class ExplanationOptions(BaseModel):
    language: str = Field(default="en")
    technical_level: TechnicalLevel = Field(default=TechnicalLevel.INTERMEDIATE)
    include_examples: bool = Field(default=True)


class QueryColumn(BaseModel):
    name: str
    type: str = "string"


class QueryTable(BaseModel):
    name: str
    columns: List[QueryColumn] = Field(default_factory=list)
    rows: List[List[Any]] = Field(default_factory=list)


class QueryResult(BaseModel):
    """Tabular result returned by a data source"""
    tables: List[QueryTable] = Field(default_factory=list)

    @property
    def row_count(self) -> int:
        return sum(len(table.rows) for table in self.tables)


class QueryResultWithTiming(BaseModel):
    result: QueryResult
    execution_time_ms: float = Field(..., ge=0.0, description="Wall-clock time around the data source call")


class ValidationResult(BaseModel):
    is_valid: bool
    error: Optional[str] = None


class NLQueryRequest(BaseModel):
    """Natural-language execution request"""
    user_input: str
    schema_info: Optional[Dict[str, Any]] = Field(default=None, description="Data source schema, if known")
    language: Optional[str] = None


class TemplateQueryRequest(BaseModel):
    template_id: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class TemplateParameterType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATETIME = "datetime"
    TIMESPAN = "timespan"


class TemplateParameter(BaseModel):
    name: str
    type: TemplateParameterType = TemplateParameterType.STRING
    description: str = ""
    required: bool = True
    default_value: Optional[Any] = None
    valid_values: Optional[List[Any]] = None


class QueryTemplate(BaseModel):
    id: str
    name: str
    description: str = ""
    category: str = "General"
    query_template: str = Field(..., description="Query text with {{parameter}} placeholders")
    parameters: List[TemplateParameter] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class ExternalExecutionResult(BaseModel):
    url: str = ""
    target: str = "portal"
    launched: bool = False
    error: Optional[str] = None
