"""
会话相关数据模型
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ExecutionMode(str, Enum):
    """How a user request is executed"""
    DIRECT = "direct"
    STEP = "step"
    RAW = "raw"
    TEMPLATE = "template"


class HistoryAction(str, Enum):
    """Provenance of a query recorded in session history"""
    GENERATED = "generated"
    EDITED = "edited"
    REGENERATED = "regenerated"


class SessionOptions(BaseModel):
    """Per-session behaviour switches"""
    language: str = Field(default="auto", description="Explanation language")
    default_mode: ExecutionMode = Field(default=ExecutionMode.STEP, description="Default execution mode")
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0,
                                        description="Below this a low-confidence warning is shown")
    allow_editing: bool = Field(default=True, description="Whether manual edits are offered")
    max_regeneration_attempts: int = Field(default=3, ge=0,
                                           description="Additional candidates allowed beyond the first")

    def merged(self, partial: dict) -> "SessionOptions":
        """
        Return a validated copy with ``partial`` applied field by field.

        Raises:
            ValueError: a key is not a session option, or a value is invalid
        """
        unknown = sorted(set(partial) - set(SessionOptions.model_fields))
        if unknown:
            raise ValueError(f"Unknown session option(s): {', '.join(unknown)}")
        data = self.model_dump()
        data.update({k: v for k, v in partial.items() if v is not None})
        return SessionOptions(**data)


class HistoryEntry(BaseModel):
    """One audit record in a session's detailed history"""
    model_config = ConfigDict(frozen=True)

    query: str = Field(..., description="Query text")
    timestamp: datetime = Field(default_factory=datetime.now)
    confidence: float = Field(..., ge=0.0, le=1.0)
    action: HistoryAction = Field(..., description="generated / edited / regenerated")
    reason: Optional[str] = Field(default=None, description="Free-form reason or AI reasoning")
