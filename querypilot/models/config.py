"""
配置相关数据模型
"""

from typing import Optional
from pydantic import BaseModel, Field

from .session import ExecutionMode, SessionOptions


class SystemConfig(BaseModel):
    """System configuration"""
    # AI provider
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI model name")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: Optional[str] = Field(default=None, description="OpenAI compatible base URL")
    openai_temperature: float = Field(default=0.2, ge=0.0, le=2.0)

    # Collaborator call bound and session housekeeping
    collaborator_timeout: float = Field(default=60.0, gt=0, description="Timeout for AI / data source calls in seconds")
    session_max_age_hours: float = Field(default=24.0, gt=0, description="Idle sessions older than this are evicted")
    idle_sweep_interval: float = Field(default=600.0, gt=0, description="Seconds between idle sweeps")

    # Session defaults
    language: str = Field(default="auto")
    default_mode: ExecutionMode = Field(default=ExecutionMode.STEP)
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    allow_editing: bool = Field(default=True)
    max_regeneration_attempts: int = Field(default=3, ge=0)

    # Application Insights
    appinsights_application_id: Optional[str] = Field(default=None)
    appinsights_api_key: Optional[str] = Field(default=None)
    appinsights_endpoint: str = Field(default="https://api.applicationinsights.io")

    # Azure resource, used for portal deep links
    azure_tenant_id: Optional[str] = Field(default=None)
    azure_subscription_id: Optional[str] = Field(default=None)
    azure_resource_group: Optional[str] = Field(default=None)
    azure_resource_name: Optional[str] = Field(default=None)

    templates_path: Optional[str] = Field(default=None, description="JSON file with user templates")
    log_level: str = Field(default="INFO")

    def session_defaults(self) -> SessionOptions:
        """Default options for sessions created by this process"""
        return SessionOptions(
            language=self.language,
            default_mode=self.default_mode,
            confidence_threshold=self.confidence_threshold,
            allow_editing=self.allow_editing,
            max_regeneration_attempts=self.max_regeneration_attempts,
        )
