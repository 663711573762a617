# toolmemory/core/types.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RESOURCE_TYPES = ("audience", "crosstab", "chart", "dashboard")
DEFAULT_RESOURCE_TYPE = "insight"


class _Model(BaseModel):
    # Executors report camelCase ("executionTimeMs"), python callers use snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreatedResource(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    type: Optional[str] = None
    name: Optional[str] = None


class ResourceReference(_Model):
    type: str
    id: str
    name: Optional[str] = None


class ToolResultMetadata(_Model):
    execution_time_ms: Optional[float] = None
    tokens_used: Optional[float] = None
    resources_created: List[CreatedResource] = Field(default_factory=list)
    cached: bool = False


class ToolResult(_Model):
    success: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    metadata: ToolResultMetadata = Field(default_factory=ToolResultMetadata)


class ToolExecutionContext(_Model):
    tenant_id: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
    workflow_id: Optional[str] = None


class ToolCallRecord(_Model):
    tool_name: str
    input: Dict[str, Any]
    result: ToolResult
    started_at: datetime
    completed_at: datetime


class SessionStats(_Model):
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_execution_time_ms: float = 0
    total_tokens_used: float = 0
    resources_created: int = 0
