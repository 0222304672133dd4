"""Schemas for run bookkeeping: progress records and analysis sessions."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ProgressStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisProgress(BaseModel):
    """Pollable progress for one repository URL."""

    id: str
    repository_url: str
    status: ProgressStatus = ProgressStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    stage: str = ""
    details: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SessionMessage(BaseModel):
    role: str
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ToolResultRecord(BaseModel):
    tool_name: str
    success: bool
    summary: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class SessionState(BaseModel):
    """Run-scoped bookkeeping for one pipeline execution."""

    session_id: str
    repository_path: str
    analysis_goal: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    conversation_history: list[SessionMessage] = Field(default_factory=list)
    current_context: dict[str, Any] = Field(default_factory=dict)
    tool_results: list[ToolResultRecord] = Field(default_factory=list)


class SessionSummary(BaseModel):
    session_id: str
    analysis_goal: str
    duration_seconds: float
    message_count: int
    tool_call_count: int
    tool_success_rate: float
    current_stage: Optional[str] = None


class SessionStats(BaseModel):
    active_sessions: int
    max_sessions: int
    oldest_session_age_seconds: Optional[float] = None
