"""Session listing, analysis, and review schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

SupervisorAction = Literal["validated", "rejected", "overridden_safe", "overridden_risk"]


class SessionListItem(BaseModel):
    """Row in a supervisor's session list."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    fellow_name: str
    group_id: str
    session_date: datetime
    assigned_concept: str
    status: str
    ai_confidence_score: float | None = None
    ai_processed_at: datetime | None = None
    supervisor_action: str | None = None


class SessionListResponse(BaseModel):
    """One page of sessions."""

    items: list[SessionListItem] = Field(default_factory=list)
    page: int
    page_size: int
    total: int


class SessionAnalysisRead(BaseModel):
    """Result of a single-session analysis request."""

    session_id: str
    analysis: dict[str, Any]
    status: str | None = None
    confidence_level: str
    review_reasons: list[str] = Field(default_factory=list)
    from_cache: bool = False


class ReviewCreate(BaseModel):
    """Supervisor validation or override of an AI finding."""

    action: SupervisorAction
    note: str | None = Field(default=None, max_length=2000)


class ReviewResult(BaseModel):
    """Outcome of a supervisor review."""

    session_id: str
    action: SupervisorAction
    previous_status: str
    new_status: str
    message: str
