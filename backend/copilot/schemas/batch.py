"""Batch analysis request/response schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BatchCreate(BaseModel):
    """Batch submission payload. The size cap is enforced by the coordinator."""

    session_ids: list[str] = Field(min_length=1)


class BatchSubmitResult(BaseModel):
    batch_id: str
    session_count: int


class BatchErrorEntry(BaseModel):
    """One failed item in a batch error log."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    error_message: str = Field(alias="errorMessage")
    timestamp: str


class BatchStatusRead(BaseModel):
    """Progress snapshot polled by clients."""

    id: str
    status: str
    total: int
    processed: int
    failed: int
    started_at: datetime | None = None
    completed_at: datetime | None = None
    errors: list[BatchErrorEntry] = Field(default_factory=list)
