"""GenerationAttempt entity - Track each prediction attempt of a task."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from img2img.core.timezone import UTCDateTime, utcnow


class AttemptStatus(str, Enum):
    """Generation attempt status."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class GenerationAttempt(SQLModel, table=True):
    """GenerationAttempt records one prediction attempt and why it failed, if it did."""

    __tablename__ = "generation_attempts"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("task_id", "attempt_index"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_id: UUID = Field(foreign_key="image_tasks.id", ondelete="CASCADE", index=True)
    attempt_index: int = Field(ge=0)
    service: str = Field(default="replicate", max_length=50)
    status: AttemptStatus = Field(default=AttemptStatus.RUNNING)
    external_job_id: Optional[str] = Field(default=None, max_length=255)
    predict_time: Optional[float] = Field(default=None)
    error_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
