"""ImageTask entities - image-to-image tasks with their input and output images."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from img2img.core.timezone import UTCDateTime, utcnow


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid task state transition."""

    pass


class ImageTask(SQLModel, table=True):
    """ImageTask is one user-initiated image transformation request."""

    __tablename__ = "image_tasks"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: Optional[str] = Field(default=None, max_length=255, index=True)
    prompt: str = Field(max_length=2000)
    model: str = Field(max_length=50)  # "max", "standard" or "turbo"
    aspect_ratio: str = Field(max_length=10)
    num_outputs: int = Field(ge=1)
    provider: str = Field(max_length=50)
    model_id: str = Field(max_length=255)
    status: TaskStatus = Field(default=TaskStatus.PENDING, index=True)
    error_message: Optional[str] = Field(default=None, max_length=1000)
    processing_time_ms: Optional[int] = Field(default=None, ge=0)
    credits_used: Optional[float] = Field(default=None, ge=0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_processing(self) -> None:
        """Transition from pending to processing.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != TaskStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. Task must be in pending state."
            )
        self.status = TaskStatus.PROCESSING
        self.updated_at = utcnow()

    def mark_completed(
        self, processing_time_ms: Optional[int] = None, credits_used: Optional[float] = None
    ) -> None:
        """Transition from processing to completed.

        Args:
            processing_time_ms: Wall-clock duration of the generation run
            credits_used: Credits consumed by the succeeded outputs

        Raises:
            InvalidStateTransition: If current status is not processing
        """
        if self.status != TaskStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. "
                "Task must be in processing state."
            )
        self.status = TaskStatus.COMPLETED
        self.error_message = None
        self.processing_time_ms = processing_time_ms
        self.credits_used = credits_used
        self.updated_at = utcnow()

    def mark_failed(self, error_message: str, processing_time_ms: Optional[int] = None) -> None:
        """Transition from any non-terminal state to failed.

        Args:
            error_message: Human-readable failure reason
            processing_time_ms: Optional elapsed time before failure

        Raises:
            InvalidStateTransition: If current status is already terminal (completed/failed)
            ValueError: If error_message is empty
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        if not error_message:
            raise ValueError("error_message is required")
        self.status = TaskStatus.FAILED
        self.error_message = error_message
        if processing_time_ms is not None:
            self.processing_time_ms = processing_time_ms
        self.updated_at = utcnow()


class ImageTaskInput(SQLModel, table=True):
    """Source image attached to a task. Ordinals are contiguous from 0."""

    __tablename__ = "image_task_inputs"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("task_id", "sort_order"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_id: UUID = Field(foreign_key="image_tasks.id", ondelete="CASCADE", index=True)
    storage_key: str = Field(max_length=512)
    file_name: str = Field(max_length=255)
    file_size: int = Field(ge=0)
    file_type: str = Field(max_length=100)
    sort_order: int = Field(ge=0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class ImageTaskOutput(SQLModel, table=True):
    """Generated image belonging to a task.

    sort_order is the index of the generation attempt that produced it, so
    failed attempts leave gaps.
    """

    __tablename__ = "image_task_outputs"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("task_id", "sort_order"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_id: UUID = Field(foreign_key="image_tasks.id", ondelete="CASCADE", index=True)
    storage_key: str = Field(max_length=512)
    sort_order: int = Field(ge=0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
