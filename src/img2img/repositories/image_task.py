"""ImageTask repository for the img2img backend.

Provides task creation, status updates, detail reads and deletion.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from img2img.models.generation_attempt import GenerationAttempt
from img2img.models.image_task import (
    ImageTask,
    ImageTaskInput,
    ImageTaskOutput,
    InvalidStateTransition,
    TaskStatus,
)


@dataclass
class TaskDetails:
    """A task together with its inputs and outputs, both ordered by sort_order."""

    task: ImageTask
    inputs: list[ImageTaskInput] = field(default_factory=list)
    outputs: list[ImageTaskOutput] = field(default_factory=list)


class ImageTaskRepository:
    """Repository for ImageTask entities.

    Status writes go through the entity's transition methods so a task can
    only move forward: pending -> processing -> completed | failed.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, task: ImageTask) -> ImageTask:
        """Persist new task to database.

        Args:
            task: ImageTask entity to persist

        Returns:
            Persisted task
        """
        self.session.add(task)
        await self.session.flush()
        return task

    async def create(
        self,
        prompt: str,
        model: str,
        aspect_ratio: str,
        num_outputs: int,
        provider: str,
        model_id: str,
        user_id: Optional[str] = None,
    ) -> ImageTask:
        """Create a new task in pending state with a fresh id and timestamps."""
        task = ImageTask(
            user_id=user_id,
            prompt=prompt,
            model=model,
            aspect_ratio=aspect_ratio,
            num_outputs=num_outputs,
            provider=provider,
            model_id=model_id,
            status=TaskStatus.PENDING,
        )
        return await self.add(task)

    async def get_by_id(self, task_id: UUID) -> ImageTask | None:
        """Retrieve task by UUID.

        Args:
            task_id: Task's unique identifier

        Returns:
            ImageTask if found, None otherwise
        """
        result = await self.session.execute(select(ImageTask).where(ImageTask.id == task_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def set_status(
        self,
        task: ImageTask,
        status: TaskStatus,
        error_message: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
        credits_used: Optional[float] = None,
    ) -> None:
        """Move task to a new status.

        Args:
            task: ImageTask entity to update
            status: Target status
            error_message: Failure reason (failed only)
            processing_time_ms: Elapsed generation time
            credits_used: Credits consumed (completed only)

        Raises:
            InvalidStateTransition: If the move is not forward in the lifecycle
        """
        if status == TaskStatus.PROCESSING:
            task.mark_processing()
        elif status == TaskStatus.COMPLETED:
            task.mark_completed(processing_time_ms=processing_time_ms, credits_used=credits_used)
        elif status == TaskStatus.FAILED:
            task.mark_failed(error_message or "Unknown error", processing_time_ms)
        else:
            raise InvalidStateTransition(f"Cannot move task back to {status.value}.")

        self.session.add(task)
        await self.session.flush()

    async def get_with_details(self, task_id: UUID) -> TaskDetails | None:
        """Retrieve task with inputs and outputs ordered by sort_order.

        Args:
            task_id: Task's unique identifier

        Returns:
            TaskDetails if the task exists, None otherwise
        """
        task = await self.get_by_id(task_id)
        if task is None:
            return None

        inputs = await self.session.execute(
            select(ImageTaskInput)
            .where(ImageTaskInput.task_id == task_id)  # type: ignore[arg-type]
            .order_by(ImageTaskInput.sort_order.asc())  # type: ignore[attr-defined]
        )
        outputs = await self.session.execute(
            select(ImageTaskOutput)
            .where(ImageTaskOutput.task_id == task_id)  # type: ignore[arg-type]
            .order_by(ImageTaskOutput.sort_order.asc())  # type: ignore[attr-defined]
        )
        return TaskDetails(
            task=task,
            inputs=list(inputs.scalars().all()),
            outputs=list(outputs.scalars().all()),
        )

    async def list_recent(self, user_id: Optional[str] = None, limit: int = 10) -> list[ImageTask]:
        """Retrieve most recent tasks, newest first.

        Args:
            user_id: Only return tasks owned by this identity (all tasks if None)
            limit: Maximum number of tasks to return

        Returns:
            List of tasks ordered by creation time (newest first)
        """
        query = select(ImageTask)
        if user_id is not None:
            query = query.where(ImageTask.user_id == user_id)  # type: ignore[arg-type]
        result = await self.session.execute(
            query.order_by(ImageTask.created_at.desc()).limit(limit)  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def delete(self, task_id: UUID) -> bool:
        """Delete task together with its inputs, outputs and attempts.

        Foreign keys also cascade; child rows are removed explicitly so the
        result doesn't depend on the backend enforcing them.

        Args:
            task_id: Task's unique identifier

        Returns:
            True if a task was deleted, False if it didn't exist
        """
        for child in (ImageTaskOutput, ImageTaskInput, GenerationAttempt):
            await self.session.execute(delete(child).where(child.task_id == task_id))  # type: ignore[arg-type]
        result = await self.session.execute(delete(ImageTask).where(ImageTask.id == task_id))  # type: ignore[arg-type]
        await self.session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def get_stale(self, older_than: datetime, limit: int = 1000) -> list[ImageTask]:
        """Retrieve non-terminal tasks not updated since older_than.

        Args:
            older_than: Cutoff for updated_at
            limit: Maximum number of tasks to return

        Returns:
            Pending or processing tasks, oldest first
        """
        result = await self.session.execute(
            select(ImageTask)
            .where(ImageTask.status.in_([TaskStatus.PENDING, TaskStatus.PROCESSING]))  # type: ignore[attr-defined]
            .where(ImageTask.updated_at < older_than)  # type: ignore[arg-type]
            .order_by(ImageTask.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
