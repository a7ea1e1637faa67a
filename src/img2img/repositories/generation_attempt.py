"""GenerationAttempt repository for the img2img backend.

Records each prediction attempt so a missing output can be traced back to
the reason its attempt failed.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from img2img.core.timezone import utcnow
from img2img.models.generation_attempt import AttemptStatus, GenerationAttempt


class GenerationAttemptRepository:
    """Repository for GenerationAttempt entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def start(
        self, task_id: UUID, attempt_index: int, service: str = "replicate"
    ) -> GenerationAttempt:
        """Persist a new running attempt.

        Args:
            task_id: Owning task
            attempt_index: Index of the attempt within the task (0-based)
            service: Inference provider name

        Returns:
            Persisted attempt
        """
        attempt = GenerationAttempt(
            task_id=task_id,
            attempt_index=attempt_index,
            service=service,
            status=AttemptStatus.RUNNING,
        )
        self.session.add(attempt)
        await self.session.flush()
        return attempt

    async def get(self, task_id: UUID, attempt_index: int) -> GenerationAttempt | None:
        result = await self.session.execute(
            select(GenerationAttempt)
            .where(GenerationAttempt.task_id == task_id)  # type: ignore[arg-type]
            .where(GenerationAttempt.attempt_index == attempt_index)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def mark_succeeded(
        self,
        attempt: GenerationAttempt,
        external_job_id: Optional[str],
        predict_time: Optional[float],
    ) -> None:
        """Mark attempt as succeeded with prediction details."""
        attempt.status = AttemptStatus.SUCCEEDED
        attempt.external_job_id = external_job_id
        attempt.predict_time = predict_time
        attempt.completed_at = utcnow()
        self.session.add(attempt)
        await self.session.flush()

    async def mark_failed(self, attempt: GenerationAttempt, error_data: dict) -> None:
        """Mark attempt as failed and store the failure reason.

        Args:
            attempt: Attempt to update
            error_data: Failure details (error_type, message, retryable)
        """
        attempt.status = AttemptStatus.FAILED
        attempt.error_data = error_data
        attempt.completed_at = utcnow()
        self.session.add(attempt)
        await self.session.flush()

    async def list_by_task(self, task_id: UUID) -> list[GenerationAttempt]:
        """Retrieve all attempts for a task ordered by attempt index."""
        result = await self.session.execute(
            select(GenerationAttempt)
            .where(GenerationAttempt.task_id == task_id)  # type: ignore[arg-type]
            .order_by(GenerationAttempt.attempt_index.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
