"""ImageTaskInput repository for the img2img backend."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from img2img.models.image_task import ImageTaskInput


class ImageTaskInputRepository:
    """Repository for source images attached to tasks."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self,
        task_id: UUID,
        storage_key: str,
        file_name: str,
        file_size: int,
        file_type: str,
        sort_order: int,
    ) -> ImageTaskInput:
        """Persist a new task input.

        Args:
            task_id: Owning task
            storage_key: Blob store key of the uploaded file
            file_name: Original filename
            file_size: Size in bytes
            file_type: MIME type
            sort_order: Position among the task's inputs (0-based)

        Returns:
            Persisted input
        """
        task_input = ImageTaskInput(
            task_id=task_id,
            storage_key=storage_key,
            file_name=file_name,
            file_size=file_size,
            file_type=file_type,
            sort_order=sort_order,
        )
        self.session.add(task_input)
        await self.session.flush()
        return task_input

    async def list_by_task(self, task_id: UUID) -> list[ImageTaskInput]:
        """Retrieve a task's inputs ordered by sort_order."""
        result = await self.session.execute(
            select(ImageTaskInput)
            .where(ImageTaskInput.task_id == task_id)  # type: ignore[arg-type]
            .order_by(ImageTaskInput.sort_order.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
