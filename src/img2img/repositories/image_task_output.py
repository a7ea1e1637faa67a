"""ImageTaskOutput repository for the img2img backend."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from img2img.models.image_task import ImageTaskOutput


class ImageTaskOutputRepository:
    """Repository for generated images.

    Outputs are written one at a time as attempts succeed.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, task_id: UUID, storage_key: str, sort_order: int) -> ImageTaskOutput:
        """Persist a generated output at the given attempt index."""
        output = ImageTaskOutput(task_id=task_id, storage_key=storage_key, sort_order=sort_order)
        self.session.add(output)
        await self.session.flush()
        return output

    async def list_by_task(self, task_id: UUID) -> list[ImageTaskOutput]:
        """Retrieve a task's outputs ordered by sort_order."""
        result = await self.session.execute(
            select(ImageTaskOutput)
            .where(ImageTaskOutput.task_id == task_id)  # type: ignore[arg-type]
            .order_by(ImageTaskOutput.sort_order.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
