"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- Multiple repository operations are atomic
"""

import pytest

from img2img.repositories import (
    GenerationAttemptRepository,
    ImageTaskInputRepository,
    ImageTaskOutputRepository,
    ImageTaskRepository,
)


async def create_task(uow):
    return await uow.tasks.create(
        prompt="Test prompt",
        model="turbo",
        aspect_ratio="16:9",
        num_outputs=2,
        provider="replicate",
        model_id="prunaai/z-image-turbo-img2img",
        user_id="alice",
    )


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Changes made within the context persist after the context exits."""
    async with await uow_factory() as uow:
        task = await create_task(uow)
        task_id = task.id

    async with await uow_factory() as uow:
        found = await uow.tasks.get_by_id(task_id)
        assert found is not None
        assert found.prompt == "Test prompt"
        assert found.aspect_ratio == "16:9"


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """Exceptions roll back the transaction and propagate."""
    task_id = None

    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            task = await create_task(uow)
            task_id = task.id
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.tasks.get_by_id(task_id) is None, "Task should not exist after rollback"


@pytest.mark.asyncio
async def test_uow_provides_all_repositories(uow_factory):
    async with await uow_factory() as uow:
        assert isinstance(uow.tasks, ImageTaskRepository)
        assert isinstance(uow.task_inputs, ImageTaskInputRepository)
        assert isinstance(uow.task_outputs, ImageTaskOutputRepository)
        assert isinstance(uow.attempts, GenerationAttemptRepository)


@pytest.mark.asyncio
async def test_uow_atomic_multi_repository_operation(uow_factory):
    """A task and its inputs are written together or not at all."""
    with pytest.raises(RuntimeError):
        async with await uow_factory() as uow:
            task = await create_task(uow)
            task_id = task.id
            await uow.task_inputs.add(
                task_id=task.id,
                storage_key="image-tasks/inputs/x/a.png",
                file_name="a.png",
                file_size=3,
                file_type="image/png",
                sort_order=0,
            )
            raise RuntimeError("Upload failed midway")

    async with await uow_factory() as uow:
        assert await uow.tasks.get_by_id(task_id) is None
        assert await uow.task_inputs.list_by_task(task_id) == []
