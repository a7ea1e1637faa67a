"""Stale task recovery.

A process crash or restart in the middle of a generation run leaves tasks
in pending or processing state forever. Recovery moves such tasks forward to
failed so clients stop waiting on them.
"""

from dataclasses import dataclass, field
from datetime import timedelta

import structlog

from img2img.core.timezone import utcnow
from img2img.models.image_task import TaskStatus
from img2img.uow import UnitOfWork

logger = structlog.get_logger(__name__)

INTERRUPTED_MESSAGE = "Generation interrupted"
NOT_STARTED_MESSAGE = "Generation was never started"


@dataclass
class RecoveryResult:
    """Summary of a recovery run."""

    stale_count: int = 0
    recovered_count: int = 0
    task_ids: list[str] = field(default_factory=list)


async def recover_stale_tasks(
    uow: UnitOfWork, older_than_minutes: int, dry_run: bool = False
) -> RecoveryResult:
    """Mark non-terminal tasks untouched for older_than_minutes as failed.

    Args:
        uow: Unit of work (caller commits)
        older_than_minutes: Age threshold on updated_at
        dry_run: Only report, don't modify tasks

    Returns:
        RecoveryResult with counts and affected task ids
    """
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)
    stale_tasks = await uow.tasks.get_stale(older_than=cutoff)

    result = RecoveryResult(stale_count=len(stale_tasks))

    for task in stale_tasks:
        result.task_ids.append(str(task.id))
        if dry_run:
            continue

        message = (
            INTERRUPTED_MESSAGE if task.status == TaskStatus.PROCESSING else NOT_STARTED_MESSAGE
        )
        await uow.tasks.set_status(task, TaskStatus.FAILED, error_message=message)
        result.recovered_count += 1

    if result.stale_count > 0:
        logger.info(
            "recovery.stale_tasks",
            stale=result.stale_count,
            recovered=result.recovered_count,
            dry_run=dry_run,
        )

    return result
