"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from img2img.models.generation_attempt import AttemptStatus, GenerationAttempt
from img2img.models.image_task import (
    ImageTask,
    ImageTaskInput,
    ImageTaskOutput,
    InvalidStateTransition,
    TaskStatus,
)

__all__ = [
    "ImageTask",
    "ImageTaskInput",
    "ImageTaskOutput",
    "TaskStatus",
    "InvalidStateTransition",
    "GenerationAttempt",
    "AttemptStatus",
]
