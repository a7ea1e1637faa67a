"""Repository layer for the img2img backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from img2img.repositories.generation_attempt import GenerationAttemptRepository
from img2img.repositories.image_task import ImageTaskRepository, TaskDetails
from img2img.repositories.image_task_input import ImageTaskInputRepository
from img2img.repositories.image_task_output import ImageTaskOutputRepository

__all__ = [
    "ImageTaskRepository",
    "ImageTaskInputRepository",
    "ImageTaskOutputRepository",
    "GenerationAttemptRepository",
    "TaskDetails",
]
