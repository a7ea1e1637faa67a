"""Image task API endpoints.

This module implements REST endpoints for image task management:
- POST /api/img2img/task - Create a task from a prompt and uploaded source images
- GET /api/img2img/task?id=... - Get one task with its inputs and outputs
- GET /api/img2img/task - List the caller's recent tasks with output image URLs
- DELETE /api/img2img/task/{task_id} - Delete a task, its rows and its stored images

All endpoints require an API key (Authorization: Bearer <key>).
"""

from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from img2img.api.dependencies import get_settings, get_storage, get_uow_factory, require_identity
from img2img.core.config import Settings
from img2img.models.image_task import ImageTask, ImageTaskInput, ImageTaskOutput, TaskStatus
from img2img.services.auth import Identity
from img2img.services.exceptions import InvalidModelError
from img2img.services.image_generation.model_configs import (
    ASPECT_RATIOS,
    PROVIDER,
    VALID_NUM_OUTPUTS,
    get_model_config,
)
from img2img.services.image_generation.orchestrator import input_folder
from img2img.services.image_generation.prompt_validator import validate_prompt
from img2img.services.storage.base import StorageProvider

logger = structlog.get_logger()
router = APIRouter(prefix="/api/img2img", tags=["tasks"])


# Request/Response Models


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateTaskResponse(CamelModel):
    """Response model for task creation."""

    success: bool = Field(..., description="True if the task was created")
    task_id: UUID = Field(..., description="Identifier of the new task")


class TaskDTO(CamelModel):
    """Task as returned by the API."""

    id: UUID
    user_id: Optional[str] = None
    prompt: str
    model: str
    aspect_ratio: str
    num_outputs: int
    provider: str
    model_id: str
    status: TaskStatus
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    credits_used: Optional[float] = None
    created_at: datetime
    updated_at: datetime


class TaskInputDTO(CamelModel):
    """Source image of a task."""

    id: UUID
    task_id: UUID
    storage_key: str
    file_name: str
    file_size: int
    file_type: str
    sort_order: int
    created_at: datetime
    image_url: str = Field(..., description="Public URL of the stored image")


class TaskOutputDTO(CamelModel):
    """Generated image of a task. sort_order is the attempt index that produced it."""

    id: UUID
    task_id: UUID
    storage_key: str
    sort_order: int
    created_at: datetime
    image_url: str = Field(..., description="Public URL of the stored image")


class TaskDetailResponse(CamelModel):
    success: bool
    task: TaskDTO
    inputs: list[TaskInputDTO]
    outputs: list[TaskOutputDTO]


class TaskListItem(TaskDTO):
    outputs: list[TaskOutputDTO] = Field(default_factory=list)


class TaskListResponse(CamelModel):
    success: bool
    tasks: list[TaskListItem]


class DeleteTaskResponse(CamelModel):
    success: bool


def _task_dto(task: ImageTask) -> TaskDTO:
    return TaskDTO(**task.model_dump())


def _input_dto(task_input: ImageTaskInput, storage: StorageProvider) -> TaskInputDTO:
    return TaskInputDTO(
        **task_input.model_dump(), image_url=storage.get_public_url(task_input.storage_key)
    )


def _output_dto(output: ImageTaskOutput, storage: StorageProvider) -> TaskOutputDTO:
    return TaskOutputDTO(
        **output.model_dump(), image_url=storage.get_public_url(output.storage_key)
    )


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


async def _delete_blobs(storage: StorageProvider, keys: list[str], **log_context) -> None:
    """Best-effort blob removal; failures are logged and skipped."""
    for key in keys:
        try:
            await storage.delete_file(key)
        except Exception as e:
            logger.warning(
                "task.blob_delete_failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
                **log_context,
            )


# API Endpoints


@router.post("/task", response_model=CreateTaskResponse, status_code=status.HTTP_200_OK)
async def create_task(
    prompt: Annotated[str, Form()],
    model: Annotated[str, Form()],
    aspect_ratio: Annotated[str, Form(alias="aspectRatio")],
    num_outputs: Annotated[int, Form(alias="numOutputs")],
    images: Annotated[Optional[list[UploadFile]], File()] = None,
    identity: Identity = Depends(require_identity),
    settings: Settings = Depends(get_settings),
    uow_factory=Depends(get_uow_factory),
    storage: StorageProvider = Depends(get_storage),
) -> CreateTaskResponse:
    """Create a new image task in pending state.

    Files that are not images or exceed the upload size limit are skipped.
    If no file survives the checks, no task is created.

    Raises:
        HTTPException 400: Missing/invalid fields, no images, too many images,
            or no valid image among the uploads
        HTTPException 401: Missing or invalid API key
        HTTPException 500: Storage or database error
    """
    try:
        prompt = validate_prompt(prompt)
        config = get_model_config(model)
    except ValueError as e:
        raise _bad_request(str(e))
    except InvalidModelError:
        raise _bad_request("Invalid model")

    if aspect_ratio not in ASPECT_RATIOS:
        raise _bad_request(f"Invalid aspect ratio. Expected one of: {', '.join(ASPECT_RATIOS)}")
    if num_outputs not in VALID_NUM_OUTPUTS:
        raise _bad_request("numOutputs must be 1, 2 or 4")

    files = images or []
    if not files:
        raise _bad_request("At least one image is required")
    if len(files) > settings.max_input_images:
        raise _bad_request(f"Maximum {settings.max_input_images} images allowed")

    accepted: list[tuple[UploadFile, bytes]] = []
    for upload in files:
        content_type = upload.content_type or ""
        if not content_type.startswith("image/"):
            logger.info("task.input_skipped", filename=upload.filename, reason="not_an_image")
            continue
        if upload.size is not None and upload.size > settings.max_upload_bytes:
            logger.info("task.input_skipped", filename=upload.filename, reason="too_large")
            continue
        data = await upload.read()
        if len(data) > settings.max_upload_bytes:
            logger.info("task.input_skipped", filename=upload.filename, reason="too_large")
            continue
        accepted.append((upload, data))

    if not accepted:
        raise _bad_request("No valid images provided")

    uploaded_keys: list[str] = []
    try:
        async with await uow_factory() as uow:
            task = await uow.tasks.create(
                prompt=prompt,
                model=model,
                aspect_ratio=aspect_ratio,
                num_outputs=num_outputs,
                provider=PROVIDER,
                model_id=config.model_id,
                user_id=identity.user_id,
            )

            # Ordinals follow acceptance order so skipped files leave no gaps
            for sort_order, (upload, data) in enumerate(accepted):
                file_name = upload.filename or f"input-{sort_order}"
                stored = await storage.upload_file(
                    data, file_name, upload.content_type or "image/jpeg", input_folder(task.id)
                )
                uploaded_keys.append(stored.key)
                await uow.task_inputs.add(
                    task_id=task.id,
                    storage_key=stored.key,
                    file_name=file_name,
                    file_size=len(data),
                    file_type=upload.content_type or "image/jpeg",
                    sort_order=sort_order,
                )

            task_id = task.id

    except Exception as e:
        logger.error(
            "task.create_failed",
            user_id=identity.user_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        # The task rows were rolled back, so nothing references these blobs
        await _delete_blobs(storage, uploaded_keys)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create task",
        )

    logger.info(
        "task.created",
        task_id=str(task_id),
        user_id=identity.user_id,
        model=model,
        inputs=len(accepted),
        skipped=len(files) - len(accepted),
    )
    return CreateTaskResponse(success=True, task_id=task_id)


@router.get(
    "/task",
    response_model=TaskDetailResponse | TaskListResponse,
    status_code=status.HTTP_200_OK,
)
async def get_tasks(
    task_id: Annotated[Optional[UUID], Query(alias="id")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    identity: Identity = Depends(require_identity),
    uow_factory=Depends(get_uow_factory),
    storage: StorageProvider = Depends(get_storage),
) -> TaskDetailResponse | TaskListResponse:
    """Get one task with details, or list recent tasks newest first.

    Raises:
        HTTPException 404: Task not found or owned by someone else
    """
    async with await uow_factory() as uow:
        if task_id is not None:
            details = await uow.tasks.get_with_details(task_id)
            if details is None or details.task.user_id != identity.user_id:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")

            return TaskDetailResponse(
                success=True,
                task=_task_dto(details.task),
                inputs=[_input_dto(i, storage) for i in details.inputs],
                outputs=[_output_dto(o, storage) for o in details.outputs],
            )

        tasks = await uow.tasks.list_recent(user_id=identity.user_id, limit=limit)
        items = []
        for task in tasks:
            outputs = await uow.task_outputs.list_by_task(task.id)
            items.append(
                TaskListItem(
                    **task.model_dump(),
                    outputs=[_output_dto(o, storage) for o in outputs],
                )
            )

    return TaskListResponse(success=True, tasks=items)


@router.delete(
    "/task/{task_id}", response_model=DeleteTaskResponse, status_code=status.HTTP_200_OK
)
async def delete_task(
    task_id: UUID,
    identity: Identity = Depends(require_identity),
    uow_factory=Depends(get_uow_factory),
    storage: StorageProvider = Depends(get_storage),
) -> DeleteTaskResponse:
    """Delete a task with its inputs and outputs, then remove stored images.

    Raises:
        HTTPException 404: Task not found or owned by someone else
    """
    async with await uow_factory() as uow:
        details = await uow.tasks.get_with_details(task_id)
        if details is None or details.task.user_id != identity.user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
        storage_keys = [i.storage_key for i in details.inputs]
        storage_keys += [o.storage_key for o in details.outputs]
        await uow.tasks.delete(task_id)

    await _delete_blobs(storage, storage_keys, task_id=str(task_id))

    logger.info("task.deleted", task_id=str(task_id), blobs=len(storage_keys))
    return DeleteTaskResponse(success=True)
