"""Image generation API endpoint.

POST /api/img2img runs all generation attempts of a pending task and returns
the public URLs of the images that succeeded. The response is either a success
payload with at least one output or an error (400 validation, 401 auth,
404 unknown task, 500 exhaustion or internal error).
"""

from uuid import UUID, uuid4

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from img2img.api.dependencies import get_orchestrator, get_uow_factory, require_identity
from img2img.models.image_task import InvalidStateTransition
from img2img.services.auth import Identity
from img2img.services.exceptions import (
    GenerationFailedError,
    InvalidModelError,
    NoInputError,
    TaskNotFoundError,
)
from img2img.services.image_generation.model_configs import ASPECT_RATIOS, VALID_NUM_OUTPUTS
from img2img.services.image_generation.orchestrator import GenerationOrchestrator
from img2img.services.image_generation.prompt_validator import validate_prompt

logger = structlog.get_logger()
router = APIRouter(prefix="/api/img2img", tags=["generation"])


# Request/Response Models


class GenerateRequest(BaseModel):
    """Request model for running generation on a task."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    task_id: UUID = Field(..., description="Task created via POST /api/img2img/task")
    prompt: str = Field(..., description="Text prompt for the transformation")
    model: str = Field(..., description="Model tier: max, standard or turbo")
    aspect_ratio: str = Field(..., description="Target aspect ratio, e.g. 1:1 or 16:9")
    num_outputs: int = Field(..., description="Number of images to generate (1, 2 or 4)")

    @field_validator("prompt")
    @classmethod
    def validate_prompt_text(cls, v: str) -> str:
        return validate_prompt(v)

    @field_validator("aspect_ratio")
    @classmethod
    def validate_aspect_ratio(cls, v: str) -> str:
        if v not in ASPECT_RATIOS:
            raise ValueError(f"Aspect ratio must be one of: {', '.join(ASPECT_RATIOS)}")
        return v

    @field_validator("num_outputs")
    @classmethod
    def validate_num_outputs(cls, v: int) -> int:
        if v not in VALID_NUM_OUTPUTS:
            raise ValueError("numOutputs must be 1, 2 or 4")
        return v


class GenerateResponse(BaseModel):
    """Response model for a completed generation run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = Field(..., description="Always true; failures are returned as errors")
    task_id: UUID
    outputs: list[str] = Field(..., description="Public URLs of generated images in attempt order")
    credits_used: float
    processing_time_ms: int


# API Endpoints


@router.post("", response_model=GenerateResponse, status_code=status.HTTP_200_OK)
async def generate(
    request: GenerateRequest,
    identity: Identity = Depends(require_identity),
    uow_factory=Depends(get_uow_factory),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerateResponse:
    """Run image generation for a pending task.

    Each requested output is one Replicate prediction; failed attempts are
    skipped. The task ends completed if at least one image was generated.

    Raises:
        HTTPException 400: Invalid model, task not pending, or task has no inputs
        HTTPException 401: Missing or invalid API key
        HTTPException 404: Task not found or owned by someone else
        HTTPException 500: Every attempt failed or unexpected error
    """
    request_id = uuid4().hex[:8]
    log = logger.bind(request_id=request_id, task_id=str(request.task_id))

    async with await uow_factory() as uow:
        task = await uow.tasks.get_by_id(request.task_id)
        if task is None or task.user_id != identity.user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")

    log.info("generation.requested", model=request.model, num_outputs=request.num_outputs)

    try:
        result = await orchestrator.run_generation(
            task_id=request.task_id,
            prompt=request.prompt,
            model=request.model,
            aspect_ratio=request.aspect_ratio,
            num_outputs=request.num_outputs,
        )

    except InvalidModelError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid model")
    except TaskNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    except InvalidStateTransition as e:
        log.warning("generation.rejected", reason=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Task has already been processed",
        )
    except NoInputError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No input images found for this task",
        )
    except GenerationFailedError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate images",
        )
    except Exception as e:
        log.error(
            "generation.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate image. Please try again later.",
        )

    return GenerateResponse(
        success=True,
        task_id=result.task_id,
        outputs=result.outputs,
        credits_used=result.credits_used,
        processing_time_ms=result.processing_time_ms,
    )
