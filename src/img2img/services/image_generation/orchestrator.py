"""Generation orchestrator: runs a task's prediction attempts and finalizes its status.

Attempts run sequentially, one Replicate prediction at a time per task. Each
attempt is persisted in its own unit of work, so outputs that already
succeeded stay durable if a later attempt or the process fails. A failed
attempt is logged and recorded, then the loop moves on; the task only fails
when it has no inputs or when every attempt failed.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol
from uuid import UUID

import structlog

from img2img.models.image_task import TaskStatus
from img2img.services.exceptions import (
    GenerationFailedError,
    NoInputError,
    PredictionTimeoutError,
    TaskNotFoundError,
)
from img2img.services.image_generation.model_configs import (
    ModelConfig,
    calculate_credits,
    get_model_config,
)
from img2img.services.image_generation.replicate_client import (
    PredictionResult,
    content_type_from_url,
)
from img2img.services.storage.base import StorageProvider
from img2img.uow import UnitOfWork

logger = structlog.get_logger(__name__)

NO_INPUT_MESSAGE = "No input images found"
ALL_FAILED_MESSAGE = "Failed to generate any images"


class PredictionClient(Protocol):
    async def submit_prediction(
        self, config: ModelConfig, image_url: str, prompt: str, output_format: str = "jpg"
    ) -> PredictionResult: ...

    async def download_output(self, url: str) -> bytes: ...


@dataclass
class GenerationResult:
    """Outcome of a completed generation run."""

    task_id: UUID
    outputs: list[str] = field(default_factory=list)
    credits_used: float = 0.0
    processing_time_ms: int = 0


@dataclass
class AttemptOutput:
    public_url: str
    predict_time: Optional[float]


def output_folder(task_id: UUID) -> str:
    return f"image-tasks/outputs/{task_id}"


def input_folder(task_id: UUID) -> str:
    return f"image-tasks/inputs/{task_id}"


class GenerationOrchestrator:
    """Drive one task from pending to completed or failed."""

    def __init__(
        self,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        prediction_client: PredictionClient,
        storage: StorageProvider,
        attempt_timeout_seconds: float = 120.0,
        output_format: str = "jpg",
    ):
        """Initialize orchestrator.

        Args:
            uow_factory: Factory producing a UnitOfWork per transaction
            prediction_client: Replicate client (or compatible)
            storage: Blob store for generated images
            attempt_timeout_seconds: Wall-clock ceiling for each attempt
            output_format: Requested output format (jpg, png, webp)
        """
        self.uow_factory = uow_factory
        self.prediction_client = prediction_client
        self.storage = storage
        self.attempt_timeout_seconds = attempt_timeout_seconds
        self.output_format = output_format

    async def run_generation(
        self,
        task_id: UUID,
        prompt: str,
        model: str,
        aspect_ratio: str,
        num_outputs: int,
    ) -> GenerationResult:
        """Generate num_outputs images for a task.

        Workflow:
        1. Mark task processing
        2. Load inputs; fail the task if there are none
        3. Resolve the first input (sort_order 0) to a public URL
        4. Run num_outputs attempts sequentially, skipping failed ones
        5. Fail the task if nothing succeeded
        6. Otherwise mark completed with credits and wall-clock time

        Returns:
            GenerationResult with public URLs of succeeded outputs in attempt order

        Raises:
            InvalidModelError: Unknown model (before any task mutation)
            TaskNotFoundError: Task doesn't exist
            InvalidStateTransition: Task is not pending
            NoInputError: Task has no input images (task marked failed)
            GenerationFailedError: Every attempt failed (task marked failed)
        """
        start_time = time.perf_counter()
        config = get_model_config(model)
        log = logger.bind(task_id=str(task_id), model=model)

        async with await self.uow_factory() as uow:
            task = await uow.tasks.get_by_id(task_id)
            if task is None:
                raise TaskNotFoundError(f"Task {task_id} not found")
            await uow.tasks.set_status(task, TaskStatus.PROCESSING)
            inputs = await uow.task_inputs.list_by_task(task_id)

        log.info("generation.started", num_outputs=num_outputs, aspect_ratio=aspect_ratio)

        if not inputs:
            await self._mark_failed(task_id, NO_INPUT_MESSAGE, self._elapsed_ms(start_time))
            log.warning("generation.no_inputs")
            raise NoInputError("No input images found for this task")

        image_url = self.storage.get_public_url(inputs[0].storage_key)

        outputs: list[str] = []
        total_predict_time = 0.0

        for attempt_index in range(num_outputs):
            try:
                result = await self._run_attempt(task_id, attempt_index, config, image_url, prompt)
            except Exception as e:
                # A failed attempt doesn't abort the task
                log.warning(
                    "generation.attempt.failed",
                    attempt=attempt_index + 1,
                    num_outputs=num_outputs,
                    error_type=type(e).__name__,
                    error_message=str(e),
                    retryable=getattr(e, "retryable", False),
                )
                await self._record_attempt_failure(task_id, attempt_index, e)
                continue

            outputs.append(result.public_url)
            if result.predict_time:
                total_predict_time += result.predict_time
            log.info(
                "generation.attempt.succeeded",
                attempt=attempt_index + 1,
                num_outputs=num_outputs,
                predict_time=result.predict_time,
            )

        processing_time_ms = self._elapsed_ms(start_time)

        if not outputs:
            await self._mark_failed(task_id, ALL_FAILED_MESSAGE, processing_time_ms)
            log.error("generation.failed", attempts=num_outputs)
            raise GenerationFailedError(ALL_FAILED_MESSAGE)

        credits_used = calculate_credits(config, len(outputs))

        async with await self.uow_factory() as uow:
            task = await uow.tasks.get_by_id(task_id)
            if task is None:
                raise TaskNotFoundError(f"Task {task_id} disappeared during generation")
            await uow.tasks.set_status(
                task,
                TaskStatus.COMPLETED,
                processing_time_ms=processing_time_ms,
                credits_used=credits_used,
            )

        log.info(
            "generation.completed",
            outputs=len(outputs),
            num_outputs=num_outputs,
            credits_used=credits_used,
            processing_time_ms=processing_time_ms,
            predict_time_ms=round(total_predict_time * 1000),
        )

        return GenerationResult(
            task_id=task_id,
            outputs=outputs,
            credits_used=credits_used,
            processing_time_ms=processing_time_ms,
        )

    async def _run_attempt(
        self,
        task_id: UUID,
        attempt_index: int,
        config: ModelConfig,
        image_url: str,
        prompt: str,
    ) -> AttemptOutput:
        """Run one prediction, store its image and persist the output row."""
        async with await self.uow_factory() as uow:
            await uow.attempts.start(task_id, attempt_index)

        try:
            prediction = await asyncio.wait_for(
                self.prediction_client.submit_prediction(
                    config, image_url, prompt, self.output_format
                ),
                timeout=self.attempt_timeout_seconds,
            )
        except PredictionTimeoutError:
            raise
        except TimeoutError:
            raise PredictionTimeoutError(
                f"Request timed out after {self.attempt_timeout_seconds:g} seconds"
            ) from None

        # Replicate output URLs are temporary, keep our own copy
        image_data = await self.prediction_client.download_output(prediction.image_url)
        content_type = content_type_from_url(prediction.image_url)

        upload = await self.storage.upload_file(
            image_data,
            f"output-{attempt_index}.{self.output_format}",
            content_type,
            output_folder(task_id),
        )

        try:
            async with await self.uow_factory() as uow:
                await uow.task_outputs.add(task_id, upload.key, attempt_index)
                attempt = await uow.attempts.get(task_id, attempt_index)
                if attempt is not None:
                    await uow.attempts.mark_succeeded(
                        attempt, prediction.prediction_id, prediction.predict_time
                    )
        except Exception:
            # No output row points at the blob
            await self._discard_blob(task_id, upload.key)
            raise

        return AttemptOutput(
            public_url=self.storage.get_public_url(upload.key),
            predict_time=prediction.predict_time,
        )

    async def _discard_blob(self, task_id: UUID, key: str) -> None:
        try:
            await self.storage.delete_file(key)
        except Exception as e:
            logger.warning(
                "generation.output_cleanup_failed",
                task_id=str(task_id),
                storage_key=key,
                error_type=type(e).__name__,
                error_message=str(e),
            )

    async def _record_attempt_failure(
        self, task_id: UUID, attempt_index: int, error: Exception
    ) -> None:
        error_data = {
            "error_type": type(error).__name__,
            "message": str(error),
            "retryable": bool(getattr(error, "retryable", False)),
        }
        try:
            async with await self.uow_factory() as uow:
                attempt = await uow.attempts.get(task_id, attempt_index)
                if attempt is None:
                    attempt = await uow.attempts.start(task_id, attempt_index)
                await uow.attempts.mark_failed(attempt, error_data)
        except Exception as e:
            # Recording is diagnostics only, the attempt is already discarded
            logger.error(
                "generation.attempt.record_failed",
                task_id=str(task_id),
                attempt=attempt_index + 1,
                error_type=type(e).__name__,
                error_message=str(e),
            )

    async def _mark_failed(
        self, task_id: UUID, error_message: str, processing_time_ms: Optional[int] = None
    ) -> None:
        async with await self.uow_factory() as uow:
            task = await uow.tasks.get_by_id(task_id)
            if task is None:
                raise TaskNotFoundError(f"Task {task_id} not found")
            await uow.tasks.set_status(
                task,
                TaskStatus.FAILED,
                error_message=error_message,
                processing_time_ms=processing_time_ms,
            )

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return round((time.perf_counter() - start_time) * 1000)
