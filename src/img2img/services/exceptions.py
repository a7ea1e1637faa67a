"""Service error hierarchy for prediction, storage and orchestration.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- PredictionError: Remote prediction failures, tagged retryable or not
- StorageError: Blob store failures
- Orchestration errors surfaced to API callers
"""

from typing import Optional


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


# Prediction errors
class PredictionError(ServiceError):
    """Base class for categorized Replicate prediction errors."""

    retryable: bool = False


class UpstreamError(PredictionError):
    """Replicate answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str, context: str = "Replicate API error"):
        super().__init__(f"{context}: {status_code} - {body}")
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        # Rate limit and server-side failures may succeed later
        return self.status_code == 429 or self.status_code >= 500


class UpstreamConnectionError(PredictionError):
    """Network failure talking to Replicate."""

    retryable = True


class PredictionTimeoutError(PredictionError, TimeoutError):
    """Prediction did not reach a terminal state before the deadline.

    Also a builtin TimeoutError, so generic timeout handlers catch it.
    """

    retryable = True


class PredictionFailedError(PredictionError):
    """Replicate reported the prediction as failed (e.g. content policy)."""

    def __init__(self, error: Optional[str] = None):
        super().__init__(f"Prediction failed: {error or 'Unknown error'}")
        self.error = error


class PredictionCanceledError(PredictionError):
    """Prediction was canceled upstream."""

    def __init__(self) -> None:
        super().__init__("Prediction was canceled")


class EmptyOutputError(PredictionError):
    """Prediction succeeded but returned no output reference."""

    def __init__(self) -> None:
        super().__init__("No output image returned from Replicate")


# Storage errors
class StorageError(ServiceError):
    """Base exception for blob store errors."""

    pass


class StorageNotFoundError(StorageError):
    """Requested key does not exist."""

    def __init__(self, key: str):
        super().__init__(f"File not found: {key}")
        self.key = key


class StorageUploadError(StorageError):
    """Writing a blob failed."""

    pass


# Validation and orchestration errors
class InvalidModelError(ServiceError):
    """Model identifier is not one of the configured models."""

    def __init__(self, model: str):
        super().__init__(f"Invalid model: {model}")
        self.model = model


class TaskNotFoundError(ServiceError):
    """Task does not exist."""

    pass


class NoInputError(ServiceError):
    """Task has no input images to generate from."""

    pass


class GenerationFailedError(ServiceError):
    """Every generation attempt of a task failed."""

    pass


class AuthenticationError(ServiceError):
    """Request carries no valid credentials."""

    pass
