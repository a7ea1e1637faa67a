"""Replicate HTTP client for image-to-image predictions with deadline-bounded polling."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

import httpx
import structlog

from img2img.core.config import Settings
from img2img.services.exceptions import (
    EmptyOutputError,
    PredictionCanceledError,
    PredictionError,
    PredictionFailedError,
    PredictionTimeoutError,
    UpstreamConnectionError,
    UpstreamError,
)
from img2img.services.image_generation.model_configs import ModelConfig

logger = structlog.get_logger(__name__)

TERMINAL_STATUSES = frozenset({"succeeded", "failed", "canceled"})

CONTENT_TYPES = {
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
}


@dataclass(frozen=True)
class PredictionResult:
    """Successful prediction output."""

    prediction_id: Optional[str]
    image_url: str
    predict_time: Optional[float] = None


def classify_error(exception: Exception) -> PredictionError:
    """Classify transport-level exception into a prediction error.

    Classification rules:
        - httpx timeouts → PredictionTimeoutError (retryable)
        - Other httpx transport errors / OSError → UpstreamConnectionError (retryable)
        - Anything else → PredictionError (not retryable)
    """
    if isinstance(exception, PredictionError):
        return exception
    if isinstance(exception, httpx.TimeoutException):
        return PredictionTimeoutError(f"Network timeout: {exception}")
    if isinstance(exception, (httpx.TransportError, ConnectionError, OSError)):
        return UpstreamConnectionError(f"Connection error: {exception}")
    return PredictionError(f"Unexpected error: {exception}")


def build_prediction_request(
    config: ModelConfig, image_url: str, prompt: str, output_format: str = "jpg"
) -> dict[str, Any]:
    """Build the Replicate create-prediction body for a model config."""
    return {
        "version": config.version,
        "input": {
            "image": image_url,
            "prompt": prompt,
            "strength": config.default_strength,
            "lora_scales": config.default_lora_scale,
            "output_format": output_format,
            "guidance_scale": config.default_guidance_scale,
            "output_quality": config.default_output_quality,
            "num_inference_steps": config.default_inference_steps,
        },
    }


def parse_prediction_result(prediction: dict[str, Any]) -> PredictionResult:
    """Turn a terminal prediction payload into a result or raise its error.

    Raises:
        PredictionFailedError: status is failed
        PredictionCanceledError: status is canceled
        EmptyOutputError: succeeded without an output reference
        PredictionError: any other status
    """
    status = prediction.get("status")

    if status == "failed":
        raise PredictionFailedError(prediction.get("error"))
    if status == "canceled":
        raise PredictionCanceledError()
    if status != "succeeded":
        raise PredictionError(f"Unexpected prediction status: {status}")

    # Output format varies by model: single URL or list of URLs
    output = prediction.get("output")
    if isinstance(output, list):
        output = output[0] if output else None
    if not output:
        raise EmptyOutputError()

    metrics = prediction.get("metrics") or {}
    return PredictionResult(
        prediction_id=prediction.get("id"),
        image_url=str(output),
        predict_time=metrics.get("predict_time"),
    )


def content_type_from_url(url: str) -> str:
    """Infer image MIME type from the URL's file extension (default image/jpeg)."""
    path = urlparse(url).path
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return CONTENT_TYPES.get(extension, "image/jpeg")


class ReplicateClient:
    """Client for Replicate's predictions API.

    Each submit_prediction call creates a new remote prediction, asks Replicate
    to hold the response open (Prefer: wait) and falls back to polling the
    prediction's status URL until it is terminal or the deadline passes. The
    deadline is computed once per call and shared by creation and polling.
    Retries are the caller's decision.
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = "https://api.replicate.com/v1",
        wait_seconds: int = 60,
        timeout_seconds: float = 120.0,
        poll_interval_seconds: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize Replicate client.

        Args:
            api_token: Replicate API token (from REPLICATE_API_TOKEN)
            base_url: API root, e.g. https://api.replicate.com/v1
            wait_seconds: Prefer-wait hint sent on prediction creation
            timeout_seconds: Wall-clock ceiling for one prediction
            poll_interval_seconds: Delay between status checks
            http_client: Shared httpx client (created and owned if omitted)
        """
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.wait_seconds = wait_seconds
        self.timeout_seconds = timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._client = http_client or httpx.AsyncClient()
        self._owns_client = http_client is None

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None
    ) -> "ReplicateClient":
        return cls(
            api_token=settings.replicate_api_token,
            base_url=settings.replicate_api_url,
            wait_seconds=settings.replicate_wait_seconds,
            timeout_seconds=settings.prediction_timeout_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
            http_client=http_client,
        )

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_token}"}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def submit_prediction(
        self,
        config: ModelConfig,
        image_url: str,
        prompt: str,
        output_format: str = "jpg",
    ) -> PredictionResult:
        """Create a prediction and wait for its terminal state.

        Args:
            config: Model configuration supplying version and defaults
            image_url: Publicly fetchable source image
            prompt: Text prompt
            output_format: jpg, png or webp

        Returns:
            PredictionResult with output image URL and optional predict time

        Raises:
            UpstreamError: Non-2xx response on creation or poll
            PredictionTimeoutError: Deadline exceeded
            UpstreamConnectionError: Network failure
            PredictionFailedError / PredictionCanceledError / EmptyOutputError
        """
        if not self.api_token:
            raise PredictionError("REPLICATE_API_TOKEN is not configured")

        deadline = time.monotonic() + self.timeout_seconds
        payload = build_prediction_request(config, image_url, prompt, output_format)

        prediction = await self._request(
            "POST",
            f"{self.base_url}/predictions",
            deadline,
            context="Replicate API error",
            json=payload,
            headers={
                **self.headers,
                "Content-Type": "application/json",
                "Prefer": f"wait={self.wait_seconds}",
            },
        )

        if prediction.get("status") not in TERMINAL_STATUSES:
            prediction_url = (prediction.get("urls") or {}).get("get") or (
                f"{self.base_url}/predictions/{prediction.get('id')}"
            )
            logger.info(
                "prediction.polling",
                prediction_id=prediction.get("id"),
                status=prediction.get("status"),
            )
            prediction = await self._poll(prediction_url, deadline)

        return parse_prediction_result(prediction)

    async def _poll(self, prediction_url: str, deadline: float) -> dict[str, Any]:
        """Poll prediction status at a fixed interval until terminal or deadline."""
        while time.monotonic() < deadline:
            prediction = await self._request(
                "GET",
                prediction_url,
                deadline,
                context="Replicate API poll error",
                headers=self.headers,
            )
            if prediction.get("status") in TERMINAL_STATUSES:
                return prediction

            await asyncio.sleep(self.poll_interval_seconds)

        raise PredictionTimeoutError(
            f"Prediction timed out after {self.timeout_seconds:g} seconds"
        )

    async def _request(
        self, method: str, url: str, deadline: float, context: str, **kwargs: Any
    ) -> dict[str, Any]:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise PredictionTimeoutError(
                f"Prediction timed out after {self.timeout_seconds:g} seconds"
            )

        try:
            response = await self._client.request(method, url, timeout=remaining, **kwargs)
        except httpx.HTTPError as e:
            raise classify_error(e) from e

        if not response.is_success:
            raise UpstreamError(response.status_code, response.text, context=context)

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise UpstreamError(
                response.status_code, response.text, context=f"{context} (malformed response)"
            )

        return payload

    async def download_output(self, url: str) -> bytes:
        """Download a generated image from Replicate's temporary URL.

        Raises:
            UpstreamError: Non-2xx response
            PredictionTimeoutError / UpstreamConnectionError: Transport failure
        """
        try:
            response = await self._client.get(url, timeout=60.0, follow_redirects=True)
        except httpx.HTTPError as e:
            raise classify_error(e) from e

        if not response.is_success:
            raise UpstreamError(
                response.status_code, response.text, context="Failed to download image"
            )

        return response.content
