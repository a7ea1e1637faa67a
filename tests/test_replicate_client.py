"""Replicate client tests.

The HTTP layer is replaced by httpx.MockTransport, so these tests cover:
- Prediction request body and headers
- Immediate success with Prefer: wait
- Polling until a terminal status
- failed / canceled / empty-output terminal states
- Upstream HTTP errors and their retryable classification
- Deadline shared by creation and polling
"""

import json

import httpx
import pytest

from img2img.services.exceptions import (
    EmptyOutputError,
    PredictionCanceledError,
    PredictionError,
    PredictionFailedError,
    PredictionTimeoutError,
    UpstreamConnectionError,
    UpstreamError,
)
from img2img.services.image_generation.model_configs import get_model_config
from img2img.services.image_generation.replicate_client import (
    ReplicateClient,
    build_prediction_request,
    classify_error,
    content_type_from_url,
    parse_prediction_result,
)

BASE_URL = "https://api.replicate.test/v1"
SOURCE_URL = "http://test/api/img2img/image/image-tasks/inputs/t/a.png"


def make_client(handler, **kwargs) -> ReplicateClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    options = {"timeout_seconds": 5.0, "poll_interval_seconds": 0}
    options.update(kwargs)
    return ReplicateClient(
        api_token="r8_test", base_url=BASE_URL, http_client=http_client, **options
    )


def succeeded(prediction_id="p1", output="https://replicate.delivery/out.jpg", **extra):
    return {"id": prediction_id, "status": "succeeded", "output": output, **extra}


@pytest.mark.asyncio
async def test_immediate_success_sends_wait_header_and_model_defaults():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json=succeeded(metrics={"predict_time": 2.25}))

    client = make_client(handler, wait_seconds=60)
    result = await client.submit_prediction(
        get_model_config("max"), SOURCE_URL, "make it snowy", "png"
    )

    assert result.prediction_id == "p1"
    assert result.image_url == "https://replicate.delivery/out.jpg"
    assert result.predict_time == 2.25

    assert len(requests) == 1
    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == f"{BASE_URL}/predictions"
    assert request.headers["Authorization"] == "Bearer r8_test"
    assert request.headers["Prefer"] == "wait=60"

    body = json.loads(request.content)
    assert body["version"] == get_model_config("max").version
    assert body["input"] == {
        "image": SOURCE_URL,
        "prompt": "make it snowy",
        "strength": 0.6,
        "lora_scales": -0.03,
        "output_format": "png",
        "guidance_scale": 0,
        "output_quality": 80,
        "num_inference_steps": 14,
    }


@pytest.mark.asyncio
async def test_polls_status_url_until_terminal():
    statuses = iter(["starting", "processing", "succeeded"])
    polled: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(
                201,
                json={
                    "id": "p2",
                    "status": "starting",
                    "urls": {"get": f"{BASE_URL}/predictions/p2"},
                },
            )
        polled.append(str(request.url))
        status = next(statuses)
        if status == "succeeded":
            return httpx.Response(200, json=succeeded("p2", output=["https://x/1.png"]))
        return httpx.Response(200, json={"id": "p2", "status": status})

    client = make_client(handler)
    result = await client.submit_prediction(get_model_config("standard"), SOURCE_URL, "p")

    assert result.image_url == "https://x/1.png"
    assert result.predict_time is None
    assert polled == [f"{BASE_URL}/predictions/p2"] * 3


@pytest.mark.asyncio
async def test_poll_falls_back_to_prediction_id_url():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "p3", "status": "processing"})
        assert str(request.url) == f"{BASE_URL}/predictions/p3"
        return httpx.Response(200, json=succeeded("p3"))

    client = make_client(handler)
    result = await client.submit_prediction(get_model_config("turbo"), SOURCE_URL, "p")

    assert result.prediction_id == "p3"


@pytest.mark.asyncio
async def test_failed_prediction_carries_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            201, json={"id": "p4", "status": "failed", "error": "NSFW content detected"}
        )

    client = make_client(handler)
    with pytest.raises(PredictionFailedError) as exc_info:
        await client.submit_prediction(get_model_config("max"), SOURCE_URL, "p")

    assert str(exc_info.value) == "Prediction failed: NSFW content detected"
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_canceled_prediction():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"id": "p5", "status": "canceled"})

    client = make_client(handler)
    with pytest.raises(PredictionCanceledError):
        await client.submit_prediction(get_model_config("max"), SOURCE_URL, "p")


@pytest.mark.asyncio
@pytest.mark.parametrize("output", [None, "", []])
async def test_succeeded_without_output(output):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json=succeeded(output=output))

    client = make_client(handler)
    with pytest.raises(EmptyOutputError):
        await client.submit_prediction(get_model_config("max"), SOURCE_URL, "p")


@pytest.mark.asyncio
async def test_create_error_is_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, text='{"detail":"invalid version"}')

    client = make_client(handler)
    with pytest.raises(UpstreamError) as exc_info:
        await client.submit_prediction(get_model_config("max"), SOURCE_URL, "p")

    assert exc_info.value.status_code == 422
    assert str(exc_info.value).startswith("Replicate API error: 422")
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_poll_server_error_is_retryable_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "p6", "status": "starting"})
        return httpx.Response(503, text="unavailable")

    client = make_client(handler)
    with pytest.raises(UpstreamError) as exc_info:
        await client.submit_prediction(get_model_config("max"), SOURCE_URL, "p")

    assert exc_info.value.status_code == 503
    assert str(exc_info.value).startswith("Replicate API poll error: 503")
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_prediction_times_out_when_never_terminal():
    poll_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal poll_count
        if request.method == "GET":
            poll_count += 1
        return httpx.Response(200, json={"id": "p7", "status": "processing"})

    client = make_client(handler, timeout_seconds=0.05, poll_interval_seconds=0.01)
    with pytest.raises(PredictionTimeoutError) as exc_info:
        await client.submit_prediction(get_model_config("max"), SOURCE_URL, "p")

    assert exc_info.value.retryable is True
    assert poll_count >= 1


@pytest.mark.asyncio
async def test_deadline_timeout_is_a_builtin_timeout_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "p8", "status": "processing"})

    client = make_client(handler, timeout_seconds=0.02, poll_interval_seconds=0.01)
    with pytest.raises(TimeoutError) as exc_info:
        await client.submit_prediction(get_model_config("max"), SOURCE_URL, "p")

    assert isinstance(exc_info.value, PredictionTimeoutError)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"text": "<html>Bad gateway</html>"},
        {"json": [{"id": "p9", "status": "succeeded"}]},
        {"json": "succeeded"},
    ],
)
async def test_malformed_success_body_is_upstream_error(body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, **body)

    client = make_client(handler)
    with pytest.raises(UpstreamError) as exc_info:
        await client.submit_prediction(get_model_config("max"), SOURCE_URL, "p")

    assert exc_info.value.status_code == 201
    assert "malformed response" in str(exc_info.value)
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_malformed_poll_body_is_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "p10", "status": "starting"})
        return httpx.Response(200, text="not json")

    client = make_client(handler)
    with pytest.raises(
        UpstreamError, match=r"Replicate API poll error \(malformed response\): 200"
    ):
        await client.submit_prediction(get_model_config("max"), SOURCE_URL, "p")


@pytest.mark.asyncio
async def test_connection_error_is_classified():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(UpstreamConnectionError) as exc_info:
        await client.submit_prediction(get_model_config("max"), SOURCE_URL, "p")

    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_missing_token_rejected_before_any_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = ReplicateClient(
        api_token="",
        base_url=BASE_URL,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    with pytest.raises(PredictionError, match="REPLICATE_API_TOKEN"):
        await client.submit_prediction(get_model_config("max"), SOURCE_URL, "p")


@pytest.mark.asyncio
async def test_download_output():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("missing.jpg"):
            return httpx.Response(404, text="gone")
        return httpx.Response(200, content=b"\xff\xd8image")

    client = make_client(handler)

    assert await client.download_output("https://replicate.delivery/a.jpg") == b"\xff\xd8image"
    with pytest.raises(UpstreamError, match="Failed to download image"):
        await client.download_output("https://replicate.delivery/missing.jpg")


def test_parse_prediction_result_takes_first_list_output():
    result = parse_prediction_result(
        succeeded(output=["https://x/first.webp", "https://x/second.webp"])
    )

    assert result.image_url == "https://x/first.webp"


def test_parse_prediction_result_rejects_non_terminal_status():
    with pytest.raises(PredictionError, match="Unexpected prediction status"):
        parse_prediction_result({"id": "p", "status": "processing"})


def test_build_prediction_request_uses_requested_format():
    body = build_prediction_request(get_model_config("turbo"), SOURCE_URL, "p", "webp")

    assert body["input"]["output_format"] == "webp"
    assert body["input"]["num_inference_steps"] == 6
    assert body["input"]["strength"] == 0.7


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://x/out.png", "image/png"),
        ("https://x/out.WEBP", "image/webp"),
        ("https://x/out.gif?sig=1", "image/gif"),
        ("https://x/out.jpg", "image/jpeg"),
        ("https://x/out", "image/jpeg"),
    ],
)
def test_content_type_from_url(url, expected):
    assert content_type_from_url(url) == expected


def test_classify_error():
    request = httpx.Request("GET", "https://x")

    assert isinstance(
        classify_error(httpx.ReadTimeout("slow", request=request)), PredictionTimeoutError
    )
    assert isinstance(
        classify_error(httpx.ConnectError("refused", request=request)), UpstreamConnectionError
    )
    unexpected = classify_error(ValueError("boom"))
    assert type(unexpected) is PredictionError
    assert unexpected.retryable is False
