import pytest
from loguru import logger

from fabric_runner.api import cancel_request, fetch_result, submit_request
from fabric_runner.errors import FetchError, SubmissionError
from fabric_runner.transport import TransportConnectionError, TransportResponseError
from fabric_runner.types import GenerationRequest, QueueHandle

from fakes import FakeTransport

BASE = "https://queue.fal.run"
SUBMIT_URL = f"{BASE}/veed/fabric-1.0/fast"
RESULT_URL = f"{BASE}/veed/fabric-1.0/requests/req-1"

REQUEST = GenerationRequest(
    model_id="veed/fabric-1.0/fast",
    image_url="https://example.com/portrait.jpg",
    audio_url="https://example.com/speech.mp3",
    resolution="720p",
    aspect_ratio="9:16",
)


@pytest.mark.asyncio
async def test_submit_sends_body_and_returns_handle() -> None:
    transport = FakeTransport(
        {
            SUBMIT_URL: [
                {
                    "request_id": "req-1",
                    "status_url": f"{RESULT_URL}/status",
                    "response_url": RESULT_URL,
                    "cancel_url": f"{RESULT_URL}/cancel",
                    "queue_position": 4,
                }
            ]
        }
    )

    handle = await submit_request(REQUEST, transport, base_url=BASE)

    assert transport.calls == [
        (
            "POST",
            SUBMIT_URL,
            {
                "image_url": "https://example.com/portrait.jpg",
                "audio_url": "https://example.com/speech.mp3",
                "resolution": "720p",
                "aspect_ratio": "9:16",
            },
        )
    ]
    assert handle.request_id == "req-1"
    assert handle.response_url == RESULT_URL
    assert handle.cancel_url == f"{RESULT_URL}/cancel"
    assert handle.queue_position == 4


@pytest.mark.asyncio
async def test_submit_derives_status_url() -> None:
    transport = FakeTransport({SUBMIT_URL: [{"request_id": "req-9"}]})

    handle = await submit_request(REQUEST, transport, base_url=BASE + "/")

    assert handle.status_url == f"{BASE}/veed/fabric-1.0/fast/requests/req-9/status"
    assert handle.response_url is None


@pytest.mark.asyncio
async def test_submit_error_carries_reason_and_body() -> None:
    transport = FakeTransport(
        {SUBMIT_URL: [TransportResponseError(400, "Bad Request", "Invalid parameters")]}
    )

    with pytest.raises(SubmissionError, match="Failed to submit generation request: Bad Request. Invalid parameters"):
        await submit_request(REQUEST, transport, base_url=BASE)


@pytest.mark.asyncio
async def test_submit_connection_failure() -> None:
    transport = FakeTransport({SUBMIT_URL: [TransportConnectionError("connect timeout")]})

    with pytest.raises(SubmissionError, match="connect timeout"):
        await submit_request(REQUEST, transport, base_url=BASE)


@pytest.mark.asyncio
async def test_submit_without_request_id() -> None:
    transport = FakeTransport({SUBMIT_URL: [{"detail": "queued"}]})

    with pytest.raises(SubmissionError, match="No request_id"):
        await submit_request(REQUEST, transport, base_url=BASE)


@pytest.mark.asyncio
async def test_submit_with_malformed_handle_is_a_submission_error() -> None:
    transport = FakeTransport({SUBMIT_URL: [{"request_id": "r1", "queue_position": "unknown"}]})

    with pytest.raises(SubmissionError, match="malformed queue handle"):
        await submit_request(REQUEST, transport, base_url=BASE)


@pytest.mark.asyncio
async def test_submit_warns_on_unrecognised_model() -> None:
    messages = []
    sink = logger.add(lambda message: messages.append(message.record), level="INFO")
    transport = FakeTransport({f"{BASE}/acme/other-model": [{"request_id": "req-9", "queue_position": 2}]})
    request = REQUEST.model_copy(update={"model_id": "acme/other-model"})
    try:
        handle = await submit_request(request, transport, base_url=BASE)
    finally:
        logger.remove(sink)

    assert handle.status_url == f"{BASE}/acme/other-model/requests/req-9/status"
    warning, submitted = messages
    assert warning["level"].name == "WARNING"
    assert warning["extra"] == {"model_id": "acme/other-model"}
    assert submitted["message"] == "request submitted"
    assert submitted["extra"] == {"request_id": "req-9", "queue_position": 2}


@pytest.mark.asyncio
async def test_fetch_result_parses_video() -> None:
    transport = FakeTransport(
        {
            RESULT_URL: [
                {
                    "video": {
                        "url": "https://fal-cdn.com/result.mp4",
                        "content_type": "video/mp4",
                        "file_name": "result.mp4",
                        "file_size": 1048576,
                        "width": 854,
                        "height": 480,
                    },
                    "request_id": "req-1",
                }
            ]
        }
    )

    artifact = await fetch_result(RESULT_URL, transport)

    assert artifact.url == "https://fal-cdn.com/result.mp4"
    assert artifact.file_size == 1048576
    assert (artifact.width, artifact.height) == (854, 480)


@pytest.mark.asyncio
async def test_fetch_result_leaves_missing_content_type_unset() -> None:
    transport = FakeTransport({RESULT_URL: [{"video": {"url": "https://fal-cdn.com/result.webm"}}]})

    artifact = await fetch_result(RESULT_URL, transport)

    assert artifact.content_type is None


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"video": {}}, {"request_id": "req-1"}, {"video": None}])
async def test_fetch_result_without_artifact_url(payload) -> None:
    transport = FakeTransport({RESULT_URL: [payload]})

    with pytest.raises(FetchError, match="no artifact URL"):
        await fetch_result(RESULT_URL, transport)


@pytest.mark.asyncio
async def test_fetch_result_transport_failure() -> None:
    transport = FakeTransport({RESULT_URL: [TransportResponseError(404, "Not Found")]})

    with pytest.raises(FetchError, match="Failed to fetch video result: Not Found"):
        await fetch_result(RESULT_URL, transport)


@pytest.mark.asyncio
async def test_cancel_prefers_handle_url_then_derives() -> None:
    transport = FakeTransport(
        {
            f"{RESULT_URL}/cancel": [{"status": "CANCELLATION_REQUESTED"}],
            f"{BASE}/veed/fabric-1.0/requests/req-2/cancel": [{"status": "CANCELLATION_REQUESTED"}],
        }
    )

    with_url = QueueHandle(request_id="req-1", status_url=f"{RESULT_URL}/status", cancel_url=f"{RESULT_URL}/cancel")
    assert await cancel_request(with_url, transport) is True

    derived = QueueHandle(request_id="req-2", status_url="unused")
    assert await cancel_request(derived, transport, base_url=BASE, model_id="veed/fabric-1.0") is True
    assert await cancel_request(derived, transport) is False

    assert [call[:2] for call in transport.calls] == [
        ("PUT", f"{RESULT_URL}/cancel"),
        ("PUT", f"{BASE}/veed/fabric-1.0/requests/req-2/cancel"),
    ]
