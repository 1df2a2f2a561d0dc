from __future__ import annotations

from typing import Any

from loguru import logger
from pydantic import ValidationError

from .errors import FetchError, SubmissionError
from .transport import Transport, TransportError, TransportResponseError
from .types import FABRIC_MODELS, ArtifactResult, GenerationRequest, QueueHandle

FAL_QUEUE_BASE_URL = "https://queue.fal.run"


def request_url(base_url: str, model_id: str, request_id: str, suffix: str = "") -> str:
    url = f"{base_url.rstrip('/')}/{model_id.strip('/')}/requests/{request_id}"
    return f"{url}/{suffix}" if suffix else url


async def submit_request(
    request: GenerationRequest,
    transport: Transport,
    base_url: str = FAL_QUEUE_BASE_URL,
) -> QueueHandle:
    """Enqueue a generation request and return its queue handle."""
    if request.model_id not in FABRIC_MODELS:
        logger.warning("submitting to an unrecognised model", model_id=request.model_id)
    url = f"{base_url.rstrip('/')}/{request.model_id.strip('/')}"
    try:
        data = await transport.post(url, request.to_payload())
    except TransportResponseError as exc:
        message = f"Failed to submit generation request: {exc.reason}"
        if exc.body:
            message = f"{message}. {exc.body}"
        raise SubmissionError(message) from exc
    except TransportError as exc:
        raise SubmissionError(f"Failed to submit generation request: {exc}") from exc

    request_id = data.get("request_id")
    if not request_id:
        raise SubmissionError(f"No request_id in submission response: {data}")

    try:
        handle = QueueHandle(
            request_id=str(request_id),
            status_url=data.get("status_url") or request_url(base_url, request.model_id, str(request_id), "status"),
            response_url=data.get("response_url"),
            cancel_url=data.get("cancel_url"),
            queue_position=data.get("queue_position"),
        )
    except ValidationError as exc:
        raise SubmissionError(f"Submission response has a malformed queue handle: {data}") from exc
    logger.info("request submitted", request_id=handle.request_id, queue_position=handle.queue_position)
    return handle


def _parse_artifact(data: dict[str, Any]) -> ArtifactResult:
    video = data.get("video")
    if not isinstance(video, dict) or not video.get("url"):
        raise FetchError("Generation result returned but no artifact URL found")
    try:
        return ArtifactResult.model_validate(video)
    except ValidationError as exc:
        raise FetchError(f"Generation result has a malformed artifact descriptor: {exc}") from exc


async def fetch_result(response_url: str, transport: Transport) -> ArtifactResult:
    logger.info("fetching video result", url=response_url)
    try:
        data = await transport.get(response_url)
    except TransportError as exc:
        reason = exc.reason if isinstance(exc, TransportResponseError) else str(exc)
        raise FetchError(f"Failed to fetch video result: {reason}") from exc
    return _parse_artifact(data)


async def cancel_request(
    handle: QueueHandle,
    transport: Transport,
    base_url: str = FAL_QUEUE_BASE_URL,
    model_id: str | None = None,
) -> bool:
    """Ask the queue to drop a request. Returns False if no cancel URL is known."""
    url = handle.cancel_url
    if not url and model_id:
        url = request_url(base_url, model_id, handle.request_id, "cancel")
    if not url:
        return False
    await transport.put(url)
    logger.info("cancellation requested", request_id=handle.request_id)
    return True
