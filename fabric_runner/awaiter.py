"""Waiting for a queued request to reach a terminal status.

Two interchangeable strategies implement the same ``wait`` contract:

- PollingAwaiter: GET the status URL on a fixed interval, retrying transient
  connection failures with a linear backoff
- StreamingAwaiter: consume the server-sent event stream at
  ``{status_url}/stream?logs=1``

Both return the COMPLETED payload, raise GenerationFailedError on FAILED and
GenerationTimeoutError once the deadline passes.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Protocol

from loguru import logger
from pydantic import ValidationError

from .errors import (
    GenerationFailedError,
    GenerationTimeoutError,
    PollError,
    StreamEndedError,
    StreamError,
)
from .progress import ProgressCallback, report_progress
from .transport import Transport, TransportError, TransportResponseError
from .types import QueueHandle, StatusPayload

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


class CompletionAwaiter(Protocol):
    async def wait(
        self,
        handle: QueueHandle,
        timeout: float,
        on_progress: ProgressCallback | None = None,
    ) -> StatusPayload:
        """Block until the request is COMPLETED and return that payload."""


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * attempt


def _check_terminal(handle: QueueHandle, status: StatusPayload) -> bool:
    if not status.is_terminal:
        return False
    if status.status == "FAILED":
        reason = status.last_message or "Unknown error"
        logger.error("generation failed", request_id=handle.request_id, reason=reason)
        raise GenerationFailedError(reason)
    logger.info("generation completed", request_id=handle.request_id, metrics=status.metrics)
    return True


class PollingAwaiter:
    def __init__(
        self,
        transport: Transport,
        interval: float = 5.0,
        retry: RetryPolicy | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.transport = transport
        self.interval = interval
        self.retry = retry or RetryPolicy()
        self._clock = clock
        self._sleep = sleep

    async def _fetch_status(self, url: str, started: float, timeout: float) -> StatusPayload:
        attempts = self.retry.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                data = await self.transport.get(url)
            except TransportResponseError as exc:
                raise PollError(f"Status check failed: {exc.reason}", attempts=attempt) from exc
            except (TransportError, ConnectionError) as exc:
                if attempt >= attempts:
                    raise PollError(
                        f"Failed to check status after {attempt} attempts: {exc}",
                        attempts=attempt,
                    ) from exc
                remaining = timeout - (self._clock() - started)
                if remaining <= 0:
                    raise GenerationTimeoutError(timeout) from exc
                delay = min(self.retry.delay_for(attempt), remaining)
                logger.warning(
                    "status check failed, retrying", attempt=attempt, delay=round(delay, 2), error=str(exc)
                )
                await self._sleep(delay)
                continue

            try:
                return StatusPayload.model_validate(data)
            except ValidationError as exc:
                raise PollError(f"Status endpoint returned an unrecognised payload: {data}", attempts=attempt) from exc

        raise PollError(f"Failed to check status after {attempts} attempts", attempts=attempts)

    async def wait(
        self,
        handle: QueueHandle,
        timeout: float,
        on_progress: ProgressCallback | None = None,
    ) -> StatusPayload:
        started = self._clock()
        logger.info("polling status", request_id=handle.request_id, url=handle.status_url)

        while self._clock() - started < timeout:
            status = await self._fetch_status(handle.status_url, started, timeout)
            if _check_terminal(handle, status):
                return status
            report_progress(handle.request_id, status, on_progress)

            remaining = timeout - (self._clock() - started)
            if remaining <= 0:
                break
            await self._sleep(min(self.interval, remaining))

        raise GenerationTimeoutError(timeout)


class SSEDecoder:
    """Incremental decoder turning raw event-stream bytes into status payloads.

    Only ``data:`` lines are considered; lines that are not JSON objects
    (keep-alive pings, comments) are dropped.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> Iterator[StatusPayload]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            status = self._parse_line(line)
            if status is not None:
                yield status

    def flush(self) -> Iterator[StatusPayload]:
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        for line in tail.split("\n"):
            status = self._parse_line(line)
            if status is not None:
                yield status

    @staticmethod
    def _parse_line(line: str) -> StatusPayload | None:
        line = line.rstrip("\r")
        if not line.startswith("data:"):
            return None
        raw = line[len("data:"):].strip()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None
        try:
            return StatusPayload.model_validate(data)
        except ValidationError:
            logger.debug("skipping unrecognised stream event", event=raw[:200])
            return None


def stream_url(status_url: str) -> str:
    return f"{status_url.rstrip('/')}/stream?logs=1"


class StreamingAwaiter:
    def __init__(self, transport: Any, clock: Clock = time.monotonic) -> None:
        self.transport = transport
        self._clock = clock

    async def wait(
        self,
        handle: QueueHandle,
        timeout: float,
        on_progress: ProgressCallback | None = None,
    ) -> StatusPayload:
        started = self._clock()
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                return await self._consume(handle, started, timeout, on_progress)
        except TimeoutError as exc:
            if deadline.expired():
                raise GenerationTimeoutError(timeout) from exc
            raise StreamError(f"Status stream failed for {handle.request_id}: {exc!r}") from exc

    async def _consume(
        self,
        handle: QueueHandle,
        started: float,
        timeout: float,
        on_progress: ProgressCallback | None,
    ) -> StatusPayload:
        url = stream_url(handle.status_url)
        logger.info("streaming status", request_id=handle.request_id, url=url)
        decoder = SSEDecoder()
        try:
            async with self.transport.open_stream(url) as chunks:
                async for chunk in chunks:
                    if self._clock() - started >= timeout:
                        raise GenerationTimeoutError(timeout)
                    for status in decoder.feed(chunk):
                        if _check_terminal(handle, status):
                            return status
                        report_progress(handle.request_id, status, on_progress)
                for status in decoder.flush():
                    if _check_terminal(handle, status):
                        return status
        except (TransportError, OSError) as exc:
            raise StreamError(f"Status stream failed for {handle.request_id}: {exc}") from exc

        raise StreamEndedError(
            f"Status stream for {handle.request_id} ended before the request reached a terminal status"
        )
