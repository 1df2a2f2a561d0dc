from __future__ import annotations

import time
from typing import Sequence

from loguru import logger

from .api import cancel_request, fetch_result, submit_request
from .awaiter import CompletionAwaiter, PollingAwaiter, RetryPolicy, StreamingAwaiter
from .config import RunnerSettings
from .errors import FabricRunnerError, FetchError, GenerationTimeoutError
from .progress import ProgressCallback
from .transport import StreamingTransport, Transport, TransportError
from .types import GenerationRequest, LifecycleOutcome, QueueHandle
from .validators import validate_request


def build_awaiter(transport: Transport, settings: RunnerSettings) -> CompletionAwaiter:
    strategy = settings.strategy
    if strategy == "auto":
        strategy = "stream" if isinstance(transport, StreamingTransport) else "poll"

    if strategy == "stream":
        if not isinstance(transport, StreamingTransport):
            raise ValueError(f"{type(transport).__name__} cannot open status streams")
        return StreamingAwaiter(transport)

    retry = RetryPolicy(
        max_attempts=settings.retry_attempts,
        base_delay=settings.retry_base_delay_seconds,
    )
    return PollingAwaiter(transport, interval=settings.polling_interval, retry=retry)


class LifecycleController:
    """Runs submit -> await -> fetch for each record, one record at a time."""

    def __init__(
        self,
        transport: Transport,
        settings: RunnerSettings | None = None,
        awaiter: CompletionAwaiter | None = None,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> None:
        self.transport = transport
        self.settings = settings or RunnerSettings()
        self.timeout = timeout if timeout is not None else self.settings.timeout
        self.awaiter = awaiter or build_awaiter(transport, self.settings)
        self.on_progress = on_progress

    async def _cancel_after_timeout(self, handle: QueueHandle, model_id: str) -> None:
        try:
            await cancel_request(
                handle,
                self.transport,
                base_url=self.settings.base_url,
                model_id=model_id,
            )
        except TransportError as exc:
            logger.warning("failed to cancel timed out request", request_id=handle.request_id, error=str(exc))

    async def run_one(self, request: GenerationRequest) -> LifecycleOutcome:
        validate_request(request, strict=self.settings.strict_extensions)

        start = time.perf_counter()
        handle = await submit_request(request, self.transport, base_url=self.settings.base_url)

        try:
            status = await self.awaiter.wait(handle, self.timeout, self.on_progress)
        except GenerationTimeoutError:
            if self.settings.cancel_on_timeout:
                await self._cancel_after_timeout(handle, request.model_id)
            raise

        response_url = status.response_url or handle.response_url
        if not response_url:
            raise FetchError(
                f"Generation completed but no response URL is available for request {handle.request_id}"
            )

        artifact = await fetch_result(response_url, self.transport)
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info("request finished", request_id=handle.request_id, elapsed_ms=elapsed_ms, url=artifact.url)

        return LifecycleOutcome(
            artifact=artifact,
            request_id=handle.request_id,
            final_status=status.status,
            elapsed_ms=elapsed_ms,
        )

    async def run(
        self,
        records: Sequence[GenerationRequest],
        continue_on_error: bool = False,
    ) -> list[LifecycleOutcome]:
        outcomes: list[LifecycleOutcome] = []
        for index, record in enumerate(records):
            try:
                outcomes.append(await self.run_one(record))
            except FabricRunnerError as exc:
                if not continue_on_error:
                    raise
                logger.error("record failed", index=index, stage=exc.stage, error=str(exc))
                outcomes.append(LifecycleOutcome.failure(str(exc)))
        return outcomes
