from __future__ import annotations

import time
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from loguru import logger

from .config import configure_logging, load_settings
from .errors import FabricRunnerError, GenerationTimeoutError, InputValidationError
from .lifecycle import LifecycleController
from .transport import FalTransport
from .types import HealthResponse, InvokeRequest, InvokeResponse

app = FastAPI(title="Fabric Video Runner", version="0.1.0")

settings = load_settings()
_transport: FalTransport | None = None


def get_controller() -> LifecycleController:
    global _transport
    if not settings.api_key:
        raise HTTPException(status_code=503, detail="FAL_KEY is not configured")
    if _transport is None:
        _transport = FalTransport(settings.api_key)
    return LifecycleController(_transport, settings)


def _status_code_for(exc: FabricRunnerError) -> int:
    if isinstance(exc, InputValidationError):
        return 422
    if isinstance(exc, GenerationTimeoutError):
        return 504
    return 502


@app.on_event("startup")
async def startup_event() -> None:
    configure_logging(settings.log_level)
    logger.info(
        "runner starting",
        model_id=settings.model_id,
        strategy=settings.strategy,
        ready=bool(settings.api_key),
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    global _transport
    if _transport is not None:
        await _transport.close()
        _transport = None
    logger.info("runner shutting down", model_id=settings.model_id)


@app.get("/healthz", response_model=HealthResponse)
async def healthz() -> HealthResponse:
    ready = bool(settings.api_key)
    return HealthResponse(
        status="ok",
        ready=ready,
        model_id=settings.model_id,
        message=None if ready else "FAL_KEY is not configured",
    )


@app.post("/invoke", response_model=InvokeResponse)
async def invoke(
    request: InvokeRequest,
    controller: LifecycleController = Depends(get_controller),
) -> InvokeResponse:
    start = time.perf_counter()
    records = [
        record
        if "model_id" in record.model_fields_set
        else record.model_copy(update={"model_id": settings.model_id})
        for record in request.records
    ]

    try:
        outcomes = await controller.run(records, continue_on_error=request.continue_on_error)
    except FabricRunnerError as exc:
        logger.error("invoke aborted", stage=exc.stage, error=str(exc))
        raise HTTPException(status_code=_status_code_for(exc), detail=str(exc)) from exc

    timings: dict[str, Any] = {
        "total_ms": round((time.perf_counter() - start) * 1000, 2),
        "succeeded": sum(1 for outcome in outcomes if outcome.ok),
        "failed": sum(1 for outcome in outcomes if not outcome.ok),
    }
    logger.info("invoke completed", records=len(outcomes), total_ms=timings["total_ms"])

    return InvokeResponse(model_id=settings.model_id, outcomes=outcomes, timings=timings)


if __name__ == "__main__":  # pragma: no cover
    import os

    import uvicorn

    uvicorn.run("fabric_runner.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "9001")))
