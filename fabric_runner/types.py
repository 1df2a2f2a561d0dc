from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

FABRIC_MODEL = "veed/fabric-1.0"
FABRIC_FAST_MODEL = "veed/fabric-1.0/fast"
FABRIC_MODELS = (FABRIC_MODEL, FABRIC_FAST_MODEL)

Resolution = Literal["480p", "720p"]
AspectRatio = Literal["16:9", "9:16", "1:1"]
QueueStatus = Literal["IN_QUEUE", "IN_PROGRESS", "COMPLETED", "FAILED"]

TERMINAL_STATUSES = frozenset({"COMPLETED", "FAILED"})


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: str = Field(default=FABRIC_MODEL, min_length=1)
    image_url: str
    audio_url: str
    resolution: Resolution = "480p"
    aspect_ratio: AspectRatio = "16:9"

    def to_payload(self) -> dict[str, str]:
        return {
            "image_url": self.image_url,
            "audio_url": self.audio_url,
            "resolution": self.resolution,
            "aspect_ratio": self.aspect_ratio,
        }


class QueueHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str
    status_url: str
    response_url: Optional[str] = None
    cancel_url: Optional[str] = None
    queue_position: Optional[int] = None


class LogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: Optional[str] = None
    level: Optional[str] = None
    timestamp: Optional[str] = None


class StatusPayload(BaseModel):
    """One snapshot of a queued request as reported by the status endpoint."""

    model_config = ConfigDict(frozen=True)

    status: QueueStatus
    request_id: Optional[str] = None
    response_url: Optional[str] = None
    logs: List[LogEntry] = Field(default_factory=list)
    metrics: Optional[dict[str, Any]] = None

    @field_validator("logs", mode="before")
    @classmethod
    def logs_default_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def last_message(self) -> str | None:
        if not self.logs:
            return None
        return self.logs[-1].message


class ArtifactResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    content_type: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None


class LifecycleOutcome(BaseModel):
    artifact: Optional[ArtifactResult] = None
    request_id: Optional[str] = None
    final_status: Optional[str] = None
    elapsed_ms: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_message is None

    @classmethod
    def failure(cls, message: str) -> "LifecycleOutcome":
        return cls(error_message=message)


class InvokeRequest(BaseModel):
    records: List[GenerationRequest] = Field(..., min_length=1, max_length=50)
    continue_on_error: bool = True


class InvokeResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    outcomes: List[LifecycleOutcome]
    timings: dict[str, Any]


class HealthResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    status: str = "ok"
    model_id: str
    ready: bool
    message: Optional[str] = None
