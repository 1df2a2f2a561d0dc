from __future__ import annotations

import re
from typing import Callable, Optional, Sequence

from loguru import logger

from .types import LogEntry, StatusPayload

ProgressCallback = Callable[[str, int], None]

_DIFFUSING = re.compile(r"Diffusing:\s+(\d+)(?=%)")


def extract_progress(logs: Sequence[LogEntry] | None) -> Optional[int]:
    """Return the percentage in the newest log line, if it reports one."""
    if not logs:
        return None
    message = logs[-1].message
    if not message:
        return None
    match = _DIFFUSING.search(message)
    return int(match.group(1)) if match else None


def report_progress(
    request_id: str,
    status: StatusPayload,
    on_progress: ProgressCallback | None = None,
) -> Optional[int]:
    progress = extract_progress(status.logs)
    if progress is None:
        return None
    logger.info("Generation progress: {}%", progress, request_id=request_id)
    if on_progress is not None:
        on_progress(request_id, progress)
    return progress
