"""Run the generation lifecycle over a batch of records from the command line.

Usage:
    python -m fabric_runner.runner records.json

Without a file argument a single record is built from FABRIC_IMAGE_URL,
FABRIC_AUDIO_URL, FABRIC_RESOLUTION and FABRIC_ASPECT_RATIO.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import List, Sequence

from loguru import logger

from .config import RunnerSettings, configure_logging, load_settings
from .errors import FabricRunnerError
from .lifecycle import LifecycleController
from .transport import FalTransport
from .types import GenerationRequest


def load_records(argv: Sequence[str], settings: RunnerSettings) -> List[GenerationRequest]:
    if argv:
        raw = json.loads(Path(argv[0]).read_text(encoding="utf-8"))
        items = raw if isinstance(raw, list) else [raw]
        return [GenerationRequest.model_validate({"model_id": settings.model_id, **item}) for item in items]

    return [
        GenerationRequest(
            model_id=settings.model_id,
            image_url=os.getenv("FABRIC_IMAGE_URL", ""),
            audio_url=os.getenv("FABRIC_AUDIO_URL", ""),
            resolution=os.getenv("FABRIC_RESOLUTION", "480p"),
            aspect_ratio=os.getenv("FABRIC_ASPECT_RATIO", "16:9"),
        )
    ]


async def main(argv: Sequence[str] | None = None) -> int:
    settings = load_settings()
    configure_logging(settings.log_level)
    if not settings.api_key:
        logger.error("FAL_KEY must be set to submit generation requests")
        return 2

    records = load_records(sys.argv[1:] if argv is None else argv, settings)
    transport = FalTransport(settings.api_key)
    controller = LifecycleController(transport, settings)

    try:
        outcomes = await controller.run(records, continue_on_error=settings.continue_on_error)
    except FabricRunnerError as exc:
        logger.error("generation aborted", stage=exc.stage, error=str(exc))
        return 1
    finally:
        await transport.close()

    print(json.dumps([outcome.model_dump(exclude_none=True) for outcome in outcomes], indent=2))
    return 0 if all(outcome.ok for outcome in outcomes) else 1


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
