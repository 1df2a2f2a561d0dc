"""Errors raised by the generation lifecycle.

Each stage raises its own error kind so callers can tell where a record
failed:

- InputValidationError: bad input shape, raised before any network call
- SubmissionError: the queue rejected the submission
- PollError / StreamError / StreamEndedError: the status endpoint was unreachable
- GenerationFailedError: the remote service reported FAILED
- GenerationTimeoutError: the await deadline passed
- FetchError: the result could not be retrieved or was incomplete
"""

from __future__ import annotations


class FabricRunnerError(Exception):
    """Base class for lifecycle stage failures."""

    stage = "lifecycle"


class InputValidationError(FabricRunnerError, ValueError):
    stage = "validate"


class SubmissionError(FabricRunnerError):
    stage = "submit"


class PollError(FabricRunnerError):
    """Status endpoint could not be reached while polling.

    Attributes:
        attempts: Number of GET attempts made before giving up
    """

    stage = "await"

    def __init__(self, message: str, attempts: int = 1):
        self.attempts = attempts
        super().__init__(message)


class StreamError(FabricRunnerError):
    stage = "await"


class StreamEndedError(FabricRunnerError):
    stage = "await"


class GenerationFailedError(FabricRunnerError):
    stage = "await"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Video generation failed: {reason}")


class GenerationTimeoutError(FabricRunnerError):
    """Await deadline exceeded before the request reached a terminal status.

    Attributes:
        timeout: The deadline in seconds that was exceeded
    """

    stage = "await"

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Video generation timed out after {timeout:g}s. "
            "Try increasing the timeout or use a lower resolution."
        )


class FetchError(FabricRunnerError):
    stage = "fetch"
