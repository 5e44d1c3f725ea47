"""
Exception hierarchy shared by the pipeline services.

Every stage either completes or raises one of these; the job orchestrator
records ``str(exc)`` as the job error and stops.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class PlanValidationError(PipelineError):
    """Raised when a submission is missing files or carries an unusable plan."""


class SynthesisError(PipelineError):
    """Raised when a speech backend fails to produce audio."""


class SynthesisConfigError(SynthesisError):
    """Raised for missing or rejected backend credentials. Never retried."""


class RateLimitedError(PipelineError):
    """Raised by a backend call that the provider throttled."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class RateLimitExhaustedError(PipelineError):
    """Raised when every attempt allowed by the backoff policy was throttled."""


class AudioFetchError(PipelineError):
    """Raised when a remote audio clip cannot be downloaded."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.body = body


class MediaProcessingError(PipelineError):
    """Raised when an ffmpeg or ffprobe invocation fails."""

    def __init__(self, stage: str, returncode: Optional[int], stderr: str):
        self.stage = stage
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{stage} failed (code={returncode}):\n{stderr.strip()}")


class OutputVerificationError(PipelineError):
    """Raised when a rendered video fails its duration sanity check."""


class JobNotFoundError(PipelineError):
    """Raised when a job id is unknown or already reclaimed."""


class JobNotReadyError(PipelineError):
    """Raised when a result is requested before the job finished."""


class JobAbandonedError(PipelineError):
    """Raised inside a worker whose job timed out or was reclaimed."""
