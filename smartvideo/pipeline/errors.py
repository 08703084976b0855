"""
Error taxonomy for the smart video pipeline.

Every terminal failure raised inside a run is a PipelineError subclass.
The orchestrator collapses them into a single PipelineResult.failure().
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    code = "pipeline"
    retryable = False

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        code: Optional[str] = None,
    ):
        self.message = message
        self.stage = stage
        if code:
            self.code = code
        super().__init__(self.message)


class InputValidationError(PipelineError):
    """Missing or malformed run input. Raised before any remote call."""
    code = "validation"


class ConfigError(PipelineError):
    """Required configuration (API key, endpoint) is missing."""
    code = "config"


class AnalysisError(PipelineError):
    """Vision analysis failed. Recoverable: the orchestrator substitutes defaults."""

    code = "analysis"

    def __init__(self, message: str, confidence: float = 0.0, **kwargs):
        self.confidence = confidence
        super().__init__(message, **kwargs)


class PromptSynthesisError(PipelineError):
    """The prompt synthesizer produced no scenes."""
    code = "synthesis"


class AssetResolutionError(PipelineError):
    """A scene's reference asset could not be turned into submittable content."""
    code = "asset"


class RemoteSubmissionError(PipelineError):
    """Job submission failed (transport error, non-2xx, missing job id)."""

    code = "submission"

    def __init__(self, message: str, service: str = "", **kwargs):
        self.service = service
        super().__init__(message, **kwargs)


class RemoteTransportError(PipelineError):
    """Polling a remote job failed after all retries."""

    code = "transport"

    def __init__(self, message: str, service: str = "", job_id: Optional[str] = None, **kwargs):
        self.service = service
        self.job_id = job_id
        super().__init__(message, **kwargs)


class RemoteJobFailedError(PipelineError):
    """The remote service reported the job as failed."""

    code = "job_failed"

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        label: Optional[str] = None,
        **kwargs,
    ):
        self.job_id = job_id
        self.label = label
        super().__init__(message, **kwargs)


class ArtifactError(PipelineError):
    """A downloaded output file is missing or empty."""
    code = "artifact"


class JobTimeoutError(PipelineError):
    """Polling exceeded its deadline. Distinct from a remote-reported failure."""

    code = "timeout"
    retryable = True

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        label: Optional[str] = None,
        elapsed: float = 0.0,
        **kwargs,
    ):
        self.job_id = job_id
        self.label = label
        self.elapsed = elapsed
        super().__init__(message, **kwargs)
