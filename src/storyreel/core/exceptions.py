"""
Custom Exceptions
=================

Unified exception hierarchy for the generation pipeline.

Submission errors, transient polling errors, terminal job failures and
poll timeouts are separate types so callers can tell them apart.
"""

from typing import Optional, Dict, Any


class StoryreelError(Exception):
    """Base exception for all storyreel errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ConfigurationError(StoryreelError):
    """Configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type
        super().__init__(message, details=details, **kwargs)


class ValidationError(StoryreelError):
    """Input/output validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]
        if constraint:
            details["constraint"] = constraint
        super().__init__(message, details=details, **kwargs)


class SecurityError(StoryreelError):
    """Rejected input (oversized uploads, disallowed content types, etc.)."""

    def __init__(
        self,
        message: str,
        security_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if security_type:
            details["security_type"] = security_type
        super().__init__(message, recoverable=False, details=details, **kwargs)


# =============================================================================
# External Service Errors
# =============================================================================


class ProviderError(StoryreelError):
    """External service/API errors."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if provider:
            details["provider"] = provider
        if status_code:
            details["status_code"] = status_code
        if response_body:
            # Truncate large responses
            details["response_body"] = response_body[:500] if len(response_body) > 500 else response_body

        recoverable = kwargs.pop("recoverable", status_code in (429, 500, 502, 503, 504) if status_code else False)
        super().__init__(message, recoverable=recoverable, details=details, **kwargs)
        self.status_code = status_code


class SubmissionError(ProviderError):
    """A job could not be submitted (transport failure, non-2xx, no job id)."""


class TransientPollError(ProviderError):
    """A status check failed or returned something unusable; polling continues."""

    def __init__(self, message: str, job_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if job_id:
            details["job_id"] = job_id
        kwargs.setdefault("recoverable", True)
        super().__init__(message, details=details, **kwargs)


class MuxingError(ProviderError):
    """The muxing service is unavailable or rejected a merge."""


class StorageError(ProviderError):
    """The object-storage service rejected an upload."""


# =============================================================================
# Generation Errors
# =============================================================================


class GenerationError(StoryreelError):
    """Generation errors."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        stage: Optional[str] = None,
        prompt: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if job_id:
            details["job_id"] = job_id
        if stage:
            details["stage"] = stage
        if prompt:
            # Truncate long prompts
            details["prompt"] = prompt[:200] if len(prompt) > 200 else prompt
        super().__init__(message, details=details, **kwargs)
        self.job_id = job_id


class JobFailedError(GenerationError):
    """The external service reported the job as FAILED."""

    def __init__(self, message: str, service_error: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if service_error:
            details["service_error"] = service_error
        super().__init__(message, details=details, **kwargs)
        self.service_error = service_error


class ScriptGenerationError(GenerationError):
    """The scene-script generator returned nothing usable."""


class PollTimeoutError(StoryreelError):
    """A bounded poll ran out of attempts before the job finished."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        attempts: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if job_id:
            details["job_id"] = job_id
        if attempts:
            details["attempts"] = attempts
        super().__init__(message, recoverable=True, details=details, **kwargs)
        self.job_id = job_id
        self.attempts = attempts


# =============================================================================
# Pipeline State Errors
# =============================================================================


class PipelineStateError(StoryreelError):
    """An operation is not allowed in the current pipeline state."""


class StageTransitionError(PipelineStateError):
    """A stage change was backwards, skipped a stage, or hit a closed gate."""

    def __init__(
        self,
        message: str,
        current_stage: Optional[str] = None,
        requested_stage: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if current_stage:
            details["current_stage"] = current_stage
        if requested_stage:
            details["requested_stage"] = requested_stage
        super().__init__(message, details=details, **kwargs)


class InvalidTransitionError(PipelineStateError):
    """A SceneJob status change that the state machine does not allow."""

    def __init__(
        self,
        message: str,
        scene_id: Optional[str] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if scene_id:
            details["scene_id"] = scene_id
        if from_status:
            details["from_status"] = from_status
        if to_status:
            details["to_status"] = to_status
        super().__init__(message, details=details, **kwargs)


class SceneNotFoundError(PipelineStateError):
    """No scene with the given id exists in the run."""

    def __init__(self, scene_id: str, **kwargs):
        super().__init__(
            f"Scene not found: {scene_id}",
            details={"scene_id": scene_id},
            **kwargs,
        )
        self.scene_id = scene_id
