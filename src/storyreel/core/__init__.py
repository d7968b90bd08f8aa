"""
Core Module
===========

Core utilities, configuration, and exceptions for storyreel.
"""

from .config import Config, ServicesConfig, JobServiceConfig, StoryboardConfig, get_config, set_config
from .exceptions import (
    StoryreelError,
    ConfigurationError,
    ProviderError,
    SubmissionError,
    TransientPollError,
    GenerationError,
    JobFailedError,
    PollTimeoutError,
    PipelineStateError,
    StageTransitionError,
    InvalidTransitionError,
    ValidationError,
    SecurityError,
)
from .security import sanitize_prompt, redact_api_key

__all__ = [
    # Configuration
    "Config",
    "ServicesConfig",
    "JobServiceConfig",
    "StoryboardConfig",
    "get_config",
    "set_config",
    # Exceptions
    "StoryreelError",
    "ConfigurationError",
    "ProviderError",
    "SubmissionError",
    "TransientPollError",
    "GenerationError",
    "JobFailedError",
    "PollTimeoutError",
    "PipelineStateError",
    "StageTransitionError",
    "InvalidTransitionError",
    "ValidationError",
    "SecurityError",
    # Security
    "sanitize_prompt",
    "redact_api_key",
]
