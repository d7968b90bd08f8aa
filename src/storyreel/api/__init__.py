"""
API Integration Layer
=====================

Clients for the external services the pipeline drives.

Job services (submit/poll):
- video: text-to-video
- i2v: image-to-video
- image: text-to-image
- tts: emotion-vector text-to-speech
- composition: foreground/background image composition

Plus a chat-completions client for script planning and emotion analysis,
and the muxing/storage clients of the media backend.

Usage:
    from storyreel.api import JobClient, get_service

    async with JobClient() as client:
        video = get_service("video", client)
        url = await video.run(prompt="A rider at sunrise", duration=8)
"""

from .base import JobClient, JobService, JobStatus, PollResult
from .factory import get_service, list_services, register_service
from .media import MuxingClient, StorageClient
from .openai import ChatClient
from .runpod import normalize_duration

__all__ = [
    "JobClient",
    "JobService",
    "JobStatus",
    "PollResult",
    "get_service",
    "list_services",
    "register_service",
    "MuxingClient",
    "StorageClient",
    "ChatClient",
    "normalize_duration",
]
