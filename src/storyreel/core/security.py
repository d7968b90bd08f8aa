"""
Security Utilities
==================

Input sanitization for briefs and uploads, and API-key redaction for logs.
"""

import re
import logging
from pathlib import Path
from typing import Optional, Set

from .exceptions import SecurityError

logger = logging.getLogger(__name__)


ALLOWED_AUDIO_TYPES = {
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/x-wav",
    "audio/wave",
    "audio/ogg",
    "audio/webm",
    "audio/mp4",
    "audio/x-m4a",
    "audio/flac",
}

AUDIO_EXTENSION_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".webm": "audio/webm",
    ".m4a": "audio/mp4",
    ".flac": "audio/flac",
}


def sanitize_filename(filename: str, max_length: int = 255) -> str:
    """
    Sanitize a filename by removing dangerous characters.

    Args:
        filename: Original filename
        max_length: Maximum allowed length

    Returns:
        Sanitized filename safe for upload
    """
    if not filename:
        return "unnamed"

    # Keep: alphanumeric, underscore, hyphen, dot, space
    sanitized = re.sub(r"[^\w\-. ]", "_", filename)
    sanitized = re.sub(r"[_\s]+", "_", sanitized)
    sanitized = sanitized.strip("._- ")

    if len(sanitized) > max_length:
        name = Path(sanitized).stem
        ext = Path(sanitized).suffix
        sanitized = name[: max_length - len(ext)] + ext

    if not sanitized or sanitized in (".", ".."):
        sanitized = "unnamed"

    return sanitized


def sanitize_prompt(prompt: str, max_length: int = 4000) -> str:
    """
    Strip control characters and chat-template markers from operator text.

    Args:
        prompt: User-provided brief or prompt
        max_length: Maximum allowed length

    Returns:
        Sanitized prompt string
    """
    if not prompt:
        return ""

    sanitized = "".join(char for char in prompt if char.isprintable() or char in "\n\t")

    injection_patterns = [
        r"ignore previous instructions",
        r"disregard above",
        r"\[INST\]",
        r"\[/INST\]",
        r"<\|im_start\|>",
        r"<\|im_end\|>",
    ]

    for pattern in injection_patterns:
        sanitized = re.sub(pattern, "", sanitized, flags=re.IGNORECASE)

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length]
        logger.warning(f"Prompt truncated from {len(prompt)} to {max_length} characters")

    return sanitized.strip()


def redact_api_key(text: str) -> str:
    """
    Redact API keys and sensitive tokens from text.

    Args:
        text: Text that might contain API keys

    Returns:
        Text with API keys redacted
    """
    if not text:
        return text

    patterns = [
        (r"Bearer\s+[A-Za-z0-9_\-\.]+", "Bearer ***REDACTED***"),
        # OpenAI keys (sk-..., sk-proj-...)
        (r"sk-[A-Za-z0-9_\-]{8,}", "sk-***REDACTED***"),
        # RunPod keys
        (r"rpa_[A-Za-z0-9]+", "rpa_***REDACTED***"),
        (r"api[_-]?key['\"]?\s*[:=]\s*['\"]?[A-Za-z0-9_\-]+", "api_key: ***REDACTED***"),
        (r"(RUNPOD_API_KEY|OPENAI_API_KEY)=[^\s]+", r"\1=***REDACTED***"),
    ]

    result = text
    for pattern, replacement in patterns:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)

    return result


def guess_audio_content_type(filename: str) -> Optional[str]:
    """Map an audio file extension to its content type."""
    return AUDIO_EXTENSION_TYPES.get(Path(filename).suffix.lower())


def validate_audio_upload(
    size_bytes: int,
    content_type: Optional[str],
    max_size_mb: int = 10,
    allowed_types: Optional[Set[str]] = None,
) -> None:
    """
    Check a voice sample before it is sent to object storage.

    Raises:
        SecurityError: If the file is too large or not an audio type
    """
    allowed = allowed_types or ALLOWED_AUDIO_TYPES
    if not content_type or content_type.lower() not in allowed:
        raise SecurityError(
            f"Not an audio file: {content_type}",
            security_type="invalid_content_type",
        )
    max_bytes = max_size_mb * 1024 * 1024
    if size_bytes > max_bytes:
        raise SecurityError(
            f"Audio file too large: {size_bytes} bytes (max {max_size_mb}MB)",
            security_type="file_too_large",
        )
    if size_bytes == 0:
        raise SecurityError("Audio file is empty", security_type="empty_file")
