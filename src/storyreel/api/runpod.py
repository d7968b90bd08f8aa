"""
RunPod Job Services
===================

Serverless job endpoints used by the pipeline:
- video: text-to-video synthesis (Wan 2.2, 5 or 8 second clips)
- i2v: image-to-video animation (video URL output)
- image: text-to-image synthesis (base64 PNG output)
- tts: emotion-vector text-to-speech (audio URL output)
- composition: foreground/background image composition (base64 output)
"""

import logging
import math
from typing import Optional, List, Dict, Any, Sequence

from .base import JobService, PollResult
from .factory import register_service
from ..core.exceptions import ValidationError
from ..core.security import sanitize_prompt
from ..utils.image_utils import image_base64

logger = logging.getLogger(__name__)


DEFAULT_ALLOWED_DURATIONS = (5, 8)


def normalize_duration(duration: float, allowed: Sequence[int] = DEFAULT_ALLOWED_DURATIONS) -> int:
    """
    Snap a requested duration to the nearest allowed value.

    Values at or below the smallest allowed duration clamp up, values at or
    above the largest clamp down, and anything in between goes to the
    closer neighbor (ties go to the lower one).

    Args:
        duration: Requested duration in seconds
        allowed: Durations the video service accepts

    Returns:
        An element of ``allowed``
    """
    if not allowed:
        raise ValidationError("No allowed durations configured", field="allowed_durations")
    if isinstance(duration, bool) or not isinstance(duration, (int, float)) or not math.isfinite(duration):
        raise ValidationError(
            f"Duration must be a finite number, got {duration!r}", field="duration", value=duration
        )

    values = sorted(allowed)
    if duration in values:
        return int(duration)
    if duration <= values[0]:
        result = values[0]
    elif duration >= values[-1]:
        result = values[-1]
    else:
        lower = max(v for v in values if v < duration)
        upper = min(v for v in values if v > duration)
        result = lower if duration - lower <= upper - duration else upper

    logger.warning(f"Duration {duration}s not supported, using {result}s")
    return result


# =============================================================================
# Video
# =============================================================================


@register_service("video")
class VideoGenerationService(JobService):
    """Text-to-video job. Output is a video URL."""

    def build_payload(
        self,
        prompt: str,
        duration: float = 5,
        negative_prompt: Optional[str] = None,
        seed: Optional[int] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        video = self.config.video
        allowed = self.config.storyboard.allowed_durations

        payload = {
            "prompt": sanitize_prompt(prompt),
            "size": kwargs.get("size", video.size),
            "duration": normalize_duration(duration, allowed),
            "num_inference_steps": kwargs.get("num_inference_steps", video.num_inference_steps),
            "guidance": kwargs.get("guidance", video.guidance),
            "seed": video.seed if seed is None else seed,
            "enable_safety_checker": video.enable_safety_checker,
            "enable_prompt_optimization": video.enable_prompt_optimization,
        }
        negative = negative_prompt if negative_prompt is not None else video.negative_prompt
        if negative:
            payload["negative_prompt"] = sanitize_prompt(negative)
        return payload

    def extract_output(self, result: PollResult) -> str:
        output = result.output
        if isinstance(output, str) and output:
            return output
        if isinstance(output, dict):
            url = output.get("result") or output.get("video_url")
            if url:
                return url
        raise self._missing_output(result, "a video URL")


@register_service("i2v")
class ImageToVideoService(JobService):
    """Animates a still image. Output is a video URL."""

    DEFAULT_FRAME_NUM = 21
    DEFAULT_SAMPLING_STEPS = 6

    def build_payload(
        self,
        prompt: str,
        image: str,
        frame_num: int = DEFAULT_FRAME_NUM,
        sampling_steps: int = DEFAULT_SAMPLING_STEPS,
        **kwargs,
    ) -> Dict[str, Any]:
        if not image:
            raise ValidationError("A source image is required", field="image")
        if frame_num < 1 or sampling_steps < 1:
            raise ValidationError(
                f"frame_num and sampling_steps must be positive, got {frame_num} and {sampling_steps}",
                field="frame_num" if frame_num < 1 else "sampling_steps",
            )
        return {
            "prompt": sanitize_prompt(prompt),
            "image_base64": image_base64(image),
            "frame_num": frame_num,
            "sampling_steps": sampling_steps,
        }

    def extract_output(self, result: PollResult) -> str:
        output = result.output
        if isinstance(output, dict):
            url = output.get("gcs_url") or output.get("video_url")
            if url:
                return url
        raise self._missing_output(result, "gcs_url or video_url")


# =============================================================================
# Image
# =============================================================================


@register_service("image")
class ImageGenerationService(JobService):
    """Text-to-image job. Output is a base64-encoded image."""

    DEFAULT_WIDTH = 720
    DEFAULT_HEIGHT = 1024

    def build_payload(
        self,
        prompt: str,
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        num_inference_steps: int = 28,
        guidance_scale: float = 4.5,
        **kwargs,
    ) -> Dict[str, Any]:
        return {
            "prompt": sanitize_prompt(prompt),
            "width": width,
            "height": height,
            "num_inference_steps": num_inference_steps,
            "guidance_scale": guidance_scale,
        }

    def extract_output(self, result: PollResult) -> str:
        output = result.output
        if isinstance(output, dict) and output.get("image_base64"):
            return output["image_base64"]
        raise self._missing_output(result, "image_base64")


# =============================================================================
# Speech
# =============================================================================


@register_service("tts")
class SpeechSynthesisService(JobService):
    """Emotion-vector text-to-speech job. Output is an audio URL."""

    def build_payload(
        self,
        text: str,
        speaker_url: Optional[str] = None,
        emotion_vector: Optional[List[float]] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        if not text or not text.strip():
            raise ValidationError("Narration text is empty", field="text")

        payload = {
            "task": "tts_emotion_vector",
            "text": text,
            "spk_url": speaker_url or self.config.audio.default_speaker_url,
            "use_random": False,
        }
        if emotion_vector is not None:
            payload["emo_vector"] = ",".join(f"{v:g}" for v in emotion_vector)
        return payload

    def extract_output(self, result: PollResult) -> str:
        output = result.output
        if isinstance(output, dict):
            url = output.get("url") or output.get("audio_url")
            if url:
                return url
        raise self._missing_output(result, "an audio URL")


# =============================================================================
# Composition
# =============================================================================


@register_service("composition")
class ImageCompositionService(JobService):
    """Places a foreground image onto a background. Output is base64."""

    def build_payload(
        self,
        foreground_image: str,
        background_image: str,
        shrink_pixels: int = 5,
        **kwargs,
    ) -> Dict[str, Any]:
        if not foreground_image or not background_image:
            raise ValidationError(
                "Both foreground and background images are required",
                field="foreground_image" if not foreground_image else "background_image",
            )
        return {
            "foreground_image": foreground_image,
            "background_image": background_image,
            "shrink_pixels": shrink_pixels,
        }

    def extract_output(self, result: PollResult) -> str:
        output = result.output
        if isinstance(output, dict) and output.get("image_base64"):
            return output["image_base64"]
        raise self._missing_output(result, "image_base64")
