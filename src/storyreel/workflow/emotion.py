"""
Emotion Analyzer
================

Derives the narration emotion profile passed to the speech service.

Analysis never blocks narration: any request failure or malformed answer
falls back to ``EmotionProfile.DEFAULT``.
"""

import logging
import math
from dataclasses import dataclass, astuple, fields
from typing import Optional, List, ClassVar

from ..api.openai import ChatClient
from ..core.config import Config, get_config
from ..core.exceptions import ProviderError
from ..core.security import redact_api_key

logger = logging.getLogger(__name__)


EMOTION_ORDER = ("happy", "angry", "sad", "afraid", "disgusted", "melancholic", "surprised", "calm")


@dataclass(frozen=True)
class EmotionProfile:
    """Eight non-negative weights, in the speech service's vector order."""

    happy: float
    angry: float
    sad: float
    afraid: float
    disgusted: float
    melancholic: float
    surprised: float
    calm: float

    DEFAULT: ClassVar["EmotionProfile"]

    def as_vector(self) -> List[float]:
        return list(astuple(self))

    def to_service_string(self) -> str:
        """Comma-separated form expected by the speech service."""
        return ",".join(f"{v:g}" for v in self.as_vector())

    @classmethod
    def from_vector(cls, values: List[float]) -> "EmotionProfile":
        if len(values) != len(EMOTION_ORDER):
            raise ValueError(f"Expected {len(EMOTION_ORDER)} weights, got {len(values)}")
        return cls(*values)


EmotionProfile.DEFAULT = EmotionProfile(0.3, 0.1, 0.2, 0.1, 0.0, 0.2, 0.1, 0.5)


SYSTEM_PROMPT = (
    "You are a professional voice director and emotion analyst. Analyze narration scripts "
    "to create natural, authentic emotion profiles. Focus on 1-2 primary emotions that define "
    "the delivery style. Return ONLY 8 comma-separated decimal numbers (0.0 to 1.0) representing "
    f"emotion intensities: [{', '.join(EMOTION_ORDER)}]. No explanations."
)

USER_PROMPT = """Analyze the following narration script to determine the PRIMARY emotional tone and delivery style. Consider the narrative context, pacing, and intended mood.

Emotion Vector Format: [{order}]

Guidelines:
- Natural narration should emphasize ONE or TWO primary emotions (0.5-0.8 range)
- Keep other emotions low (0.0-0.3) for authenticity
- For reflective/contemplative narration: emphasize calm (0.6-0.8) and melancholic (0.3-0.5)
- For exciting/energetic content: emphasize happy (0.5-0.7) and surprised (0.3-0.5)
- For serious/dramatic content: emphasize melancholic (0.5-0.7) and calm (0.4-0.6)
- Avoid mixing conflicting emotions (e.g., high happy + high sad)

{context}Script: {script}

Return ONLY 8 comma-separated numbers (0.0-1.0):"""


def parse_emotion_vector(text: str) -> Optional[EmotionProfile]:
    """
    Parse ``"0.3, 0.1, ..."`` into a profile.

    Returns None unless there are exactly eight finite, non-negative
    numbers. Weights above 1.0 are clamped to 1.0.
    """
    if not text or not isinstance(text, str):
        return None
    tokens = [t.strip() for t in text.strip().strip("[]").split(",")]
    if len(tokens) != len(EMOTION_ORDER):
        return None

    values = []
    for token in tokens:
        try:
            value = float(token)
        except ValueError:
            return None
        if not math.isfinite(value) or value < 0:
            return None
        values.append(min(value, 1.0))
    return EmotionProfile.from_vector(values)


class EmotionAnalyzer:
    """Infers an EmotionProfile for a narration script."""

    def __init__(self, chat: ChatClient, config: Optional[Config] = None):
        self.chat = chat
        self.config = config or get_config()

    async def infer(self, script: str, scene_context: Optional[str] = None) -> EmotionProfile:
        """
        Ask the LLM for an emotion profile.

        Args:
            script: Narration text
            scene_context: Optional per-scene context lines

        Returns:
            The inferred profile, or EmotionProfile.DEFAULT on any failure
        """
        context = f"Context: {scene_context}\n\n" if scene_context else ""
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": USER_PROMPT.format(order=", ".join(EMOTION_ORDER), context=context, script=script),
            },
        ]

        try:
            content = await self.chat.complete(
                messages,
                temperature=self.config.llm.emotion_temperature,
                max_tokens=self.config.llm.emotion_max_tokens,
            )
        except ProviderError as e:
            logger.warning(f"Emotion analysis failed, using default profile: {redact_api_key(e.message)}")
            return EmotionProfile.DEFAULT

        profile = parse_emotion_vector(content)
        if profile is None:
            logger.warning(f"Invalid emotion vector {content!r}, using default profile")
            return EmotionProfile.DEFAULT

        logger.info(
            "Emotion profile: "
            + ", ".join(f"{f.name}={getattr(profile, f.name):g}" for f in fields(profile))
        )
        return profile
