"""
Scene-Script Generator
======================

Turns a creative brief into a list of Scenes via a chat-completions LLM.

The LLM's JSON is treated defensively: the scenes array may sit at the
top level or under ``scenes`` / ``data``, and every missing field falls
back to a default.
"""

import json
import logging
import math
from typing import Optional, List, Dict, Any

from .models import Scene, DEFAULT_TRANSITION_IN, DEFAULT_TRANSITION_OUT
from .prompts import (
    TonePreset,
    get_tone,
    script_messages,
    transition_messages,
    regeneration_brief,
)
from ..api.openai import ChatClient
from ..api.runpod import normalize_duration
from ..core.config import Config, get_config
from ..core.exceptions import ProviderError, ScriptGenerationError
from ..core.security import sanitize_prompt

logger = logging.getLogger(__name__)


TRANSITION_KEYWORDS = ("forward", "left", "right", "up", "down", "zoom", "pan", "turn", "look", "gaze")


# =============================================================================
# Parsing
# =============================================================================


def _first(data: Dict[str, Any], *keys: str, default: Any = "") -> Any:
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return default


def _coerce_duration(value: Any, max_duration: int, allowed: List[int]) -> int:
    try:
        duration = float(value) if value else float(max_duration)
    except (TypeError, ValueError):
        duration = float(max_duration)
    if not math.isfinite(duration):
        duration = float(max_duration)
    return normalize_duration(min(duration, max_duration), allowed)


def parse_scenes(
    content: str,
    tone: Optional[TonePreset] = None,
    allowed_durations: Optional[List[int]] = None,
    max_scene_duration: int = 8,
) -> List[Scene]:
    """
    Parse the LLM's JSON into Scenes.

    Args:
        content: Raw response text
        tone: Tone preset whose emotion text tags every scene
        allowed_durations: Durations the video service accepts
        max_scene_duration: Upper bound (and default) for scene duration

    Returns:
        Scenes with dense ordinals starting at 1

    Raises:
        ScriptGenerationError: If the content is not JSON, has no scenes
            array, or the array is empty
    """
    allowed = allowed_durations or [5, 8]

    try:
        parsed = json.loads(content)
    except (TypeError, ValueError) as e:
        logger.error(f"Scene script is not valid JSON: {e}")
        raise ScriptGenerationError("Failed to parse scene script as JSON", stage="storyboard") from e

    if isinstance(parsed, list):
        raw_scenes = parsed
    elif isinstance(parsed, dict) and isinstance(parsed.get("scenes"), list):
        raw_scenes = parsed["scenes"]
    elif isinstance(parsed, dict) and isinstance(parsed.get("data"), list):
        raw_scenes = parsed["data"]
    else:
        raise ScriptGenerationError("Scene script has no scenes array", stage="storyboard")

    scenes = []
    for raw in raw_scenes:
        if not isinstance(raw, dict):
            logger.warning(f"Skipping malformed scene entry: {raw!r}")
            continue
        ordinal = len(scenes) + 1
        visual = str(_first(raw, "visualDescription"))
        scenes.append(
            Scene(
                ordinal=ordinal,
                title=str(_first(raw, "title", default=f"Scene {ordinal}")),
                duration=_coerce_duration(raw.get("duration"), max_scene_duration, allowed),
                detailed_prompt=str(_first(raw, "detailedPrompt", "prompt", default=visual)),
                visual_description=visual,
                transition_in=str(_first(raw, "transitionIn", default=DEFAULT_TRANSITION_IN)),
                transition_out=str(_first(raw, "transitionOut", default=DEFAULT_TRANSITION_OUT)),
                camera_work=str(_first(raw, "cameraWork", "camera")),
                lighting=str(_first(raw, "lighting")),
                color_grading=str(_first(raw, "colorGrading", "colorPalette")),
                audio_script=str(_first(raw, "audioScript", "voiceover", "narration")),
                tone=tone.emotion_text if tone else "",
            )
        )

    if not scenes:
        raise ScriptGenerationError("Scene script returned no scenes", stage="storyboard")

    return scenes


def find_transition_issues(scenes: List[Scene]) -> List[str]:
    """List consecutive scene pairs whose transitions share no motion keyword."""
    issues = []
    for current, following in zip(scenes, scenes[1:]):
        out_phrase = current.transition_out.lower()
        in_phrase = following.transition_in.lower()
        if not any(k in out_phrase and k in in_phrase for k in TRANSITION_KEYWORDS):
            issues.append(
                f'Scene {current.ordinal} -> {following.ordinal}: '
                f'TransitionOut "{current.transition_out}" does not match '
                f'TransitionIn "{following.transition_in}"'
            )
    return issues


def apply_transition_fixes(scenes: List[Scene], content: str) -> int:
    """
    Apply fixed transitions from the LLM response in place.

    Returns:
        Number of scenes updated
    """
    data = json.loads(content)
    if isinstance(data, dict):
        fixes = data.get("transitions") or data.get("scenes") or []
    else:
        fixes = data
    if not isinstance(fixes, list):
        raise ValueError("Transition response has no list of fixes")

    by_number = {}
    for fix in fixes:
        if isinstance(fix, dict) and "sceneNumber" in fix:
            by_number[fix["sceneNumber"]] = fix

    updated = 0
    for scene in scenes:
        fix = by_number.get(scene.ordinal)
        if not fix:
            continue
        scene.transition_in = fix.get("transitionIn") or scene.transition_in
        scene.transition_out = fix.get("transitionOut") or scene.transition_out
        updated += 1
    return updated


# =============================================================================
# Generator
# =============================================================================


class ScriptGenerator:
    """
    Plans scenes for a brief.

    Usage:
        generator = ScriptGenerator(chat)
        scenes = await generator.generate("calm mountain sunrise ride", 40, "calm-inspiring")
    """

    def __init__(self, chat: ChatClient, config: Optional[Config] = None):
        self.chat = chat
        self.config = config or get_config()

    def scene_count(self, target_duration: int) -> int:
        """Number of scenes to request for a target duration."""
        storyboard = self.config.storyboard
        if storyboard.testing_mode:
            return storyboard.testing_scene_count
        return max(math.ceil(target_duration / storyboard.max_scene_duration), storyboard.min_scenes)

    async def generate(
        self,
        brief: str,
        target_duration: int,
        tone_id: Optional[str] = None,
        scene_count: Optional[int] = None,
    ) -> List[Scene]:
        """
        Generate scenes for a brief.

        Args:
            brief: Free-text story idea
            target_duration: Total video length in seconds
            tone_id: Tone preset id (defaults to the configured tone)
            scene_count: Override the derived scene count

        Returns:
            Scenes in ordinal order

        Raises:
            ScriptGenerationError: If the LLM fails or returns nothing usable
        """
        storyboard = self.config.storyboard
        llm = self.config.llm
        tone = get_tone(tone_id or storyboard.default_tone)
        count = scene_count or self.scene_count(target_duration)
        brief = sanitize_prompt(brief)

        logger.info(
            f"Generating {count} scenes for {target_duration}s "
            f"({tone.name}{', testing mode' if storyboard.testing_mode else ''})"
        )

        messages = script_messages(brief, target_duration, tone, count, storyboard.allowed_durations)
        try:
            content = await self.chat.complete(
                messages,
                temperature=llm.script_temperature,
                max_tokens=llm.script_max_tokens,
                json_mode=True,
            )
        except ProviderError as e:
            raise ScriptGenerationError(f"Scene generation failed: {e.message}", stage="storyboard") from e

        scenes = parse_scenes(
            content,
            tone=tone,
            allowed_durations=storyboard.allowed_durations,
            max_scene_duration=storyboard.max_scene_duration,
        )

        if llm.enhance_transitions:
            await self.enhance_transitions(scenes)

        for scene in scenes:
            logger.debug(f"Scene {scene.ordinal}: {scene.title} ({scene.duration}s)")
        return scenes

    async def enhance_transitions(self, scenes: List[Scene]) -> List[Scene]:
        """
        Ask the LLM to fix transitions that do not line up.

        On any failure the original transitions are kept.
        """
        if len(scenes) <= 1:
            return scenes

        issues = find_transition_issues(scenes)
        if not issues:
            logger.info("All transitions match")
            return scenes

        logger.info(f"Fixing {len(issues)} mismatched transitions")
        try:
            content = await self.chat.complete(
                transition_messages(scenes, issues),
                temperature=0.7,
                max_tokens=2000,
                json_mode=True,
            )
            updated = apply_transition_fixes(scenes, content)
        except (ProviderError, ValueError) as e:
            logger.warning(f"Transition fix failed, keeping original transitions: {e}")
            return scenes

        logger.info(f"Updated transitions for {updated} scenes")
        return scenes

    async def regenerate_scene(self, scene: Scene, tone_id: Optional[str] = None) -> Scene:
        """
        Produce new content for one scene.

        The returned Scene keeps the original id, ordinal and tone; if the
        new narration is empty the previous narration is kept.
        """
        previous = scene
        scenes = await self.generate(
            regeneration_brief(scene),
            scene.duration,
            tone_id=tone_id,
            scene_count=1,
        )
        fresh = scenes[0]
        fresh.scene_id = previous.scene_id
        fresh.ordinal = previous.ordinal
        fresh.tone = previous.tone
        fresh.audio_script = fresh.audio_script or previous.audio_script
        return fresh
