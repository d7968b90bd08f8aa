"""
Prompt Compiler
===============

Pure functions that turn storyboard data into text prompts:
- video prompts (scene prompt prefixed by non-default transition hints)
- the narration script and per-scene context for emotion analysis
- the instructions sent to the scene-script LLM
- character and environment image prompts, and image-to-video prompts

Also holds the narration tone presets.
"""

import re
from dataclasses import dataclass, field
from typing import List, Dict, Iterable

from .models import Scene, DEFAULT_TRANSITION_IN, DEFAULT_TRANSITION_OUT
from ..core.exceptions import ValidationError


# =============================================================================
# Tone Presets
# =============================================================================


@dataclass(frozen=True)
class TonePreset:
    """A narration tone: display name for planning, emotion text for the scene tag."""

    tone_id: str
    name: str
    emotion_text: str


TONE_PRESETS: Dict[str, TonePreset] = {
    preset.tone_id: preset
    for preset in [
        TonePreset(
            "calm-inspiring",
            "Calm & Inspiring",
            "calm, warm, softly inspiring, reflective narrator mood, gentle encouragement",
        ),
        TonePreset(
            "adventurous-energetic",
            "Adventurous & Energetic",
            "energetic, excited, adventurous spirit, dynamic pacing, uplifting motivation",
        ),
        TonePreset(
            "reflective-emotional",
            "Reflective & Emotional",
            "deeply reflective, emotional depth, introspective tone, thoughtful pauses, heartfelt",
        ),
        TonePreset(
            "neutral-documentary",
            "Neutral Documentary",
            "neutral, clear, informative, professional narrator, steady documentary style",
        ),
    ]
}


def get_tone(tone_id: str) -> TonePreset:
    """Look up a tone preset by id."""
    if tone_id not in TONE_PRESETS:
        raise ValidationError(
            f"Unknown tone: {tone_id}",
            field="tone",
            value=tone_id,
            constraint=f"one of {sorted(TONE_PRESETS)}",
        )
    return TONE_PRESETS[tone_id]


# =============================================================================
# Scene Prompts
# =============================================================================


def compile_video_prompt(scene: Scene) -> str:
    """
    Build the text sent to the video service for one scene.

    Transition hints that differ from the placeholders are prepended as
    ``[START: ...]`` / ``[END: ...]`` markers.
    """
    hints = []
    if scene.transition_in and scene.transition_in != DEFAULT_TRANSITION_IN:
        hints.append(f"[START: {scene.transition_in}]")
    if scene.transition_out and scene.transition_out != DEFAULT_TRANSITION_OUT:
        hints.append(f"[END: {scene.transition_out}]")

    if not hints:
        return scene.detailed_prompt
    return f"{' '.join(hints)} {scene.detailed_prompt}"


def build_narration_script(scenes: Iterable[Scene]) -> str:
    """Join scene narration in ordinal order, one blank line between scenes."""
    ordered = sorted(scenes, key=lambda s: s.ordinal)
    return "\n\n".join(s.audio_script.strip() for s in ordered if s.audio_script and s.audio_script.strip())


def build_scene_context(scenes: Iterable[Scene]) -> str:
    """One line per scene for emotion analysis."""
    ordered = sorted(scenes, key=lambda s: s.ordinal)
    return "\n".join(
        f"Scene {s.ordinal}: {s.visual_description} - {s.audio_script}" for s in ordered
    )


def regeneration_brief(scene: Scene) -> str:
    """Brief used to regenerate a single scene."""
    return (
        f"Regenerate this scene with a different approach: {scene.title}. "
        f"Context: {scene.visual_description}"
    )


# =============================================================================
# Character, Environment and Image-to-Video Prompts
# =============================================================================


MAX_IMAGE_PROMPT_LENGTH = 900

MAKEUP_LEVELS = ["", "light", "moderate", "heavy"]


@dataclass
class CharacterTraits:
    """Descriptive attributes of a recurring character."""

    # Identity
    gender: str = ""
    age: int = 0
    ethnicity: str = ""

    # Face
    eye_color: str = ""
    eye_shape: str = ""
    eyebrow_shape: str = ""
    nose_shape: str = ""
    lips: str = ""
    teeth: str = ""
    facial_hair: str = ""
    skin_color: str = ""
    undertone: str = ""
    freckles: bool = False
    makeup: int = 0
    expression: str = ""

    # Hair
    hairstyle: str = ""
    hair_color: str = ""
    hair_length: str = ""
    accessories: List[str] = field(default_factory=list)

    # Body
    height: int = 0
    body_type: str = ""
    shoulders: str = ""
    chest: str = ""
    waist: str = ""
    hips: str = ""

    # Clothing
    outfit_style: str = ""
    outfit_colors: List[str] = field(default_factory=list)
    footwear: str = ""

    # Pose & camera
    pose: str = ""
    camera: str = ""
    framing: str = ""
    lighting: str = ""
    background: str = ""

    # Style
    style_hints: List[str] = field(default_factory=list)
    negative_prompts: List[str] = field(default_factory=list)
    extra_notes: str = ""


@dataclass
class EnvironmentTraits:
    """Descriptive attributes of a location or backdrop."""

    location: str = ""
    time_of_day: str = ""
    weather: str = ""
    season: str = ""
    mood: str = ""
    era: str = ""

    subject_focus: str = ""
    camera: str = ""
    lighting: str = ""
    color_palette: List[str] = field(default_factory=list)
    foreground_elements: List[str] = field(default_factory=list)
    midground_elements: List[str] = field(default_factory=list)
    background_elements: List[str] = field(default_factory=list)

    realism: str = ""
    style_lineage: List[str] = field(default_factory=list)
    style_hints: List[str] = field(default_factory=list)
    negative_prompts: List[str] = field(default_factory=list)
    extra_notes: str = ""


def _normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _join(items: Iterable[str]) -> str:
    return ", ".join(item for item in items if item)


def _finish_prompt(parts: List[str]) -> str:
    prompt = ". ".join(part for part in parts if part)
    prompt = _normalize_text(prompt.replace("..", "."))
    if len(prompt) > MAX_IMAGE_PROMPT_LENGTH:
        prompt = prompt[:MAX_IMAGE_PROMPT_LENGTH - 3] + "..."
    return prompt


def _style_tail(style_hints: List[str], extra_notes: str, negative_prompts: List[str]) -> List[str]:
    tail = []
    if style_hints:
        tail.append(f"Style: {_join(style_hints)}")
    if extra_notes:
        tail.append(_normalize_text(extra_notes))
    if negative_prompts:
        tail.append(f"Avoid: {_join(negative_prompts)}")
    return tail


def build_character_prompt(traits: CharacterTraits) -> str:
    """
    Deterministic text-to-image prompt for a character.

    Sections (identity and face, body, clothing, pose and camera, style)
    are joined with periods; empty sections are skipped and the result is
    capped at MAX_IMAGE_PROMPT_LENGTH characters.
    """
    t = traits

    physical = []
    if t.age:
        physical.append(f"{t.age} years old")
    if t.gender and t.gender != "unspecified":
        physical.append(t.gender)
    if t.ethnicity:
        physical.append(f"{t.ethnicity} descent")
    if t.skin_color:
        physical.append(f"{t.undertone or 'neutral'} {t.skin_color} skin")
    if t.freckles:
        physical.append("with freckles")
    if t.eye_shape and t.eye_color:
        physical.append(f"{t.eye_shape} {t.eye_color} eyes")
    if t.eyebrow_shape:
        physical.append(f"{t.eyebrow_shape} eyebrows")
    if t.nose_shape:
        physical.append(f"{t.nose_shape} nose")
    if t.lips:
        physical.append(f"{t.lips} lips")
    if t.teeth and t.teeth != "not visible":
        physical.append(f"{t.teeth} teeth")
    if t.facial_hair and t.facial_hair != "none":
        physical.append(t.facial_hair)
    if 0 < t.makeup < len(MAKEUP_LEVELS):
        physical.append(f"{MAKEUP_LEVELS[t.makeup]} makeup")
    if t.expression:
        physical.append(f"{t.expression} expression")
    if t.hairstyle or t.hair_color or t.hair_length:
        hair = " ".join(p for p in (t.hair_length, t.hair_color, t.hairstyle) if p)
        physical.append(f"{hair} hair")
    if t.accessories:
        physical.append(f"wearing {_join(t.accessories)}")

    body = []
    if t.height:
        body.append(f"{t.height}cm tall")
    if t.body_type:
        body.append(f"{t.body_type} build")
    details = [
        f"{value} {name}"
        for name, value in (("shoulders", t.shoulders), ("chest", t.chest), ("waist", t.waist), ("hips", t.hips))
        if value and value != "average"
    ]
    if details:
        body.append(f"with {_join(details)}")

    clothing = []
    if t.outfit_style:
        clothing.append(f"{t.outfit_style} outfit")
    if t.outfit_colors:
        clothing.append(f"in {_join(t.outfit_colors)}")
    if t.footwear:
        clothing.append(f"with {t.footwear}")

    staging = []
    if t.pose:
        staging.append(f"in {t.pose} pose")
    if t.camera:
        staging.append(f"shot with {t.camera}")
    if t.framing:
        staging.append(f"{t.framing} framing")
    if t.lighting:
        staging.append(f"{t.lighting} lighting")
    if t.background:
        staging.append(f"against {t.background} background")

    parts = ["Create Character with:", _join(physical), _join(body), _join(clothing), _join(staging)]
    parts += _style_tail(t.style_hints, t.extra_notes, t.negative_prompts)
    return _finish_prompt(parts)


def build_environment_prompt(traits: EnvironmentTraits) -> str:
    """Deterministic text-to-image prompt for a location."""
    t = traits

    scene = [t.location]
    if t.time_of_day:
        scene.append(f"during {t.time_of_day}")
    if t.weather:
        scene.append(f"{t.weather} weather")
    if t.season:
        scene.append(f"{t.season} season")
    if t.mood:
        scene.append(f"{t.mood} mood")
    if t.era:
        scene.append(f"{t.era} era")

    composition = []
    if t.subject_focus:
        composition.append(f"focusing on {t.subject_focus}")
    if t.foreground_elements:
        composition.append(f"foreground featuring {_join(t.foreground_elements)}")
    if t.midground_elements:
        composition.append(f"midground with {_join(t.midground_elements)}")
    if t.background_elements:
        composition.append(f"background showing {_join(t.background_elements)}")

    technical = []
    if t.camera:
        technical.append(f"captured with {t.camera}")
    if t.lighting:
        technical.append(f"{t.lighting} lighting")

    style = []
    if t.color_palette:
        style.append(f"color palette of {_join(t.color_palette)}")
    if t.realism:
        style.append(f"{t.realism} style")
    if t.style_lineage:
        style.append(f"inspired by {_join(t.style_lineage)}")

    parts = ["Create Environment with:", _join(scene), _join(composition), _join(technical), _join(style)]
    parts += _style_tail(t.style_hints, t.extra_notes, t.negative_prompts)
    return _finish_prompt(parts)


def build_i2v_prompt(prompt: str, frame_count: int, sampling_steps: int) -> str:
    """Prompt for animating a still image."""
    return _normalize_text(
        f"Animate the provided image with subtle motions: {prompt}., "
        f"{frame_count} frames, {sampling_steps} sampling steps"
    )


# =============================================================================
# Scene-Script Generator Instructions
# =============================================================================


SCRIPT_SYSTEM_PROMPT = """You are a cinematographer who writes detailed scene prompts for AI video generation.

Break the story concept into {scene_count} scenes that play as one continuous film.

Rules:
1. Every scene lasts exactly one of these durations: {durations} seconds. No other values.
2. The total runtime should be about {target_duration} seconds.
3. Characters, props, vehicles, location and color grading are described identically in every scene. Only expression and body language change.
4. Scene N's "transitionOut" and scene N+1's "transitionIn" share the same key phrase, for example "camera pans right" or "bike accelerates forward".
5. "detailedPrompt" is sent to the video model unchanged. Write 250-350 words covering characters, environment, color palette, lighting, action, atmosphere and composition.
6. "audioScript" is voiceover for text-to-speech. Put each 2-5 word phrase on its own line ending with an ellipsis (…) and separate thought groups with blank lines. Keep 2-4 phrases per scene.

Return ONLY a JSON object with a "scenes" array."""


SCRIPT_USER_PROMPT = """Create {scene_count} cinematic scenes for this story:

"{brief}"

Voiceover tone: {tone_name}
Scene durations: {durations} seconds only
Total: ~{target_duration} seconds

Return JSON with this structure:
{{
  "scenes": [
    {{
      "sceneNumber": 1,
      "title": "Evocative scene title",
      "duration": {max_duration},
      "visualDescription": "2-3 sentence overview",
      "detailedPrompt": "250-350 word video prompt",
      "transitionIn": "How the scene begins, matching the previous transitionOut",
      "transitionOut": "How the scene ends, set up for the next transitionIn",
      "cameraWork": "Shot type, movement, angle, lens",
      "lighting": "Lighting setup and mood",
      "colorGrading": "Color palette, identical across scenes",
      "audioScript": "Voiceover phrases…"
    }}
  ]
}}"""


TRANSITION_SYSTEM_PROMPT = "You are a professional video editor specializing in seamless scene transitions."


TRANSITION_USER_PROMPT = """I have {scene_count} scenes whose transitions do not line up. Fix "transitionIn" and "transitionOut" so consecutive scenes flow into each other.

CURRENT SCENES:
{scene_lines}

ISSUES FOUND:
{issues}

Rules:
1. Scene N's transitionOut names specific visual elements or motion.
2. Scene N+1's transitionIn references those same elements with identical key phrases.
3. Be explicit about direction, motion and objects.

Return a JSON object: {{"transitions": [{{"sceneNumber": 1, "transitionIn": "...", "transitionOut": "..."}}]}}"""


def script_messages(
    brief: str,
    target_duration: int,
    tone: TonePreset,
    scene_count: int,
    durations: List[int],
) -> List[Dict[str, str]]:
    """Chat messages for scene planning."""
    duration_text = " or ".join(str(d) for d in durations)
    fields = {
        "brief": brief,
        "target_duration": target_duration,
        "tone_name": tone.name,
        "scene_count": scene_count,
        "durations": duration_text,
        "max_duration": max(durations),
    }
    return [
        {"role": "system", "content": SCRIPT_SYSTEM_PROMPT.format(**fields)},
        {"role": "user", "content": SCRIPT_USER_PROMPT.format(**fields)},
    ]


def transition_messages(scenes: List[Scene], issues: List[str]) -> List[Dict[str, str]]:
    """Chat messages asking for fixed transitions."""
    lines = []
    for i, scene in enumerate(scenes):
        lines.append(f"Scene {scene.ordinal}: {scene.title}")
        lines.append(f'- TransitionOut: "{scene.transition_out}"')
        if i < len(scenes) - 1:
            lines.append(f'- Next Scene TransitionIn: "{scenes[i + 1].transition_in}"')
        lines.append("")
    content = TRANSITION_USER_PROMPT.format(
        scene_count=len(scenes),
        scene_lines="\n".join(lines).rstrip(),
        issues="\n".join(issues),
    )
    return [
        {"role": "system", "content": TRANSITION_SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]
