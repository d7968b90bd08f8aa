"""
Storyboard Module
=================

Scene data model, tone presets, prompt compilation and scene planning.
"""

from .models import Scene, Stage, PipelineRun
from .prompts import (
    TONE_PRESETS,
    TonePreset,
    get_tone,
    compile_video_prompt,
    CharacterTraits,
    EnvironmentTraits,
    build_character_prompt,
    build_environment_prompt,
    build_i2v_prompt,
)
from .script_generator import ScriptGenerator, parse_scenes

__all__ = [
    "Scene",
    "Stage",
    "PipelineRun",
    "TONE_PRESETS",
    "TonePreset",
    "get_tone",
    "compile_video_prompt",
    "CharacterTraits",
    "EnvironmentTraits",
    "build_character_prompt",
    "build_environment_prompt",
    "build_i2v_prompt",
    "ScriptGenerator",
    "parse_scenes",
]
