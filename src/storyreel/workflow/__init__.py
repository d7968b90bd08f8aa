"""
Workflow Orchestration
======================

High-level orchestration for one pipeline run.

Components:
- PipelineStageController: Stage machine, scene submission and polling
- MediaAssembler: Video merging, narration overlay and image composition
- EmotionAnalyzer: Emotion profile inference for narration
"""

from .controller import PipelineStageController, PipelineEvent, EventKind
from .assembler import MediaAssembler
from .emotion import EmotionAnalyzer, EmotionProfile, parse_emotion_vector

__all__ = [
    "PipelineStageController",
    "PipelineEvent",
    "EventKind",
    "MediaAssembler",
    "EmotionAnalyzer",
    "EmotionProfile",
    "parse_emotion_vector",
]
