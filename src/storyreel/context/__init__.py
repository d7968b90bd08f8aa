"""
Context Module
==============

Per-scene generation-job state.
"""

from .scene_tracker import SceneJobTracker, SceneJob, SceneJobStatus

__all__ = [
    "SceneJobTracker",
    "SceneJob",
    "SceneJobStatus",
]
