"""
Storyboard Data Model
=====================

Scenes, pipeline stages and the PipelineRun aggregate.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


DEFAULT_TRANSITION_IN = "Scene begins"
DEFAULT_TRANSITION_OUT = "Scene ends"


def new_scene_id() -> str:
    return f"scene_{uuid.uuid4().hex[:12]}"


class Stage(Enum):
    """Pipeline stages, in order."""

    IDEA = "idea"
    STORYBOARD = "storyboard"
    VIDEO_GENERATION = "video_generation"
    AUDIO = "audio"
    FINAL = "final"

    @property
    def index(self) -> int:
        return list(Stage).index(self)

    def next(self) -> Optional["Stage"]:
        stages = list(Stage)
        i = self.index
        return stages[i + 1] if i + 1 < len(stages) else None


@dataclass
class Scene:
    """One narrative unit with its own prompt, duration and video job."""

    ordinal: int
    title: str
    duration: int
    detailed_prompt: str
    visual_description: str = ""
    transition_in: str = DEFAULT_TRANSITION_IN
    transition_out: str = DEFAULT_TRANSITION_OUT
    camera_work: str = ""
    lighting: str = ""
    color_grading: str = ""
    audio_script: str = ""
    tone: str = ""
    scene_id: str = field(default_factory=new_scene_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scene":
        """Create from dictionary."""
        return cls(**data)


@dataclass
class PipelineRun:
    """
    Aggregate root for one pipeline session.

    Mutated only through PipelineStageController; job records for the
    scenes live in the controller's SceneJobTracker.
    """

    brief: str = ""
    target_duration: int = 0
    tone_id: str = ""
    stage: Stage = Stage.IDEA
    scenes: List[Scene] = field(default_factory=list)

    # Artifacts
    combined_video_url: Optional[str] = None
    narration_script: Optional[str] = None
    speaker_url: Optional[str] = None
    audio_url: Optional[str] = None
    final_video_url: Optional[str] = None

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=datetime.now)

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        for scene in self.scenes:
            if scene.scene_id == scene_id:
                return scene
        return None

    def ordered_scenes(self) -> List[Scene]:
        """Scenes in ascending ordinal order."""
        return sorted(self.scenes, key=lambda s: s.ordinal)

    def renumber(self) -> None:
        """Reassign dense 1..N ordinals, preserving relative order."""
        for i, scene in enumerate(self.ordered_scenes(), start=1):
            scene.ordinal = i
        self.scenes.sort(key=lambda s: s.ordinal)

    @property
    def total_duration(self) -> int:
        return sum(scene.duration for scene in self.scenes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "run_id": self.run_id,
            "brief": self.brief,
            "target_duration": self.target_duration,
            "tone_id": self.tone_id,
            "stage": self.stage.value,
            "scenes": [scene.to_dict() for scene in self.ordered_scenes()],
            "total_duration": self.total_duration,
            "combined_video_url": self.combined_video_url,
            "narration_script": self.narration_script,
            "speaker_url": self.speaker_url,
            "audio_url": self.audio_url,
            "final_video_url": self.final_video_url,
            "created_at": self.created_at.isoformat(),
        }
