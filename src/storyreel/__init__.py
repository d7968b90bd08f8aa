"""
Storyreel
=========

Turns a short text brief into a narrated video.

The pipeline moves through five stages:

    Idea -> Storyboard -> VideoGeneration -> Audio -> Final

An LLM plans the scenes, every scene is rendered by a remote
text-to-video job, the clips are merged in scene order, and an
emotion-conditioned narration track is laid over the result.

Quick Start:
    import asyncio
    from storyreel import PipelineStageController, Config

    async def main():
        async with PipelineStageController.from_config(Config.load()) as controller:
            await controller.generate_storyboard("A cyclist crosses the Alps at dawn", 40)
            controller.begin_video_generation()
            await controller.submit_all_scenes()
            completed, total = await controller.wait_for_scenes()

            controller.advance_to_audio()
            await controller.combine_videos()
            await controller.generate_audio()

            controller.advance_to_final()
            print(await controller.merge_final_video())

    asyncio.run(main())
"""

__version__ = "0.3.0"

# Core Utilities
from .core.config import Config, get_config, set_config
from .core.exceptions import (
    StoryreelError,
    ConfigurationError,
    ProviderError,
    GenerationError,
    ValidationError,
    SecurityError,
    PipelineStateError,
    StageTransitionError,
)

# Storyboard
from .storyboard import Scene, Stage, PipelineRun, ScriptGenerator, TONE_PRESETS

# Jobs
from .api import JobClient, JobStatus, get_service, list_services
from .context import SceneJobTracker, SceneJobStatus

# Orchestration
from .workflow import PipelineStageController, PipelineEvent, MediaAssembler, EmotionAnalyzer

__all__ = [
    # Version
    "__version__",

    # Core
    "Config",
    "get_config",
    "set_config",

    # Exceptions
    "StoryreelError",
    "ConfigurationError",
    "ProviderError",
    "GenerationError",
    "ValidationError",
    "SecurityError",
    "PipelineStateError",
    "StageTransitionError",

    # Storyboard
    "Scene",
    "Stage",
    "PipelineRun",
    "ScriptGenerator",
    "TONE_PRESETS",

    # Jobs
    "JobClient",
    "JobStatus",
    "get_service",
    "list_services",
    "SceneJobTracker",
    "SceneJobStatus",

    # Orchestration
    "PipelineStageController",
    "PipelineEvent",
    "MediaAssembler",
    "EmotionAnalyzer",
]
