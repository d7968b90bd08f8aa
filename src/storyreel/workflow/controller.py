"""
Pipeline Stage Controller
=========================

Sequences one pipeline run through its stages:

    Idea -> Storyboard -> VideoGeneration -> Audio -> Final

Stages only move forward. Scene submission is sequential in ordinal
order; once submitted, every scene is polled by its own task, so polling
is the only concurrent activity. Each scene has a single writer (an
asyncio.Lock), and a poll result for a superseded job is ignored.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Any, Callable, Tuple, Union

import httpx

from ..api.base import JobClient, JobService, JobStatus
from ..api.factory import get_service
from ..api.media import MuxingClient, StorageClient
from ..api.openai import ChatClient
from ..api.runpod import normalize_duration
from ..context.scene_tracker import SceneJobTracker, SceneJob, SceneJobStatus
from ..core.config import Config, get_config
from ..core.exceptions import (
    StoryreelError,
    SubmissionError,
    ValidationError,
    StageTransitionError,
    InvalidTransitionError,
    SceneNotFoundError,
)
from ..core.security import guess_audio_content_type, validate_audio_upload
from ..storyboard.models import Scene, Stage, PipelineRun, new_scene_id
from ..storyboard.prompts import compile_video_prompt, build_narration_script, build_scene_context
from ..storyboard.script_generator import ScriptGenerator
from .assembler import MediaAssembler
from .emotion import EmotionAnalyzer

logger = logging.getLogger(__name__)


# =============================================================================
# Events
# =============================================================================


class EventKind(Enum):
    STAGE = "stage"
    SCENE_SUBMITTED = "scene_submitted"
    SCENE_PROGRESS = "scene_progress"
    SCENE_COMPLETED = "scene_completed"
    SCENE_FAILED = "scene_failed"
    SCENE_DELETED = "scene_deleted"
    AUDIO_PROGRESS = "audio_progress"
    ASSEMBLY = "assembly"


@dataclass(frozen=True)
class PipelineEvent:
    """Progress notification delivered to subscribers."""

    kind: EventKind
    stage: Stage
    scene_id: Optional[str] = None
    status: Optional[str] = None
    message: str = ""


Listener = Callable[[PipelineEvent], Any]


EDITABLE_FIELDS = {
    "title",
    "duration",
    "detailed_prompt",
    "visual_description",
    "transition_in",
    "transition_out",
    "camera_work",
    "lighting",
    "color_grading",
    "audio_script",
    "tone",
}


# =============================================================================
# Controller
# =============================================================================


class PipelineStageController:
    """
    Drives one PipelineRun.

    All mutation of the run goes through controller methods.

    Usage:
        controller = PipelineStageController.from_config(config)
        await controller.generate_storyboard("calm mountain sunrise ride", 40)
        controller.begin_video_generation()
        await controller.submit_all_scenes()
        await controller.wait_for_scenes()
        controller.advance_to_audio()
        ...
    """

    def __init__(
        self,
        generator: ScriptGenerator,
        video: JobService,
        tts: JobService,
        analyzer: EmotionAnalyzer,
        assembler: MediaAssembler,
        storage: Optional[StorageClient] = None,
        config: Optional[Config] = None,
    ):
        self.generator = generator
        self.video = video
        self.tts = tts
        self.analyzer = analyzer
        self.assembler = assembler
        self.storage = storage
        self.config = config or get_config()

        self.run = PipelineRun()
        self.tracker = SceneJobTracker()

        self._tasks: Dict[str, asyncio.Task] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._listeners: List[Listener] = []
        self._owned: List[Any] = []

    @classmethod
    def from_config(
        cls,
        config: Optional[Config] = None,
        job_transport: Optional[httpx.AsyncBaseTransport] = None,
        chat_transport: Optional[httpx.AsyncBaseTransport] = None,
        media_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "PipelineStageController":
        """Build a controller and the clients it owns from configuration."""
        config = config or get_config()

        jobs = JobClient(
            api_key=config.services.api_key,
            base_url=config.services.base_url,
            timeout=config.services.request_timeout,
            transport=job_transport,
        )
        chat = ChatClient(
            api_key=config.llm.api_key,
            base_url=config.llm.base_url,
            model=config.llm.model,
            timeout=config.llm.request_timeout,
            transport=chat_transport,
        )
        muxer = MuxingClient(config.media.base_url, config.media.request_timeout, transport=media_transport)
        storage = StorageClient(config.media.base_url, config.media.request_timeout, transport=media_transport)

        controller = cls(
            generator=ScriptGenerator(chat, config),
            video=get_service("video", jobs, config),
            tts=get_service("tts", jobs, config),
            analyzer=EmotionAnalyzer(chat, config),
            assembler=MediaAssembler(
                muxer,
                storage,
                composition=get_service("composition", jobs, config),
                image=get_service("image", jobs, config),
                i2v=get_service("i2v", jobs, config),
            ),
            storage=storage,
            config=config,
        )
        controller._owned = [jobs, chat, muxer, storage]
        return controller

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(
        self,
        kind: EventKind,
        scene_id: Optional[str] = None,
        status: Optional[str] = None,
        message: str = "",
    ) -> None:
        event = PipelineEvent(kind, self.run.stage, scene_id, status, message)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Pipeline listener failed on {kind.value} event")

    # -------------------------------------------------------------------------
    # Stage Machine
    # -------------------------------------------------------------------------

    @property
    def stage(self) -> Stage:
        return self.run.stage

    def _advance(self, target: Stage) -> None:
        if target != self.run.stage.next():
            raise StageTransitionError(
                f"Cannot move from {self.run.stage.value} to {target.value}",
                current_stage=self.run.stage.value,
                requested_stage=target.value,
            )
        previous = self.run.stage
        self.run.stage = target
        logger.info(f"Stage: {previous.value} -> {target.value}")
        self._emit(EventKind.STAGE, status=target.value, message=f"Entered {target.value}")

    def _require_stage(self, operation: str, *stages: Stage) -> None:
        if self.run.stage not in stages:
            raise StageTransitionError(
                f"{operation} is not allowed in stage {self.run.stage.value}",
                current_stage=self.run.stage.value,
            )

    def gate_open(self) -> bool:
        """True when every scene in the run has a Completed video job."""
        if not self.tracker.all_terminal_and_successful():
            return False
        return all(scene.scene_id in self.tracker for scene in self.run.scenes)

    def progress(self) -> Tuple[int, int]:
        """(completed scenes, total scenes)."""
        return self.tracker.progress()

    # -------------------------------------------------------------------------
    # Storyboard
    # -------------------------------------------------------------------------

    async def generate_storyboard(
        self,
        brief: str,
        target_duration: int,
        tone_id: Optional[str] = None,
    ) -> List[Scene]:
        """
        Plan scenes for a brief and enter the Storyboard stage.

        Calling this again while in Storyboard replaces the scenes.
        """
        self._require_stage("Storyboard generation", Stage.IDEA, Stage.STORYBOARD)
        if not brief or not brief.strip():
            raise ValidationError("Brief must not be empty", field="brief")
        if target_duration <= 0:
            raise ValidationError(
                f"Target duration must be positive, got {target_duration}",
                field="target_duration",
                value=target_duration,
            )

        tone_id = tone_id or self.config.storyboard.default_tone
        scenes = await self.generator.generate(brief, target_duration, tone_id)

        self.run.brief = brief
        self.run.target_duration = target_duration
        self.run.tone_id = tone_id
        self.run.scenes = list(scenes)
        self.tracker.reset()
        self._locks.clear()
        logger.info(f"Storyboard ready: {len(scenes)} scenes, {self.run.total_duration}s")

        if self.run.stage == Stage.IDEA:
            self._advance(Stage.STORYBOARD)
        return self.run.ordered_scenes()

    def get_scene(self, scene_id: str) -> Scene:
        scene = self.run.get_scene(scene_id)
        if scene is None:
            raise SceneNotFoundError(scene_id)
        return scene

    def _lock_for(self, scene_id: str) -> asyncio.Lock:
        if scene_id not in self._locks:
            self._locks[scene_id] = asyncio.Lock()
        return self._locks[scene_id]

    def _require_editable(self, operation: str) -> None:
        self._require_stage(operation, Stage.STORYBOARD, Stage.VIDEO_GENERATION, Stage.AUDIO)

    async def update_scene(self, scene_id: str, **changes) -> Scene:
        """
        Edit scene fields.

        Edits after submission do not touch the scene's job; resubmit the
        scene to regenerate its video.
        """
        self._require_editable("Scene editing")
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {sorted(unknown)}", field=sorted(unknown)[0])

        async with self._lock_for(scene_id):
            scene = self.get_scene(scene_id)
            if "duration" in changes:
                changes["duration"] = normalize_duration(
                    changes["duration"], self.config.storyboard.allowed_durations
                )
            for name, value in changes.items():
                setattr(scene, name, value)
            logger.info(f"Updated scene {scene.ordinal}: {sorted(changes)}")
            return scene

    async def regenerate_scene(self, scene_id: str) -> Scene:
        """Replace one scene's content via the script generator."""
        self._require_editable("Scene regeneration")
        async with self._lock_for(scene_id):
            scene = self.get_scene(scene_id)
            fresh = await self.generator.regenerate_scene(scene, tone_id=self.run.tone_id or None)
            index = self.run.scenes.index(scene)
            self.run.scenes[index] = fresh
            logger.info(f"Regenerated scene {fresh.ordinal}: {fresh.title}")
            return fresh

    async def duplicate_scene(self, scene_id: str) -> Scene:
        """
        Append a copy of a scene at the end of the run.

        Only allowed while scene videos can still be generated.
        """
        self._require_stage("Scene duplication", Stage.STORYBOARD, Stage.VIDEO_GENERATION)
        async with self._lock_for(scene_id):
            scene = self.get_scene(scene_id)
            copy = replace(
                scene,
                scene_id=new_scene_id(),
                ordinal=len(self.run.scenes) + 1,
                title=f"{scene.title} (Copy)",
            )
            self.run.scenes.append(copy)

        # A new scene must be generated before assembly can happen
        if self.run.stage == Stage.VIDEO_GENERATION:
            self.tracker.register_scene(copy.scene_id)

        logger.info(f"Duplicated scene {scene.ordinal} as scene {copy.ordinal}")
        return copy

    async def delete_scene(self, scene_id: str) -> None:
        """
        Remove a scene and renumber the rest to 1..N-1.

        Any in-flight poll for the scene is cancelled; its remote job is
        left running.
        """
        self._require_editable("Scene deletion")
        async with self._lock_for(scene_id):
            scene = self.get_scene(scene_id)
            task = self._tasks.pop(scene_id, None)
            if task is not None:
                task.cancel()
            self.tracker.remove_scene(scene_id)
            self.run.scenes.remove(scene)
            self.run.renumber()
        self._locks.pop(scene_id, None)

        logger.info(f"Deleted scene {scene.ordinal}; {len(self.run.scenes)} scenes remain")
        self._emit(EventKind.SCENE_DELETED, scene_id, message=f"Deleted scene {scene.title}")

    # -------------------------------------------------------------------------
    # Video Generation
    # -------------------------------------------------------------------------

    def begin_video_generation(self) -> None:
        """Enter VideoGeneration. Requires at least one scene."""
        self._require_stage("Starting video generation", Stage.STORYBOARD)
        if not self.run.scenes:
            raise StageTransitionError(
                "Cannot start video generation without scenes",
                current_stage=self.run.stage.value,
                requested_stage=Stage.VIDEO_GENERATION.value,
            )
        self._advance(Stage.VIDEO_GENERATION)

    async def submit_all_scenes(self) -> List[SceneJob]:
        """
        Submit every scene that has not been submitted yet.

        Submission is sequential in ordinal order. A rejected submission
        marks that scene Failed and moves on to the next one. Failed scenes
        are not resubmitted here; use ``retry_scene``.
        """
        self._require_stage("Scene submission", Stage.VIDEO_GENERATION)

        jobs = []
        for scene in self.run.ordered_scenes():
            job = self.tracker.find(scene.scene_id)
            if job is not None and job.status != SceneJobStatus.PENDING:
                continue
            jobs.append(await self._submit_scene(scene.scene_id))

        completed, total = self.progress()
        logger.info(f"Submitted {len(jobs)} scenes ({completed}/{total} completed so far)")
        return jobs

    async def retry_scene(self, scene_id: str) -> SceneJob:
        """Resubmit a Failed scene as a new job."""
        self._require_stage("Scene retry", Stage.VIDEO_GENERATION)
        job = self.tracker.get(scene_id)
        if job.status != SceneJobStatus.FAILED:
            raise InvalidTransitionError(
                f"Only failed scenes can be retried; scene is {job.status.value}",
                scene_id=scene_id,
                from_status=job.status.value,
                to_status=SceneJobStatus.SUBMITTED.value,
            )
        return await self._submit_scene(scene_id, retry=True)

    async def resubmit_scene(self, scene_id: str) -> SceneJob:
        """Regenerate a Completed scene's video after its prompt was edited."""
        self._require_stage("Scene resubmission", Stage.VIDEO_GENERATION)
        job = self.tracker.find(scene_id)
        if job is not None and job.status == SceneJobStatus.FAILED:
            raise InvalidTransitionError(
                "Failed scenes are resubmitted with retry_scene",
                scene_id=scene_id,
                from_status=job.status.value,
            )
        return await self._submit_scene(scene_id)

    async def _submit_scene(self, scene_id: str, retry: bool = False) -> SceneJob:
        async with self._lock_for(scene_id):
            scene = self.get_scene(scene_id)
            if not retry:
                self.tracker.register_scene(scene_id)

            try:
                job_id = await self.video.submit(
                    prompt=compile_video_prompt(scene),
                    duration=scene.duration,
                )
            except (SubmissionError, ValidationError) as e:
                logger.error(f"Scene {scene.ordinal} submission failed: {e.message}")
                job = self.tracker.set_status(scene_id, SceneJobStatus.FAILED, error=e.message)
                self._emit(EventKind.SCENE_FAILED, scene_id, job.status.value, e.message)
                return job

            if retry:
                job = self.tracker.retry(scene_id, job_id)
            else:
                job = self.tracker.set_status(scene_id, SceneJobStatus.SUBMITTED, job_id=job_id)

            logger.info(f"Scene {scene.ordinal} submitted as job {job_id}")
            self._emit(EventKind.SCENE_SUBMITTED, scene_id, job.status.value, f"Job {job_id}")
            self._tasks[scene_id] = asyncio.create_task(self._poll_scene(scene_id, job_id))
            return job

    async def _poll_scene(self, scene_id: str, job_id: str) -> None:
        def on_progress(status: JobStatus) -> None:
            if self.tracker.is_current(scene_id, job_id):
                self._emit(EventKind.SCENE_PROGRESS, scene_id, status.value)

        result_url = None
        error = None
        try:
            try:
                result_url = await self.video.wait(job_id, on_progress=on_progress)
            except StoryreelError as e:
                error = e.message

            async with self._lock_for(scene_id):
                # cancel() clears the task table before cancelling
                if self._tasks.get(scene_id) is not asyncio.current_task():
                    logger.debug(f"Dropping result of cancelled poll for job {job_id}")
                    return
                if not self.tracker.is_current(scene_id, job_id):
                    logger.debug(f"Ignoring result of superseded job {job_id}")
                    return

                if error is None:
                    self.tracker.set_status(scene_id, SceneJobStatus.COMPLETED, result=result_url)
                    logger.info(f"Scene {scene_id} completed: {result_url}")
                    self._emit(EventKind.SCENE_COMPLETED, scene_id, SceneJobStatus.COMPLETED.value, result_url)
                else:
                    self.tracker.set_status(scene_id, SceneJobStatus.FAILED, error=error)
                    logger.error(f"Scene {scene_id} failed: {error}")
                    self._emit(EventKind.SCENE_FAILED, scene_id, SceneJobStatus.FAILED.value, error)
        finally:
            if self._tasks.get(scene_id) is asyncio.current_task():
                del self._tasks[scene_id]

    async def wait_for_scenes(self) -> Tuple[int, int]:
        """Wait until no scene poll is in flight. Returns progress()."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
        return self.progress()

    # -------------------------------------------------------------------------
    # Audio
    # -------------------------------------------------------------------------

    def advance_to_audio(self) -> None:
        """Enter the Audio stage once every scene video has completed."""
        self._require_stage("Advancing to audio", Stage.VIDEO_GENERATION)
        if not self.gate_open():
            completed, total = self.progress()
            raise StageTransitionError(
                f"Scene videos incomplete: {completed}/{total} completed",
                current_stage=self.run.stage.value,
                requested_stage=Stage.AUDIO.value,
            )
        self._advance(Stage.AUDIO)

    async def combine_videos(self) -> str:
        """Combine the completed scene videos in ordinal order."""
        self._require_stage("Combining videos", Stage.VIDEO_GENERATION, Stage.AUDIO)
        combined = await self.assembler.combine_scene_videos(
            self.run.scenes,
            self.tracker,
            on_status=lambda message: self._emit(EventKind.ASSEMBLY, message=message),
        )
        self.run.combined_video_url = combined
        return combined

    async def upload_voice_sample(self, path: Union[str, Path]) -> str:
        """Upload a narrator voice sample and use it as the speaker reference."""
        if self.storage is None:
            raise StageTransitionError("Voice sample upload needs a storage client")

        path = Path(path)
        if not path.is_file():
            raise ValidationError(f"Voice sample not found: {path}", field="path", value=str(path))
        content_type = guess_audio_content_type(path.name)
        validate_audio_upload(
            path.stat().st_size,
            content_type,
            max_size_mb=self.config.audio.max_voice_sample_mb,
        )

        url = await self.storage.upload_file(path, content_type)
        self.run.speaker_url = url
        self._emit(EventKind.AUDIO_PROGRESS, status="voice_uploaded", message=url)
        return url

    async def generate_audio(
        self,
        script: Optional[str] = None,
        speaker_url: Optional[str] = None,
    ) -> str:
        """
        Synthesize the narration track.

        Args:
            script: Edited narration (defaults to the joined scene scripts)
            speaker_url: Voice reference (defaults to the uploaded sample,
                then the configured default speaker)

        Returns:
            URL of the narration audio
        """
        self._require_stage("Audio generation", Stage.AUDIO)
        if not self.gate_open():
            raise StageTransitionError(
                "Audio generation requires every scene video to be completed",
                current_stage=self.run.stage.value,
            )

        script = script if script is not None else build_narration_script(self.run.scenes)
        if not script.strip():
            raise ValidationError("Narration script is empty", field="script")
        speaker = speaker_url or self.run.speaker_url or self.config.audio.default_speaker_url

        self._emit(EventKind.AUDIO_PROGRESS, status="analyzing", message="Analyzing emotions")
        profile = await self.analyzer.infer(script, build_scene_context(self.run.scenes))

        def on_progress(status: JobStatus) -> None:
            self._emit(EventKind.AUDIO_PROGRESS, status=status.value)

        try:
            audio_url = await self.tts.run(
                on_progress=on_progress,
                text=script,
                speaker_url=speaker,
                emotion_vector=profile.as_vector(),
            )
        except StoryreelError as e:
            logger.error(f"Audio generation failed: {e.message}")
            self._emit(EventKind.AUDIO_PROGRESS, status="failed", message=e.message)
            raise

        self.run.narration_script = script
        self.run.speaker_url = speaker
        self.run.audio_url = audio_url
        logger.info(f"Narration audio ready: {audio_url}")
        self._emit(EventKind.AUDIO_PROGRESS, status="completed", message=audio_url)
        return audio_url

    # -------------------------------------------------------------------------
    # Final
    # -------------------------------------------------------------------------

    def advance_to_final(self) -> None:
        """Enter Final once narration audio exists."""
        self._require_stage("Advancing to final", Stage.AUDIO)
        if not self.run.audio_url:
            raise StageTransitionError(
                "Narration audio has not been generated",
                current_stage=self.run.stage.value,
                requested_stage=Stage.FINAL.value,
            )
        self._advance(Stage.FINAL)

    async def merge_final_video(self) -> str:
        """Lay the narration over the combined video."""
        self._require_stage("Final merge", Stage.AUDIO, Stage.FINAL)
        final_url = await self.assembler.merge_video_with_audio(
            self.run.combined_video_url,
            self.run.audio_url,
            on_status=lambda message: self._emit(EventKind.ASSEMBLY, message=message),
        )
        self.run.final_video_url = final_url
        return final_url

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def cancel(self) -> None:
        """
        Stop every in-flight poll.

        Remote jobs are not cancelled; their scenes stay Submitted.
        """
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} scene polls")

    async def reset(self) -> None:
        """Discard the run and start a new project."""
        await self.cancel()
        self.run = PipelineRun()
        self.tracker.reset()
        self._locks.clear()
        logger.info("Pipeline reset")
        self._emit(EventKind.STAGE, status=Stage.IDEA.value, message="New project")

    async def close(self) -> None:
        """Cancel polls and close the clients this controller created."""
        await self.cancel()
        for client in self._owned:
            await client.close()
        self._owned = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def to_dict(self) -> Dict[str, Any]:
        """Run summary: scenes, job states and artifact URLs."""
        completed, total = self.progress()
        data = self.run.to_dict()
        data["jobs"] = {job.scene_id: job.to_dict() for job in self.tracker.jobs()}
        data["progress"] = {"completed": completed, "total": total}
        return data
