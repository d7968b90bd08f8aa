"""
Media Assembler
===============

Combines per-scene videos into one timeline, lays the narration track
over it, composes still images for scenes, and animates stills into
clips.

Scene videos are always combined in ascending scene ordinal order, never
in job-completion order.
"""

import logging
from typing import Optional, List, Callable, Any

from ..api.base import JobService
from ..api.media import MuxingClient, StorageClient
from ..context.scene_tracker import SceneJobTracker
from ..core.exceptions import PipelineStateError
from ..storyboard.models import Scene
from ..storyboard.prompts import (
    CharacterTraits,
    EnvironmentTraits,
    build_character_prompt,
    build_environment_prompt,
    build_i2v_prompt,
)
from ..utils.image_utils import decode_base64_image, normalize_to_png, image_input

logger = logging.getLogger(__name__)


StatusCallback = Callable[[str], Any]


class MediaAssembler:
    """
    One-shot calls to the muxing and composition services.

    Usage:
        assembler = MediaAssembler(MuxingClient(), StorageClient())
        combined = await assembler.combine_scene_videos(scenes, tracker)
        final = await assembler.merge_video_with_audio(combined, audio_url)
    """

    def __init__(
        self,
        muxer: MuxingClient,
        storage: Optional[StorageClient] = None,
        composition: Optional[JobService] = None,
        image: Optional[JobService] = None,
        i2v: Optional[JobService] = None,
    ):
        self.muxer = muxer
        self.storage = storage
        self.composition = composition
        self.image = image
        self.i2v = i2v

    @staticmethod
    def _report(on_status: Optional[StatusCallback], message: str) -> None:
        logger.info(message)
        if on_status:
            on_status(message)

    async def combine_scene_videos(
        self,
        scenes: List[Scene],
        tracker: SceneJobTracker,
        on_status: Optional[StatusCallback] = None,
    ) -> str:
        """
        Concatenate the completed scene videos.

        Args:
            scenes: The run's scenes (any order)
            tracker: Job tracker holding each scene's result URL
            on_status: Optional textual status callback

        Returns:
            URL of the combined video

        Raises:
            PipelineStateError: If not every scene has completed
        """
        if not tracker.all_terminal_and_successful():
            completed, total = tracker.progress()
            raise PipelineStateError(
                f"Cannot combine videos: {completed}/{total} scenes completed",
                details={"completed": completed, "total": total},
            )

        ordered = sorted(scenes, key=lambda s: s.ordinal)
        urls = [tracker.get(scene.scene_id).result_url for scene in ordered]
        return await self.combine_videos(urls, on_status=on_status)

    async def combine_videos(self, ordered_urls: List[str], on_status: Optional[StatusCallback] = None) -> str:
        """Concatenate videos that are already in timeline order."""
        self._report(on_status, f"Combining {len(ordered_urls)} scene videos...")
        combined = await self.muxer.merge_videos(ordered_urls)
        self._report(on_status, "Video merge complete")
        return combined

    async def merge_video_with_audio(
        self,
        combined_url: Optional[str],
        audio_url: Optional[str],
        on_status: Optional[StatusCallback] = None,
    ) -> str:
        """
        Lay the narration track over the combined video.

        Raises:
            PipelineStateError: If either artifact is missing
        """
        if not combined_url:
            raise PipelineStateError("Cannot merge audio: no combined video")
        if not audio_url:
            raise PipelineStateError("Cannot merge audio: no narration audio")

        self._report(on_status, "Merging video with audio...")
        final_url = await self.muxer.merge_video_with_audio(combined_url, audio_url)
        self._report(on_status, "Final video ready")
        return final_url

    async def compose_image(
        self,
        foreground: str,
        background: str,
        shrink_pixels: int = 5,
        filename: str = "composed-image.png",
        on_status: Optional[StatusCallback] = None,
    ) -> str:
        """
        Place a foreground image onto a background and publish the result.

        Args:
            foreground: URL, data URI or local path
            background: URL, data URI or local path
            shrink_pixels: Edge shrink applied to the foreground mask
            filename: Name for the uploaded PNG

        Returns:
            Public URL of the composed PNG
        """
        if self.composition is None or self.storage is None:
            raise PipelineStateError("Image composition needs a composition service and storage")

        self._report(on_status, "Composing images...")
        image_b64 = await self.composition.run(
            foreground_image=image_input(foreground),
            background_image=image_input(background),
            shrink_pixels=shrink_pixels,
        )
        png_bytes, (width, height) = normalize_to_png(decode_base64_image(image_b64))
        logger.info(f"Composed image {width}x{height}")

        self._report(on_status, "Uploading composed image...")
        return await self.storage.upload_bytes(png_bytes, filename, "image/png")

    async def generate_image(
        self,
        prompt: str,
        width: int = 720,
        height: int = 1024,
        filename: str = "generated-image.png",
        on_status: Optional[StatusCallback] = None,
    ) -> str:
        """Run a text-to-image job and publish the PNG. Returns its public URL."""
        if self.image is None or self.storage is None:
            raise PipelineStateError("Image generation needs an image service and storage")

        self._report(on_status, "Generating image...")
        image_b64 = await self.image.run(prompt=prompt, width=width, height=height)
        png_bytes, _ = normalize_to_png(decode_base64_image(image_b64))

        self._report(on_status, "Uploading generated image...")
        return await self.storage.upload_bytes(png_bytes, filename, "image/png")

    async def generate_character_image(
        self,
        traits: CharacterTraits,
        width: int = 720,
        height: int = 1024,
        on_status: Optional[StatusCallback] = None,
    ) -> str:
        """Render a character from its traits. Returns the PNG's public URL."""
        prompt = build_character_prompt(traits)
        logger.debug(f"Character prompt: {prompt}")
        return await self.generate_image(prompt, width, height, "character.png", on_status)

    async def generate_environment_image(
        self,
        traits: EnvironmentTraits,
        width: int = 1024,
        height: int = 1024,
        on_status: Optional[StatusCallback] = None,
    ) -> str:
        """Render a location from its traits. Returns the PNG's public URL."""
        prompt = build_environment_prompt(traits)
        logger.debug(f"Environment prompt: {prompt}")
        return await self.generate_image(prompt, width, height, "environment.png", on_status)

    async def animate_image(
        self,
        image: str,
        motion: str,
        frame_count: int = 21,
        sampling_steps: int = 6,
        on_status: Optional[StatusCallback] = None,
    ) -> str:
        """
        Animate a still image with an image-to-video job.

        Args:
            image: Local path, data URI or bare base64
            motion: Description of the motion to add
            frame_count: Frames to generate
            sampling_steps: Sampling steps per frame

        Returns:
            URL of the generated clip
        """
        if self.i2v is None:
            raise PipelineStateError("Image animation needs an image-to-video service")

        self._report(on_status, "Animating image...")
        return await self.i2v.run(
            prompt=build_i2v_prompt(motion, frame_count, sampling_steps),
            image=image,
            frame_num=frame_count,
            sampling_steps=sampling_steps,
            on_progress=lambda status: self._report(on_status, f"Animation {status.value}"),
        )
