#!/usr/bin/env python3
"""
CLI Script: Run Pipeline
========================

Command-line tool that takes a brief through every pipeline stage.

Usage:
    python scripts/run_pipeline.py "A cyclist crosses the Alps at dawn" --duration 40
    python scripts/run_pipeline.py "Rain over Tokyo" -d 16 --tone adventurous-energetic --voice me.mp3
    python scripts/run_pipeline.py "Desert caravan" --storyboard-only -o output/storyboard.yaml
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from storyreel import Config, PipelineStageController, PipelineEvent, StoryreelError, TONE_PRESETS
from storyreel.utils import save_metadata
from storyreel.workflow import EventKind


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Turn a text brief into a narrated video",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s "A cyclist crosses the Alps at dawn"
  %(prog)s "Rain over Tokyo" -d 16 --tone adventurous-energetic
  %(prog)s "Desert caravan" --storyboard-only --format yaml
        """,
    )

    parser.add_argument("brief", help="Story idea for the video")

    # Storyboard settings
    parser.add_argument(
        "-d", "--duration",
        type=int,
        default=40,
        help="Target video length in seconds (default: 40)",
    )
    parser.add_argument(
        "--tone",
        choices=sorted(TONE_PRESETS),
        help="Tone preset (default: from config)",
    )
    parser.add_argument(
        "--testing",
        action="store_true",
        help="Generate only a couple of scenes",
    )
    parser.add_argument(
        "--storyboard-only",
        action="store_true",
        help="Stop after the storyboard is planned",
    )

    # Generation settings
    parser.add_argument(
        "--retries",
        type=int,
        default=1,
        help="Times to retry failed scenes (default: 1)",
    )

    # Narration
    parser.add_argument(
        "--voice",
        help="Voice sample to upload as the narrator reference",
    )
    parser.add_argument(
        "--speaker-url",
        help="Public URL of a narrator voice sample",
    )
    parser.add_argument(
        "--script-file",
        help="Narration text to use instead of the scene scripts",
    )

    # Output
    parser.add_argument(
        "-o", "--output",
        help="Run summary path (default: output/run_<timestamp>.<format>)",
    )
    parser.add_argument(
        "--format",
        default="json",
        choices=["json", "yaml"],
        help="Run summary format (default: json)",
    )

    # Config
    parser.add_argument(
        "--config",
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args()


def print_event(event: PipelineEvent) -> None:
    """Console listener for pipeline events."""
    if event.kind == EventKind.SCENE_PROGRESS:
        return
    scene = f" [{event.scene_id}]" if event.scene_id else ""
    status = f" {event.status}" if event.status else ""
    message = f": {event.message}" if event.message else ""
    print(f"  {event.kind.value}{scene}{status}{message}")


async def main():
    """Main CLI entry point."""
    args = parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = Config.load(args.config)
    except StoryreelError as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    if not config.services.api_key:
        print("Error: RUNPOD_API_KEY environment variable not set")
        sys.exit(1)
    if not config.llm.api_key:
        print("Error: OPENAI_API_KEY environment variable not set")
        sys.exit(1)
    if args.testing:
        config.storyboard.testing_mode = True

    output_path = Path(args.output or f"output/run_{datetime.now():%Y%m%d_%H%M%S}.{args.format}")

    print("=" * 50)
    print("Storyreel Pipeline")
    print("=" * 50)
    print(f"\nBrief: {args.brief}")
    print(f"Duration: {args.duration}s")

    controller = PipelineStageController.from_config(config)
    controller.subscribe(print_event)

    try:
        async with controller:
            scenes = await controller.generate_storyboard(args.brief, args.duration, args.tone)

            print("\n" + "-" * 50)
            for scene in scenes:
                print(f"{scene.ordinal}. {scene.title} ({scene.duration}s)")

            if args.storyboard_only:
                save_metadata(controller.to_dict(), output_path, format=args.format)
                print(f"\nStoryboard saved: {output_path}")
                sys.exit(0)

            # Video generation
            print("\n" + "-" * 50)
            controller.begin_video_generation()
            await controller.submit_all_scenes()
            completed, total = await controller.wait_for_scenes()

            for _ in range(args.retries):
                failed = controller.tracker.failed()
                if not failed:
                    break
                print(f"\nRetrying {len(failed)} failed scenes...")
                for job in failed:
                    await controller.retry_scene(job.scene_id)
                completed, total = await controller.wait_for_scenes()

            print(f"\nScenes completed: {completed}/{total}")
            if not controller.gate_open():
                save_metadata(controller.to_dict(), output_path, format=args.format)
                print(f"Some scenes failed. Run summary: {output_path}")
                sys.exit(1)

            # Audio
            controller.advance_to_audio()
            await controller.combine_videos()

            if args.voice:
                await controller.upload_voice_sample(args.voice)
            script = Path(args.script_file).read_text() if args.script_file else None
            await controller.generate_audio(script=script, speaker_url=args.speaker_url)

            # Final
            controller.advance_to_final()
            final_url = await controller.merge_final_video()

            save_metadata(controller.to_dict(), output_path, format=args.format)

            print("\n" + "-" * 50)
            print(f"Final video: {final_url}")
            print(f"Run summary: {output_path}")
            print("=" * 50)
            sys.exit(0)

    except KeyboardInterrupt:
        print("\nCancelled")
        sys.exit(130)
    except StoryreelError as e:
        print(f"\nError: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
