"""Tests for the media backend clients, the assembler and the image/storage utilities."""

import asyncio
import base64
import io

import httpx
import pytest
from PIL import Image

from storyreel.api import JobClient, MuxingClient, StorageClient, get_service
from storyreel.context import SceneJobTracker, SceneJobStatus
from storyreel.core.exceptions import MuxingError, PipelineStateError, StorageError, ValidationError
from storyreel.storyboard import CharacterTraits, EnvironmentTraits, Scene
from storyreel.utils import decode_base64_image, load_metadata, normalize_to_png, save_metadata
from storyreel.workflow import MediaAssembler

from conftest import FakeJobAPI, FakeMediaAPI, completed


MEDIA_URL = "https://media.test"


def png_base64(size=(4, 3), mode="RGB") -> str:
    buffer = io.BytesIO()
    Image.new(mode, size, color=0).save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def media_clients(api: FakeMediaAPI):
    transport = api.transport()
    return MuxingClient(MEDIA_URL, transport=transport), StorageClient(MEDIA_URL, transport=transport)


def tracker_with_results(scenes, urls):
    tracker = SceneJobTracker()
    for scene, url in zip(scenes, urls):
        tracker.register_scene(scene.scene_id)
        tracker.set_status(scene.scene_id, SceneJobStatus.SUBMITTED, job_id=f"job-{scene.ordinal}")
        if url:
            tracker.set_status(scene.scene_id, SceneJobStatus.COMPLETED, result=url)
    return tracker


# =============================================================================
# Combining
# =============================================================================


def test_combine_uses_ordinal_order_not_completion_order():
    api = FakeMediaAPI()
    muxer, _ = media_clients(api)
    scenes = [Scene(3, "C", 5, "p"), Scene(1, "A", 5, "p"), Scene(2, "B", 5, "p")]
    tracker = SceneJobTracker()
    for scene in scenes:
        tracker.register_scene(scene.scene_id)
        tracker.set_status(scene.scene_id, SceneJobStatus.SUBMITTED, job_id=scene.title)
    # Completion order C, A, B
    for scene in scenes:
        tracker.set_status(scene.scene_id, SceneJobStatus.COMPLETED, result=f"https://cdn.test/{scene.title}.mp4")

    statuses = []
    url = asyncio.run(MediaAssembler(muxer).combine_scene_videos(scenes, tracker, on_status=statuses.append))

    assert url == "https://media.test/merged.mp4"
    assert api.merges == [["https://cdn.test/A.mp4", "https://cdn.test/B.mp4", "https://cdn.test/C.mp4"]]
    assert statuses[-1] == "Video merge complete"


def test_combine_refuses_incomplete_scenes():
    api = FakeMediaAPI()
    muxer, _ = media_clients(api)
    scenes = [Scene(1, "A", 5, "p"), Scene(2, "B", 5, "p")]
    tracker = tracker_with_results(scenes, ["https://cdn.test/a.mp4", None])

    with pytest.raises(PipelineStateError):
        asyncio.run(MediaAssembler(muxer).combine_scene_videos(scenes, tracker))
    assert api.merges == []


def test_single_video_skips_the_service():
    api = FakeMediaAPI(healthy=False)
    muxer, _ = media_clients(api)

    assert asyncio.run(muxer.merge_videos(["https://cdn.test/only.mp4"])) == "https://cdn.test/only.mp4"
    assert api.merges == []


def test_unhealthy_muxer_raises():
    muxer, _ = media_clients(FakeMediaAPI(healthy=False))

    with pytest.raises(MuxingError):
        asyncio.run(muxer.merge_videos(["a", "b"]))


def test_merge_error_text_is_reported():
    def handler(request):
        if request.url.path == "/health":
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(500, json={"error": "ffmpeg exited with code 1"})

    muxer = MuxingClient(MEDIA_URL, transport=httpx.MockTransport(handler))

    with pytest.raises(MuxingError) as exc_info:
        asyncio.run(muxer.merge_videos(["a", "b"]))
    assert "ffmpeg exited with code 1" in exc_info.value.message


def test_merge_video_with_audio():
    api = FakeMediaAPI()
    muxer, _ = media_clients(api)
    assembler = MediaAssembler(muxer)

    url = asyncio.run(assembler.merge_video_with_audio("https://media.test/merged.mp4", "https://cdn.test/voice.wav"))

    assert url == "https://media.test/final.mp4"
    assert api.audio_merges == [{"video_url": "https://media.test/merged.mp4", "audio_url": "https://cdn.test/voice.wav"}]


@pytest.mark.parametrize("video, audio", [(None, "https://a"), ("https://v", None)])
def test_merge_requires_both_artifacts(video, audio):
    muxer, _ = media_clients(FakeMediaAPI())

    with pytest.raises(PipelineStateError):
        asyncio.run(MediaAssembler(muxer).merge_video_with_audio(video, audio))


# =============================================================================
# Storage
# =============================================================================


def test_upload_file(tmp_path):
    api = FakeMediaAPI()
    _, storage = media_clients(api)
    path = tmp_path / "voice sample.mp3"
    path.write_bytes(b"ID3" + b"\x00" * 64)

    url = asyncio.run(storage.upload_file(path, "audio/mpeg"))

    assert url == "https://storage.test/upload-1"
    assert api.uploads[0].startswith("multipart/form-data")


def test_upload_rejects_bad_response():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"success": False}))
    storage = StorageClient(MEDIA_URL, transport=transport)

    with pytest.raises(StorageError):
        asyncio.run(storage.upload_bytes(b"data", "a.png", "image/png"))


def test_upload_rejects_empty_content():
    _, storage = media_clients(FakeMediaAPI())

    with pytest.raises(ValidationError):
        asyncio.run(storage.upload_bytes(b"", "a.png", "image/png"))


# =============================================================================
# Images
# =============================================================================


def test_compose_image_publishes_png(config):
    jobs = FakeJobAPI(plan=lambda e, p, j: [{"status": "IN_PROGRESS"}, completed({"image_base64": png_base64((6, 5))})])
    media = FakeMediaAPI()
    muxer, storage = media_clients(media)

    async def go():
        async with JobClient(api_key="k", transport=jobs.transport()) as client:
            assembler = MediaAssembler(muxer, storage, composition=get_service("composition", client, config))
            return await assembler.compose_image("https://img.test/fg.png", "https://img.test/bg.png", shrink_pixels=3)

    assert asyncio.run(go()) == "https://storage.test/upload-1"
    payload = jobs.payloads("tob76lalk2ulxf")[0]
    assert payload == {
        "foreground_image": "https://img.test/fg.png",
        "background_image": "https://img.test/bg.png",
        "shrink_pixels": 3,
    }


def test_generate_image(config):
    jobs = FakeJobAPI(plan=lambda e, p, j: [completed({"image_base64": "data:image/png;base64," + png_base64()})])
    muxer, storage = media_clients(FakeMediaAPI())

    async def go():
        async with JobClient(api_key="k", transport=jobs.transport()) as client:
            assembler = MediaAssembler(muxer, storage, image=get_service("image", client, config))
            return await assembler.generate_image("A red bicycle")

    assert asyncio.run(go()) == "https://storage.test/upload-1"
    assert jobs.payloads("86zngifdc1ukdz")[0]["width"] == 720


def test_compose_requires_services():
    muxer, _ = media_clients(FakeMediaAPI())

    with pytest.raises(PipelineStateError):
        asyncio.run(MediaAssembler(muxer).compose_image("a", "b"))


def test_generate_environment_image(config):
    jobs = FakeJobAPI(plan=lambda e, p, j: [completed({"image_base64": png_base64()})])
    muxer, storage = media_clients(FakeMediaAPI())

    async def go():
        async with JobClient(api_key="k", transport=jobs.transport()) as client:
            assembler = MediaAssembler(muxer, storage, image=get_service("image", client, config))
            return await assembler.generate_environment_image(EnvironmentTraits(location="alpine pass", weather="misty"))

    assert asyncio.run(go()) == "https://storage.test/upload-1"
    payload = jobs.payloads("86zngifdc1ukdz")[0]
    assert payload["prompt"] == "Create Environment with:. alpine pass, misty weather"
    assert (payload["width"], payload["height"]) == (1024, 1024)


def test_generate_character_image(config):
    jobs = FakeJobAPI(plan=lambda e, p, j: [completed({"image_base64": png_base64()})])
    muxer, storage = media_clients(FakeMediaAPI())

    async def go():
        async with JobClient(api_key="k", transport=jobs.transport()) as client:
            assembler = MediaAssembler(muxer, storage, image=get_service("image", client, config))
            return await assembler.generate_character_image(CharacterTraits(age=42, expression="weathered"))

    assert asyncio.run(go()) == "https://storage.test/upload-1"
    assert jobs.payloads("86zngifdc1ukdz")[0]["prompt"] == "Create Character with:. 42 years old, weathered expression"


def test_animate_image(config):
    jobs = FakeJobAPI(plan=lambda e, p, j: [{"status": "IN_QUEUE"}, completed({"video_url": "https://cdn.test/anim.mp4"})])
    muxer, _ = media_clients(FakeMediaAPI())
    statuses = []

    async def go():
        async with JobClient(api_key="k", transport=jobs.transport()) as client:
            assembler = MediaAssembler(muxer, i2v=get_service("i2v", client, config))
            return await assembler.animate_image(
                "data:image/png;base64," + png_base64(), "steam rises", frame_count=33, on_status=statuses.append
            )

    assert asyncio.run(go()) == "https://cdn.test/anim.mp4"
    payload = jobs.payloads("o2hasm8tmfewuw")[0]
    assert payload["prompt"] == "Animate the provided image with subtle motions: steam rises., 33 frames, 6 sampling steps"
    assert payload["image_base64"] == png_base64()
    assert payload["frame_num"] == 33
    assert statuses[0] == "Animating image..."
    assert "Animation COMPLETED" in statuses


def test_animate_requires_service():
    muxer, _ = media_clients(FakeMediaAPI())

    with pytest.raises(PipelineStateError):
        asyncio.run(MediaAssembler(muxer).animate_image("AAAA", "motion"))


def test_normalize_to_png_converts_mode():
    raw = decode_base64_image(png_base64((2, 2), mode="L"))
    png, size = normalize_to_png(raw)

    assert size == (2, 2)
    assert Image.open(io.BytesIO(png)).mode == "RGBA"


def test_decode_rejects_garbage():
    with pytest.raises(ValidationError):
        decode_base64_image("not base64!!")
    with pytest.raises(ValidationError):
        normalize_to_png(b"definitely not an image")


def test_metadata_round_trip(tmp_path):
    for fmt in ("json", "yaml"):
        path = save_metadata({"run_id": "abc", "scenes": [{"ordinal": 1}]}, tmp_path / f"run.{fmt}", format=fmt)
        loaded = load_metadata(path)

        assert loaded["run_id"] == "abc"
        assert loaded["scenes"] == [{"ordinal": 1}]
        assert "saved_at" in loaded

    assert load_metadata(tmp_path / "missing.json") is None
