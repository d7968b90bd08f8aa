"""Tests for the submit/poll job client and the job services."""

import asyncio

import httpx
import pytest

from storyreel.api import JobClient, JobStatus, get_service, list_services, normalize_duration
from storyreel.core.exceptions import (
    JobFailedError,
    PollTimeoutError,
    SubmissionError,
    ValidationError,
)

from conftest import FakeJobAPI, completed, failed


BASE_URL = "https://jobs.test/v2"


def make_client(api: FakeJobAPI) -> JobClient:
    return JobClient(api_key="rpa_test", base_url=BASE_URL, transport=api.transport())


def run_job(api, payload=None, **kwargs):
    async def go():
        async with make_client(api) as client:
            return await client.generate_until_done("video-ep", payload or {"prompt": "x"}, poll_interval=0, **kwargs)

    return asyncio.run(go())


# =============================================================================
# Duration Normalization
# =============================================================================


@pytest.mark.parametrize(
    "requested, expected",
    [(5, 5), (8, 8), (1, 5), (5.0, 5), (6, 5), (6.5, 5), (7, 8), (10, 8), (30, 8)],
)
def test_normalize_duration(requested, expected):
    assert normalize_duration(requested, [5, 8]) == expected


def test_normalize_duration_requires_allowed_values():
    with pytest.raises(ValidationError):
        normalize_duration(5, [])


@pytest.mark.parametrize("requested", [float("nan"), float("inf"), "long", None, True])
def test_normalize_duration_rejects_non_numbers(requested):
    with pytest.raises(ValidationError) as exc_info:
        normalize_duration(requested, [5, 8])
    assert exc_info.value.details["field"] == "duration"


# =============================================================================
# Submit / Poll
# =============================================================================


def test_completes_after_in_progress_ticks():
    api = FakeJobAPI()
    ticks = []

    result = run_job(api, on_progress=ticks.append)

    assert result.status == JobStatus.COMPLETED
    assert result.output == {"result": "https://cdn.test/job-1.mp4"}
    assert ticks == [JobStatus.IN_QUEUE, JobStatus.IN_PROGRESS, JobStatus.COMPLETED]
    assert api.submissions[0]["payload"] == {"prompt": "x"}


def test_async_progress_callback_is_awaited():
    api = FakeJobAPI()
    ticks = []

    async def on_progress(status):
        ticks.append(status)

    run_job(api, on_progress=on_progress)

    assert ticks[-1] == JobStatus.COMPLETED


def test_sends_bearer_token():
    seen = []

    def handler(request):
        seen.append(request.headers["authorization"])
        return httpx.Response(200, json={"id": "job-9", "status": "IN_QUEUE"})

    async def go():
        async with JobClient(api_key="rpa_secret", base_url=BASE_URL, transport=httpx.MockTransport(handler)) as client:
            return await client.submit("video-ep", {"prompt": "x"})

    assert asyncio.run(go()) == "job-9"
    assert seen == ["Bearer rpa_secret"]


def test_transient_poll_errors_are_retried():
    def plan(endpoint, payload, job_id):
        return [
            httpx.Response(503, text="busy"),
            httpx.Response(200, text="<html>not json</html>"),
            {"status": "WARMING_UP"},
            {"status": "IN_PROGRESS"},
            completed({"result": "https://cdn.test/ok.mp4"}),
        ]

    api = FakeJobAPI(plan=plan)
    ticks = []

    result = run_job(api, on_progress=ticks.append)

    assert result.output["result"] == "https://cdn.test/ok.mp4"
    assert len(api.polls) == 5
    # Unrecognized statuses never reach the progress callback
    assert ticks == [JobStatus.IN_PROGRESS, JobStatus.COMPLETED]


def test_failed_job_raises_with_service_error():
    api = FakeJobAPI(plan=lambda e, p, j: [{"status": "IN_PROGRESS"}, failed("CUDA out of memory")])

    with pytest.raises(JobFailedError) as exc_info:
        run_job(api)

    assert exc_info.value.service_error == "CUDA out of memory"
    assert exc_info.value.job_id == "job-1"


def test_bounded_poll_times_out():
    api = FakeJobAPI(plan=lambda e, p, j: [{"status": "IN_PROGRESS"}])

    with pytest.raises(PollTimeoutError) as exc_info:
        run_job(api, max_attempts=3)

    assert exc_info.value.attempts == 3
    assert len(api.polls) == 3


def test_transient_errors_count_towards_the_bound():
    api = FakeJobAPI(plan=lambda e, p, j: [httpx.Response(500) for _ in range(4)] + [completed({"result": "late"})])

    with pytest.raises(PollTimeoutError):
        run_job(api, max_attempts=2)


def test_rejected_submission_raises():
    api = FakeJobAPI(reject=lambda endpoint, payload: 500)

    with pytest.raises(SubmissionError) as exc_info:
        run_job(api)

    assert exc_info.value.status_code == 500
    assert exc_info.value.recoverable
    assert api.polls == []


def test_submission_without_job_id_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"status": "IN_QUEUE"}))

    async def go():
        async with JobClient(api_key="k", base_url=BASE_URL, transport=transport) as client:
            await client.submit("video-ep", {})

    with pytest.raises(SubmissionError):
        asyncio.run(go())


# =============================================================================
# Job Services
# =============================================================================


def test_registered_services():
    assert list_services() == ["composition", "i2v", "image", "tts", "video"]


def test_unknown_service(config):
    with pytest.raises(ValueError):
        get_service("music", JobClient(api_key="k"), config)


def test_video_service_payload_and_output(config):
    api = FakeJobAPI()

    async def go():
        async with JobClient(api_key="k", base_url=BASE_URL, transport=api.transport()) as client:
            video = get_service("video", client, config)
            return await video.run(prompt="A rider at sunrise", duration=7)

    url = asyncio.run(go())

    assert url == "https://cdn.test/job-1.mp4"
    submission = api.submissions[0]
    assert submission["endpoint"] == "wan-2-2-t2v-720"
    assert submission["payload"]["duration"] == 8
    assert submission["payload"]["size"] == "1280*720"
    assert submission["payload"]["prompt"] == "A rider at sunrise"
    assert "negative_prompt" not in submission["payload"]


def test_video_service_accepts_video_url_output(config):
    api = FakeJobAPI(plan=lambda e, p, j: [completed({"video_url": "https://cdn.test/alt.mp4"})])

    async def go():
        async with JobClient(api_key="k", base_url=BASE_URL, transport=api.transport()) as client:
            return await get_service("video", client, config).run(prompt="x")

    assert asyncio.run(go()) == "https://cdn.test/alt.mp4"


def test_i2v_payload_and_output(config, tmp_path):
    api = FakeJobAPI(plan=lambda e, p, j: [{"status": "IN_PROGRESS"}, completed({"gcs_url": "https://cdn.test/anim.mp4", "seed": 7})])
    still = tmp_path / "still.png"
    still.write_bytes(b"\x89PNG fake")

    async def go():
        async with JobClient(api_key="k", base_url=BASE_URL, transport=api.transport()) as client:
            i2v = get_service("i2v", client, config)
            return await i2v.run(prompt="Leaves drift past", image=str(still))

    assert asyncio.run(go()) == "https://cdn.test/anim.mp4"
    payload = api.payloads("o2hasm8tmfewuw")[0]
    assert payload["image_base64"] == "iVBORyBmYWtl"
    assert payload["frame_num"] == 21
    assert payload["sampling_steps"] == 6


def test_i2v_strips_data_uri_and_rejects_garbage(config):
    i2v = get_service("i2v", JobClient(api_key="k"), config)

    payload = i2v.build_payload(prompt="x", image="data:image/png;base64,AAAA", frame_num=41)
    assert payload["image_base64"] == "AAAA"
    assert payload["frame_num"] == 41

    with pytest.raises(ValidationError):
        i2v.build_payload(prompt="x", image="not an image or a path!")
    with pytest.raises(ValidationError):
        i2v.build_payload(prompt="x", image="AAAA", sampling_steps=0)


def test_i2v_polling_is_bounded(config):
    assert config.services.get("i2v").max_poll_attempts == 120
    config.services.get("i2v").max_poll_attempts = 3
    api = FakeJobAPI(plan=lambda e, p, j: [{"status": "IN_PROGRESS"}])

    async def go():
        async with JobClient(api_key="k", base_url=BASE_URL, transport=api.transport()) as client:
            return await get_service("i2v", client, config).run(prompt="x", image="AAAA")

    with pytest.raises(PollTimeoutError):
        asyncio.run(go())
    assert len(api.polls) == 3


def test_completed_without_output_is_a_failure(config):
    api = FakeJobAPI(plan=lambda e, p, j: [completed({})])

    async def go():
        async with JobClient(api_key="k", base_url=BASE_URL, transport=api.transport()) as client:
            return await get_service("video", client, config).run(prompt="x")

    with pytest.raises(JobFailedError):
        asyncio.run(go())


def test_tts_payload(config):
    api = FakeJobAPI(plan=lambda e, p, j: [completed({"url": "https://cdn.test/voice.wav"})])

    async def go():
        async with JobClient(api_key="k", base_url=BASE_URL, transport=api.transport()) as client:
            tts = get_service("tts", client, config)
            return await tts.run(text="Hello…", speaker_url="https://voices.test/me.mp3", emotion_vector=[0.5, 0, 0, 0, 0, 0, 0, 1.0])

    assert asyncio.run(go()) == "https://cdn.test/voice.wav"
    payload = api.payloads("lew07dpd05v8gd")[0]
    assert payload["task"] == "tts_emotion_vector"
    assert payload["spk_url"] == "https://voices.test/me.mp3"
    assert payload["use_random"] is False
    assert payload["emo_vector"] == "0.5,0,0,0,0,0,0,1"


def test_tts_rejects_empty_text(config):
    tts = get_service("tts", JobClient(api_key="k"), config)
    with pytest.raises(ValidationError):
        tts.build_payload(text="   ")
