"""Tests for the per-scene job state machine."""

import pytest

from storyreel.context import SceneJobTracker, SceneJobStatus
from storyreel.core.exceptions import InvalidTransitionError, SceneNotFoundError


def submitted_tracker(*scene_ids):
    tracker = SceneJobTracker()
    for n, scene_id in enumerate(scene_ids, start=1):
        tracker.register_scene(scene_id)
        tracker.set_status(scene_id, SceneJobStatus.SUBMITTED, job_id=f"job-{n}")
    return tracker


def test_register_starts_pending():
    tracker = SceneJobTracker()
    job = tracker.register_scene("a")

    assert job.status == SceneJobStatus.PENDING
    assert job.attempt == 1
    assert tracker.register_scene("a") is job


def test_happy_path():
    tracker = submitted_tracker("a")
    job = tracker.set_status("a", SceneJobStatus.COMPLETED, result="https://cdn.test/a.mp4")

    assert job.status == SceneJobStatus.COMPLETED
    assert job.result_url == "https://cdn.test/a.mp4"
    assert job.completed_at is not None


def test_submitted_requires_job_id():
    tracker = SceneJobTracker()
    tracker.register_scene("a")

    with pytest.raises(InvalidTransitionError):
        tracker.set_status("a", SceneJobStatus.SUBMITTED)


def test_completed_requires_result():
    tracker = submitted_tracker("a")

    with pytest.raises(InvalidTransitionError):
        tracker.set_status("a", SceneJobStatus.COMPLETED)


@pytest.mark.parametrize("target", [SceneJobStatus.PENDING, SceneJobStatus.SUBMITTED, SceneJobStatus.FAILED])
def test_completed_is_final(target):
    tracker = submitted_tracker("a")
    tracker.set_status("a", SceneJobStatus.COMPLETED, result="url")

    with pytest.raises(InvalidTransitionError):
        tracker.set_status("a", target, job_id="job-2", error="late")


def test_pending_cannot_complete():
    tracker = SceneJobTracker()
    tracker.register_scene("a")

    with pytest.raises(InvalidTransitionError):
        tracker.set_status("a", SceneJobStatus.COMPLETED, result="url")


def test_failed_defaults_error_text():
    tracker = submitted_tracker("a")
    job = tracker.set_status("a", SceneJobStatus.FAILED)

    assert job.error == "Unknown error"


def test_unknown_scene():
    with pytest.raises(SceneNotFoundError):
        SceneJobTracker().set_status("missing", SceneJobStatus.FAILED)


def test_gate_requires_every_scene_completed():
    tracker = submitted_tracker("a", "b", "c", "d")
    for scene_id in ("a", "b", "c"):
        tracker.set_status(scene_id, SceneJobStatus.COMPLETED, result=f"https://cdn.test/{scene_id}.mp4")
    tracker.set_status("d", SceneJobStatus.FAILED, error="CUDA out of memory")

    assert tracker.progress() == (3, 4)
    assert not tracker.all_terminal_and_successful()
    assert [job.scene_id for job in tracker.failed()] == ["d"]

    tracker.retry("d", "job-5")
    assert tracker.get("d").status == SceneJobStatus.SUBMITTED
    assert not tracker.all_terminal_and_successful()

    tracker.set_status("d", SceneJobStatus.COMPLETED, result="https://cdn.test/d.mp4")
    assert tracker.progress() == (4, 4)
    assert tracker.all_terminal_and_successful()


def test_gate_closed_when_empty():
    assert not SceneJobTracker().all_terminal_and_successful()
    assert SceneJobTracker().progress() == (0, 0)


def test_retry_replaces_job_and_leaves_others_alone():
    tracker = submitted_tracker("a", "b")
    tracker.set_status("a", SceneJobStatus.FAILED, error="boom")
    before = tracker.get("b")

    job = tracker.retry("a", "job-9")

    assert job.job_id == "job-9"
    assert job.attempt == 2
    assert job.error is None
    assert tracker.is_current("a", "job-9")
    assert not tracker.is_current("a", "job-1")
    assert tracker.get("b") is before


def test_retry_only_from_failed():
    tracker = submitted_tracker("a")

    with pytest.raises(InvalidTransitionError):
        tracker.retry("a", "job-2")


def test_register_completed_scene_starts_new_attempt():
    tracker = submitted_tracker("a")
    tracker.set_status("a", SceneJobStatus.COMPLETED, result="url")

    job = tracker.register_scene("a")

    assert job.status == SceneJobStatus.PENDING
    assert job.attempt == 2
    assert not tracker.is_current("a", "job-1")


def test_register_in_flight_scene_is_rejected():
    tracker = submitted_tracker("a")

    with pytest.raises(InvalidTransitionError):
        tracker.register_scene("a")


def test_remove_scene():
    tracker = submitted_tracker("a", "b")
    tracker.remove_scene("a")

    assert "a" not in tracker
    assert len(tracker) == 1
    assert tracker.progress() == (0, 1)
