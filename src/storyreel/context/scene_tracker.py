"""
Scene Job Tracker
=================

Owns the per-scene generation-job state machine:

    Pending -> Submitted -> Completed
                         -> Failed -> (retry) Submitted

A Pending scene can also fail directly when its submission is rejected.
Retrying a Failed scene creates a new SceneJob that supersedes the old
one; the old artifact is discarded.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple

from ..core.exceptions import InvalidTransitionError, SceneNotFoundError

logger = logging.getLogger(__name__)


class SceneJobStatus(Enum):
    """Lifecycle of one scene's generation job."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SceneJobStatus.COMPLETED, SceneJobStatus.FAILED)


# Forward-only transitions. FAILED -> FAILED updates the error detail after
# a rejected retry submission.
_ALLOWED_TRANSITIONS = {
    SceneJobStatus.PENDING: {SceneJobStatus.SUBMITTED, SceneJobStatus.FAILED},
    SceneJobStatus.SUBMITTED: {SceneJobStatus.COMPLETED, SceneJobStatus.FAILED},
    SceneJobStatus.COMPLETED: set(),
    SceneJobStatus.FAILED: {SceneJobStatus.FAILED},
}


@dataclass
class SceneJob:
    """The generation-job record for one attempt at one scene."""

    scene_id: str
    status: SceneJobStatus = SceneJobStatus.PENDING
    job_id: Optional[str] = None
    result_url: Optional[str] = None
    error: Optional[str] = None
    attempt: int = 1

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    submitted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["submitted_at"] = self.submitted_at.isoformat() if self.submitted_at else None
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return data


class SceneJobTracker:
    """
    Tracks one SceneJob per registered scene.

    Provides:
    - Validated status transitions
    - Operator-triggered retry of failed scenes
    - The completion predicate used to gate assembly
    """

    def __init__(self):
        self._jobs: Dict[str, SceneJob] = {}

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_scene(self, scene_id: str) -> SceneJob:
        """
        Register a scene for generation.

        A scene that is already Pending is returned unchanged. A scene whose
        previous attempt reached a terminal status starts a new Pending
        attempt (used when a completed scene is resubmitted after edits).

        Raises:
            InvalidTransitionError: If the scene has a job in flight
        """
        existing = self._jobs.get(scene_id)
        if existing is None:
            job = SceneJob(scene_id=scene_id)
        elif existing.status == SceneJobStatus.PENDING:
            return existing
        elif existing.status == SceneJobStatus.SUBMITTED:
            raise InvalidTransitionError(
                f"Scene {scene_id} already has job {existing.job_id} in flight",
                scene_id=scene_id,
                from_status=existing.status.value,
                to_status=SceneJobStatus.PENDING.value,
            )
        else:
            job = SceneJob(scene_id=scene_id, attempt=existing.attempt + 1)

        self._jobs[scene_id] = job
        logger.debug(f"Registered scene {scene_id} (attempt {job.attempt})")
        return job

    def remove_scene(self, scene_id: str) -> Optional[SceneJob]:
        """Stop tracking a scene. Returns the removed job, if any."""
        return self._jobs.pop(scene_id, None)

    def reset(self) -> None:
        """Forget all scenes."""
        self._jobs.clear()

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def set_status(
        self,
        scene_id: str,
        status: SceneJobStatus,
        result: Optional[str] = None,
        error: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> SceneJob:
        """
        Move a scene's job to a new status.

        Args:
            scene_id: Scene to update
            status: Target status
            result: Artifact URL (required for COMPLETED)
            error: Error detail (used for FAILED)
            job_id: External job id (required for SUBMITTED)

        Raises:
            SceneNotFoundError: If the scene is not registered
            InvalidTransitionError: If the transition is not allowed
        """
        job = self.get(scene_id)
        if status not in _ALLOWED_TRANSITIONS[job.status]:
            raise InvalidTransitionError(
                f"Scene {scene_id} cannot move from {job.status.value} to {status.value}",
                scene_id=scene_id,
                from_status=job.status.value,
                to_status=status.value,
            )

        if status == SceneJobStatus.SUBMITTED:
            if not job_id:
                raise InvalidTransitionError(
                    f"Scene {scene_id} cannot be submitted without a job id",
                    scene_id=scene_id,
                    from_status=job.status.value,
                    to_status=status.value,
                )
            job.job_id = job_id
            job.submitted_at = datetime.now()
        elif status == SceneJobStatus.COMPLETED:
            if not result:
                raise InvalidTransitionError(
                    f"Scene {scene_id} cannot complete without a result",
                    scene_id=scene_id,
                    from_status=job.status.value,
                    to_status=status.value,
                )
            job.result_url = result
            job.error = None
            job.completed_at = datetime.now()
        elif status == SceneJobStatus.FAILED:
            job.error = error or "Unknown error"
            job.result_url = None
            job.completed_at = datetime.now()

        job.status = status
        logger.debug(f"Scene {scene_id} -> {status.value}")
        return job

    def retry(self, scene_id: str, job_id: str) -> SceneJob:
        """
        Re-enter Submitted for a Failed scene with a fresh job id.

        The previous SceneJob is replaced; no other scene is touched.

        Raises:
            InvalidTransitionError: If the scene is not Failed
        """
        previous = self.get(scene_id)
        if previous.status != SceneJobStatus.FAILED:
            raise InvalidTransitionError(
                f"Only failed scenes can be retried; scene {scene_id} is {previous.status.value}",
                scene_id=scene_id,
                from_status=previous.status.value,
                to_status=SceneJobStatus.SUBMITTED.value,
            )
        if not job_id:
            raise InvalidTransitionError(
                f"Scene {scene_id} cannot be retried without a job id",
                scene_id=scene_id,
            )

        job = SceneJob(
            scene_id=scene_id,
            status=SceneJobStatus.SUBMITTED,
            job_id=job_id,
            attempt=previous.attempt + 1,
            submitted_at=datetime.now(),
        )
        self._jobs[scene_id] = job
        logger.info(f"Retrying scene {scene_id} as job {job_id} (attempt {job.attempt})")
        return job

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, scene_id: str) -> SceneJob:
        """Get the current job for a scene."""
        job = self._jobs.get(scene_id)
        if job is None:
            raise SceneNotFoundError(scene_id)
        return job

    def find(self, scene_id: str) -> Optional[SceneJob]:
        return self._jobs.get(scene_id)

    def is_current(self, scene_id: str, job_id: str) -> bool:
        """True if ``job_id`` is still the scene's active job."""
        job = self._jobs.get(scene_id)
        return job is not None and job.job_id == job_id

    def jobs(self) -> List[SceneJob]:
        return list(self._jobs.values())

    def all_terminal_and_successful(self) -> bool:
        """True iff at least one scene is registered and every scene is Completed."""
        if not self._jobs:
            return False
        return all(job.status == SceneJobStatus.COMPLETED for job in self._jobs.values())

    def progress(self) -> Tuple[int, int]:
        """(completed count, total count)."""
        completed = sum(1 for job in self._jobs.values() if job.status == SceneJobStatus.COMPLETED)
        return completed, len(self._jobs)

    def failed(self) -> List[SceneJob]:
        return [job for job in self._jobs.values() if job.status == SceneJobStatus.FAILED]

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, scene_id: str) -> bool:
        return scene_id in self._jobs
