from __future__ import annotations

from typing import Any

from covergen.errors import InvalidTransition
from covergen.types import (
    TERMINAL_STATUSES,
    GenerationConfig,
    GenerationJob,
    JobPosting,
    JobStatus,
    Profile,
    utcnow,
)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}

STEP_PREPARING = "Preparing..."
STEP_GENERATING = "Generating..."
STEP_PARSING = "Parsing response..."
STEP_SAVING = "Saving..."


def create_generation_job(
    profile: Profile,
    posting: JobPosting,
    config: GenerationConfig | None = None,
) -> GenerationJob:
    return GenerationJob(
        profile_id=profile.id,
        job_posting_id=posting.id,
        company=posting.company,
        position=posting.title,
        profile=profile,
        job_posting=posting,
        config=config or GenerationConfig(),
    )


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(
    job: GenerationJob,
    status: JobStatus,
    *,
    error: str | None = None,
    cover_letter_id: str | None = None,
    progress: int | None = None,
    current_step: str | None = None,
) -> GenerationJob:
    """Return a copy of ``job`` moved to ``status``.

    ``started_at`` is stamped on the first move into ``in_progress`` and
    ``completed_at`` on entering a terminal state. A completed job must carry a
    cover letter id and a failed job an error message.
    """
    if not can_transition(job.status, status):
        raise InvalidTransition(f"Cannot move job {job.id} from {job.status} to {status}")
    if status == "completed" and not cover_letter_id:
        raise InvalidTransition("A completed job requires a cover letter id")
    if status == "failed" and not error:
        raise InvalidTransition("A failed job requires an error message")

    now = utcnow()
    updates: dict[str, Any] = {"status": status}
    if status == "in_progress" and job.started_at is None:
        updates["started_at"] = now
    if status in TERMINAL_STATUSES:
        updates["completed_at"] = now
    if status == "completed":
        updates["cover_letter_id"] = cover_letter_id
        updates["progress"] = 100 if progress is None else progress
        updates["error"] = None
    if status == "failed":
        updates["error"] = error
        updates["cover_letter_id"] = None
    if progress is not None and status != "completed":
        updates["progress"] = _clamp(progress)
    if current_step is not None:
        updates["current_step"] = current_step
    return job.model_copy(update=updates)


def annotate_progress(job: GenerationJob, progress: int, current_step: str | None = None) -> GenerationJob:
    if job.status != "in_progress":
        raise InvalidTransition(f"Cannot update progress of job {job.id} in status {job.status}")
    updates: dict[str, Any] = {"progress": _clamp(progress)}
    if current_step is not None:
        updates["current_step"] = current_step
    return job.model_copy(update=updates)


def _clamp(progress: int) -> int:
    return max(0, min(100, progress))
