from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from covergen.config import Settings, get_settings
from covergen.core.generation import resolve_provider_settings, run_generation
from covergen.core.jobs import STEP_PREPARING, annotate_progress, create_generation_job, transition
from covergen.core.validation import ensure_valid_inputs
from covergen.db.repositories import Repository
from covergen.errors import InvalidTransition, NotFoundError, StorageError
from covergen.llm.rate_limiter import RateLimiter
from covergen.llm.registry import ProviderRegistry
from covergen.types import GenerationConfig, GenerationJob

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Generation was interrupted before it finished"
CLAIM_RETRY_DELAY_SEC = 1.0


class GenerationWorker:
    """Single consumer that runs queued generation jobs one at a time.

    Producers call ``enqueue``/``submit`` from any thread. Jobs run either on
    the background thread started by ``start`` or inline via ``process_next``
    and ``run_pending``. Every job opens its own session from
    ``session_factory``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: ProviderRegistry,
        rate_limiter: RateLimiter,
        settings: Settings | None = None,
        *,
        on_enqueue: Callable[[GenerationJob], Any] | None = None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.settings = settings or get_settings()
        self.on_enqueue = on_enqueue

        self._queue: deque[str] = deque()
        self._condition = threading.Condition()
        self._active: str | None = None
        self._stopping = False
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def active_job_id(self) -> str | None:
        with self._condition:
            return self._active

    def queued_ids(self) -> list[str]:
        with self._condition:
            return list(self._queue)

    def enqueue(
        self,
        profile_id: str,
        job_posting_id: str,
        config: GenerationConfig | None = None,
    ) -> GenerationJob:
        with self.session_factory() as session:
            repo = Repository(session)
            profile = repo.get_profile(profile_id)
            if profile is None:
                raise NotFoundError(f"Profile {profile_id} not found")
            posting = repo.get_job_posting(job_posting_id)
            if posting is None:
                raise NotFoundError(f"Job posting {job_posting_id} not found")

            ensure_valid_inputs(profile, posting)
            job = repo.save_generation_job(create_generation_job(profile, posting, config))

        logger.info("Queued generation job id=%s company=%s position=%s", job.id, job.company, job.position)
        self._push(job)
        return job

    def submit(self, job: GenerationJob | str) -> GenerationJob:
        job_id = job if isinstance(job, str) else job.id
        with self.session_factory() as session:
            stored = Repository(session).get_generation_job(job_id)
        if stored is None:
            raise NotFoundError(f"Generation job {job_id} not found")
        if stored.status != "pending":
            raise InvalidTransition(f"Job {job_id} is {stored.status}; only pending jobs can be started")

        with self._condition:
            if job_id in self._queue or job_id == self._active:
                return stored
        self._push(stored)
        return stored

    def retry(self, job_id: str) -> GenerationJob:
        """Queue a fresh job built from a finished job's inputs."""
        with self.session_factory() as session:
            repo = Repository(session)
            previous = repo.get_generation_job(job_id)
            if previous is None:
                raise NotFoundError(f"Generation job {job_id} not found")
            if not previous.is_terminal:
                raise InvalidTransition(f"Job {job_id} is {previous.status}; only finished jobs can be retried")

            ensure_valid_inputs(previous.profile, previous.job_posting)
            job = repo.save_generation_job(
                create_generation_job(previous.profile, previous.job_posting, previous.config)
            )

        logger.info("Retrying generation job id=%s as id=%s", job_id, job.id)
        self._push(job)
        return job

    def cancel(self, job_id: str) -> GenerationJob:
        with self._condition:
            if job_id == self._active:
                raise InvalidTransition(f"Job {job_id} is already running and cannot be cancelled")

            with self.session_factory() as session:
                repo = Repository(session)
                job = repo.get_generation_job(job_id)
                if job is None:
                    raise NotFoundError(f"Generation job {job_id} not found")
                cancelled = repo.save_generation_job(transition(job, "cancelled"))

            if job_id in self._queue:
                self._queue.remove(job_id)
            self._condition.notify_all()

        logger.info("Cancelled generation job id=%s", job_id)
        return cancelled

    def recover(self) -> int:
        """Re-queue pending jobs left in storage and fail interrupted ones."""
        with self.session_factory() as session:
            repo = Repository(session)
            interrupted = [job.id for job in repo.list_generation_jobs(status="in_progress")]
            pending = list(reversed(repo.list_generation_jobs(status="pending")))

        for job_id in interrupted:
            self._fail_interrupted(job_id)

        with self._condition:
            known = set(self._queue)
            restored = [job.id for job in pending if job.id not in known and job.id != self._active]
            self._queue.extend(restored)
            self._condition.notify_all()
        if restored:
            logger.info("Restored %s pending generation jobs", len(restored))
        return len(restored)

    def process_next(self, block: bool = False, timeout: float | None = None) -> GenerationJob | None:
        with self._condition:
            if block:
                self._condition.wait_for(lambda: self._queue or self._stopping, timeout)
            if not self._queue or (block and self._stopping):
                return None
            job_id = self._queue.popleft()
            self._active = job_id

        try:
            return self._process(job_id)
        finally:
            with self._condition:
                self._active = None
                self._condition.notify_all()

    def run_pending(self) -> list[GenerationJob]:
        """Drain the queue inline.

        Stops early once every queued job has failed to be claimed in a row;
        those jobs stay queued for a later run.
        """
        processed = []
        unclaimed: set[str] = set()
        while True:
            queued = self.queued_ids()
            if not queued or unclaimed.issuperset(queued):
                break
            job = self.process_next()
            if job is not None:
                processed.append(job)
                unclaimed.clear()
            elif queued[0] in self.queued_ids():
                unclaimed.add(queued[0])
        return processed

    def start(self) -> None:
        if self.is_running:
            return
        with self._condition:
            self._stopping = False
        self._thread = threading.Thread(target=self._run, name="covergen-worker", daemon=True)
        self._thread.start()
        logger.info("Generation worker started")

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._condition:
            self._stopping = True
            self._condition.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Generation worker stopped")

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: not self._queue and self._active is None, timeout)

    def _push(self, job: GenerationJob) -> None:
        with self._condition:
            self._queue.append(job.id)
            self._condition.notify_all()

        if self.on_enqueue is not None:
            try:
                self.on_enqueue(job)
            except Exception:
                logger.exception("Enqueue hook failed job_id=%s", job.id)

    def _requeue(self, job_id: str) -> None:
        with self._condition:
            if job_id not in self._queue:
                self._queue.append(job_id)
            self._condition.notify_all()

    def _run(self) -> None:
        while not self._stopping:
            job = None
            try:
                job = self.process_next(block=True)
            except Exception:
                logger.exception("Generation worker loop error")
            if job is None and self.queued_ids():
                with self._condition:
                    self._condition.wait_for(lambda: self._stopping, CLAIM_RETRY_DELAY_SEC)

    def _fail_interrupted(self, job_id: str) -> None:
        # Jobs are claimed while holding the condition, so an in_progress
        # record that is not the active job has no owner.
        with self._condition:
            if job_id == self._active:
                return
            with self.session_factory() as session:
                repo = Repository(session)
                job = repo.get_generation_job(job_id)
                if job is None or job.status != "in_progress":
                    return
                repo.save_generation_job(transition(job, "failed", error=INTERRUPTED_MESSAGE))
        logger.warning("Marked interrupted generation job as failed id=%s", job_id)

    def _process(self, job_id: str) -> GenerationJob | None:
        with self.session_factory() as session:
            repo = Repository(session)
            try:
                job = repo.get_generation_job(job_id)
                if job is None:
                    logger.warning("Generation job vanished before processing id=%s", job_id)
                    return None
                if job.status != "pending":
                    logger.info("Skipping generation job id=%s status=%s", job_id, job.status)
                    return job

                job = repo.save_generation_job(
                    transition(job, "in_progress", progress=0, current_step=STEP_PREPARING)
                )
            except StorageError:
                logger.exception("Could not claim generation job id=%s; requeued", job_id)
                self._requeue(job_id)
                return None

            def on_step(progress: int, step: str) -> None:
                nonlocal job
                job = repo.save_generation_job(annotate_progress(job, progress, step))

            try:
                provider_settings = resolve_provider_settings(repo.get_provider_settings(), self.settings)
                letter = run_generation(
                    registry=self.registry,
                    rate_limiter=self.rate_limiter,
                    provider_settings=provider_settings,
                    profile=job.profile,
                    posting=job.job_posting,
                    config=job.config,
                    settings=self.settings,
                    on_step=on_step,
                )
                repo.save_cover_letter(letter)
                job = repo.save_generation_job(
                    transition(job, "completed", cover_letter_id=letter.id, current_step="Completed")
                )
                logger.info("Generation job completed id=%s cover_letter_id=%s", job.id, letter.id)
            except Exception as exc:
                logger.exception("Generation job failed id=%s", job_id)
                job = self._fail(repo, job, exc)
            return job

    @staticmethod
    def _fail(repo: Repository, job: GenerationJob, exc: Exception) -> GenerationJob:
        message = str(exc).strip() or exc.__class__.__name__
        failed = transition(job, "failed", error=message)
        try:
            return repo.save_generation_job(failed)
        except Exception:
            logger.exception("Could not record failure for generation job id=%s", job.id)
            return failed
