from __future__ import annotations

import pytest

from covergen.core.jobs import create_generation_job, transition
from covergen.core.worker import INTERRUPTED_MESSAGE, GenerationWorker
from covergen.db.repositories import Repository
from covergen.db.session import SessionLocal
from covergen.errors import InputValidationError, InvalidTransition, LLMError, NotFoundError, StorageError
from covergen.llm.rate_limiter import RateLimiter
from covergen.types import GenerationConfig


def _job(job_id: str):
    with SessionLocal() as db:
        return Repository(db).get_generation_job(job_id)


def _letter(letter_id: str):
    with SessionLocal() as db:
        return Repository(db).get_cover_letter(letter_id)


def test_job_runs_to_completion_with_progress(runtime, seeded, fake_provider, stub_sections) -> None:
    profile, posting = seeded
    worker = runtime.worker

    job = worker.enqueue(profile.id, posting.id)
    assert job.status == "pending"
    assert worker.queued_ids() == [job.id]

    processed = worker.process_next()

    assert processed is not None and processed.status == "completed"
    stored = _job(job.id)
    assert stored.status == "completed"
    assert stored.progress == 100
    assert stored.current_step == "Completed"
    assert stored.started_at <= stored.completed_at
    assert stored.error is None

    letter = _letter(stored.cover_letter_id)
    assert letter.state == "Generated"
    assert letter.llm_provider == "fake"
    assert letter.llm_model == "fake-model"
    assert letter.model_dump(include=set(stub_sections)) == stub_sections
    assert fake_provider.requests[0].response_schema is not None


def test_failed_job_does_not_affect_the_next(runtime, seeded, fake_provider) -> None:
    profile, posting = seeded
    fake_provider.replies = [LLMError("Model exploded", "NETWORK_ERROR", "fake")]

    first = runtime.worker.enqueue(profile.id, posting.id)
    second = runtime.worker.enqueue(profile.id, posting.id)
    runtime.worker.run_pending()

    failed = _job(first.id)
    assert failed.status == "failed"
    assert failed.error == "Model exploded"
    assert failed.cover_letter_id is None
    assert failed.completed_at is not None

    done = _job(second.id)
    assert done.status == "completed"
    assert _letter(done.cover_letter_id) is not None


def test_unparseable_reply_fails_the_job(runtime, seeded, fake_provider) -> None:
    profile, posting = seeded
    fake_provider.replies = ["I'd rather not write that letter."]

    job = runtime.worker.enqueue(profile.id, posting.id)
    runtime.worker.run_pending()

    stored = _job(job.id)
    assert stored.status == "failed"
    assert "Failed to parse cover letter sections" in stored.error


def test_rate_limit_denial_fails_job_without_calling_provider(runtime, seeded, fake_provider, settings) -> None:
    profile, posting = seeded
    worker = GenerationWorker(SessionLocal, runtime.registry, RateLimiter(1, 60.0), settings)

    first = worker.enqueue(profile.id, posting.id)
    second = worker.enqueue(profile.id, posting.id)
    worker.run_pending()

    assert _job(first.id).status == "completed"
    denied = _job(second.id)
    assert denied.status == "failed"
    assert denied.error.startswith("Rate limit exceeded. Please wait ")
    assert int(denied.error.split("wait ")[1].split(" ")[0]) >= 1
    assert len(fake_provider.requests) == 1


def test_missing_provider_settings_fails_job(runtime, profile, posting) -> None:
    with SessionLocal() as db:
        repo = Repository(db)
        repo.save_profile(profile)
        repo.save_job_posting(posting)

    job = runtime.worker.enqueue(profile.id, posting.id)
    runtime.worker.run_pending()

    stored = _job(job.id)
    assert stored.status == "failed"
    assert stored.error.startswith("No LLM provider configured")


def test_config_overrides_reach_the_provider(runtime, seeded, fake_provider) -> None:
    profile, posting = seeded
    config = GenerationConfig(model="bigger-model", temperature=0.1, max_tokens=4000)

    runtime.worker.enqueue(profile.id, posting.id, config)
    runtime.worker.run_pending()

    request = fake_provider.requests[0]
    assert (request.model, request.temperature, request.max_tokens) == ("bigger-model", 0.1, 4000)


def test_enqueue_rejects_unknown_or_invalid_inputs(runtime, seeded) -> None:
    profile, posting = seeded
    with pytest.raises(NotFoundError):
        runtime.worker.enqueue("missing", posting.id)

    with SessionLocal() as db:
        Repository(db).save_profile(profile.model_copy(update={"skills": []}))
    with pytest.raises(InputValidationError) as excinfo:
        runtime.worker.enqueue(profile.id, posting.id)
    assert str(excinfo.value).startswith("Invalid profile:")

    with SessionLocal() as db:
        assert Repository(db).list_generation_jobs() == []
    assert runtime.worker.queued_ids() == []


def test_cancel_pending_job_removes_it_from_queue(runtime, seeded, fake_provider) -> None:
    profile, posting = seeded
    job = runtime.worker.enqueue(profile.id, posting.id)

    cancelled = runtime.worker.cancel(job.id)

    assert cancelled.status == "cancelled"
    assert runtime.worker.queued_ids() == []
    assert runtime.worker.run_pending() == []
    assert fake_provider.requests == []
    with pytest.raises(InvalidTransition):
        runtime.worker.cancel(job.id)


def test_running_job_cannot_be_cancelled(runtime, seeded, fake_provider) -> None:
    profile, posting = seeded
    job = runtime.worker.enqueue(profile.id, posting.id)
    seen: list[Exception] = []
    original_generate = fake_provider.generate

    def generate_and_try_cancel(request):
        try:
            runtime.worker.cancel(job.id)
        except InvalidTransition as exc:
            seen.append(exc)
        return original_generate(request)

    fake_provider.generate = generate_and_try_cancel
    runtime.worker.run_pending()

    assert len(seen) == 1
    assert _job(job.id).status == "completed"


def test_retry_creates_a_fresh_job(runtime, seeded, fake_provider) -> None:
    profile, posting = seeded
    fake_provider.replies = [LLMError("Temporary outage", "NETWORK_ERROR", "fake")]
    failed = runtime.worker.enqueue(profile.id, posting.id)
    runtime.worker.run_pending()

    retried = runtime.worker.retry(failed.id)
    assert retried.id != failed.id
    assert retried.status == "pending"
    assert retried.profile == _job(failed.id).profile

    runtime.worker.run_pending()
    assert _job(retried.id).status == "completed"
    assert _job(failed.id).status == "failed"

    pending = runtime.worker.enqueue(profile.id, posting.id)
    with pytest.raises(InvalidTransition):
        runtime.worker.retry(pending.id)


def test_submit_queues_stored_pending_job_once(runtime, seeded) -> None:
    profile, posting = seeded
    with SessionLocal() as db:
        job = Repository(db).save_generation_job(create_generation_job(profile, posting))

    runtime.worker.submit(job.id)
    runtime.worker.submit(job)
    assert runtime.worker.queued_ids() == [job.id]

    runtime.worker.run_pending()
    with pytest.raises(InvalidTransition):
        runtime.worker.submit(job.id)


def test_recover_requeues_pending_and_fails_interrupted(runtime, seeded) -> None:
    profile, posting = seeded
    with SessionLocal() as db:
        repo = Repository(db)
        interrupted = repo.save_generation_job(
            transition(create_generation_job(profile, posting), "in_progress")
        )
        waiting = repo.save_generation_job(create_generation_job(profile, posting))

    assert runtime.worker.recover() == 1
    assert runtime.worker.recover() == 0

    stale = _job(interrupted.id)
    assert stale.status == "failed"
    assert stale.error == INTERRUPTED_MESSAGE

    runtime.worker.run_pending()
    assert _job(waiting.id).status == "completed"


def test_recover_leaves_jobs_that_finished_after_listing(runtime, seeded, monkeypatch) -> None:
    profile, posting = seeded
    running = transition(create_generation_job(profile, posting), "in_progress")
    finished = transition(running, "completed", cover_letter_id="letter-1")
    with SessionLocal() as db:
        Repository(db).save_generation_job(finished)

    list_jobs = Repository.list_generation_jobs

    def stale_listing(self, profile_id=None, *, status=None, limit=None):
        if status == "in_progress":
            return [running]
        return list_jobs(self, profile_id, status=status, limit=limit)

    monkeypatch.setattr(Repository, "list_generation_jobs", stale_listing)
    runtime.worker.recover()

    stored = _job(running.id)
    assert stored.status == "completed"
    assert stored.cover_letter_id == "letter-1"
    assert stored.error is None


def _fail_claims(monkeypatch, times: int | None) -> list[str]:
    save_job = Repository.save_generation_job
    failed: list[str] = []

    def flaky_save(self, job):
        if job.status == "in_progress" and (times is None or len(failed) < times):
            failed.append(job.id)
            raise StorageError("Failed to save generation job")
        return save_job(self, job)

    monkeypatch.setattr(Repository, "save_generation_job", flaky_save)
    return failed


def test_claim_failure_requeues_job_and_drains_the_rest(runtime, seeded, monkeypatch) -> None:
    profile, posting = seeded
    first = runtime.worker.enqueue(profile.id, posting.id)
    second = runtime.worker.enqueue(profile.id, posting.id)
    failed = _fail_claims(monkeypatch, times=1)

    processed = runtime.worker.run_pending()

    assert failed == [first.id]
    assert [job.id for job in processed] == [second.id, first.id]
    assert _job(first.id).status == "completed"
    assert _job(second.id).status == "completed"
    assert runtime.worker.queued_ids() == []


def test_storage_outage_keeps_jobs_queued(runtime, seeded, monkeypatch) -> None:
    profile, posting = seeded
    job = runtime.worker.enqueue(profile.id, posting.id)
    _fail_claims(monkeypatch, times=None)

    assert runtime.worker.run_pending() == []
    assert runtime.worker.queued_ids() == [job.id]
    assert _job(job.id).status == "pending"


def test_background_thread_processes_queue(runtime, seeded) -> None:
    profile, posting = seeded
    worker = runtime.worker
    worker.start()
    try:
        assert worker.is_running
        jobs = [worker.enqueue(profile.id, posting.id) for _ in range(3)]
        assert worker.wait_until_idle(timeout=10)
    finally:
        worker.stop()

    assert not worker.is_running
    assert [_job(job.id).status for job in jobs] == ["completed"] * 3


def test_enqueue_wakes_pdf_service(runtime, seeded, fake_http) -> None:
    profile, posting = seeded
    runtime.exporter.wakeup = lambda background=True: fake_http.calls.append(("WAKE", "", {})) or True

    runtime.worker.enqueue(profile.id, posting.id)

    assert ("WAKE", "", {}) in fake_http.calls
