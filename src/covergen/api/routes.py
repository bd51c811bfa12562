from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from covergen.api.deps import get_db, get_runtime
from covergen.api.schemas import (
    GenerationJobCreateRequest,
    GenerationJobResponse,
    JobPostingCreateRequest,
    JobPostingFetchRequest,
    ProviderInfoResponse,
    ProviderSettingsRequest,
    ProviderSettingsResponse,
    RateLimitStatusResponse,
    SectionUpdateRequest,
)
from covergen.core.extraction import ManualExtractor, fetch_job_posting
from covergen.core.generation import check_provider_settings, mark_exported, update_cover_letter_section
from covergen.core.runtime import Runtime
from covergen.core.validation import validate_job_posting, validate_provider_settings
from covergen.db.repositories import Repository
from covergen.errors import (
    CovergenError,
    ExportError,
    ExtractionError,
    InputValidationError,
    InvalidTransition,
    NotFoundError,
    ProviderNotConfigured,
    ProviderNotFound,
    RateLimited,
)
from covergen.types import CoverLetterContent, JobPosting, JobStatus, Profile, ValidationOutcome

router = APIRouter(prefix="/api", tags=["api"])


def to_http_error(exc: CovergenError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransition):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, RateLimited):
        return HTTPException(
            status_code=429,
            detail=str(exc),
            headers={"Retry-After": str(exc.wait_seconds)},
        )
    if isinstance(exc, ExportError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, InputValidationError):
        return HTTPException(
            status_code=400,
            detail={"message": str(exc), "errors": [{"field": f, "message": m} for f, m in exc.errors]},
        )
    if isinstance(exc, (ProviderNotFound, ProviderNotConfigured, ExtractionError)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


# Profiles


@router.post("/profiles", response_model=Profile)
def save_profile(payload: Profile, db: Session = Depends(get_db)) -> Profile:
    return Repository(db).save_profile(payload)


@router.get("/profiles", response_model=list[Profile])
def list_profiles(db: Session = Depends(get_db)) -> list[Profile]:
    return Repository(db).list_profiles()


@router.get("/profiles/{profile_id}", response_model=Profile)
def get_profile(profile_id: str, db: Session = Depends(get_db)) -> Profile:
    profile = Repository(db).get_profile(profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.delete("/profiles/{profile_id}")
def delete_profile(profile_id: str, db: Session = Depends(get_db)) -> dict:
    if not Repository(db).delete_profile(profile_id):
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"deleted": profile_id}


# Job postings


@router.post("/job-postings", response_model=JobPosting)
def create_job_posting(payload: JobPostingCreateRequest, db: Session = Depends(get_db)) -> JobPosting:
    posting = ManualExtractor().build(
        payload.url,
        company=payload.company,
        title=payload.title,
        description=payload.description,
        skills=payload.skills,
    )
    result = validate_job_posting(posting)
    if not result.valid:
        raise to_http_error(
            InputValidationError(
                f"Invalid job details: {result.message}",
                [(error.field, error.message) for error in result.errors],
            )
        )
    return Repository(db).save_job_posting(posting)


@router.post("/job-postings/fetch", response_model=JobPosting)
def fetch_posting(
    payload: JobPostingFetchRequest,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
) -> JobPosting:
    try:
        return fetch_job_posting(payload.url, Repository(db), runtime.extractors, refresh=payload.refresh)
    except CovergenError as exc:
        raise to_http_error(exc) from exc


@router.get("/job-postings", response_model=list[JobPosting])
def list_job_postings(limit: int = 50, db: Session = Depends(get_db)) -> list[JobPosting]:
    return Repository(db).list_job_postings(limit=limit)


@router.get("/job-postings/{posting_id}", response_model=JobPosting)
def get_job_posting(posting_id: str, db: Session = Depends(get_db)) -> JobPosting:
    posting = Repository(db).get_job_posting(posting_id)
    if posting is None:
        raise HTTPException(status_code=404, detail="Job posting not found")
    return posting


# Generation jobs


@router.post("/generation-jobs", response_model=GenerationJobResponse, status_code=202)
def enqueue_generation(
    payload: GenerationJobCreateRequest,
    runtime: Runtime = Depends(get_runtime),
) -> GenerationJobResponse:
    try:
        job = runtime.worker.enqueue(payload.profile_id, payload.job_posting_id, payload.config)
    except CovergenError as exc:
        raise to_http_error(exc) from exc
    return GenerationJobResponse.from_job(job)


@router.get("/generation-jobs", response_model=list[GenerationJobResponse])
def list_generation_jobs(
    profile_id: str | None = None,
    status: JobStatus | None = None,
    db: Session = Depends(get_db),
) -> list[GenerationJobResponse]:
    jobs = Repository(db).list_generation_jobs(profile_id, status=status)
    return [GenerationJobResponse.from_job(job) for job in jobs]


@router.get("/generation-jobs/{job_id}", response_model=GenerationJobResponse)
def get_generation_job(job_id: str, db: Session = Depends(get_db)) -> GenerationJobResponse:
    job = Repository(db).get_generation_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Generation job not found")
    return GenerationJobResponse.from_job(job)


@router.post("/generation-jobs/{job_id}/start", response_model=GenerationJobResponse)
def start_generation_job(job_id: str, runtime: Runtime = Depends(get_runtime)) -> GenerationJobResponse:
    try:
        job = runtime.worker.submit(job_id)
    except CovergenError as exc:
        raise to_http_error(exc) from exc
    return GenerationJobResponse.from_job(job)


@router.post("/generation-jobs/{job_id}/cancel", response_model=GenerationJobResponse)
def cancel_generation_job(job_id: str, runtime: Runtime = Depends(get_runtime)) -> GenerationJobResponse:
    try:
        job = runtime.worker.cancel(job_id)
    except CovergenError as exc:
        raise to_http_error(exc) from exc
    return GenerationJobResponse.from_job(job)


@router.post("/generation-jobs/{job_id}/retry", response_model=GenerationJobResponse, status_code=202)
def retry_generation_job(job_id: str, runtime: Runtime = Depends(get_runtime)) -> GenerationJobResponse:
    try:
        job = runtime.worker.retry(job_id)
    except CovergenError as exc:
        raise to_http_error(exc) from exc
    return GenerationJobResponse.from_job(job)


@router.delete("/generation-jobs/{job_id}")
def delete_generation_job(job_id: str, db: Session = Depends(get_db)) -> dict:
    repo = Repository(db)
    job = repo.get_generation_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Generation job not found")
    if not job.is_terminal:
        raise HTTPException(status_code=409, detail=f"Job is {job.status}; cancel it before deleting")
    repo.delete_generation_job(job_id)
    return {"deleted": job_id}


# Cover letters


@router.get("/cover-letters", response_model=list[CoverLetterContent])
def list_cover_letters(profile_id: str | None = None, db: Session = Depends(get_db)) -> list[CoverLetterContent]:
    return Repository(db).list_cover_letters(profile_id)


@router.get("/cover-letters/{letter_id}", response_model=CoverLetterContent)
def get_cover_letter(letter_id: str, db: Session = Depends(get_db)) -> CoverLetterContent:
    letter = Repository(db).get_cover_letter(letter_id)
    if letter is None:
        raise HTTPException(status_code=404, detail="Cover letter not found")
    return letter


@router.patch("/cover-letters/{letter_id}/sections/{section}", response_model=CoverLetterContent)
def edit_cover_letter_section(
    letter_id: str,
    section: str,
    payload: SectionUpdateRequest,
    db: Session = Depends(get_db),
) -> CoverLetterContent:
    try:
        return update_cover_letter_section(Repository(db), letter_id, section, payload.content)
    except CovergenError as exc:
        raise to_http_error(exc) from exc


@router.post("/cover-letters/{letter_id}/export")
def export_cover_letter(
    letter_id: str,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
) -> Response:
    repo = Repository(db)
    letter = repo.get_cover_letter(letter_id)
    if letter is None:
        raise HTTPException(status_code=404, detail="Cover letter not found")
    profile = repo.get_profile(letter.profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")

    try:
        result = runtime.exporter.export(letter, profile)
    except CovergenError as exc:
        raise to_http_error(exc) from exc

    mark_exported(repo, letter_id)
    return Response(
        content=result.content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )


# Provider settings


@router.get("/settings/provider", response_model=ProviderSettingsResponse)
def get_provider_settings(db: Session = Depends(get_db)) -> ProviderSettingsResponse:
    settings = Repository(db).get_provider_settings()
    if settings is None:
        raise HTTPException(status_code=404, detail="No provider settings saved")
    return ProviderSettingsResponse.from_settings(settings)


@router.put("/settings/provider", response_model=ProviderSettingsResponse)
def save_provider_settings(
    payload: ProviderSettingsRequest,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
) -> ProviderSettingsResponse:
    settings = payload.to_settings()
    if not runtime.registry.has(settings.provider_id):
        raise to_http_error(ProviderNotFound(settings.provider_id, runtime.registry.list_ids()))

    result = validate_provider_settings(settings)
    if not result.valid:
        raise to_http_error(
            InputValidationError(
                f"Invalid provider settings: {result.message}",
                [(error.field, error.message) for error in result.errors],
            )
        )
    return ProviderSettingsResponse.from_settings(Repository(db).save_provider_settings(settings))


@router.post("/settings/provider/validate", response_model=ValidationOutcome)
def validate_settings(
    payload: ProviderSettingsRequest,
    runtime: Runtime = Depends(get_runtime),
) -> ValidationOutcome:
    try:
        return check_provider_settings(runtime.registry, payload.to_settings())
    except CovergenError as exc:
        raise to_http_error(exc) from exc


@router.get("/providers", response_model=list[ProviderInfoResponse])
def list_providers(runtime: Runtime = Depends(get_runtime)) -> list[ProviderInfoResponse]:
    return [
        ProviderInfoResponse(
            id=provider.id,
            name=provider.name,
            requires_api_key=provider.requires_api_key,
            supports_custom_endpoint=provider.supports_custom_endpoint,
        )
        for provider in runtime.registry.list_providers()
    ]


@router.get("/providers/{provider_id}/models")
def list_provider_models(provider_id: str, runtime: Runtime = Depends(get_runtime)) -> dict:
    try:
        provider = runtime.registry.get(provider_id)
    except ProviderNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"provider_id": provider_id, "models": provider.list_models()}


@router.get("/rate-limit", response_model=RateLimitStatusResponse)
def rate_limit_status(runtime: Runtime = Depends(get_runtime)) -> RateLimitStatusResponse:
    limiter = runtime.rate_limiter
    return RateLimitStatusResponse(
        max_requests=limiter.max_requests,
        window_sec=limiter.window_sec,
        remaining=limiter.remaining(),
        retry_after_sec=limiter.time_until_next_slot(),
    )


# Data management


@router.get("/data/export")
def export_data(db: Session = Depends(get_db)) -> dict:
    return Repository(db).export_data()


@router.delete("/data")
def clear_data(db: Session = Depends(get_db)) -> dict:
    Repository(db).clear_all()
    return {"cleared": True}
