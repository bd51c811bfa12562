from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from covergen.types import GenerationConfig, GenerationJob, JobStatus, ProviderSettings


class JobPostingCreateRequest(BaseModel):
    url: str
    company: str
    title: str
    description: str
    skills: list[str] = Field(default_factory=list)


class JobPostingFetchRequest(BaseModel):
    url: str
    refresh: bool = False


class GenerationJobCreateRequest(BaseModel):
    profile_id: str
    job_posting_id: str
    config: GenerationConfig | None = None


class GenerationJobResponse(BaseModel):
    """A job without the embedded profile and posting copies."""

    id: str
    profile_id: str
    job_posting_id: str
    company: str
    position: str
    status: JobStatus
    progress: int
    current_step: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    cover_letter_id: str | None
    error: str | None

    @classmethod
    def from_job(cls, job: GenerationJob) -> GenerationJobResponse:
        return cls.model_validate(job.model_dump(exclude={"profile", "job_posting", "config"}))


class SectionUpdateRequest(BaseModel):
    content: str


class ProviderSettingsRequest(BaseModel):
    provider_id: str
    api_key: str | None = None
    endpoint: str | None = None
    model: str
    temperature: float = 0.7
    max_tokens: int = 2048

    def to_settings(self) -> ProviderSettings:
        return ProviderSettings(**self.model_dump())


class ProviderSettingsResponse(BaseModel):
    provider_id: str
    endpoint: str | None
    model: str
    temperature: float
    max_tokens: int
    has_api_key: bool
    updated_at: datetime

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> ProviderSettingsResponse:
        return cls(
            provider_id=settings.provider_id,
            endpoint=settings.endpoint,
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            has_api_key=bool(settings.api_key),
            updated_at=settings.updated_at,
        )


class ProviderInfoResponse(BaseModel):
    id: str
    name: str
    requires_api_key: bool
    supports_custom_endpoint: bool


class RateLimitStatusResponse(BaseModel):
    max_requests: int
    window_sec: float
    remaining: int
    retry_after_sec: float
