from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

JobStatus = Literal["pending", "in_progress", "completed", "failed", "cancelled"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})

CoverLetterState = Literal["Created", "Generated", "Edited", "Exported"]
COVER_LETTER_STATE_ORDER: tuple[str, ...] = ("Created", "Generated", "Edited", "Exported")

JobPlatform = Literal["LinkedIn", "Indeed", "Glassdoor", "Manual", "Web"]
FinishReason = Literal["stop", "length", "error"]
CoverLetterSection = Literal["addressee", "opening", "about_me", "why_me", "why_company"]


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class Experience(BaseModel):
    id: str = Field(default_factory=new_id)
    company: str | None = None
    role: str
    start_date: date
    end_date: date | None = None
    description: str
    skills: list[str] = Field(default_factory=list)


class Project(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    organization: str | None = None
    start_date: date
    end_date: date | None = None
    description: str
    skills: list[str] = Field(default_factory=list)


class Education(BaseModel):
    id: str = Field(default_factory=new_id)
    institution: str
    degree: str = ""
    field: str | None = None
    start_date: date | None = None
    end_date: date | None = None


class Profile(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    email: str
    phone: str | None = None
    homepage: str | None = None
    github: str | None = None
    linkedin: str | None = None
    experience: list[Experience] = Field(default_factory=list)
    projects: list[Project] = Field(default_factory=list)
    education: list[Education] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class JobPosting(BaseModel):
    id: str = Field(default_factory=new_id)
    url: str
    company: str
    title: str
    description: str
    skills: list[str] = Field(default_factory=list)
    platform: JobPlatform = "Manual"
    extracted_at: datetime = Field(default_factory=utcnow)
    is_manual: bool = False


class SectionInstructions(BaseModel):
    opening: str = ""
    about_me: str = ""
    why_me: str = ""
    why_company: str = ""


class GenerationConfig(BaseModel):
    instructions: SectionInstructions | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, value: float | None) -> float | None:
        if value is not None and not 0.0 <= value <= 2.0:
            raise ValueError("temperature must be between 0.0 and 2.0")
        return value

    @field_validator("max_tokens")
    @classmethod
    def validate_max_tokens(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("max_tokens must be positive")
        return value


class GenerationJob(BaseModel):
    """A queued unit of work. Frozen: change it through ``covergen.core.jobs``."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    profile_id: str
    job_posting_id: str
    company: str
    position: str
    profile: Profile
    job_posting: JobPosting
    status: JobStatus = "pending"
    config: GenerationConfig = Field(default_factory=GenerationConfig)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    progress: int = 0
    current_step: str | None = None
    cover_letter_id: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class CoverLetterSections(BaseModel):
    addressee: str
    opening: str
    about_me: str
    why_me: str
    why_company: str


class CoverLetterContent(BaseModel):
    id: str = Field(default_factory=new_id)
    profile_id: str
    job_posting_id: str
    position: str
    addressee: str
    opening: str
    about_me: str
    why_me: str
    why_company: str
    generated_at: datetime = Field(default_factory=utcnow)
    edited_at: datetime | None = None
    exported_at: datetime | None = None
    llm_provider: str
    llm_model: str
    state: CoverLetterState = "Generated"


class ProviderSettings(BaseModel):
    provider_id: str
    api_key: str | None = None
    endpoint: str | None = None
    model: str
    temperature: float = 0.7
    max_tokens: int = 2048
    updated_at: datetime = Field(default_factory=utcnow)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerationRequest(BaseModel):
    prompt: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 8192
    timeout_sec: float = 30.0
    response_schema: dict | None = None


class GenerationResponse(BaseModel):
    content: str
    model: str
    usage: TokenUsage | None = None
    finish_reason: FinishReason = "stop"


class ValidationOutcome(BaseModel):
    valid: bool
    error: str | None = None
    available_models: list[str] | None = None


class FieldError(BaseModel):
    field: str
    message: str


class ValidationResult(BaseModel):
    valid: bool
    errors: list[FieldError] = Field(default_factory=list)

    @property
    def message(self) -> str:
        return ", ".join(error.message for error in self.errors)


class PDFExportResult(BaseModel):
    content: bytes
    filename: str
