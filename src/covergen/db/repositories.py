from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from covergen.db.models import (
    CoverLetterRecord,
    GenerationJobRecord,
    JobPostingRecord,
    ProfileRecord,
    ProviderSettingsRecord,
)
from covergen.errors import StorageError
from covergen.types import (
    CoverLetterContent,
    GenerationJob,
    JobPosting,
    JobStatus,
    Profile,
    ProviderSettings,
    utcnow,
)

logger = logging.getLogger(__name__)

PROVIDER_SETTINGS_ID = 1
REDACTED = "[REDACTED]"


class Repository:
    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _storage_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Storage failure during %s: %s", action, exc)
            raise StorageError(f"Failed to {action}") from exc

    # Profiles

    def save_profile(self, profile: Profile) -> Profile:
        with self._storage_errors("save profile"):
            record = self.session.get(ProfileRecord, profile.id)
            if record is None:
                record = ProfileRecord(id=profile.id)
                self.session.add(record)
            record.name = profile.name
            record.email = profile.email
            record.payload = profile.model_dump(mode="json")
            self.session.commit()
        return profile

    def get_profile(self, profile_id: str) -> Profile | None:
        with self._storage_errors("load profile"):
            record = self.session.get(ProfileRecord, profile_id)
        return Profile.model_validate(record.payload) if record else None

    def list_profiles(self) -> list[Profile]:
        with self._storage_errors("list profiles"):
            records = self.session.scalars(select(ProfileRecord).order_by(ProfileRecord.created_at.desc())).all()
        return [Profile.model_validate(record.payload) for record in records]

    def delete_profile(self, profile_id: str) -> bool:
        return self._delete(ProfileRecord, profile_id, "delete profile")

    # Job postings, cached by URL

    def save_job_posting(self, posting: JobPosting) -> JobPosting:
        with self._storage_errors("save job posting"):
            stale = self.session.scalar(
                select(JobPostingRecord).where(
                    JobPostingRecord.url == posting.url, JobPostingRecord.id != posting.id
                )
            )
            if stale is not None:
                self.session.delete(stale)
                self.session.flush()

            record = self.session.get(JobPostingRecord, posting.id)
            if record is None:
                record = JobPostingRecord(id=posting.id)
                self.session.add(record)
            record.url = posting.url
            record.company = posting.company
            record.title = posting.title
            record.platform = posting.platform
            record.payload = posting.model_dump(mode="json")
            self.session.commit()
        return posting

    def get_job_posting(self, posting_id: str) -> JobPosting | None:
        with self._storage_errors("load job posting"):
            record = self.session.get(JobPostingRecord, posting_id)
        return JobPosting.model_validate(record.payload) if record else None

    def get_job_posting_by_url(self, url: str) -> JobPosting | None:
        with self._storage_errors("load job posting"):
            record = self.session.scalar(select(JobPostingRecord).where(JobPostingRecord.url == url))
        return JobPosting.model_validate(record.payload) if record else None

    def list_job_postings(self, limit: int = 50) -> list[JobPosting]:
        statement = select(JobPostingRecord).order_by(JobPostingRecord.created_at.desc()).limit(limit)
        with self._storage_errors("list job postings"):
            records = self.session.scalars(statement).all()
        return [JobPosting.model_validate(record.payload) for record in records]

    def delete_job_posting(self, posting_id: str) -> bool:
        return self._delete(JobPostingRecord, posting_id, "delete job posting")

    # Generation jobs

    def save_generation_job(self, job: GenerationJob) -> GenerationJob:
        """Insert ``job`` or replace the stored record wholesale."""
        with self._storage_errors("save generation job"):
            record = self.session.get(GenerationJobRecord, job.id)
            if record is None:
                record = GenerationJobRecord(id=job.id)
                self.session.add(record)
            record.profile_id = job.profile_id
            record.job_posting_id = job.job_posting_id
            record.status = job.status
            record.submitted_at = job.created_at
            record.payload = job.model_dump(mode="json")
            self.session.commit()
        return job

    def get_generation_job(self, job_id: str) -> GenerationJob | None:
        with self._storage_errors("load generation job"):
            record = self.session.get(GenerationJobRecord, job_id)
        return GenerationJob.model_validate(record.payload) if record else None

    def list_generation_jobs(
        self,
        profile_id: str | None = None,
        *,
        status: JobStatus | None = None,
        limit: int | None = None,
    ) -> list[GenerationJob]:
        statement = select(GenerationJobRecord)
        if profile_id is not None:
            statement = statement.where(GenerationJobRecord.profile_id == profile_id)
        if status is not None:
            statement = statement.where(GenerationJobRecord.status == status)
        statement = statement.order_by(GenerationJobRecord.submitted_at.desc())
        if limit is not None:
            statement = statement.limit(limit)

        with self._storage_errors("list generation jobs"):
            records = self.session.scalars(statement).all()
        return [GenerationJob.model_validate(record.payload) for record in records]

    def delete_generation_job(self, job_id: str) -> bool:
        return self._delete(GenerationJobRecord, job_id, "delete generation job")

    # Cover letters

    def save_cover_letter(self, letter: CoverLetterContent) -> CoverLetterContent:
        with self._storage_errors("save cover letter"):
            record = self.session.get(CoverLetterRecord, letter.id)
            if record is None:
                record = CoverLetterRecord(id=letter.id)
                self.session.add(record)
            record.profile_id = letter.profile_id
            record.job_posting_id = letter.job_posting_id
            record.state = letter.state
            record.generated_at = letter.generated_at
            record.payload = letter.model_dump(mode="json")
            self.session.commit()
        return letter

    def get_cover_letter(self, letter_id: str) -> CoverLetterContent | None:
        with self._storage_errors("load cover letter"):
            record = self.session.get(CoverLetterRecord, letter_id)
        return CoverLetterContent.model_validate(record.payload) if record else None

    def list_cover_letters(self, profile_id: str | None = None) -> list[CoverLetterContent]:
        statement = select(CoverLetterRecord)
        if profile_id is not None:
            statement = statement.where(CoverLetterRecord.profile_id == profile_id)
        statement = statement.order_by(CoverLetterRecord.generated_at.desc())
        with self._storage_errors("list cover letters"):
            records = self.session.scalars(statement).all()
        return [CoverLetterContent.model_validate(record.payload) for record in records]

    def delete_cover_letter(self, letter_id: str) -> bool:
        return self._delete(CoverLetterRecord, letter_id, "delete cover letter")

    # Provider settings (single record)

    def get_provider_settings(self) -> ProviderSettings | None:
        with self._storage_errors("load provider settings"):
            record = self.session.get(ProviderSettingsRecord, PROVIDER_SETTINGS_ID)
        return ProviderSettings.model_validate(record.payload) if record else None

    def save_provider_settings(self, settings: ProviderSettings) -> ProviderSettings:
        settings = settings.model_copy(update={"updated_at": utcnow()})
        with self._storage_errors("save provider settings"):
            record = self.session.get(ProviderSettingsRecord, PROVIDER_SETTINGS_ID)
            if record is None:
                record = ProviderSettingsRecord(id=PROVIDER_SETTINGS_ID)
                self.session.add(record)
            record.provider_id = settings.provider_id
            record.payload = settings.model_dump(mode="json")
            self.session.commit()
        return settings

    # Bulk

    def export_data(self) -> dict[str, Any]:
        provider_settings = self.get_provider_settings()
        provider_payload = None
        if provider_settings is not None:
            provider_payload = provider_settings.model_dump(mode="json")
            if provider_payload.get("api_key"):
                provider_payload["api_key"] = REDACTED

        return {
            "profiles": [profile.model_dump(mode="json") for profile in self.list_profiles()],
            "job_postings": [posting.model_dump(mode="json") for posting in self.list_job_postings(limit=1000)],
            "cover_letters": [letter.model_dump(mode="json") for letter in self.list_cover_letters()],
            "provider_settings": provider_payload,
            "exported_at": utcnow().isoformat(),
        }

    def clear_all(self) -> None:
        with self._storage_errors("clear all data"):
            for model in (
                GenerationJobRecord,
                CoverLetterRecord,
                JobPostingRecord,
                ProfileRecord,
                ProviderSettingsRecord,
            ):
                self.session.execute(delete(model))
            self.session.commit()

    def _delete(self, model: type, key: str, action: str) -> bool:
        with self._storage_errors(action):
            record = self.session.get(model, key)
            if record is None:
                return False
            self.session.delete(record)
            self.session.commit()
        return True
