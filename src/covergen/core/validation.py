from __future__ import annotations

import re
from datetime import date
from urllib.parse import urlparse

from covergen.errors import InputValidationError
from covergen.types import (
    Education,
    Experience,
    FieldError,
    JobPosting,
    Profile,
    Project,
    ProviderSettings,
    ValidationResult,
)

NAME_MAX_LENGTH = 200
TEXT_FIELD_MAX_LENGTH = 200
SKILLS_MAX_COUNT = 100
SKILL_MAX_LENGTH = 100
ENTRY_SKILLS_MAX_COUNT = 20
EXPERIENCE_MAX_COUNT = 15
PROJECTS_MAX_COUNT = 15
COMBINED_ENTRIES_MAX_COUNT = 15
EDUCATION_MAX_COUNT = 10
DESCRIPTION_MIN_WORDS = 10
DESCRIPTION_MAX_WORDS = 1000
POSTING_DESCRIPTION_MIN_LENGTH = 10
POSTING_DESCRIPTION_MAX_LENGTH = 10000

TEMPERATURE_RANGE = (0.0, 2.0)
MAX_TOKENS_RANGE = (100, 8192)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_GITHUB_USERNAME_RE = re.compile(r"^[a-zA-Z0-9-]+$")


def count_words(text: str) -> int:
    return len(text.split())


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value))


def is_valid_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path) and " " not in value


def _length_error(field: str, label: str, value: str, maximum: int = TEXT_FIELD_MAX_LENGTH) -> FieldError | None:
    if 1 <= len(value) <= maximum:
        return None
    return FieldError(field=field, message=f"{label} must be between 1 and {maximum} characters")


def _dated_entry_errors(start: date, end: date | None, today: date) -> list[FieldError]:
    errors = []
    if start > today:
        errors.append(FieldError(field="start_date", message="Start date cannot be in the future"))
    if end is not None and end <= start:
        errors.append(FieldError(field="end_date", message="End date must be after start date"))
    return errors


def _description_error(description: str) -> FieldError | None:
    words = count_words(description)
    if DESCRIPTION_MIN_WORDS <= words <= DESCRIPTION_MAX_WORDS:
        return None
    return FieldError(
        field="description",
        message=(
            f"Description must be between {DESCRIPTION_MIN_WORDS} and {DESCRIPTION_MAX_WORDS} "
            f"words (current: {words})"
        ),
    )


def validate_experience(entry: Experience, today: date | None = None) -> ValidationResult:
    today = today or date.today()
    errors: list[FieldError | None] = []
    if entry.company:
        errors.append(_length_error("company", "Company name", entry.company))
    errors.append(_length_error("role", "Role", entry.role))
    errors.append(_description_error(entry.description))
    errors.extend(_dated_entry_errors(entry.start_date, entry.end_date, today))
    if len(entry.skills) > ENTRY_SKILLS_MAX_COUNT:
        errors.append(
            FieldError(field="skills", message=f"Maximum {ENTRY_SKILLS_MAX_COUNT} skills per experience")
        )
    return _result(errors)


def validate_project(entry: Project, today: date | None = None) -> ValidationResult:
    today = today or date.today()
    errors: list[FieldError | None] = []
    if entry.organization:
        errors.append(_length_error("organization", "Organization", entry.organization))
    errors.append(_length_error("name", "Project name", entry.name))
    errors.append(_description_error(entry.description))
    errors.extend(_dated_entry_errors(entry.start_date, entry.end_date, today))
    if len(entry.skills) > ENTRY_SKILLS_MAX_COUNT:
        errors.append(
            FieldError(field="skills", message=f"Maximum {ENTRY_SKILLS_MAX_COUNT} skills per project")
        )
    return _result(errors)


def validate_education(entry: Education) -> ValidationResult:
    errors: list[FieldError | None] = [_length_error("institution", "Institution", entry.institution)]
    if entry.degree:
        errors.append(_length_error("degree", "Degree", entry.degree))
    if entry.field:
        errors.append(_length_error("field", "Field", entry.field))
    if not entry.degree and not entry.field:
        errors.append(
            FieldError(field="degree/field", message="Either degree or field of study must be provided")
        )
    if entry.start_date and entry.end_date and entry.end_date <= entry.start_date:
        errors.append(FieldError(field="end_date", message="End date must be after start date"))
    return _result(errors)


def validate_profile(profile: Profile, today: date | None = None) -> ValidationResult:
    """Check a profile is complete enough to write a letter from.

    Nested entry errors are reported with an indexed path such as
    ``experience[0].description``.
    """
    errors: list[FieldError | None] = [_length_error("name", "Name", profile.name, NAME_MAX_LENGTH)]

    if not is_valid_email(profile.email):
        errors.append(FieldError(field="email", message="Email must be a valid email address"))
    if profile.homepage and not is_valid_url(profile.homepage):
        errors.append(FieldError(field="homepage", message="Homepage must be a valid URL"))
    if (
        profile.github
        and not is_valid_url(profile.github)
        and not _GITHUB_USERNAME_RE.match(profile.github)
    ):
        errors.append(FieldError(field="github", message="GitHub must be a valid URL or username"))
    if profile.linkedin and not is_valid_url(profile.linkedin):
        errors.append(FieldError(field="linkedin", message="LinkedIn must be a valid URL"))

    if len(profile.experience) > EXPERIENCE_MAX_COUNT:
        errors.append(
            FieldError(field="experience", message=f"Maximum {EXPERIENCE_MAX_COUNT} experience entries allowed")
        )
    if len(profile.projects) > PROJECTS_MAX_COUNT:
        errors.append(
            FieldError(field="projects", message=f"Maximum {PROJECTS_MAX_COUNT} project entries allowed")
        )

    combined = len(profile.experience) + len(profile.projects)
    if combined < 1:
        errors.append(
            FieldError(field="experience", message="At least 1 work experience or project entry required")
        )
    elif combined > COMBINED_ENTRIES_MAX_COUNT:
        errors.append(
            FieldError(
                field="experience",
                message=f"Maximum {COMBINED_ENTRIES_MAX_COUNT} combined experience and project entries allowed",
            )
        )

    for index, entry in enumerate(profile.experience):
        errors.extend(_nested("experience", index, validate_experience(entry, today)))
    for index, entry in enumerate(profile.projects):
        errors.extend(_nested("projects", index, validate_project(entry, today)))

    if not profile.skills:
        errors.append(FieldError(field="skills", message="At least 1 skill required"))
    elif len(profile.skills) > SKILLS_MAX_COUNT:
        errors.append(FieldError(field="skills", message=f"Maximum {SKILLS_MAX_COUNT} skills allowed"))
    for index, skill in enumerate(profile.skills):
        errors.append(_length_error(f"skills[{index}]", "Skill", skill, SKILL_MAX_LENGTH))

    if len(profile.education) > EDUCATION_MAX_COUNT:
        errors.append(
            FieldError(field="education", message=f"Maximum {EDUCATION_MAX_COUNT} education entries allowed")
        )
    for index, entry in enumerate(profile.education):
        errors.extend(_nested("education", index, validate_education(entry)))

    return _result(errors)


def validate_job_posting(posting: JobPosting) -> ValidationResult:
    errors: list[FieldError | None] = []
    if not is_valid_url(posting.url):
        errors.append(FieldError(field="url", message="Job URL must be a valid URL"))
    errors.append(_length_error("company", "Company name", posting.company))
    errors.append(_length_error("title", "Job title", posting.title))
    if not POSTING_DESCRIPTION_MIN_LENGTH <= len(posting.description) <= POSTING_DESCRIPTION_MAX_LENGTH:
        errors.append(
            FieldError(
                field="description",
                message=(
                    f"Job description must be between {POSTING_DESCRIPTION_MIN_LENGTH} and "
                    f"{POSTING_DESCRIPTION_MAX_LENGTH} characters"
                ),
            )
        )
    return _result(errors)


def validate_inputs(profile: Profile, posting: JobPosting) -> ValidationResult:
    profile_result = validate_profile(profile)
    posting_result = validate_job_posting(posting)
    errors = profile_result.errors + posting_result.errors
    return ValidationResult(valid=not errors, errors=errors)


def ensure_valid_inputs(profile: Profile, posting: JobPosting) -> None:
    profile_result = validate_profile(profile)
    if not profile_result.valid:
        raise InputValidationError(
            f"Invalid profile: {profile_result.message}",
            [(error.field, error.message) for error in profile_result.errors],
        )

    posting_result = validate_job_posting(posting)
    if not posting_result.valid:
        raise InputValidationError(
            f"Invalid job details: {posting_result.message}",
            [(error.field, error.message) for error in posting_result.errors],
        )


def validate_provider_settings(settings: ProviderSettings) -> ValidationResult:
    errors: list[FieldError | None] = []
    if settings.provider_id == "openai" and not settings.api_key:
        errors.append(FieldError(field="api_key", message="API key is required for OpenAI provider"))
    if not 1 <= len(settings.model) <= 100:
        errors.append(FieldError(field="model", message="Model must be between 1 and 100 characters"))
    if settings.endpoint and not is_valid_url(settings.endpoint):
        errors.append(FieldError(field="endpoint", message="Endpoint must be a valid URL"))

    low, high = TEMPERATURE_RANGE
    if not low <= settings.temperature <= high:
        errors.append(
            FieldError(field="temperature", message=f"Temperature must be between {low} and {high}")
        )
    low_tokens, high_tokens = MAX_TOKENS_RANGE
    if not low_tokens <= settings.max_tokens <= high_tokens:
        errors.append(
            FieldError(
                field="max_tokens",
                message=f"Max tokens must be between {low_tokens} and {high_tokens}",
            )
        )
    return _result(errors)


def _nested(prefix: str, index: int, result: ValidationResult) -> list[FieldError]:
    return [
        FieldError(field=f"{prefix}[{index}].{error.field}", message=error.message)
        for error in result.errors
    ]


def _result(errors: list[FieldError | None]) -> ValidationResult:
    found = [error for error in errors if error is not None]
    return ValidationResult(valid=not found, errors=found)
