from __future__ import annotations

import logging
from collections.abc import Callable
from typing import get_args

from covergen.config import Settings, get_settings
from covergen.core.jobs import STEP_GENERATING, STEP_PARSING, STEP_PREPARING, STEP_SAVING
from covergen.core.validation import ensure_valid_inputs, validate_provider_settings
from covergen.db.repositories import Repository
from covergen.errors import InputValidationError, NotFoundError, ProviderNotConfigured
from covergen.llm.parsing import parse_cover_letter
from covergen.llm.prompts import build_prompt
from covergen.llm.rate_limiter import RateLimiter
from covergen.llm.registry import ProviderRegistry
from covergen.llm.schemas import COVER_LETTER_SCHEMA
from covergen.types import (
    COVER_LETTER_STATE_ORDER,
    CoverLetterContent,
    CoverLetterSection,
    GenerationConfig,
    GenerationRequest,
    JobPosting,
    Profile,
    ProviderSettings,
    ValidationOutcome,
    utcnow,
)

logger = logging.getLogger(__name__)

StepCallback = Callable[[int, str], None]

EDITABLE_SECTIONS: tuple[str, ...] = get_args(CoverLetterSection)


def resolve_provider_settings(
    stored: ProviderSettings | None,
    settings: Settings | None = None,
) -> ProviderSettings:
    """Return the provider settings to generate with.

    The saved record wins. Without one, ``default_provider`` from the
    environment is used; with neither, ``ProviderNotConfigured`` is raised.
    """
    if stored is not None:
        return stored

    settings = settings or get_settings()
    if settings.default_provider == "ollama":
        return ProviderSettings(
            provider_id="ollama",
            endpoint=settings.ollama_base_url,
            model=settings.ollama_model,
            temperature=settings.default_temperature,
        )
    if settings.default_provider == "openai":
        return ProviderSettings(
            provider_id="openai",
            api_key=settings.openai_api_key or None,
            endpoint=settings.openai_base_url,
            model=settings.openai_model,
            temperature=settings.default_temperature,
        )
    raise ProviderNotConfigured()


def build_generation_request(
    prompt: str,
    provider_settings: ProviderSettings,
    config: GenerationConfig,
    settings: Settings | None = None,
) -> GenerationRequest:
    settings = settings or get_settings()
    temperature = config.temperature
    if temperature is None:
        temperature = provider_settings.temperature
    return GenerationRequest(
        prompt=prompt,
        model=config.model or provider_settings.model,
        temperature=temperature,
        max_tokens=config.max_tokens or provider_settings.max_tokens or settings.default_max_tokens,
        timeout_sec=settings.llm_timeout_sec,
        response_schema=COVER_LETTER_SCHEMA,
    )


def run_generation(
    *,
    registry: ProviderRegistry,
    rate_limiter: RateLimiter,
    provider_settings: ProviderSettings,
    profile: Profile,
    posting: JobPosting,
    config: GenerationConfig,
    settings: Settings | None = None,
    on_step: StepCallback | None = None,
) -> CoverLetterContent:
    """One provider call from prompt to an unsaved ``CoverLetterContent``.

    Shared by the worker and ``generate_cover_letter``. A rate limit denial
    raises ``RateLimited`` before any provider call is made.
    """
    report = on_step or (lambda _progress, _step: None)

    provider = registry.get(provider_settings.provider_id)
    provider.configure(provider_settings)

    rate_limiter.record()

    report(10, STEP_PREPARING)
    prompt = build_prompt(profile, posting, config.instructions)
    request = build_generation_request(prompt, provider_settings, config, settings)

    report(30, STEP_GENERATING)
    logger.info(
        "Generating cover letter provider=%s model=%s company=%s position=%s",
        provider.id,
        request.model,
        posting.company,
        posting.title,
    )
    response = provider.generate(request)

    report(80, STEP_PARSING)
    sections = parse_cover_letter(response.content)

    report(90, STEP_SAVING)
    return CoverLetterContent(
        profile_id=profile.id,
        job_posting_id=posting.id,
        position=posting.title,
        addressee=sections.addressee,
        opening=sections.opening,
        about_me=sections.about_me,
        why_me=sections.why_me,
        why_company=sections.why_company,
        llm_provider=provider.id,
        llm_model=response.model or request.model,
        state="Generated",
    )


def generate_cover_letter(
    repo: Repository,
    registry: ProviderRegistry,
    rate_limiter: RateLimiter,
    profile: Profile,
    posting: JobPosting,
    config: GenerationConfig | None = None,
    settings: Settings | None = None,
) -> CoverLetterContent:
    """Generate and persist a cover letter without going through the queue."""
    ensure_valid_inputs(profile, posting)
    provider_settings = resolve_provider_settings(repo.get_provider_settings(), settings)
    letter = run_generation(
        registry=registry,
        rate_limiter=rate_limiter,
        provider_settings=provider_settings,
        profile=profile,
        posting=posting,
        config=config or GenerationConfig(),
        settings=settings,
    )
    repo.save_cover_letter(letter)
    logger.info("Saved cover letter id=%s model=%s", letter.id, letter.llm_model)
    return letter


def update_cover_letter_section(
    repo: Repository,
    letter_id: str,
    section: CoverLetterSection | str,
    content: str,
) -> CoverLetterContent:
    if section not in EDITABLE_SECTIONS:
        raise InputValidationError(
            f"Unknown cover letter section '{section}'", [("section", "Unknown section")]
        )
    if not content.strip():
        raise InputValidationError(
            f"Section '{section}' cannot be empty", [(str(section), "Section cannot be empty")]
        )

    letter = _require_letter(repo, letter_id)
    updated = letter.model_copy(
        update={
            section: content.strip(),
            "edited_at": utcnow(),
            "state": _advance(letter.state, "Edited"),
        }
    )
    return repo.save_cover_letter(updated)


def mark_exported(repo: Repository, letter_id: str) -> CoverLetterContent:
    letter = _require_letter(repo, letter_id)
    updated = letter.model_copy(update={"exported_at": utcnow(), "state": _advance(letter.state, "Exported")})
    return repo.save_cover_letter(updated)


def check_provider_settings(registry: ProviderRegistry, provider_settings: ProviderSettings) -> ValidationOutcome:
    result = validate_provider_settings(provider_settings)
    if not result.valid:
        return ValidationOutcome(valid=False, error=result.message)

    provider = registry.get(provider_settings.provider_id)
    return provider.validate_config(provider_settings)


def _advance(current: str, target: str) -> str:
    # States only move forward; an exported letter stays exported after edits.
    if COVER_LETTER_STATE_ORDER.index(target) > COVER_LETTER_STATE_ORDER.index(current):
        return target
    return current


def _require_letter(repo: Repository, letter_id: str) -> CoverLetterContent:
    letter = repo.get_cover_letter(letter_id)
    if letter is None:
        raise NotFoundError(f"Cover letter {letter_id} not found")
    return letter
