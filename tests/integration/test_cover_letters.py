from __future__ import annotations

from typing import get_args

import pytest

from covergen.config import Settings
from covergen.core.generation import (
    check_provider_settings,
    generate_cover_letter,
    mark_exported,
    resolve_provider_settings,
    update_cover_letter_section,
)
from covergen.db.repositories import Repository
from covergen.db.session import SessionLocal
from covergen.errors import InputValidationError, NotFoundError, ProviderNotConfigured, RateLimited
from covergen.llm.rate_limiter import RateLimiter
from covergen.types import CoverLetterSection, GenerationConfig, ProviderSettings, SectionInstructions


def _generate(runtime, profile, posting, config=None, rate_limiter=None):
    with SessionLocal() as db:
        return generate_cover_letter(
            Repository(db),
            runtime.registry,
            rate_limiter or runtime.rate_limiter,
            profile,
            posting,
            config,
            runtime.settings,
        )


def test_synchronous_generation_saves_letter(runtime, seeded, fake_provider, stub_sections) -> None:
    profile, posting = seeded
    letter = _generate(
        runtime,
        profile,
        posting,
        GenerationConfig(instructions=SectionInstructions(why_company="Mention the open source work")),
    )

    assert letter.state == "Generated"
    assert letter.position == "Backend Engineer"
    assert letter.why_company == stub_sections["why_company"]

    request = fake_provider.requests[0]
    assert request.model == "fake-model"
    assert request.max_tokens == 2048
    assert "Mention the open source work" in request.prompt
    assert fake_provider.configured[0].provider_id == "fake"

    with SessionLocal() as db:
        assert Repository(db).get_cover_letter(letter.id) == letter


def test_synchronous_generation_shares_the_rate_limit(runtime, seeded, fake_provider) -> None:
    profile, posting = seeded
    limiter = RateLimiter(1, 60.0)

    _generate(runtime, profile, posting, rate_limiter=limiter)
    with pytest.raises(RateLimited):
        _generate(runtime, profile, posting, rate_limiter=limiter)
    assert len(fake_provider.requests) == 1


def test_editing_sections_moves_letter_to_edited(runtime, seeded) -> None:
    profile, posting = seeded
    letter = _generate(runtime, profile, posting)

    with SessionLocal() as db:
        repo = Repository(db)
        edited = update_cover_letter_section(repo, letter.id, "why_me", "  I ship reliable systems.  ")
        assert edited.why_me == "I ship reliable systems."
        assert edited.state == "Edited"
        assert edited.edited_at is not None
        assert repo.get_cover_letter(letter.id).why_me == "I ship reliable systems."

        exported = mark_exported(repo, letter.id)
        assert exported.state == "Exported"
        assert exported.exported_at is not None

        again = update_cover_letter_section(repo, letter.id, "addressee", "Dear Acme team")
        assert again.state == "Exported"


def test_every_declared_section_is_editable(runtime, seeded) -> None:
    profile, posting = seeded
    letter = _generate(runtime, profile, posting)

    with SessionLocal() as db:
        repo = Repository(db)
        for section in get_args(CoverLetterSection):
            edited = update_cover_letter_section(repo, letter.id, section, f"New {section}")
            assert getattr(edited, section) == f"New {section}"


def test_section_edit_errors(runtime, seeded) -> None:
    profile, posting = seeded
    letter = _generate(runtime, profile, posting)

    with SessionLocal() as db:
        repo = Repository(db)
        with pytest.raises(InputValidationError):
            update_cover_letter_section(repo, letter.id, "closing", "Bye")
        with pytest.raises(InputValidationError):
            update_cover_letter_section(repo, letter.id, "opening", "   ")
        with pytest.raises(NotFoundError):
            update_cover_letter_section(repo, "missing", "opening", "Hi")


def test_resolve_provider_settings_prefers_saved_record() -> None:
    saved = ProviderSettings(provider_id="openai", model="gpt-4o", api_key="sk-1")
    assert resolve_provider_settings(saved, Settings(default_provider="ollama")) is saved

    fallback = resolve_provider_settings(None, Settings(default_provider="ollama", ollama_model="mistral"))
    assert (fallback.provider_id, fallback.model) == ("ollama", "mistral")

    with pytest.raises(ProviderNotConfigured):
        resolve_provider_settings(None, Settings(default_provider=""))


def test_check_provider_settings_runs_local_rules_first(runtime) -> None:
    outcome = check_provider_settings(runtime.registry, ProviderSettings(provider_id="fake", model=""))
    assert not outcome.valid
    assert "Model must be between 1 and 100 characters" in outcome.error

    assert check_provider_settings(runtime.registry, ProviderSettings(provider_id="fake", model="fake-model")).valid
