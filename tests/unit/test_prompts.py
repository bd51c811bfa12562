from __future__ import annotations

from datetime import date

from covergen.llm.prompts import (
    build_prompt,
    build_prompt_data,
    format_date_range,
    format_education,
    format_experience,
    format_projects,
)
from covergen.llm.schemas import COVER_LETTER_FIELDS, COVER_LETTER_SCHEMA
from covergen.types import Education, Experience, Project, SectionInstructions


def test_date_range_uses_month_and_year() -> None:
    assert format_date_range(date(2020, 3, 1), date(2022, 7, 31)) == "Mar 2020 – Jul 2022"
    assert format_date_range(date(2021, 1, 15), None) == "Jan 2021 – Present"


def test_experience_block_lists_role_company_and_skills() -> None:
    text = format_experience(
        [
            Experience(
                company="Initech",
                role="Engineer",
                start_date=date(2020, 1, 1),
                description="Built billing services.",
                skills=["Python", "SQL"],
            )
        ]
    )
    assert text == "- Engineer at Initech (Jan 2020 – Present)\n  Built billing services.\n  Skills: Python, SQL"


def test_project_without_skills_has_no_skills_line() -> None:
    text = format_projects(
        [
            Project(
                name="Linter",
                organization="OSS",
                start_date=date(2019, 5, 1),
                end_date=date(2019, 9, 1),
                description="A linter.",
            )
        ]
    )
    assert text == "- Linter (OSS) (May 2019 – Sep 2019)\n  A linter."


def test_education_lines() -> None:
    text = format_education(
        [
            Education(institution="MIT", degree="BSc", field="Computer Science", end_date=date(2018, 6, 1)),
            Education(institution="Stanford", degree="MSc", start_date=date(2023, 9, 1)),
        ]
    )
    assert text.splitlines() == [
        "- BSc in Computer Science from MIT (2018)",
        "- MSc from Stanford (2023 – Present)",
    ]


def test_empty_lists_render_na() -> None:
    assert format_experience([]) == "N/A"
    assert format_projects([]) == "N/A"
    assert format_education([]) == "N/A"


def test_prompt_contains_profile_job_and_instructions(profile, posting) -> None:
    prompt = build_prompt(profile, posting, SectionInstructions(why_me="Mention my open source work"))

    assert "Name: Jane Doe" in prompt
    assert "Email: jane@x.com" in prompt
    assert "Company: Acme" in prompt
    assert "Position: Backend Engineer" in prompt
    assert 'User requirement: "Mention my open source work"' in prompt
    assert "Phone:" not in prompt
    for field in COVER_LETTER_FIELDS:
        assert field in prompt


def test_prompt_is_deterministic(profile, posting) -> None:
    assert build_prompt(profile, posting) == build_prompt(profile, posting)


def test_phone_line_only_when_present(profile, posting) -> None:
    with_phone = profile.model_copy(update={"phone": "+1 555 0100"})
    assert build_prompt_data(with_phone, posting)["user_phone_section"] == "Phone: +1 555 0100"
    assert build_prompt_data(profile, posting)["user_phone_section"] == ""


def test_schema_requires_the_five_fields() -> None:
    assert set(COVER_LETTER_SCHEMA["required"]) == set(COVER_LETTER_FIELDS)
    assert COVER_LETTER_SCHEMA["additionalProperties"] is False
