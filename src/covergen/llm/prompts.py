from __future__ import annotations

from datetime import date
from typing import Any

from covergen.types import Education, Experience, JobPosting, Profile, Project, SectionInstructions

COVER_LETTER_PROMPT = """
<system>
You are a professional human cover letter writer specialized in tailoring content to specific job roles.
You will receive user profile information and job details.
Write a professional cover letter divided into four narrative sections.
Each section must demonstrate clear relevance to the job description and the user's background.
The tone must remain natural, confident, and engaging.
Use words and phrases normal human beings would use. Avoid generic claims, cliches, and overly formal language.

Guidelines for all sections:
- Refer only to the provided user information. Do not fabricate experience, achievements, or company facts.
- Avoid repeating the same detail across multiple sections.
- Maintain coherent narrative flow without section headings or lists.
- Integrate examples and outcomes when referencing experience.
- If any information is missing, craft the message without calling attention to the absence.

Addressee selection:
- If a specific hiring manager or contact person is mentioned, use their name (e.g. "John Smith").
- If a hiring team or department is mentioned, use that (e.g. "Engineering Team", "Hiring Committee").
- If no contact is mentioned, use the company name (e.g. "Acme Team").
- Otherwise use "Hiring Manager".
- Keep the addressee concise and professional (1-5 words).

Section requirements:
1. Opening (2-3 sentences)
   - Concise introduction. Do not include "Dear [Addressee],", the template adds it.
   - Express interest in the position and mention how you learned about the opportunity.
   - User requirement: "{opening_instruction}"

2. About Me (3-4 sentences)
   - Introduce relevant background, education, and core qualifications.
   - Convey genuine motivation for the field.
   - Personalize insights to show authenticity rather than resume repetition.
   - User requirement: "{about_me_instruction}"

3. Why Me (4-5 sentences)
   - Directly align skills and achievements with the job requirements.
   - Include specific examples that demonstrate capability and value.
   - Highlight measurable or practical outcomes where possible.
   - User requirement: "{why_me_instruction}"

4. Why Company (3-4 sentences)
   - Explain specific interest in the company based on its mission, products, culture, or recent accomplishments.
   - Clearly articulate enthusiasm for contributing to its success.
   - User requirement: "{why_company_instruction}"

Output format:
Return strict JSON with exactly five string fields: addressee, opening, aboutMe, whyMe, whyCompany.
Do not put section headings inside the field values.
</system>

<user-info>
Name: {user_name}
Email: {user_email}
{user_phone_section}
Skills: {user_skills}

Education:
{user_education}

Work Experience:
{user_experience}

Personal Projects:
{user_projects}
</user-info>

<job-info>
Company: {job_company}
Position: {job_title}
Job Description: {job_description}
</job-info>
""".strip()


def build_prompt(
    profile: Profile,
    posting: JobPosting,
    instructions: SectionInstructions | None = None,
) -> str:
    return fill_template(COVER_LETTER_PROMPT, build_prompt_data(profile, posting, instructions))


def build_prompt_data(
    profile: Profile,
    posting: JobPosting,
    instructions: SectionInstructions | None = None,
) -> dict[str, Any]:
    instructions = instructions or SectionInstructions()
    return {
        "user_name": profile.name,
        "user_email": profile.email,
        "user_phone_section": f"Phone: {profile.phone}" if profile.phone else "",
        "user_skills": ", ".join(profile.skills),
        "user_education": format_education(profile.education),
        "user_experience": format_experience(profile.experience),
        "user_projects": format_projects(profile.projects),
        "job_company": posting.company,
        "job_title": posting.title,
        "job_description": posting.description,
        "opening_instruction": instructions.opening or "",
        "about_me_instruction": instructions.about_me or "",
        "why_me_instruction": instructions.why_me or "",
        "why_company_instruction": instructions.why_company or "",
    }


def fill_template(template: str, data: dict[str, Any]) -> str:
    return template.format(**data)


def format_date_range(start: date, end: date | None) -> str:
    started = start.strftime("%b %Y")
    if end is None:
        return f"{started} – Present"
    return f"{started} – {end.strftime('%b %Y')}"


def format_experience(entries: list[Experience]) -> str:
    if not entries:
        return "N/A"

    blocks = []
    for entry in entries:
        company = f" at {entry.company}" if entry.company else ""
        block = f"- {entry.role}{company} ({format_date_range(entry.start_date, entry.end_date)})\n  {entry.description}"
        if entry.skills:
            block += f"\n  Skills: {', '.join(entry.skills)}"
        blocks.append(block)
    return "\n\n".join(blocks)


def format_projects(entries: list[Project]) -> str:
    if not entries:
        return "N/A"

    blocks = []
    for entry in entries:
        organization = f" ({entry.organization})" if entry.organization else ""
        block = (
            f"- {entry.name}{organization} ({format_date_range(entry.start_date, entry.end_date)})\n"
            f"  {entry.description}"
        )
        if entry.skills:
            block += f"\n  Skills: {', '.join(entry.skills)}"
        blocks.append(block)
    return "\n\n".join(blocks)


def format_education(entries: list[Education]) -> str:
    if not entries:
        return "N/A"

    lines = []
    for entry in entries:
        parts = [f"- {entry.degree or entry.field or ''}".rstrip()]
        if entry.field and entry.degree:
            parts.append(f"in {entry.field}")
        parts.append(f"from {entry.institution}")
        if entry.end_date:
            parts.append(f"({entry.end_date.year})")
        elif entry.start_date:
            parts.append(f"({entry.start_date.year} – Present)")
        lines.append(" ".join(parts))
    return "\n".join(lines)
