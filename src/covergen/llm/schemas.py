from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class CoverLetterOutput(BaseModel):
    """Structured output the cover letter prompt asks the model for."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={"additionalProperties": False},
    )

    addressee: str = Field(
        description=(
            'The addressee for the cover letter (e.g. "Hiring Manager", "Hiring Team", '
            "or a specific person's name if mentioned in the job posting)"
        )
    )
    opening: str = Field(description="The opening paragraph of the cover letter, including greeting")
    about_me: str = Field(
        alias="aboutMe",
        description='The "About Me" section introducing the candidate\'s background',
    )
    why_me: str = Field(
        alias="whyMe",
        description='The "Why Me" section explaining why the candidate is a good fit',
    )
    why_company: str = Field(
        alias="whyCompany",
        description='The "Why Company" section explaining interest in the company',
    )


COVER_LETTER_FIELDS: tuple[str, ...] = ("addressee", "opening", "aboutMe", "whyMe", "whyCompany")

# JSON schema passed to providers that support structured output.
COVER_LETTER_SCHEMA: dict = CoverLetterOutput.model_json_schema(by_alias=True)
