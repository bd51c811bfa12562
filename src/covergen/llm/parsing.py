from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from covergen.errors import ResponseParseError
from covergen.llm.schemas import CoverLetterOutput
from covergen.types import CoverLetterSections

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[a-zA-Z]*\s*\n?(.*?)\n?```", re.DOTALL)

# Checked in order per field; the first alias present in the text wins.
SECTION_MARKERS: dict[str, tuple[str, ...]] = {
    "addressee": ("addressee", "to:", "dear"),
    "opening": ("opening", "greeting", "1."),
    "about_me": ("about me", "about_me", "aboutme", "2."),
    "why_me": ("why me", "why_me", "whyme", "3."),
    "why_company": ("why company", "why_company", "whycompany", "4."),
}

_SKIP_AFTER_MARKER = " \t\r\n:*#-\"'"


def _marker_pattern(alias: str) -> re.Pattern[str]:
    escaped = re.escape(alias)
    if alias[-1].isalnum():
        after = r"(?![a-z0-9_])"
    elif alias.endswith("."):
        after = r"(?!\d)"
    else:
        after = ""
    # A marker counts at the start of a line (after markdown decoration) or
    # inline when a colon follows it.
    line_start = rf"^[ \t>#*_\-\"']*(?P<head>{escaped}){after}"
    if alias.endswith(":"):
        inline = rf"(?<![a-z0-9_])(?P<inline>{escaped})"
    else:
        inline = rf"(?<![a-z0-9_])(?P<inline>{escaped}){after}(?=[ \t*_\"']*:)"
    return re.compile(f"{line_start}|{inline}", re.IGNORECASE | re.MULTILINE)


_MARKER_PATTERNS: dict[str, list[tuple[str, re.Pattern[str]]]] = {
    field: [(alias, _marker_pattern(alias)) for alias in aliases]
    for field, aliases in SECTION_MARKERS.items()
}


def strip_code_fence(text: str) -> str:
    candidate = text.strip()
    match = _FENCE_RE.search(candidate)
    if match:
        return match.group(1).strip()
    return candidate


def parse_cover_letter(text: str) -> CoverLetterSections:
    """Extract the five cover letter sections from a raw model response.

    Strict JSON decoding is tried first. Local models often ignore the schema,
    so marker-based segmentation of the raw text is the fallback. Either path
    must yield all five sections non-empty, otherwise ``ResponseParseError``.
    """
    if not text or not text.strip():
        raise ResponseParseError("Empty response from model")

    sections = _decode_structured(strip_code_fence(text))
    if sections is not None:
        return sections

    logger.warning("Response is not valid structured output; attempting marker extraction")
    sections = _extract_by_markers(text)
    if sections is not None:
        return sections

    raise ResponseParseError(
        "Failed to parse cover letter sections from LLM response. The response format was invalid."
    )


def try_parse_cover_letter(text: str) -> CoverLetterSections | None:
    try:
        return parse_cover_letter(text)
    except ResponseParseError:
        return None


def _decode_structured(candidate: str) -> CoverLetterSections | None:
    data = _load_json_object(candidate)
    if data is None:
        return None

    try:
        output = CoverLetterOutput.model_validate(data)
    except ValidationError:
        return None

    values = {
        "addressee": output.addressee.strip(),
        "opening": output.opening.strip(),
        "about_me": output.about_me.strip(),
        "why_me": output.why_me.strip(),
        "why_company": output.why_company.strip(),
    }
    if not all(values.values()):
        return None
    return CoverLetterSections(**values)


def _load_json_object(candidate: str) -> dict[str, Any] | None:
    attempts = [candidate]
    start, end = candidate.find("{"), candidate.rfind("}")
    if start > 0 and end > start:
        attempts.append(candidate[start : end + 1])

    for attempt in attempts:
        try:
            value = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def _extract_by_markers(text: str) -> CoverLetterSections | None:
    boundaries: list[int] = []
    first_hit: dict[str, tuple[int, int]] = {}

    for field, patterns in _MARKER_PATTERNS.items():
        for _alias, pattern in patterns:
            hits = [_marker_span(match) for match in pattern.finditer(text)]
            boundaries.extend(start for start, _ in hits)
            if hits and field not in first_hit:
                first_hit[field] = hits[0]

    boundaries.sort()
    values: dict[str, str] = {}
    for field in SECTION_MARKERS:
        hit = first_hit.get(field)
        if hit is None:
            return None

        content_start = hit[1]
        while content_start < len(text) and text[content_start] in _SKIP_AFTER_MARKER:
            content_start += 1

        content_end = next((pos for pos in boundaries if pos > content_start), len(text))
        values[field] = _clean_segment(text[content_start:content_end])

    if not all(values.values()):
        return None
    return CoverLetterSections(**values)


def _marker_span(match: re.Match[str]) -> tuple[int, int]:
    # A line-start marker owns its leading decoration ("## ", "**").
    if match.group("head") is not None:
        return match.start(), match.end("head")
    return match.start("inline"), match.end("inline")


def _clean_segment(value: str) -> str:
    # Drops JSON residue (quotes, commas, braces) left by half-valid JSON.
    return value.strip().lstrip('"').rstrip(' \t\r\n,"}')
