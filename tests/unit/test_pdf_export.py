from __future__ import annotations

from types import SimpleNamespace

import pytest
import requests

from covergen.config import Settings
from covergen.errors import ExportError
from covergen.services.pdf_export import (
    PDFExporter,
    build_render_payload,
    default_filename,
    filename_from_disposition,
)
from covergen.types import CoverLetterContent


@pytest.fixture
def letter(profile, posting, stub_sections) -> CoverLetterContent:
    return CoverLetterContent(
        profile_id=profile.id,
        job_posting_id=posting.id,
        position=posting.title,
        llm_provider="fake",
        llm_model="fake-model",
        **stub_sections,
    )


def _pdf_response(headers: dict | None = None):
    return SimpleNamespace(ok=True, status_code=200, reason="OK", headers=headers or {}, content=b"%PDF-1.7")


def _exporter(fake_http, **overrides) -> tuple[PDFExporter, list[float]]:
    slept: list[float] = []
    settings = Settings(pdf_render_url="http://render:8080/", pdf_retry_delay_sec=0.5, **overrides)
    return PDFExporter(settings, session=fake_http, sleep=slept.append), slept


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ('attachment; filename="Jane_Doe.pdf"', "Jane_Doe.pdf"),
        ("attachment; filename=letter.pdf", "letter.pdf"),
        ("inline", None),
        (None, None),
    ],
)
def test_filename_from_disposition(header, expected) -> None:
    assert filename_from_disposition(header) == expected


def test_render_payload_splits_name(letter, profile) -> None:
    payload = build_render_payload(letter, profile)
    assert payload["first_name"] == "Jane"
    assert payload["last_name"] == "Doe"
    assert payload["phone"] == ""
    assert payload["position"] == "Backend Engineer"
    assert payload["why_company"] == letter.why_company


def test_export_uses_server_filename(letter, profile, fake_http) -> None:
    fake_http.post_responses = [_pdf_response({"content-disposition": 'attachment; filename="acme.pdf"'})]
    exporter, slept = _exporter(fake_http)

    result = exporter.export(letter, profile)

    assert result.content == b"%PDF-1.7"
    assert result.filename == "acme.pdf"
    assert fake_http.calls[0][1] == "http://render:8080/render"
    assert slept == []


def test_export_retries_then_succeeds(letter, profile, fake_http) -> None:
    fake_http.post_responses = [
        requests.ConnectionError("cold start"),
        SimpleNamespace(ok=False, status_code=503, reason="Service Unavailable", headers={}),
        _pdf_response(),
    ]
    exporter, slept = _exporter(fake_http)

    result = exporter.export(letter, profile)

    assert result.filename == default_filename(letter, profile) == "Cover_Letter_Jane_Doe_Backend_Engineer.pdf"
    assert slept == [0.5, 0.5]


def test_export_gives_up_after_max_attempts(letter, profile, fake_http) -> None:
    fake_http.post_responses = [
        SimpleNamespace(ok=False, status_code=500, reason="Internal Server Error", headers={}) for _ in range(2)
    ]
    exporter, slept = _exporter(fake_http, pdf_max_attempts=2)

    with pytest.raises(ExportError) as excinfo:
        exporter.export(letter, profile)
    assert str(excinfo.value) == (
        "PDF generation error after 2 attempts: PDF generation failed: 500 Internal Server Error"
    )
    assert slept == [0.5]


def test_export_to_file_writes_pdf(letter, profile, fake_http, tmp_path) -> None:
    fake_http.post_responses = [_pdf_response()]
    exporter, _slept = _exporter(fake_http)

    path = exporter.export_to_file(letter, profile, tmp_path / "out")

    assert path.parent == tmp_path / "out"
    assert path.read_bytes() == b"%PDF-1.7"


def test_wakeup_is_debounced(fake_http) -> None:
    now = {"value": 1000.0}
    settings = Settings(pdf_render_url="http://render:8080/", pdf_wakeup_debounce_sec=600)
    exporter = PDFExporter(settings, session=fake_http, clock=lambda: now["value"])

    assert exporter.wakeup(background=False) is True
    now["value"] += 599
    assert exporter.wakeup(background=False) is False
    now["value"] += 1
    assert exporter.wakeup(background=False) is True

    assert [call[:2] for call in fake_http.calls] == [
        ("GET", "http://render:8080/health"),
        ("GET", "http://render:8080/health"),
    ]
