from __future__ import annotations

import json

import pytest

from covergen.core import extraction
from covergen.core.extraction import (
    ManualExtractor,
    WebExtractor,
    build_default_extractors,
    detect_platform,
    fetch_job_posting,
)
from covergen.db.repositories import Repository
from covergen.db.session import SessionLocal
from covergen.errors import ExtractionFailed, NoMatchingExtractor

LD_PAGE = """
<html>
  <head>
    <title>Careers | Acme</title>
    <script type="application/ld+json">{ld}</script>
  </head>
  <body><main><p>Ignored body text</p></main></body>
</html>
"""

META_PAGE = """
<html>
  <head>
    <meta property="og:site_name" content="Initech">
    <meta name="description" content="Short teaser">
  </head>
  <body>
    <h1>  Data   Engineer </h1>
    <main>
      <h2>About the role</h2>
      <p>You will own our ingestion pipelines.</p>
      <script>track()</script>
    </main>
  </body>
</html>
"""


def _ld_page(payload: dict) -> str:
    return LD_PAGE.format(ld=json.dumps(payload))


def test_detect_platform_by_host() -> None:
    assert detect_platform("https://www.linkedin.com/jobs/view/1") == "LinkedIn"
    assert detect_platform("https://uk.indeed.com/viewjob?jk=1") == "Indeed"
    assert detect_platform("https://careers.acme.dev/jobs/1") == "Web"


def test_structured_job_posting_data_wins() -> None:
    html = _ld_page(
        {
            "@context": "https://schema.org",
            "@graph": [
                {"@type": "Organization", "name": "Acme"},
                {
                    "@type": "JobPosting",
                    "title": "Backend Engineer",
                    "hiringOrganization": {"@type": "Organization", "name": "Acme"},
                    "description": "<p>Build <b>APIs</b>.</p><p>Ship often.</p>",
                    "skills": "Python, PostgreSQL, ",
                },
            ],
        }
    )
    posting = WebExtractor().extract(html, "https://www.linkedin.com/jobs/view/42")

    assert posting.title == "Backend Engineer"
    assert posting.company == "Acme"
    assert "Build" in posting.description and "Ship often." in posting.description
    assert "Ignored body text" not in posting.description
    assert posting.skills == ["Python", "PostgreSQL"]
    assert posting.platform == "LinkedIn"
    assert posting.is_manual is False


def test_page_metadata_fallback() -> None:
    posting = WebExtractor().extract(META_PAGE, "https://careers.initech.com/data")

    assert posting.title == "Data Engineer"
    assert posting.company == "Initech"
    assert posting.description == "About the role\nYou will own our ingestion pipelines."
    assert posting.platform == "Web"


def test_missing_company_fails_extraction() -> None:
    with pytest.raises(ExtractionFailed) as excinfo:
        WebExtractor().extract("<html><h1>Engineer</h1><main>Text</main></html>", "https://x.example/1")
    assert excinfo.value.field == "company name"
    assert str(excinfo.value) == "Could not extract company name"


def test_manual_extractor_builds_trimmed_posting() -> None:
    posting = ManualExtractor().build(
        "https://jobs.example.com/1",
        company=" Acme ",
        title=" Engineer ",
        description=" Build things. ",
    )
    assert (posting.company, posting.title, posting.description) == ("Acme", "Engineer", "Build things.")
    assert posting.platform == "Manual"
    assert posting.is_manual is True


def test_registry_prefers_specific_extractors_over_manual() -> None:
    registry = build_default_extractors()
    assert registry.find("https://jobs.example.com/1").id == "web"
    assert registry.find("ftp://jobs.example.com/1").id == "manual"
    with pytest.raises(NoMatchingExtractor):
        registry.extract("<html></html>", "ftp://jobs.example.com/1")


def test_fetch_job_posting_caches_by_url(monkeypatch) -> None:
    url = "https://careers.initech.com/data"
    fetched: list[str] = []

    def fake_fetch(target: str, timeout_sec: int = 30) -> str:
        fetched.append(target)
        return META_PAGE

    monkeypatch.setattr(extraction, "fetch_page", fake_fetch)

    with SessionLocal() as db:
        repo = Repository(db)
        first = fetch_job_posting(url, repo)
        second = fetch_job_posting(url, repo)
        assert fetched == [url]
        assert second.id == first.id

        refreshed = fetch_job_posting(url, repo, refresh=True)
        assert fetched == [url, url]
        assert repo.get_job_posting_by_url(url).id == refreshed.id
