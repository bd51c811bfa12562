from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from covergen.db.repositories import Repository
from covergen.errors import ExtractionError, ExtractionFailed, NoMatchingExtractor
from covergen.types import JobPlatform, JobPosting

logger = logging.getLogger(__name__)


USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

PLATFORM_HOSTS: dict[str, JobPlatform] = {
    "linkedin.com": "LinkedIn",
    "indeed.com": "Indeed",
    "glassdoor.com": "Glassdoor",
}

MAX_DESCRIPTION_LENGTH = 10000


def fetch_page(url: str, timeout_sec: int = 30) -> str:
    try:
        response = requests.get(url, timeout=timeout_sec, headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Failed to fetch job URL %s: %s", url, exc)
        raise ExtractionError(f"Failed to fetch {url}: {exc}", url=url) from exc
    return response.text


def detect_platform(url: str) -> JobPlatform:
    host = urlparse(url).netloc.lower()
    for suffix, platform in PLATFORM_HOSTS.items():
        if host == suffix or host.endswith(f".{suffix}"):
            return platform
    return "Web"


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.extract()

    text = soup.get_text("\n")
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return "\n".join(lines)


class JobExtractor:
    id: str = ""
    name: str = ""

    def can_extract(self, url: str) -> bool:
        raise NotImplementedError

    def extract(self, html: str, url: str) -> JobPosting:
        raise NotImplementedError


class ManualExtractor(JobExtractor):
    """Fallback for pages nothing else understands: the user types the details."""

    id = "manual"
    name = "Manual Entry"

    def can_extract(self, url: str) -> bool:
        return True

    def extract(self, html: str, url: str) -> JobPosting:
        return self.create_template(url)

    def create_template(self, url: str) -> JobPosting:
        return JobPosting(url=url, company="", title="", description="", platform="Manual", is_manual=True)

    def build(
        self,
        url: str,
        *,
        company: str,
        title: str,
        description: str,
        skills: list[str] | None = None,
    ) -> JobPosting:
        return JobPosting(
            url=url,
            company=company.strip(),
            title=title.strip(),
            description=description.strip(),
            skills=skills or [],
            platform="Manual",
            is_manual=True,
        )


class WebExtractor(JobExtractor):
    """Reads schema.org ``JobPosting`` data, falling back to page metadata."""

    id = "web"
    name = "Web Page"

    def can_extract(self, url: str) -> bool:
        return urlparse(url).scheme in {"http", "https"}

    def extract(self, html: str, url: str) -> JobPosting:
        platform = detect_platform(url)
        soup = BeautifulSoup(html, "html.parser")
        structured = _find_job_posting_ld(soup)

        title = _clean(structured.get("title")) or _meta(soup, "og:title") or _first_text(soup, "h1")
        if not title and soup.title:
            title = _clean(soup.title.get_text())
        if not title:
            raise ExtractionFailed("job title", platform=platform, url=url)

        company = _organization_name(structured.get("hiringOrganization")) or _meta(soup, "og:site_name")
        if not company:
            raise ExtractionFailed("company name", platform=platform, url=url)

        description = ""
        if structured.get("description"):
            description = html_to_text(str(structured["description"]))
        if not description:
            main = soup.find("main") or soup.find("article")
            if main is not None:
                description = html_to_text(str(main))
        if not description:
            description = _meta(soup, "og:description") or _meta(soup, "description")
        if not description:
            raise ExtractionFailed("job description", platform=platform, url=url)

        return JobPosting(
            url=url,
            company=company,
            title=title,
            description=description[:MAX_DESCRIPTION_LENGTH],
            skills=_skills(structured.get("skills")),
            platform=platform,
            is_manual=False,
        )


class ExtractorRegistry:
    def __init__(self):
        self._extractors: dict[str, JobExtractor] = {}

    def register(self, extractor: JobExtractor) -> None:
        self._extractors[extractor.id] = extractor

    def get(self, extractor_id: str) -> JobExtractor | None:
        return self._extractors.get(extractor_id)

    def list_all(self) -> list[JobExtractor]:
        return list(self._extractors.values())

    def find(self, url: str) -> JobExtractor | None:
        for extractor in self._extractors.values():
            if extractor.id != "manual" and extractor.can_extract(url):
                return extractor
        return self._extractors.get("manual")

    def extract(self, html: str, url: str) -> JobPosting:
        extractor = self.find(url)
        if extractor is None or extractor.id == "manual":
            raise NoMatchingExtractor(f"No extractor found for {url}", url=url)
        return extractor.extract(html, url)


def build_default_extractors() -> ExtractorRegistry:
    registry = ExtractorRegistry()
    registry.register(WebExtractor())
    registry.register(ManualExtractor())
    return registry


def fetch_job_posting(
    url: str,
    repo: Repository,
    extractors: ExtractorRegistry | None = None,
    *,
    refresh: bool = False,
) -> JobPosting:
    """Return the posting for ``url``, reading the cache unless ``refresh``."""
    if not refresh:
        cached = repo.get_job_posting_by_url(url)
        if cached is not None:
            logger.info("Using cached job posting url=%s", url)
            return cached

    extractors = extractors or build_default_extractors()
    posting = extractors.extract(fetch_page(url), url)
    return repo.save_job_posting(posting)


def _find_job_posting_ld(soup: BeautifulSoup) -> dict[str, Any]:
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except json.JSONDecodeError:
            continue
        for item in _walk_ld(data):
            if item.get("@type") == "JobPosting":
                return item
    return {}


def _walk_ld(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [item for entry in data for item in _walk_ld(entry)]
    if isinstance(data, dict):
        if "@graph" in data:
            return _walk_ld(data["@graph"])
        return [data]
    return []


def _organization_name(value: Any) -> str:
    if isinstance(value, dict):
        return _clean(value.get("name"))
    return _clean(value)


def _skills(value: Any) -> list[str]:
    if isinstance(value, list):
        return [_clean(item) for item in value if _clean(item)][:20]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()][:20]
    return []


def _meta(soup: BeautifulSoup, key: str) -> str:
    tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
    if tag is None:
        return ""
    return _clean(tag.get("content"))


def _first_text(soup: BeautifulSoup, name: str) -> str:
    tag = soup.find(name)
    return _clean(tag.get_text(" ")) if tag else ""


def _clean(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return " ".join(value.split())
