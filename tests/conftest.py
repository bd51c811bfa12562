from __future__ import annotations

import os
import tempfile
from datetime import date
from pathlib import Path
from types import SimpleNamespace

_TEST_DIR = Path(tempfile.mkdtemp(prefix="covergen-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'covergen.db'}"
os.environ["DATA_DIR"] = str(_TEST_DIR / "data")
os.environ["EXPORT_DIR"] = str(_TEST_DIR / "data" / "exports")
os.environ["APP_ENV"] = "test"
os.environ["WORKER_AUTOSTART"] = "false"
os.environ["DEFAULT_PROVIDER"] = ""
os.environ["OPENAI_API_KEY"] = ""

import pytest  # noqa: E402

from covergen.config import Settings, get_settings  # noqa: E402
from covergen.core.runtime import Runtime, build_runtime  # noqa: E402
from covergen.db.base import Base  # noqa: E402
from covergen.db.repositories import Repository  # noqa: E402
from covergen.db.session import SessionLocal, engine  # noqa: E402
from covergen.llm.providers import LLMProvider  # noqa: E402
from covergen.llm.rate_limiter import RateLimiter  # noqa: E402
from covergen.llm.registry import ProviderRegistry  # noqa: E402
from covergen.services.pdf_export import PDFExporter  # noqa: E402
from covergen.types import (  # noqa: E402
    Experience,
    GenerationRequest,
    GenerationResponse,
    JobPosting,
    Profile,
    ProviderSettings,
    ValidationOutcome,
)

STUB_SECTIONS = {
    "addressee": "Acme Hiring Team",
    "opening": "I am excited to apply for the Backend Engineer role at Acme.",
    "about_me": "I am an engineer who enjoys building reliable services.",
    "why_me": "I have shipped Python services that handle millions of requests.",
    "why_company": "Acme's focus on developer tooling matches what I care about.",
}

STUB_JSON = (
    '{"addressee": "Acme Hiring Team", '
    '"opening": "I am excited to apply for the Backend Engineer role at Acme.", '
    '"aboutMe": "I am an engineer who enjoys building reliable services.", '
    '"whyMe": "I have shipped Python services that handle millions of requests.", '
    '"whyCompany": "Acme\'s focus on developer tooling matches what I care about."}'
)


class FakeProvider(LLMProvider):
    """Returns scripted replies; an ``Exception`` in the script is raised instead."""

    id = "fake"
    name = "Fake"

    def __init__(self, replies: list | None = None):
        self.replies = list(replies or [])
        self.default_reply = STUB_JSON
        self.requests: list[GenerationRequest] = []
        self.configured: list[ProviderSettings] = []

    def configure(self, settings: ProviderSettings) -> None:
        self.configured.append(settings)

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        reply = self.replies.pop(0) if self.replies else self.default_reply
        if isinstance(reply, Exception):
            raise reply
        return GenerationResponse(content=reply, model=request.model)

    def validate_config(self, settings: ProviderSettings) -> ValidationOutcome:
        return ValidationOutcome(valid=True, available_models=[settings.model])

    def list_models(self) -> list[str]:
        return ["fake-model"]


class FakeHTTPSession:
    def __init__(self):
        self.calls: list[tuple[str, str, dict]] = []
        self.post_responses: list = []

    def get(self, url: str, **kwargs):
        self.calls.append(("GET", url, kwargs))
        return SimpleNamespace(ok=True, status_code=200)

    def post(self, url: str, **kwargs):
        self.calls.append(("POST", url, kwargs))
        reply = self.post_responses.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def words(count: int, word: str = "delivery") -> str:
    return " ".join([word] * count)


@pytest.fixture(autouse=True)
def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def profile() -> Profile:
    return Profile(
        name="Jane Doe",
        email="jane@x.com",
        experience=[
            Experience(
                company="Initech",
                role="Engineer",
                start_date=date(2020, 1, 1),
                description=words(50),
                skills=["Python", "PostgreSQL"],
            )
        ],
        skills=["Python", "SQL"],
    )


@pytest.fixture
def posting() -> JobPosting:
    return JobPosting(
        url="https://jobs.example.com/acme/backend-engineer",
        company="Acme",
        title="Backend Engineer",
        description=words(200, "services"),
        platform="Manual",
        is_manual=True,
    )


@pytest.fixture
def stub_sections() -> dict[str, str]:
    return dict(STUB_SECTIONS)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fake_http() -> FakeHTTPSession:
    return FakeHTTPSession()


@pytest.fixture
def runtime(settings: Settings, fake_provider: FakeProvider, fake_http: FakeHTTPSession) -> Runtime:
    registry = ProviderRegistry()
    registry.register(fake_provider)
    return build_runtime(
        settings,
        session_factory=SessionLocal,
        registry=registry,
        rate_limiter=RateLimiter(10, 60.0),
        exporter=PDFExporter(settings, session=fake_http, sleep=lambda _seconds: None),
    )


@pytest.fixture
def seeded(profile: Profile, posting: JobPosting) -> tuple[Profile, JobPosting]:
    """Stores the profile, the posting and settings that select the fake provider."""
    with SessionLocal() as db:
        repo = Repository(db)
        repo.save_profile(profile)
        repo.save_job_posting(posting)
        repo.save_provider_settings(ProviderSettings(provider_id="fake", model="fake-model"))
    return profile, posting
