from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from covergen.config import Settings, get_settings
from covergen.core.extraction import ExtractorRegistry, build_default_extractors
from covergen.core.worker import GenerationWorker
from covergen.llm.rate_limiter import RateLimiter
from covergen.llm.registry import ProviderRegistry, build_default_registry
from covergen.services.pdf_export import PDFExporter


@dataclass(slots=True)
class Runtime:
    settings: Settings
    session_factory: Callable[[], Session]
    registry: ProviderRegistry
    rate_limiter: RateLimiter
    worker: GenerationWorker
    extractors: ExtractorRegistry
    exporter: PDFExporter


_RUNTIME: Runtime | None = None


def build_runtime(
    settings: Settings | None = None,
    *,
    session_factory: Callable[[], Session] | None = None,
    registry: ProviderRegistry | None = None,
    rate_limiter: RateLimiter | None = None,
    exporter: PDFExporter | None = None,
) -> Runtime:
    settings = settings or get_settings()
    if session_factory is None:
        from covergen.db.session import SessionLocal

        session_factory = SessionLocal

    registry = registry or build_default_registry(settings)
    rate_limiter = rate_limiter or RateLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_sec)
    exporter = exporter or PDFExporter(settings)
    worker = GenerationWorker(
        session_factory,
        registry,
        rate_limiter,
        settings,
        on_enqueue=lambda _job: exporter.wakeup(),
    )
    return Runtime(
        settings=settings,
        session_factory=session_factory,
        registry=registry,
        rate_limiter=rate_limiter,
        worker=worker,
        extractors=build_default_extractors(),
        exporter=exporter,
    )


def get_runtime() -> Runtime:
    global _RUNTIME
    if _RUNTIME is None:
        _RUNTIME = build_runtime()
    return _RUNTIME


def set_runtime(runtime: Runtime | None) -> None:
    global _RUNTIME
    _RUNTIME = runtime
