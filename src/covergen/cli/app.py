from __future__ import annotations

import json
from pathlib import Path
from typing import Any, NoReturn

import typer
import uvicorn

from covergen.api.app import create_app
from covergen.config import get_settings
from covergen.core.extraction import ManualExtractor, fetch_job_posting
from covergen.core.generation import check_provider_settings, generate_cover_letter, mark_exported
from covergen.core.runtime import build_runtime
from covergen.core.validation import validate_job_posting, validate_provider_settings
from covergen.db.init import init_database
from covergen.db.repositories import REDACTED, Repository
from covergen.db.session import SessionLocal
from covergen.errors import CovergenError
from covergen.logging_config import configure_logging
from covergen.types import GenerationConfig, Profile, ProviderSettings

app = typer.Typer(help="Covergen CLI")
profile_app = typer.Typer(help="Manage profiles")
posting_app = typer.Typer(help="Job postings")
jobs_app = typer.Typer(help="Generation jobs")
letters_app = typer.Typer(help="Generated cover letters")
settings_app = typer.Typer(help="LLM provider settings")

app.add_typer(profile_app, name="profile")
app.add_typer(posting_app, name="posting")
app.add_typer(jobs_app, name="jobs")
app.add_typer(letters_app, name="letters")
app.add_typer(settings_app, name="settings")

_INITIALIZED = False


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


def _echo(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _fail(exc: Exception) -> NoReturn:
    typer.echo(json.dumps({"ok": False, "error": str(exc)}, indent=2), err=True)
    raise typer.Exit(code=1)


def _job_summary(job) -> dict[str, Any]:
    return job.model_dump(mode="json", exclude={"profile", "job_posting"})


@app.command("init")
def init_cmd() -> None:
    """Create the database tables and data directories."""
    configure_logging()
    result = init_database()
    _echo({"ok": True, **result})


@profile_app.command("import")
def profile_import(file: Path = typer.Option(..., "--file", exists=True, readable=True)) -> None:
    """Import one profile (JSON object) or several (JSON array)."""
    configure_logging()
    ensure_initialized()
    payload = json.loads(file.read_text(encoding="utf-8"))
    items = payload if isinstance(payload, list) else [payload]

    with SessionLocal() as db:
        repo = Repository(db)
        imported = []
        for item in items:
            profile = repo.save_profile(Profile.model_validate(item))
            imported.append({"id": profile.id, "name": profile.name})
    _echo({"imported": imported})


@profile_app.command("list")
def profile_list() -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        profiles = Repository(db).list_profiles()
    _echo([{"id": profile.id, "name": profile.name, "email": profile.email} for profile in profiles])


@posting_app.command("add")
def posting_add(
    url: str = typer.Option(..., "--url"),
    company: str = typer.Option(..., "--company"),
    title: str = typer.Option(..., "--title"),
    description: str | None = typer.Option(None, "--description"),
    description_file: Path | None = typer.Option(None, "--description-file", exists=True, readable=True),
    skill: list[str] = typer.Option([], "--skill"),
) -> None:
    """Enter job details by hand."""
    configure_logging()
    ensure_initialized()
    if description_file is not None:
        description = description_file.read_text(encoding="utf-8")
    if not description:
        raise typer.BadParameter("provide --description or --description-file")

    posting = ManualExtractor().build(url, company=company, title=title, description=description, skills=skill)
    result = validate_job_posting(posting)
    if not result.valid:
        _fail(ValueError(result.message))

    with SessionLocal() as db:
        posting = Repository(db).save_job_posting(posting)
    _echo(posting.model_dump(mode="json"))


@posting_app.command("fetch")
def posting_fetch(
    url: str = typer.Option(..., "--url"),
    refresh: bool = typer.Option(False, "--refresh"),
) -> None:
    """Download a job page and extract its details."""
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            posting = fetch_job_posting(url, Repository(db), refresh=refresh)
        except CovergenError as exc:
            _fail(exc)
    _echo(posting.model_dump(mode="json"))


@app.command("generate")
def generate_cmd(
    profile_id: str = typer.Option(..., "--profile-id"),
    posting_id: str = typer.Option(..., "--posting-id"),
    model: str | None = typer.Option(None, "--model"),
    temperature: float | None = typer.Option(None, "--temperature"),
    max_tokens: int | None = typer.Option(None, "--max-tokens"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Generate now instead of queueing a job"),
) -> None:
    configure_logging()
    ensure_initialized()
    runtime = build_runtime()
    config = GenerationConfig(model=model, temperature=temperature, max_tokens=max_tokens)

    if not wait:
        try:
            job = runtime.worker.enqueue(profile_id, posting_id, config)
        except CovergenError as exc:
            _fail(exc)
        _echo(_job_summary(job))
        return

    with SessionLocal() as db:
        repo = Repository(db)
        profile = repo.get_profile(profile_id)
        posting = repo.get_job_posting(posting_id)
        if profile is None or posting is None:
            raise typer.BadParameter("profile or job posting not found")
        try:
            letter = generate_cover_letter(
                repo, runtime.registry, runtime.rate_limiter, profile, posting, config, runtime.settings
            )
        except CovergenError as exc:
            _fail(exc)
    _echo(letter.model_dump(mode="json"))


@jobs_app.command("list")
def jobs_list(
    profile_id: str | None = typer.Option(None, "--profile-id"),
    status: str | None = typer.Option(None, "--status"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        jobs = Repository(db).list_generation_jobs(profile_id, status=status, limit=limit)
    _echo([_job_summary(job) for job in jobs])


@jobs_app.command("status")
def jobs_status(job_id: str = typer.Option(..., "--job-id")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        job = Repository(db).get_generation_job(job_id)
    if job is None:
        raise typer.BadParameter(f"job {job_id} not found")
    _echo(_job_summary(job))


@jobs_app.command("cancel")
def jobs_cancel(job_id: str = typer.Option(..., "--job-id")) -> None:
    configure_logging()
    ensure_initialized()
    runtime = build_runtime()
    try:
        job = runtime.worker.cancel(job_id)
    except CovergenError as exc:
        _fail(exc)
    _echo(_job_summary(job))


@jobs_app.command("run")
def jobs_run() -> None:
    """Process every pending job in this process and exit."""
    configure_logging()
    ensure_initialized()
    runtime = build_runtime()
    runtime.worker.recover()
    processed = runtime.worker.run_pending()
    _echo([_job_summary(job) for job in processed])


@letters_app.command("show")
def letters_show(letter_id: str = typer.Option(..., "--letter-id")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        letter = Repository(db).get_cover_letter(letter_id)
    if letter is None:
        raise typer.BadParameter(f"cover letter {letter_id} not found")
    _echo(letter.model_dump(mode="json"))


@letters_app.command("export")
def letters_export(
    letter_id: str = typer.Option(..., "--letter-id"),
    out_dir: Path | None = typer.Option(None, "--out-dir"),
) -> None:
    """Render a cover letter to PDF through the render service."""
    configure_logging()
    ensure_initialized()
    runtime = build_runtime()
    with SessionLocal() as db:
        repo = Repository(db)
        letter = repo.get_cover_letter(letter_id)
        if letter is None:
            raise typer.BadParameter(f"cover letter {letter_id} not found")
        profile = repo.get_profile(letter.profile_id)
        if profile is None:
            raise typer.BadParameter(f"profile {letter.profile_id} not found")
        try:
            path = runtime.exporter.export_to_file(letter, profile, out_dir)
        except CovergenError as exc:
            _fail(exc)
        mark_exported(repo, letter_id)
    _echo({"ok": True, "path": str(path)})


@settings_app.command("set")
def settings_set(
    provider: str = typer.Option(..., "--provider"),
    model: str = typer.Option(..., "--model"),
    api_key: str | None = typer.Option(None, "--api-key"),
    endpoint: str | None = typer.Option(None, "--endpoint"),
    temperature: float = typer.Option(0.7, "--temperature"),
    max_tokens: int = typer.Option(2048, "--max-tokens"),
) -> None:
    configure_logging()
    ensure_initialized()
    provider_settings = ProviderSettings(
        provider_id=provider,
        api_key=api_key,
        endpoint=endpoint,
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    runtime = build_runtime()
    if not runtime.registry.has(provider):
        raise typer.BadParameter(f"unknown provider {provider}; choose from {runtime.registry.list_ids()}")
    result = validate_provider_settings(provider_settings)
    if not result.valid:
        _fail(ValueError(result.message))

    with SessionLocal() as db:
        saved = Repository(db).save_provider_settings(provider_settings)
    _echo(_redacted(saved))


@settings_app.command("show")
def settings_show() -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        saved = Repository(db).get_provider_settings()
    _echo(_redacted(saved) if saved else None)


@settings_app.command("validate")
def settings_validate() -> None:
    """Check the saved settings against the provider itself."""
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        saved = Repository(db).get_provider_settings()
    if saved is None:
        raise typer.BadParameter("no provider settings saved; run `covergen settings set` first")

    runtime = build_runtime()
    outcome = check_provider_settings(runtime.registry, saved)
    _echo(outcome.model_dump())
    if not outcome.valid:
        raise typer.Exit(code=1)


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    app_instance = create_app()
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)


def _redacted(settings: ProviderSettings) -> dict[str, Any]:
    data = settings.model_dump(mode="json")
    if data.get("api_key"):
        data["api_key"] = REDACTED
    return data
