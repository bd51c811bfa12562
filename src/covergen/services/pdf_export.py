from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import urljoin

import requests

from covergen.config import Settings, get_settings
from covergen.errors import ExportError
from covergen.types import CoverLetterContent, PDFExportResult, Profile

logger = logging.getLogger(__name__)

_FILENAME_RE = re.compile(r"filename\*?=(?:\"([^\"]*)\"|([^;,\"]*))")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def filename_from_disposition(header: str | None) -> str | None:
    if not header:
        return None
    match = _FILENAME_RE.search(header)
    if not match:
        return None
    return (match.group(1) or match.group(2) or "").strip() or None


def default_filename(letter: CoverLetterContent, profile: Profile) -> str:
    stem = _UNSAFE_FILENAME_CHARS.sub("_", f"{profile.name}_{letter.position}").strip("_")
    return f"Cover_Letter_{stem or letter.id}.pdf"


def build_render_payload(letter: CoverLetterContent, profile: Profile) -> dict[str, Any]:
    first_name, _, last_name = profile.name.strip().partition(" ")
    return {
        "first_name": first_name,
        "last_name": last_name.strip(),
        "email": profile.email,
        "phone": profile.phone or "",
        "homepage": profile.homepage or "",
        "github": profile.github or "",
        "linkedin": profile.linkedin or "",
        "position": letter.position,
        "addressee": letter.addressee,
        "opening": letter.opening,
        "about_me": letter.about_me,
        "why_me": letter.why_me,
        "why_company": letter.why_company,
    }


class PDFExporter:
    """Client for the remote render service that turns a letter into a PDF."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or get_settings()
        self.session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep
        self._last_wakeup: float | None = None
        self._wakeup_lock = threading.Lock()

    @property
    def render_url(self) -> str:
        return urljoin(self.settings.pdf_render_url, "render")

    @property
    def health_url(self) -> str:
        return urljoin(self.settings.pdf_render_url, "health")

    def export(self, letter: CoverLetterContent, profile: Profile) -> PDFExportResult:
        payload = build_render_payload(letter, profile)
        attempts = max(1, self.settings.pdf_max_attempts)
        last_error = "Unknown error"

        for attempt in range(1, attempts + 1):
            logger.info("Rendering PDF position=%s attempt=%s", letter.position, attempt)
            try:
                response = self.session.post(
                    self.render_url,
                    json=payload,
                    timeout=self.settings.pdf_timeout_sec,
                )
            except requests.RequestException as exc:
                last_error = str(exc) or exc.__class__.__name__
            else:
                if response.ok:
                    filename = filename_from_disposition(response.headers.get("content-disposition"))
                    return PDFExportResult(
                        content=response.content,
                        filename=filename or default_filename(letter, profile),
                    )
                last_error = f"PDF generation failed: {response.status_code} {response.reason}"

            logger.warning("PDF render attempt %s failed: %s", attempt, last_error)
            if attempt < attempts:
                self._sleep(self.settings.pdf_retry_delay_sec)

        raise ExportError(f"PDF generation error after {attempts} attempts: {last_error}")

    def export_to_file(
        self,
        letter: CoverLetterContent,
        profile: Profile,
        directory: Path | None = None,
    ) -> Path:
        result = self.export(letter, profile)
        directory = directory or self.settings.export_dir
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / result.filename
        path.write_bytes(result.content)
        return path

    def wakeup(self, background: bool = True) -> bool:
        """Ping the render service so a cold instance starts before export.

        Pings are debounced; returns False when skipped.
        """
        with self._wakeup_lock:
            now = self._clock()
            if self._last_wakeup is not None and now - self._last_wakeup < self.settings.pdf_wakeup_debounce_sec:
                return False
            self._last_wakeup = now

        if background:
            threading.Thread(target=self._ping, name="covergen-pdf-wakeup", daemon=True).start()
        else:
            self._ping()
        return True

    def _ping(self) -> None:
        try:
            self.session.get(self.health_url, timeout=self.settings.pdf_timeout_sec)
        except requests.RequestException as exc:
            logger.debug("PDF service wakeup ping failed: %s", exc)
