from __future__ import annotations

import logging

from covergen.config import get_settings

_LOG_CONFIGURED = False

_NOISY_LOGGERS = ("httpx", "openai", "urllib3")


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once per process.

    ``level`` overrides ``LOG_LEVEL`` from the settings. Log lines carry the
    thread name so worker output can be told apart from request handling.
    """
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] [%(threadName)s] %(message)s",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _LOG_CONFIGURED = True
