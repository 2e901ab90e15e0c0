from __future__ import annotations

import logging
import os
from typing import Iterable, Optional

_DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DEFAULT_DATEFMT = "%Y-%m-%dT%H:%M:%SZ"

# Third-party loggers that are chatty at DEBUG and never useful for this tool.
_NOISY_LOGGERS = ("urllib3", "google_auth_oauthlib", "requests_oauthlib")


def setup_logging(
    level: Optional[str] = None,
    fmt: str = _DEFAULT_FORMAT,
    datefmt: str = _DEFAULT_DATEFMT,
    quiet: Iterable[str] = _NOISY_LOGGERS,
) -> None:
    """Configure root logger.

    Respect `LOG_LEVEL` env var when level is not supplied. Loggers named in
    `quiet` are held at WARNING regardless of the chosen level.
    """

    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO), format=fmt, datefmt=datefmt)
    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return module-specific logger."""

    if logging.getLogger().handlers:
        return logging.getLogger(name)

    # Auto-setup if not configured.
    setup_logging()
    return logging.getLogger(name)
