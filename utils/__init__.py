"""Shared utility modules for the youtube uploads client."""

from .logging import get_logger, setup_logging
from .quota import QuotaLimitError, QuotaTracker
from .settings import SettingsStore

__all__ = [
    "get_logger",
    "setup_logging",
    "QuotaLimitError",
    "QuotaTracker",
    "SettingsStore",
]
