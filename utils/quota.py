from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

# YouTube Data API v3 costs for the read calls the fetcher issues.
CHANNELS_QUOTA_COST = 1
PLAYLIST_ITEMS_QUOTA_COST = 1
VIDEOS_QUOTA_COST = 1
DAILY_QUOTA_LIMIT = 10000
SAFETY_BUFFER = 500


class QuotaLimitError(RuntimeError):
    """Raised when a quota limit would be exceeded."""


@dataclass
class QuotaTracker:
    """Per-session accounting of Data API quota units.

    The fetcher spends units only after a call succeeds, so retried or failed
    requests do not count against the budget.
    """

    daily_limit: int = DAILY_QUOTA_LIMIT
    safety_buffer: int = SAFETY_BUFFER
    used: int = 0
    counters: Dict[str, int] = field(default_factory=dict)

    def _max_allowed(self) -> int:
        return max(0, self.daily_limit - self.safety_buffer)

    def remaining(self) -> int:
        return max(0, self._max_allowed() - self.used)

    def ensure_within_limit(self, units: int) -> None:
        if self.used + units > self._max_allowed():
            raise QuotaLimitError(
                f"Quota exceeded: used {self.used}, request {units}, limit {self._max_allowed()}"
            )

    def spend(self, action: str, units: int) -> None:
        self.ensure_within_limit(units)
        self.used += units
        self.counters[action] = self.counters.get(action, 0) + units
