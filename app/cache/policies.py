"""
Refresh and forget intervals.
"""
from dataclasses import dataclass
from datetime import datetime

from .core import CacheEntry

REFRESH_INTERVAL_SECONDS = 15 * 60          # 15 minutes
FORGET_INTERVAL_SECONDS = 7 * 24 * 60 * 60  # 7 days


@dataclass(frozen=True)
class CachePolicy:
    """
    Stale-while-revalidate policy shared by every site.

    A hit older than ``refresh_interval_seconds`` is served as-is and
    refreshed in the background. An entry older than
    ``forget_interval_seconds`` is dropped by the next refresh cycle on
    its site.
    """
    refresh_interval_seconds: float = REFRESH_INTERVAL_SECONDS
    forget_interval_seconds: float = FORGET_INTERVAL_SECONDS

    @classmethod
    def from_settings(cls, settings) -> "CachePolicy":
        return cls(
            refresh_interval_seconds=settings.refresh_interval_seconds,
            forget_interval_seconds=settings.forget_interval_seconds,
        )

    def is_stale(self, entry: CacheEntry, now: datetime) -> bool:
        return entry.age_seconds(now) > self.refresh_interval_seconds

    def is_forgotten(self, entry: CacheEntry, now: datetime) -> bool:
        return entry.age_seconds(now) > self.forget_interval_seconds
