"""
Statistics View

Read-only review figures: pending queue size, approvals today, average
processing time and rejection rate. Computed on demand from the stores.

With cache=True the last result is kept until invalidate() is called or
the calendar day changes. Register invalidate as a workflow transition
listener so the cache is dropped on every review decision.
"""

from datetime import datetime, timezone, tzinfo
from threading import Lock
from typing import Callable, Optional

from ..db.store import ResourceStore, StoreError
from ..observability import get_logger
from ..schemas import ApprovalStatistics
from .audit_trail import AuditTrail, start_of_day
from .errors import StorageError

logger = get_logger(__name__)


class StatisticsView:
    """Pure read projection over ResourceStore and AuditTrail."""

    def __init__(
        self,
        resource_store: ResourceStore,
        audit_trail: AuditTrail,
        clock: Optional[Callable[[], datetime]] = None,
        tz: tzinfo = timezone.utc,
        cache: bool = False,
    ):
        self._resources = resource_store
        self._trail = audit_trail
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tz = tz
        self._cache_enabled = cache
        self._cached: Optional[ApprovalStatistics] = None
        self._cached_day: Optional[datetime] = None
        # Bumped by invalidate(); a result computed across a bump is not stored
        self._generation = 0
        self._lock = Lock()

    def get_statistics(self, now: Optional[datetime] = None) -> ApprovalStatistics:
        """
        Current figures. Rates and averages are rounded to 2 decimals and
        are 0.0 when no decisions exist.

        Cached figures are only served on the calendar day they were
        computed, so "approved today" resets at midnight without a decision.
        """
        if not self._cache_enabled or now is not None:
            return self._compute(now or self._clock())

        now = self._clock()
        day = start_of_day(now, self._tz)
        with self._lock:
            if self._cached is not None and self._cached_day == day:
                return self._cached
            generation = self._generation

        stats = self._compute(now)

        with self._lock:
            if self._generation == generation:
                self._cached = stats
                self._cached_day = day
        return stats

    def invalidate(self, *_args) -> None:
        """Drop the cached figures. Accepts (and ignores) a transition record."""
        with self._lock:
            self._generation += 1
            self._cached = None
            self._cached_day = None

    def _compute(self, now: datetime) -> ApprovalStatistics:
        try:
            pending = self._resources.count_pending()
        except StoreError as e:
            logger.error("Pending count failed", error=str(e))
            raise StorageError() from e

        return ApprovalStatistics(
            pending_count=pending,
            today_approved_count=self._trail.count_approved_today(now, self._tz),
            avg_processing_hours=round(self._trail.average_processing_hours(), 2),
            rejection_rate=round(self._trail.rejection_rate(), 2),
        )
