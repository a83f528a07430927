"""
Audit Trail

Append-only log of review decisions, queryable by achievement or by
auditor, plus the aggregates the statistics view needs.

Storage is delegated to an AuditRecordStore. Store failures surface as
StorageError; nothing is retried here.
"""

from datetime import datetime, timezone, tzinfo
from typing import Callable, Optional, TypeVar
from uuid import UUID

from ..db.store import AuditRecordStore, ResourceStore, StoreError
from ..observability import get_logger
from ..schemas import AuditRecord
from .errors import InvalidArgumentError, NotFoundError, StorageError

logger = get_logger(__name__)

T = TypeVar("T")


def start_of_day(now: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Midnight of `now`'s calendar day in `tz`, as an aware datetime."""
    local = now.astimezone(tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


class AuditTrail:
    """
    Read/append facade over an AuditRecordStore.

    Given a resource store, record() refuses records for achievements that
    do not exist, the same rule the PostgreSQL foreign key enforces.
    """

    def __init__(self, store: AuditRecordStore, resource_store: Optional[ResourceStore] = None):
        self._store = store
        self._resources = resource_store

    @property
    def store(self) -> AuditRecordStore:
        return self._store

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except StoreError as e:
            logger.error("Audit store failure", operation=operation, error=str(e))
            raise StorageError() from e

    def record(self, record: AuditRecord) -> AuditRecord:
        """
        Append a record outside of a review transition.

        Raises:
            NotFoundError: the achievement is unknown to the resource store
            StorageError: store failure
        """
        if self._resources is not None:
            exists = self._call(
                "get_by_id", lambda: self._resources.get_by_id(record.achievement_id)
            )
            if exists is None:
                raise NotFoundError(f"Achievement {record.achievement_id} not found")
        return self._call("insert", lambda: self._store.insert(record))

    def for_resource(self, achievement_id: UUID) -> list[AuditRecord]:
        """All decisions on an achievement, oldest first."""
        return self._call("query_by_resource", lambda: self._store.query_by_resource(achievement_id))

    def history(self, achievement_id: UUID) -> list[AuditRecord]:
        """All decisions on an achievement, newest first."""
        return list(reversed(self.for_resource(achievement_id)))

    def for_auditor(self, auditor_id: UUID, page: int = 1, page_size: int = 20) -> list[AuditRecord]:
        """One page of an auditor's decisions, newest first. Pages are 1-based."""
        if page < 1 or page_size < 1:
            raise InvalidArgumentError("page and page_size must be positive")
        offset = (page - 1) * page_size
        return self._call(
            "query_by_auditor",
            lambda: self._store.query_by_auditor(auditor_id, offset=offset, limit=page_size),
        )

    def count_approved_since(self, since: datetime) -> int:
        return self._call("count_approved_since", lambda: self._store.count_approved_since(since))

    def count_approved_today(self, now: Optional[datetime] = None, tz: tzinfo = timezone.utc) -> int:
        now = now or datetime.now(timezone.utc)
        return self.count_approved_since(start_of_day(now, tz))

    def rejection_rate(self, since: Optional[datetime] = None) -> float:
        rate = self._call("rejection_rate", lambda: self._store.rejection_rate(since))
        return float(rate or 0.0)

    def average_processing_hours(self, since: Optional[datetime] = None) -> float:
        hours = self._call(
            "average_processing_hours",
            lambda: self._store.average_processing_hours(since),
        )
        return float(hours or 0.0)
