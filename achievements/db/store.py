"""
Store Abstractions

This module defines the storage collaborators consumed by the review core
and provides in-memory implementations:
- ResourceStore: achievements (CRUD, ownership lookup, guarded transitions)
- AuditRecordStore: append-only review decisions and their aggregates

The stores are responsible for:
- Per-achievement exclusive access during a state transition
- Writing the achievement and its audit record atomically
- Durability and query execution

The ApprovalWorkflow retains responsibility for:
- Transition rules (only PENDING may be reviewed)
- Argument validation
- Building audit records

TRANSACTION CONTRACT:
All review-side state changes MUST use the begin_transition() context manager:

    with store.begin_transition(achievement_id) as ctx:
        if ctx.achievement is None: ...
        ctx.commit(updated_achievement, audit_record)

Exclusive access is scoped to ONE achievement. Nothing ever holds a lock
spanning several achievements.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Generator, Optional
from uuid import UUID

from ..schemas import Achievement, AuditDecision, AuditRecord, AuditState


# ============================================================
# EXCEPTIONS
# ============================================================

class StoreError(Exception):
    """Base exception for storage failures."""
    pass


class LockTimeoutError(StoreError):
    """Raised when an achievement's lock cannot be acquired in time."""
    pass


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass
class AchievementFilter:
    """
    Query criteria for listing achievements.

    All criteria are ANDed. Inactive (soft-deleted) achievements are
    excluded unless include_inactive is set.
    """
    owner_id: Optional[UUID] = None
    audit_state: Optional[AuditState] = None
    name_contains: Optional[str] = None
    category: Optional[str] = None
    submitted_from: Optional[datetime] = None
    submitted_to: Optional[datetime] = None
    include_inactive: bool = False

    def matches(self, achievement: Achievement) -> bool:
        if not self.include_inactive and not achievement.is_active:
            return False
        if self.owner_id is not None and achievement.owner_id != self.owner_id:
            return False
        if self.audit_state is not None and achievement.audit_state != self.audit_state:
            return False
        if self.name_contains and self.name_contains.lower() not in achievement.name.lower():
            return False
        if self.category and achievement.category != self.category:
            return False
        if self.submitted_from is not None and achievement.submitted_at < self.submitted_from:
            return False
        if self.submitted_to is not None and achievement.submitted_at > self.submitted_to:
            return False
        return True


@dataclass
class TransitionContext:
    """
    Exclusive-access context for changing one achievement.

    Holds the snapshot read under the lock and whatever the backend needs
    to finish the transaction (connection, cursor). commit() writes the new
    achievement state and the optional audit record together, or neither.

    Usage:
        with store.begin_transition(achievement_id) as ctx:
            ctx.commit(updated, record)
    """
    achievement_id: UUID
    achievement: Optional[Achievement]
    _store: "ResourceStore"
    _conn: Any = field(default=None)
    _cursor: Any = field(default=None)
    _committed: bool = field(default=False, init=False)
    _rolled_back: bool = field(default=False, init=False)

    def commit(
        self,
        achievement: Achievement,
        record: Optional[AuditRecord] = None,
    ) -> Achievement:
        """
        Persist the new achievement state (and audit record) atomically.

        Args:
            achievement: Updated achievement; must keep id and owner_id
            record: Audit record to append in the same transaction
        """
        if self._committed:
            raise StoreError("Transition already committed")
        if self._rolled_back:
            raise StoreError("Transition already rolled back")
        if self.achievement is None:
            raise StoreError(f"Achievement {self.achievement_id} does not exist")
        if achievement.id != self.achievement_id:
            raise StoreError(
                f"Transition opened for {self.achievement_id} "
                f"cannot commit achievement {achievement.id}"
            )
        if achievement.owner_id != self.achievement.owner_id:
            raise StoreError("Achievement ownership cannot change")

        result = self._store._do_commit(self, achievement, record)
        self._committed = True
        self.achievement = result
        return result

    def rollback(self) -> None:
        """Explicitly abandon this transition."""
        if not self._committed and not self._rolled_back:
            self._store._do_rollback(self)
            self._rolled_back = True


# ============================================================
# ABSTRACT BASE CLASSES
# ============================================================

class AuditRecordStore(ABC):
    """
    Append-only store of review decisions.

    Records are never updated or deleted. Aggregates over an empty
    record set are 0.0, never NaN.
    """

    @abstractmethod
    def insert(self, record: AuditRecord) -> AuditRecord:
        """Append a record. Fails only on storage error."""
        pass

    @abstractmethod
    def query_by_resource(self, achievement_id: UUID) -> list[AuditRecord]:
        """Records for one achievement, oldest first."""
        pass

    @abstractmethod
    def query_by_auditor(
        self,
        auditor_id: UUID,
        offset: int = 0,
        limit: int = 20,
    ) -> list[AuditRecord]:
        """Records made by one auditor, newest first."""
        pass

    @abstractmethod
    def count_approved_since(self, since: datetime) -> int:
        """Number of approvals decided at or after `since`."""
        pass

    @abstractmethod
    def average_processing_hours(self, since: Optional[datetime] = None) -> float:
        """Mean hours between submission and decision."""
        pass

    @abstractmethod
    def rejection_rate(self, since: Optional[datetime] = None) -> float:
        """rejected / (approved + rejected)."""
        pass


class ResourceStore(ABC):
    """
    Abstract store for achievements.

    Implementations must ensure:
    1. begin_transition() gives exclusive access to exactly one achievement
    2. TransitionContext.commit() writes achievement and record atomically
    3. Lock waits are bounded; a timeout raises LockTimeoutError
    """

    @abstractmethod
    def add(self, achievement: Achievement) -> Achievement:
        """Insert a new achievement."""
        pass

    @abstractmethod
    def get_by_id(self, achievement_id: UUID) -> Optional[Achievement]:
        """Fetch an achievement, active or not."""
        pass

    @contextmanager
    @abstractmethod
    def begin_transition(self, achievement_id: UUID) -> Generator[TransitionContext, None, None]:
        """
        Open an exclusive transition on one achievement.

        The context is rolled back automatically if it exits without commit
        or with an exception.
        """
        pass

    @abstractmethod
    def _do_commit(
        self,
        ctx: TransitionContext,
        achievement: Achievement,
        record: Optional[AuditRecord],
    ) -> Achievement:
        """Internal: commit within the context. Use ctx.commit() instead."""
        pass

    @abstractmethod
    def _do_rollback(self, ctx: TransitionContext) -> None:
        """Internal: abandon the context. Use ctx.rollback() instead."""
        pass

    @abstractmethod
    def list_achievements(
        self,
        criteria: Optional[AchievementFilter] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[Achievement]:
        """List achievements matching criteria, most recently submitted first."""
        pass

    @abstractmethod
    def count_achievements(self, criteria: Optional[AchievementFilter] = None) -> int:
        pass

    def get_owner_id(self, achievement_id: UUID) -> Optional[UUID]:
        """Owner of an achievement, or None if it does not exist."""
        achievement = self.get_by_id(achievement_id)
        return achievement.owner_id if achievement else None

    def update(self, achievement: Achievement) -> bool:
        """
        Overwrite an existing achievement under its lock.

        Returns False if the achievement does not exist.
        """
        with self.begin_transition(achievement.id) as ctx:
            if ctx.achievement is None:
                return False
            ctx.commit(achievement)
            return True

    def count_pending(self) -> int:
        """Active achievements awaiting review."""
        return self.count_achievements(AchievementFilter(audit_state=AuditState.PENDING))


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryAuditRecordStore(AuditRecordStore):
    """
    In-memory implementation of AuditRecordStore.

    Suitable for development, testing and single-process deployments.
    """

    def __init__(self):
        self._records: list[AuditRecord] = []
        self._lock = Lock()

    def insert(self, record: AuditRecord) -> AuditRecord:
        with self._lock:
            self._records.append(record)
        return record

    def _snapshot(self) -> list[AuditRecord]:
        with self._lock:
            return list(self._records)

    def query_by_resource(self, achievement_id: UUID) -> list[AuditRecord]:
        return sorted(
            [r for r in self._snapshot() if r.achievement_id == achievement_id],
            key=lambda r: r.decided_at,
        )

    def query_by_auditor(
        self,
        auditor_id: UUID,
        offset: int = 0,
        limit: int = 20,
    ) -> list[AuditRecord]:
        records = sorted(
            [r for r in self._snapshot() if r.auditor_id == auditor_id],
            key=lambda r: r.decided_at,
            reverse=True,
        )
        return records[offset:offset + limit]

    def count_approved_since(self, since: datetime) -> int:
        return sum(
            1 for r in self._snapshot()
            if r.decision == AuditDecision.APPROVED and r.decided_at >= since
        )

    def _decided(self, since: Optional[datetime]) -> list[AuditRecord]:
        records = self._snapshot()
        if since is not None:
            records = [r for r in records if r.decided_at >= since]
        return records

    def average_processing_hours(self, since: Optional[datetime] = None) -> float:
        records = self._decided(since)
        if not records:
            return 0.0
        return sum(r.processing_hours for r in records) / len(records)

    def rejection_rate(self, since: Optional[datetime] = None) -> float:
        records = self._decided(since)
        if not records:
            return 0.0
        rejected = sum(1 for r in records if r.decision == AuditDecision.REJECTED)
        return rejected / len(records)

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def clear(self) -> None:
        """Clear all records (for testing only)."""
        with self._lock:
            self._records.clear()


class InMemoryResourceStore(ResourceStore):
    """
    In-memory implementation of ResourceStore.

    Each achievement has its own lock, created when the achievement is
    added. The registry lock only guards that table; it is never held
    while an achievement is being changed.

    Review transitions append to the paired audit store; if that append
    fails the previous achievement state is restored.
    """

    LOCK_TIMEOUT_SECONDS = 2.0

    def __init__(
        self,
        audit_store: Optional[InMemoryAuditRecordStore] = None,
        lock_timeout: float = LOCK_TIMEOUT_SECONDS,
    ):
        if audit_store is None:
            audit_store = InMemoryAuditRecordStore()

        self._audit_store = audit_store
        self._lock_timeout = lock_timeout
        self._achievements: dict[UUID, Achievement] = {}
        self._locks: dict[UUID, Lock] = {}
        self._registry_lock = Lock()

    @property
    def audit_store(self) -> AuditRecordStore:
        """The audit store that transitions write into."""
        return self._audit_store

    def _lock_for(self, achievement_id: UUID) -> Optional[Lock]:
        with self._registry_lock:
            return self._locks.get(achievement_id)

    def add(self, achievement: Achievement) -> Achievement:
        with self._registry_lock:
            if achievement.id in self._achievements:
                raise StoreError(f"Achievement {achievement.id} already exists")
            self._locks[achievement.id] = Lock()
            self._achievements[achievement.id] = achievement
        return achievement

    def get_by_id(self, achievement_id: UUID) -> Optional[Achievement]:
        return self._achievements.get(achievement_id)

    @contextmanager
    def begin_transition(self, achievement_id: UUID) -> Generator[TransitionContext, None, None]:
        """
        Open a transition holding this achievement's lock.

        An unknown id gets a context with no achievement and takes no lock,
        so lookups of random ids never grow the lock registry.
        """
        lock = self._lock_for(achievement_id)
        if lock is not None and not lock.acquire(timeout=self._lock_timeout):
            raise LockTimeoutError(
                f"Achievement {achievement_id} is busy - could not acquire lock. Try again."
            )

        ctx = TransitionContext(
            achievement_id=achievement_id,
            achievement=self._achievements.get(achievement_id) if lock is not None else None,
            _store=self,
            _conn=lock,
        )

        try:
            yield ctx
        finally:
            if not ctx._committed and not ctx._rolled_back:
                ctx.rollback()
            if lock is not None:
                lock.release()

    def _do_commit(
        self,
        ctx: TransitionContext,
        achievement: Achievement,
        record: Optional[AuditRecord],
    ) -> Achievement:
        if ctx._conn is None:
            raise StoreError("_do_commit called outside begin_transition")

        previous = self._achievements.get(achievement.id)
        self._achievements[achievement.id] = achievement
        if record is not None:
            try:
                self._audit_store.insert(record)
            except Exception as e:
                self._achievements[achievement.id] = previous
                raise StoreError("Audit record append failed; transition undone") from e
        return achievement

    def _do_rollback(self, ctx: TransitionContext) -> None:
        # Nothing is written before commit, so there is nothing to undo
        ctx._conn = None

    def list_achievements(
        self,
        criteria: Optional[AchievementFilter] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[Achievement]:
        criteria = criteria or AchievementFilter()
        matched = sorted(
            [a for a in list(self._achievements.values()) if criteria.matches(a)],
            key=lambda a: a.submitted_at,
            reverse=True,
        )
        end = None if limit is None else offset + limit
        return matched[offset:end]

    def count_achievements(self, criteria: Optional[AchievementFilter] = None) -> int:
        criteria = criteria or AchievementFilter()
        return sum(1 for a in list(self._achievements.values()) if criteria.matches(a))

    def clear(self) -> None:
        """Clear all achievements (for testing only)."""
        with self._registry_lock:
            self._achievements.clear()
            self._locks.clear()
