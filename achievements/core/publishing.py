"""
Achievement Service - Publisher-side Lifecycle

Submission, editing (which re-submits for review), soft deletion and the
listing queries around them. Every operation takes the acting user
explicitly and checks it with the PermissionEvaluator.

Editing an achievement always sends it back to PENDING: approved or
rejected work must be reviewed again after any change.
"""

from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar
from uuid import UUID, uuid4

from ..db.store import AchievementFilter, ResourceStore, StoreError
from ..observability import get_logger
from ..schemas import (
    Achievement,
    AchievementChanges,
    AchievementDraft,
    Actor,
    AuditState,
    Permission,
)
from .errors import InvalidArgumentError, NotFoundError, StorageError
from .permissions import PermissionEvaluator

logger = get_logger(__name__)

T = TypeVar("T")


class AchievementService:
    """Owner/administrator operations on achievements."""

    def __init__(
        self,
        resource_store: ResourceStore,
        evaluator: Optional[PermissionEvaluator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._resources = resource_store
        self._evaluator = evaluator or PermissionEvaluator(resource_store)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._listeners: list[Callable[[Achievement], None]] = []

    def add_change_listener(self, listener: Callable[[Achievement], None]) -> None:
        """Call `listener(achievement)` after every committed change."""
        self._listeners.append(listener)

    def _notify(self, achievement: Achievement) -> None:
        for listener in self._listeners:
            try:
                listener(achievement)
            except Exception:
                logger.exception(
                    "Change listener failed",
                    achievement_id=str(achievement.id),
                )

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except StoreError as e:
            logger.error("Resource store failure", operation=operation, error=str(e))
            raise StorageError() from e

    def _load_active(self, achievement_id: UUID) -> Achievement:
        achievement = self._call("get_by_id", lambda: self._resources.get_by_id(achievement_id))
        if achievement is None or not achievement.is_active:
            raise NotFoundError(f"Achievement {achievement_id} not found")
        return achievement

    def _require_scoped(
        self,
        actor: Actor,
        own: Permission,
        any_: Permission,
        achievement: Achievement,
    ) -> None:
        if self._evaluator.evaluate(actor, any_):
            return
        self._evaluator.require(actor, own, resource_id=achievement.id, owner_id=achievement.owner_id)

    # ================================================================
    # COMMANDS
    # ================================================================

    def submit(self, actor: Actor, draft: AchievementDraft) -> Achievement:
        """Create a new PENDING achievement owned by the actor."""
        self._evaluator.require(actor, Permission.CREATE)

        now = self._clock()
        achievement = Achievement(
            id=uuid4(),
            owner_id=actor.id,
            name=draft.name,
            category=draft.category,
            content=draft.content,
            audit_state=AuditState.PENDING,
            is_active=True,
            created_at=now,
            submitted_at=now,
        )
        self._call("add", lambda: self._resources.add(achievement))

        logger.info(
            "Achievement submitted",
            achievement_id=str(achievement.id),
            owner_id=str(actor.id),
        )
        self._notify(achievement)
        return achievement

    def update(self, actor: Actor, achievement_id: UUID, changes: AchievementChanges) -> Achievement:
        """
        Edit an achievement and re-submit it for review.

        Owners need UPDATE_OWN; anyone else needs UPDATE_ANY.
        """
        current = self._load_active(achievement_id)
        self._require_scoped(actor, Permission.UPDATE_OWN, Permission.UPDATE_ANY, current)

        def apply() -> Achievement:
            with self._resources.begin_transition(achievement_id) as ctx:
                achievement = ctx.achievement
                if achievement is None or not achievement.is_active:
                    raise NotFoundError(f"Achievement {achievement_id} not found")

                now = self._clock()
                updated = achievement.model_copy(update={
                    **changes.as_update(),
                    "audit_state": AuditState.PENDING,
                    "submitted_at": now,
                    "updated_at": now,
                    "audited_at": None,
                    "auditor_id": None,
                })
                return ctx.commit(updated)

        updated = self._call("update", apply)
        logger.info(
            "Achievement re-submitted",
            achievement_id=str(achievement_id),
            actor_id=str(actor.id),
            previous_state=current.audit_state.value,
        )
        self._notify(updated)
        return updated

    def delete(self, actor: Actor, achievement_id: UUID) -> Achievement:
        """
        Soft-delete an achievement.

        Owners need DELETE_OWN; anyone else needs DELETE_ANY.
        """
        current = self._load_active(achievement_id)
        self._require_scoped(actor, Permission.DELETE_OWN, Permission.DELETE_ANY, current)

        def apply() -> Achievement:
            with self._resources.begin_transition(achievement_id) as ctx:
                achievement = ctx.achievement
                if achievement is None or not achievement.is_active:
                    raise NotFoundError(f"Achievement {achievement_id} not found")
                return ctx.commit(achievement.model_copy(update={
                    "is_active": False,
                    "updated_at": self._clock(),
                }))

        deleted = self._call("delete", apply)
        logger.info(
            "Achievement deleted",
            achievement_id=str(achievement_id),
            actor_id=str(actor.id),
        )
        self._notify(deleted)
        return deleted

    # ================================================================
    # QUERIES
    # ================================================================

    def get(self, actor: Actor, achievement_id: UUID) -> Achievement:
        """Fetch an active achievement."""
        self._evaluator.require(actor, Permission.READ)
        return self._load_active(achievement_id)

    def get_for_review(self, actor: Actor, achievement_id: UUID) -> Achievement:
        """Full achievement as a reviewer sees it. Requires APPROVE."""
        self._evaluator.require(actor, Permission.APPROVE)
        return self._load_active(achievement_id)

    def list_mine(self, actor: Actor, page: int = 1, page_size: int = 10) -> list[Achievement]:
        """The actor's own active achievements, newest submission first."""
        self._evaluator.require(actor, Permission.READ)
        offset = page_offset(page, page_size)
        criteria = AchievementFilter(owner_id=actor.id)
        return self._call(
            "list_achievements",
            lambda: self._resources.list_achievements(criteria, offset=offset, limit=page_size),
        )

    def list_pending(
        self,
        actor: Actor,
        criteria: Optional[AchievementFilter] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> list[Achievement]:
        """The review queue. Requires APPROVE."""
        self._evaluator.require(actor, Permission.APPROVE)
        offset = page_offset(page, page_size)
        queue = _pending(criteria)
        return self._call(
            "list_achievements",
            lambda: self._resources.list_achievements(queue, offset=offset, limit=page_size),
        )

    def count_pending(self, actor: Actor, criteria: Optional[AchievementFilter] = None) -> int:
        self._evaluator.require(actor, Permission.APPROVE)
        queue = _pending(criteria)
        return self._call("count_achievements", lambda: self._resources.count_achievements(queue))


def page_offset(page: int, page_size: int) -> int:
    if page < 1 or page_size < 1:
        raise InvalidArgumentError("page and page_size must be positive")
    return (page - 1) * page_size


def _pending(criteria: Optional[AchievementFilter]) -> AchievementFilter:
    """Copy of criteria restricted to active, pending achievements."""
    base = criteria or AchievementFilter()
    return AchievementFilter(
        owner_id=base.owner_id,
        audit_state=AuditState.PENDING,
        name_contains=base.name_contains,
        category=base.category,
        submitted_from=base.submitted_from,
        submitted_to=base.submitted_to,
        include_inactive=False,
    )
