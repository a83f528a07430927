"""
Evaluation Service - Ratings and Comments

Users rate achievements (1-5) and may attach a comment. Rating needs the
RATE capability; a non-blank comment additionally needs COMMENT. Each user
has at most one active evaluation per achievement. Only the author edits
an evaluation; the author or a holder of DELETE_ANY removes it (soft).
"""

from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar
from uuid import UUID, uuid4

from ..db.evaluation_store import DuplicateEvaluationError, EvaluationStore
from ..db.store import ResourceStore, StoreError
from ..observability import get_logger
from ..schemas import (
    Actor,
    Evaluation,
    EvaluationChanges,
    EvaluationDraft,
    EvaluationSummary,
    Permission,
)
from .errors import InvalidStateError, NotFoundError, StorageError, UnauthorizedError
from .permissions import PermissionEvaluator
from .publishing import page_offset

logger = get_logger(__name__)

T = TypeVar("T")


class EvaluationService:
    """User-side evaluation operations, each checked against the actor's role."""

    def __init__(
        self,
        evaluation_store: EvaluationStore,
        resource_store: ResourceStore,
        evaluator: Optional[PermissionEvaluator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._evaluations = evaluation_store
        self._resources = resource_store
        self._evaluator = evaluator or PermissionEvaluator(resource_store)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except StoreError as e:
            logger.error("Evaluation store failure", operation=operation, error=str(e))
            raise StorageError() from e

    def _require_writable(self, actor: Actor, with_comment: bool) -> None:
        self._evaluator.require(actor, Permission.RATE)
        if with_comment:
            self._evaluator.require(actor, Permission.COMMENT)

    def _require_achievement(self, achievement_id: UUID) -> None:
        achievement = self._call("get_by_id", lambda: self._resources.get_by_id(achievement_id))
        if achievement is None or not achievement.is_active:
            raise NotFoundError(f"Achievement {achievement_id} not found")

    def _load_active(self, evaluation_id: UUID) -> Evaluation:
        evaluation = self._call("get_by_id", lambda: self._evaluations.get_by_id(evaluation_id))
        if evaluation is None or not evaluation.is_active:
            raise NotFoundError(f"Evaluation {evaluation_id} not found")
        return evaluation

    def _store_update(self, evaluation: Evaluation) -> Evaluation:
        if not self._call("update", lambda: self._evaluations.update(evaluation)):
            raise NotFoundError(f"Evaluation {evaluation.evaluation_id} not found")
        return evaluation

    # ================================================================
    # COMMANDS
    # ================================================================

    def submit(self, actor: Actor, achievement_id: UUID, draft: EvaluationDraft) -> Evaluation:
        """
        Rate an achievement.

        Raises:
            UnauthorizedError: actor lacks RATE, or COMMENT for a comment
            NotFoundError: achievement missing or deleted
            InvalidStateError: the actor already has an active evaluation of it
        """
        self._require_writable(actor, draft.has_comment)
        self._require_achievement(achievement_id)

        evaluation = Evaluation(
            evaluation_id=uuid4(),
            achievement_id=achievement_id,
            user_id=actor.id,
            rating=draft.rating,
            comment=draft.comment.strip(),
            created_at=self._clock(),
        )
        try:
            self._evaluations.insert(evaluation)
        except DuplicateEvaluationError:
            raise InvalidStateError("You have already evaluated this achievement") from None
        except StoreError as e:
            logger.error("Evaluation store failure", operation="insert", error=str(e))
            raise StorageError() from e

        logger.info(
            "Evaluation submitted",
            evaluation_id=str(evaluation.evaluation_id),
            achievement_id=str(achievement_id),
            user_id=str(actor.id),
            rating=evaluation.rating,
        )
        return evaluation

    def update(self, actor: Actor, evaluation_id: UUID, changes: EvaluationChanges) -> Evaluation:
        """Edit one's own evaluation. Nobody else may edit it, administrators included."""
        self._require_writable(actor, changes.has_comment)
        current = self._load_active(evaluation_id)
        if current.user_id != actor.id:
            raise UnauthorizedError("Only the author may edit an evaluation")

        update = changes.as_update()
        if "comment" in update:
            update["comment"] = update["comment"].strip()
        updated = self._store_update(current.model_copy(update={
            **update,
            "updated_at": self._clock(),
        }))

        logger.info(
            "Evaluation updated",
            evaluation_id=str(evaluation_id),
            user_id=str(actor.id),
        )
        return updated

    def delete(self, actor: Actor, evaluation_id: UUID) -> Evaluation:
        """Soft-delete an evaluation. The author, or anyone holding DELETE_ANY."""
        current = self._load_active(evaluation_id)
        if current.user_id != actor.id:
            self._evaluator.require(actor, Permission.DELETE_ANY)
        else:
            self._evaluator.require(actor, Permission.RATE)

        deleted = self._store_update(current.model_copy(update={
            "is_active": False,
            "updated_at": self._clock(),
        }))

        logger.info(
            "Evaluation deleted",
            evaluation_id=str(evaluation_id),
            actor_id=str(actor.id),
            author_id=str(current.user_id),
        )
        return deleted

    # ================================================================
    # QUERIES
    # ================================================================

    def list_for_achievement(
        self,
        actor: Actor,
        achievement_id: UUID,
        page: int = 1,
        page_size: int = 10,
    ) -> list[Evaluation]:
        """Active evaluations of an achievement, most recent first."""
        self._evaluator.require(actor, Permission.READ)
        offset = page_offset(page, page_size)
        return self._call(
            "list_for_achievement",
            lambda: self._evaluations.list_for_achievement(achievement_id, offset=offset, limit=page_size),
        )

    def list_mine(self, actor: Actor, page: int = 1, page_size: int = 10) -> list[Evaluation]:
        """The actor's own active evaluations, most recent first."""
        self._evaluator.require(actor, Permission.READ)
        offset = page_offset(page, page_size)
        return self._call(
            "list_for_user",
            lambda: self._evaluations.list_for_user(actor.id, offset=offset, limit=page_size),
        )

    def count_for_achievement(self, actor: Actor, achievement_id: UUID) -> int:
        self._evaluator.require(actor, Permission.READ)
        return self._call(
            "count_for_achievement",
            lambda: self._evaluations.count_for_achievement(achievement_id),
        )

    def count_mine(self, actor: Actor) -> int:
        self._evaluator.require(actor, Permission.READ)
        return self._call("count_for_user", lambda: self._evaluations.count_for_user(actor.id))

    def summary(self, actor: Actor, achievement_id: UUID) -> EvaluationSummary:
        """Count, average rating and per-rating distribution of an achievement."""
        self._evaluator.require(actor, Permission.READ)
        counts = self._call(
            "rating_counts",
            lambda: self._evaluations.rating_counts(achievement_id),
        )
        return EvaluationSummary.from_counts(achievement_id, counts)

    def has_evaluated(self, actor: Actor, achievement_id: UUID) -> bool:
        self._evaluator.require(actor, Permission.READ)
        found = self._call(
            "find_active",
            lambda: self._evaluations.find_active(actor.id, achievement_id),
        )
        return found is not None
