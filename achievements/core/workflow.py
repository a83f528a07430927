"""
Approval Workflow - Review State Machine

Governs how an achievement leaves PENDING:

    PENDING --approve--> APPROVED
    PENDING --reject---> REJECTED

APPROVED and REJECTED only return to PENDING through re-submission, which
is an edit handled by AchievementService, not by this component.

Rules (enforced in code):
- Only active, PENDING achievements can be reviewed
- Rejections need a non-blank reason
- Every successful review writes exactly one AuditRecord, in the same
  storage transaction as the state change
- Two reviewers racing on one achievement: exactly one wins, the other
  gets InvalidStateError
- Batch approval is best-effort: each item is independent, failures are
  logged and counted but do not stop the batch

CONCURRENCY:
The check-and-set runs inside ResourceStore.begin_transition(), which
gives exclusive access to ONE achievement. Batches take one such
transition per item, sequentially, so no lock ever spans two achievements.
"""

import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Union
from uuid import UUID, uuid4

from ..db.store import ResourceStore, StoreError
from ..observability import MetricsCollector, get_logger, get_metrics
from ..schemas import AuditDecision, AuditRecord, AuditState
from .audit_trail import AuditTrail
from .errors import (
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    WorkflowError,
)

logger = get_logger(__name__)

DEFAULT_APPROVAL_COMMENT = "Approved"

TransitionListener = Callable[[AuditRecord], None]


def _coerce_id(value: Union[UUID, str]) -> UUID:
    """Accept UUIDs or their string form; anything else is invalid."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise InvalidArgumentError(f"Malformed achievement id: {value!r}") from None


class ApprovalWorkflow:
    """
    Review-side transitions over a ResourceStore, recorded in an AuditTrail.

    Audit records produced by transitions are written through the resource
    store's transition context (so they commit together with the state
    change); the trail is used for reads.
    """

    def __init__(
        self,
        resource_store: ResourceStore,
        audit_trail: AuditTrail,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._resources = resource_store
        self._trail = audit_trail
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._metrics = metrics or get_metrics()
        self._listeners: list[TransitionListener] = []

    @property
    def audit_trail(self) -> AuditTrail:
        return self._trail

    def add_transition_listener(self, listener: TransitionListener) -> None:
        """Call `listener(record)` after every committed transition."""
        self._listeners.append(listener)

    # ================================================================
    # TRANSITIONS
    # ================================================================

    def approve(
        self,
        achievement_id: Union[UUID, str],
        auditor_id: UUID,
        comment: Optional[str] = None,
    ) -> AuditRecord:
        """
        Approve a pending achievement.

        Raises:
            NotFoundError: achievement missing or inactive
            InvalidStateError: achievement is not PENDING
            StorageError: store failure (not retried)
        """
        comment = comment.strip() if comment and comment.strip() else DEFAULT_APPROVAL_COMMENT
        return self._review(achievement_id, auditor_id, AuditDecision.APPROVED, comment)

    def reject(
        self,
        achievement_id: Union[UUID, str],
        auditor_id: UUID,
        reason: Optional[str],
    ) -> AuditRecord:
        """
        Reject a pending achievement with a reason.

        Raises:
            InvalidArgumentError: reason is empty or whitespace
            NotFoundError: achievement missing or inactive
            InvalidStateError: achievement is not PENDING
            StorageError: store failure (not retried)
        """
        reason = reason.strip() if reason else ""
        return self._review(achievement_id, auditor_id, AuditDecision.REJECTED, reason)

    def batch_approve(self, achievement_ids: Iterable[Union[UUID, str]], auditor_id: UUID) -> int:
        """
        Approve each id independently; return how many succeeded.

        No rollback across items. Every failed item is logged with its
        error kind and counted in metrics. Callers needing per-item
        outcomes should call approve() themselves.
        """
        succeeded = 0
        failed = 0

        for raw_id in achievement_ids:
            try:
                self.approve(raw_id, auditor_id)
                succeeded += 1
            except WorkflowError as e:
                failed += 1
                self._metrics.record_batch_item_failure()
                logger.warning(
                    "Batch approval item failed",
                    achievement_id=str(raw_id),
                    auditor_id=str(auditor_id),
                    error_kind=e.kind.value,
                    error=e.message,
                )

        logger.info(
            "Batch approval finished",
            auditor_id=str(auditor_id),
            succeeded=succeeded,
            failed=failed,
        )
        return succeeded

    def _review(
        self,
        raw_id: Union[UUID, str],
        auditor_id: UUID,
        decision: AuditDecision,
        comment: str,
    ) -> AuditRecord:
        try:
            achievement_id = _coerce_id(raw_id)
            if decision == AuditDecision.REJECTED and not comment:
                raise InvalidArgumentError("A rejection reason is required")
            return self._decide(achievement_id, auditor_id, decision, comment)
        except WorkflowError as e:
            self._metrics.record_failure(e.kind.value)
            raise

    def _decide(
        self,
        achievement_id: UUID,
        auditor_id: UUID,
        decision: AuditDecision,
        comment: str,
    ) -> AuditRecord:
        start = time.perf_counter()
        new_state = (
            AuditState.APPROVED if decision == AuditDecision.APPROVED else AuditState.REJECTED
        )

        try:
            with self._resources.begin_transition(achievement_id) as ctx:
                achievement = ctx.achievement

                if achievement is None or not achievement.is_active:
                    raise NotFoundError(f"Achievement {achievement_id} not found")

                if achievement.audit_state != AuditState.PENDING:
                    raise InvalidStateError(
                        f"Achievement {achievement_id} is {achievement.audit_state.value}; "
                        "only pending achievements can be reviewed"
                    )

                now = self._clock()
                record = AuditRecord(
                    record_id=uuid4(),
                    achievement_id=achievement_id,
                    auditor_id=auditor_id,
                    decision=decision,
                    decided_at=now,
                    submitted_at=achievement.submitted_at,
                    comment=comment,
                )
                updated = achievement.model_copy(update={
                    "audit_state": new_state,
                    "audited_at": now,
                    "auditor_id": auditor_id,
                })

                ctx.commit(updated, record)

        except StoreError as e:
            logger.error(
                "Review transition failed in storage",
                achievement_id=str(achievement_id),
                auditor_id=str(auditor_id),
                decision=decision.value,
                error=str(e),
            )
            raise StorageError() from e

        latency_ms = (time.perf_counter() - start) * 1000
        self._metrics.record_decision(decision.value, latency_ms)
        logger.info(
            "Achievement reviewed",
            achievement_id=str(achievement_id),
            auditor_id=str(auditor_id),
            decision=decision.value,
            duration_ms=round(latency_ms, 2),
        )

        self._notify(record)
        return record

    def _notify(self, record: AuditRecord) -> None:
        for listener in self._listeners:
            try:
                listener(record)
            except Exception:
                # The transition is already committed
                logger.exception(
                    "Transition listener failed",
                    achievement_id=str(record.achievement_id),
                )

    # ================================================================
    # HISTORY
    # ================================================================

    def get_history(self, achievement_id: Union[UUID, str]) -> list[AuditRecord]:
        """All decisions on an achievement, newest first."""
        return self._trail.history(_coerce_id(achievement_id))

    def get_reviewer_history(
        self,
        auditor_id: UUID,
        page: int = 1,
        page_size: int = 20,
    ) -> list[AuditRecord]:
        """One page of an auditor's decisions, newest first."""
        return self._trail.for_auditor(auditor_id, page=page, page_size=page_size)
