"""
Achievement Review - Authorization and Approval Core

Composition root. Wires the stores, permission evaluator, approval workflow,
audit trail, statistics view and evaluation service together and exposes
the operations the transport layer (HTTP, CLI, workers) calls.

Every operation takes its actor or auditor explicitly.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Union
from uuid import UUID

from achievements.core import (
    AchievementService,
    ApprovalWorkflow,
    AuditTrail,
    EvaluationService,
    PermissionEvaluator,
    StatisticsView,
)
from achievements.db import (
    AuditRecordStore,
    EvaluationStore,
    InMemoryEvaluationStore,
    ResourceStore,
    create_evaluation_store,
    create_stores,
)
from achievements.observability import check_health, get_logger
from achievements.schemas import Actor, ApprovalStatistics, AuditRecord, Permission

logger = get_logger(__name__)


@dataclass
class ReviewCore:
    """All review services sharing one set of stores."""
    resource_store: ResourceStore
    audit_store: AuditRecordStore
    evaluator: PermissionEvaluator
    audit_trail: AuditTrail
    workflow: ApprovalWorkflow
    statistics: StatisticsView
    achievements: AchievementService
    evaluation_store: EvaluationStore
    evaluations: EvaluationService

    def evaluate(
        self,
        actor: Optional[Actor],
        permission: Union[Permission, str],
        resource_id: Optional[UUID] = None,
    ) -> bool:
        return self.evaluator.evaluate(actor, permission, resource_id=resource_id)

    def approve(self, achievement_id: UUID, auditor_id: UUID) -> AuditRecord:
        return self.workflow.approve(achievement_id, auditor_id)

    def reject(self, achievement_id: UUID, auditor_id: UUID, reason: str) -> AuditRecord:
        return self.workflow.reject(achievement_id, auditor_id, reason)

    def batch_approve(self, achievement_ids: Iterable[UUID], auditor_id: UUID) -> int:
        return self.workflow.batch_approve(achievement_ids, auditor_id)

    def get_history(self, achievement_id: UUID) -> list[AuditRecord]:
        return self.workflow.get_history(achievement_id)

    def get_reviewer_history(self, auditor_id: UUID, page: int = 1, page_size: int = 20) -> list[AuditRecord]:
        return self.workflow.get_reviewer_history(auditor_id, page=page, page_size=page_size)

    def get_statistics(self) -> ApprovalStatistics:
        return self.statistics.get_statistics()

    def health(self):
        return check_health(self.resource_store, self.audit_store)


def build_core(
    resource_store: Optional[ResourceStore] = None,
    audit_store: Optional[AuditRecordStore] = None,
    cache_statistics: bool = True,
    evaluation_store: Optional[EvaluationStore] = None,
) -> ReviewCore:
    """
    Assemble a ReviewCore.

    With no stores given, they are created from the environment
    (see achievements.db.config). Stores must be passed as a pair: a
    resource store writes transition records into its own audit store.
    Without an evaluation store, explicitly passed stores get an
    in-memory one and environment-built stores get the configured one.
    """
    if (resource_store is None) != (audit_store is None):
        raise ValueError("resource_store and audit_store must be given together")
    if resource_store is None:
        resource_store, audit_store = create_stores()
        if evaluation_store is None:
            evaluation_store = create_evaluation_store()
    if evaluation_store is None:
        evaluation_store = InMemoryEvaluationStore()

    evaluator = PermissionEvaluator(resource_store)
    trail = AuditTrail(audit_store, resource_store)
    workflow = ApprovalWorkflow(resource_store, trail)
    statistics = StatisticsView(resource_store, trail, cache=cache_statistics)
    workflow.add_transition_listener(statistics.invalidate)
    achievements = AchievementService(resource_store, evaluator)
    # Submissions, edits and deletions change the pending count too
    achievements.add_change_listener(statistics.invalidate)
    evaluations = EvaluationService(evaluation_store, resource_store, evaluator)

    core = ReviewCore(
        resource_store=resource_store,
        audit_store=audit_store,
        evaluator=evaluator,
        audit_trail=trail,
        workflow=workflow,
        statistics=statistics,
        achievements=achievements,
        evaluation_store=evaluation_store,
        evaluations=evaluations,
    )
    logger.info(
        "Review core ready",
        store_type=type(resource_store).__name__,
        statistics_cache=cache_statistics,
    )
    return core
