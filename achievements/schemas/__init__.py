# Canonical Schemas for Achievement Review
# Roles, achievements, the review decisions recorded against them and
# the ratings users leave on published work.

from .role import Actor, Permission, Role
from .achievement import (
    Achievement,
    AchievementChanges,
    AchievementDraft,
    AuditState,
)
from .audit import ApprovalStatistics, AuditDecision, AuditRecord
from .evaluation import (
    Evaluation,
    EvaluationChanges,
    EvaluationDraft,
    EvaluationSummary,
)

__all__ = [
    # Roles
    "Actor",
    "Permission",
    "Role",
    # Achievement
    "Achievement",
    "AchievementChanges",
    "AchievementDraft",
    "AuditState",
    # Audit
    "ApprovalStatistics",
    "AuditDecision",
    "AuditRecord",
    # Evaluation
    "Evaluation",
    "EvaluationChanges",
    "EvaluationDraft",
    "EvaluationSummary",
]
