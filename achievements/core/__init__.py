# Core review services
from .errors import (
    ErrorKind,
    WorkflowError,
    UnauthorizedError,
    NotFoundError,
    InvalidStateError,
    InvalidArgumentError,
    StorageError,
)
from .catalog import RoleCatalog, ROLE_CAPABILITIES, ROLE_PRIORITY, OWNERSHIP_SCOPED
from .permissions import PermissionEvaluator
from .audit_trail import AuditTrail, start_of_day
from .workflow import ApprovalWorkflow, DEFAULT_APPROVAL_COMMENT
from .statistics import StatisticsView
from .publishing import AchievementService
from .evaluations import EvaluationService

__all__ = [
    "ErrorKind",
    "WorkflowError",
    "UnauthorizedError",
    "NotFoundError",
    "InvalidStateError",
    "InvalidArgumentError",
    "StorageError",
    "RoleCatalog",
    "ROLE_CAPABILITIES",
    "ROLE_PRIORITY",
    "OWNERSHIP_SCOPED",
    "PermissionEvaluator",
    "AuditTrail",
    "start_of_day",
    "ApprovalWorkflow",
    "DEFAULT_APPROVAL_COMMENT",
    "StatisticsView",
    "AchievementService",
    "EvaluationService",
]
