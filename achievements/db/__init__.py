"""
Database Layer for Achievement Review

Provides:
- ResourceStore / AuditRecordStore / EvaluationStore abstractions
- In-memory stores for development and tests
- PostgreSQL stores with row-level locking for production
- Environment-driven configuration
"""

from .store import (
    AchievementFilter,
    AuditRecordStore,
    InMemoryAuditRecordStore,
    InMemoryResourceStore,
    LockTimeoutError,
    ResourceStore,
    StoreError,
    TransitionContext,
)
from .evaluation_store import (
    DuplicateEvaluationError,
    EvaluationStore,
    InMemoryEvaluationStore,
)
from .postgres import (
    PostgresAuditRecordStore,
    PostgresEvaluationStore,
    PostgresResourceStore,
    create_schema,
)
from .config import (
    DatabaseConfig,
    StoreDriver,
    create_evaluation_store,
    create_stores,
    get_database_url,
)

__all__ = [
    "AchievementFilter",
    "AuditRecordStore",
    "InMemoryAuditRecordStore",
    "InMemoryResourceStore",
    "LockTimeoutError",
    "ResourceStore",
    "StoreError",
    "TransitionContext",
    "DuplicateEvaluationError",
    "EvaluationStore",
    "InMemoryEvaluationStore",
    "PostgresAuditRecordStore",
    "PostgresEvaluationStore",
    "PostgresResourceStore",
    "create_schema",
    "DatabaseConfig",
    "StoreDriver",
    "create_evaluation_store",
    "create_stores",
    "get_database_url",
]
