"""
PostgreSQL Stores

Durable implementations of ResourceStore, AuditRecordStore and
EvaluationStore.

Provides:
- Per-achievement exclusive access via SELECT ... FOR UPDATE row locks
- Achievement update + audit record insert in ONE transaction
- Lock/statement timeouts to prevent hanging
- Multi-instance support (shared database)

THREAD SAFETY:
All transaction state (conn, cursor) lives in the TransitionContext, never on
the store, so one store instance can be shared across threads.

Usage:
    factory = lambda: psycopg2.connect(config.to_dsn())
    audit_store = PostgresAuditRecordStore(factory)
    resources = PostgresResourceStore(factory)

    with resources.begin_transition(achievement_id) as ctx:
        ctx.commit(updated, record)
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Generator, Optional
from uuid import UUID

import psycopg2

from ..schemas import Achievement, AuditDecision, AuditRecord, AuditState, Evaluation
from .evaluation_store import DuplicateEvaluationError, EvaluationStore
from .store import (
    AchievementFilter,
    AuditRecordStore,
    LockTimeoutError,
    ResourceStore,
    StoreError,
    TransitionContext,
)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS achievements (
    id            UUID PRIMARY KEY,
    owner_id      UUID NOT NULL,
    name          TEXT NOT NULL,
    category      TEXT NOT NULL DEFAULT '',
    content       TEXT NOT NULL DEFAULT '',
    audit_state   TEXT NOT NULL DEFAULT 'pending'
                  CHECK (audit_state IN ('pending', 'approved', 'rejected')),
    is_active     BOOLEAN NOT NULL DEFAULT TRUE,
    created_at    TIMESTAMPTZ NOT NULL,
    submitted_at  TIMESTAMPTZ NOT NULL,
    updated_at    TIMESTAMPTZ,
    audited_at    TIMESTAMPTZ,
    auditor_id    UUID
);

CREATE INDEX IF NOT EXISTS idx_achievements_state
    ON achievements (audit_state, is_active);
CREATE INDEX IF NOT EXISTS idx_achievements_owner
    ON achievements (owner_id);

CREATE TABLE IF NOT EXISTS audit_records (
    record_id       UUID PRIMARY KEY,
    achievement_id  UUID NOT NULL REFERENCES achievements (id),
    auditor_id      UUID NOT NULL,
    decision        TEXT NOT NULL CHECK (decision IN ('approved', 'rejected')),
    decided_at      TIMESTAMPTZ NOT NULL,
    submitted_at    TIMESTAMPTZ NOT NULL,
    comment         TEXT,
    CHECK (decision <> 'rejected' OR length(btrim(coalesce(comment, ''))) > 0)
);

CREATE INDEX IF NOT EXISTS idx_audit_records_achievement
    ON audit_records (achievement_id, decided_at);
CREATE INDEX IF NOT EXISTS idx_audit_records_auditor
    ON audit_records (auditor_id, decided_at DESC);

CREATE TABLE IF NOT EXISTS evaluations (
    evaluation_id   UUID PRIMARY KEY,
    achievement_id  UUID NOT NULL REFERENCES achievements (id),
    user_id         UUID NOT NULL,
    rating          SMALLINT NOT NULL CHECK (rating BETWEEN 1 AND 5),
    comment         TEXT NOT NULL DEFAULT '',
    created_at      TIMESTAMPTZ NOT NULL,
    updated_at      TIMESTAMPTZ,
    is_active       BOOLEAN NOT NULL DEFAULT TRUE
);

-- One active evaluation per user and achievement
CREATE UNIQUE INDEX IF NOT EXISTS uq_evaluations_active
    ON evaluations (user_id, achievement_id) WHERE is_active;
CREATE INDEX IF NOT EXISTS idx_evaluations_achievement
    ON evaluations (achievement_id, is_active);
"""

_ACHIEVEMENT_COLUMNS = (
    "id, owner_id, name, category, content, audit_state, is_active, "
    "created_at, submitted_at, updated_at, audited_at, auditor_id"
)

_RECORD_COLUMNS = (
    "record_id, achievement_id, auditor_id, decision, decided_at, submitted_at, comment"
)

_EVALUATION_COLUMNS = (
    "evaluation_id, achievement_id, user_id, rating, comment, created_at, updated_at, is_active"
)


def create_schema(connection_factory: Callable[[], Any]) -> None:
    """Create tables and indexes if they do not exist."""
    try:
        conn = connection_factory()
    except psycopg2.Error as e:
        raise StoreError("Schema creation failed: could not connect") from e
    cursor = conn.cursor()
    try:
        cursor.execute(SCHEMA_SQL)
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        raise StoreError("Schema creation failed") from e
    finally:
        cursor.close()
        conn.close()


def _as_uuid(value) -> Optional[UUID]:
    if value is None:
        return None
    return value if isinstance(value, UUID) else UUID(str(value))


def _row_to_achievement(row: tuple) -> Achievement:
    return Achievement(
        id=_as_uuid(row[0]),
        owner_id=_as_uuid(row[1]),
        name=row[2],
        category=row[3],
        content=row[4],
        audit_state=AuditState(row[5]),
        is_active=row[6],
        created_at=row[7],
        submitted_at=row[8],
        updated_at=row[9],
        audited_at=row[10],
        auditor_id=_as_uuid(row[11]),
    )


def _row_to_record(row: tuple) -> AuditRecord:
    return AuditRecord(
        record_id=_as_uuid(row[0]),
        achievement_id=_as_uuid(row[1]),
        auditor_id=_as_uuid(row[2]),
        decision=AuditDecision(row[3]),
        decided_at=row[4],
        submitted_at=row[5],
        comment=row[6],
    )


def _filter_clause(criteria: AchievementFilter) -> tuple[str, list]:
    """Translate an AchievementFilter into a WHERE clause and parameters."""
    clauses = []
    params: list = []

    if not criteria.include_inactive:
        clauses.append("is_active = TRUE")
    if criteria.owner_id is not None:
        clauses.append("owner_id = %s")
        params.append(str(criteria.owner_id))
    if criteria.audit_state is not None:
        clauses.append("audit_state = %s")
        params.append(criteria.audit_state.value)
    if criteria.name_contains:
        clauses.append("name ILIKE %s")
        params.append(f"%{criteria.name_contains}%")
    if criteria.category:
        clauses.append("category = %s")
        params.append(criteria.category)
    if criteria.submitted_from is not None:
        clauses.append("submitted_at >= %s")
        params.append(criteria.submitted_from)
    if criteria.submitted_to is not None:
        clauses.append("submitted_at <= %s")
        params.append(criteria.submitted_to)

    where = " AND ".join(clauses) if clauses else "TRUE"
    return where, params


class _PostgresBase:
    """Shared connection handling and error translation."""

    # psycopg2 error codes for lock/statement timeout
    PGCODE_LOCK_NOT_AVAILABLE = "55P03"
    PGCODE_QUERY_CANCELED = "57014"

    def __init__(self, connection_factory: Callable[[], Any]):
        self._connection_factory = connection_factory

    def _timeout_kind(self, e: Exception) -> Optional[str]:
        """
        Classify a PostgreSQL exception.

        Returns "lock", "statement", "timeout" or None (not a timeout).

        PostgreSQL uses 57014 (query_canceled) for BOTH lock_timeout and
        statement_timeout; the message tells them apart. 55P03 comes from
        NOWAIT refusals and is treated as "lock".
        """
        pgcode = getattr(e, "pgcode", None)
        err_msg = (getattr(e, "pgerror", None) or str(e)).lower()

        if pgcode == self.PGCODE_LOCK_NOT_AVAILABLE:
            return "lock"

        if pgcode == self.PGCODE_QUERY_CANCELED:
            if "lock timeout" in err_msg or "lock_timeout" in err_msg:
                return "lock"
            if "statement timeout" in err_msg or "statement_timeout" in err_msg:
                return "statement"
            return "timeout"

        # Fallback for other drivers
        if "lock" in err_msg and "timeout" in err_msg:
            return "lock"
        if "statement" in err_msg and "timeout" in err_msg:
            return "statement"

        return None

    def _translate(self, e: Exception, action: str) -> StoreError:
        kind = self._timeout_kind(e)
        if kind == "lock":
            return LockTimeoutError(f"{action}: achievement busy - could not acquire lock")
        if kind in ("statement", "timeout"):
            return StoreError(f"{action}: query timed out")
        return StoreError(f"{action}: database error")

    def _connect(self, action: str):
        """
        Open a connection and a cursor on it.

        Driver errors (server down, bad credentials, closed connection)
        are translated like any other query failure.
        """
        try:
            conn = self._connection_factory()
        except psycopg2.Error as e:
            raise self._translate(e, action) from e
        try:
            return conn, conn.cursor()
        except psycopg2.Error as e:
            conn.close()
            raise self._translate(e, action) from e

    def _fetch(self, sql: str, params: tuple = (), one: bool = False):
        """Run a read-only query on a fresh connection."""
        conn, cursor = self._connect("Query failed")
        try:
            cursor.execute(sql, params)
            return cursor.fetchone() if one else cursor.fetchall()
        except psycopg2.Error as e:
            raise self._translate(e, "Query failed") from e
        finally:
            cursor.close()
            conn.close()


class PostgresAuditRecordStore(_PostgresBase, AuditRecordStore):
    """PostgreSQL implementation of AuditRecordStore."""

    def insert(self, record: AuditRecord) -> AuditRecord:
        conn, cursor = self._connect("Audit insert failed")
        try:
            _insert_record(cursor, record)
            conn.commit()
            return record
        except psycopg2.Error as e:
            conn.rollback()
            raise self._translate(e, "Audit insert failed") from e
        finally:
            cursor.close()
            conn.close()

    def query_by_resource(self, achievement_id: UUID) -> list[AuditRecord]:
        rows = self._fetch(
            f"SELECT {_RECORD_COLUMNS} FROM audit_records "
            "WHERE achievement_id = %s ORDER BY decided_at",
            (str(achievement_id),),
        )
        return [_row_to_record(row) for row in rows]

    def query_by_auditor(
        self,
        auditor_id: UUID,
        offset: int = 0,
        limit: int = 20,
    ) -> list[AuditRecord]:
        rows = self._fetch(
            f"SELECT {_RECORD_COLUMNS} FROM audit_records "
            "WHERE auditor_id = %s ORDER BY decided_at DESC OFFSET %s LIMIT %s",
            (str(auditor_id), offset, limit),
        )
        return [_row_to_record(row) for row in rows]

    def count_approved_since(self, since: datetime) -> int:
        row = self._fetch(
            "SELECT COUNT(*) FROM audit_records "
            "WHERE decision = 'approved' AND decided_at >= %s",
            (since,),
            one=True,
        )
        return int(row[0]) if row else 0

    def average_processing_hours(self, since: Optional[datetime] = None) -> float:
        sql = (
            "SELECT AVG(EXTRACT(EPOCH FROM (decided_at - submitted_at))) / 3600.0 "
            "FROM audit_records"
        )
        params: tuple = ()
        if since is not None:
            sql += " WHERE decided_at >= %s"
            params = (since,)
        row = self._fetch(sql, params, one=True)
        # AVG over no rows is NULL
        if not row or row[0] is None:
            return 0.0
        return float(row[0])

    def rejection_rate(self, since: Optional[datetime] = None) -> float:
        sql = (
            "SELECT COUNT(*) FILTER (WHERE decision = 'rejected'), COUNT(*) "
            "FROM audit_records"
        )
        params: tuple = ()
        if since is not None:
            sql += " WHERE decided_at >= %s"
            params = (since,)
        row = self._fetch(sql, params, one=True)
        if not row or not row[1]:
            return 0.0
        return float(row[0]) / float(row[1])


def _insert_record(cursor, record: AuditRecord) -> None:
    cursor.execute(
        f"INSERT INTO audit_records ({_RECORD_COLUMNS}) "
        "VALUES (%s, %s, %s, %s, %s, %s, %s)",
        (
            str(record.record_id),
            str(record.achievement_id),
            str(record.auditor_id),
            record.decision.value,
            record.decided_at,
            record.submitted_at,
            record.comment,
        ),
    )


class PostgresResourceStore(_PostgresBase, ResourceStore):
    """
    PostgreSQL implementation of ResourceStore.

    Audit records written by transitions go to the audit_records table of
    the same database, inside the transition's transaction.
    """

    # Timeouts to prevent hanging under load
    LOCK_TIMEOUT_MS = 2000
    STATEMENT_TIMEOUT_MS = 10000

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        """
        Args:
            connection_factory: Callable that returns a psycopg2 connection.
            lock_timeout_ms: How long to wait for the row lock (ms).
            statement_timeout_ms: Max statement execution time (ms).
        """
        super().__init__(connection_factory)
        self._lock_timeout_ms = int(lock_timeout_ms)
        self._statement_timeout_ms = int(statement_timeout_ms)

    def add(self, achievement: Achievement) -> Achievement:
        conn, cursor = self._connect("Achievement insert failed")
        try:
            cursor.execute(
                f"INSERT INTO achievements ({_ACHIEVEMENT_COLUMNS}) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    str(achievement.id),
                    str(achievement.owner_id),
                    achievement.name,
                    achievement.category,
                    achievement.content,
                    achievement.audit_state.value,
                    achievement.is_active,
                    achievement.created_at,
                    achievement.submitted_at,
                    achievement.updated_at,
                    achievement.audited_at,
                    str(achievement.auditor_id) if achievement.auditor_id else None,
                ),
            )
            conn.commit()
            return achievement
        except psycopg2.Error as e:
            conn.rollback()
            raise self._translate(e, "Achievement insert failed") from e
        finally:
            cursor.close()
            conn.close()

    def get_by_id(self, achievement_id: UUID) -> Optional[Achievement]:
        row = self._fetch(
            f"SELECT {_ACHIEVEMENT_COLUMNS} FROM achievements WHERE id = %s",
            (str(achievement_id),),
            one=True,
        )
        return _row_to_achievement(row) if row else None

    def get_owner_id(self, achievement_id: UUID) -> Optional[UUID]:
        row = self._fetch(
            "SELECT owner_id FROM achievements WHERE id = %s",
            (str(achievement_id),),
            one=True,
        )
        return _as_uuid(row[0]) if row else None

    @contextmanager
    def begin_transition(self, achievement_id: UUID) -> Generator[TransitionContext, None, None]:
        """
        Open a transaction holding the achievement's row lock.

        The connection is scoped to this context manager so the lock,
        the update and the audit insert all share one transaction.
        """
        conn, cursor = self._connect("Transition failed")
        ctx = None

        try:
            try:
                conn.autocommit = False
                # SET LOCAL keeps timeouts transaction-scoped
                cursor.execute(f"SET LOCAL lock_timeout = '{self._lock_timeout_ms}ms'")
                cursor.execute(f"SET LOCAL statement_timeout = '{self._statement_timeout_ms}ms'")
                cursor.execute(
                    f"SELECT {_ACHIEVEMENT_COLUMNS} FROM achievements "
                    "WHERE id = %s FOR UPDATE",
                    (str(achievement_id),),
                )
                row = cursor.fetchone()
            except psycopg2.Error as e:
                raise self._translate(e, "Transition failed") from e

            ctx = TransitionContext(
                achievement_id=achievement_id,
                achievement=_row_to_achievement(row) if row else None,
                _store=self,
                _conn=conn,
                _cursor=cursor,
            )

            yield ctx

        finally:
            if ctx is None or not ctx._committed:
                try:
                    conn.rollback()
                except psycopg2.Error:
                    pass  # Connection might be broken
            try:
                cursor.close()
            finally:
                conn.close()

    def _do_commit(
        self,
        ctx: TransitionContext,
        achievement: Achievement,
        record: Optional[AuditRecord],
    ) -> Achievement:
        """Write the achievement and record, then commit the transaction."""
        if ctx._cursor is None or ctx._conn is None:
            raise StoreError("_do_commit called outside begin_transition context")

        cursor = ctx._cursor
        try:
            cursor.execute(
                """
                UPDATE achievements
                SET name = %s, category = %s, content = %s, audit_state = %s,
                    is_active = %s, submitted_at = %s, updated_at = %s,
                    audited_at = %s, auditor_id = %s
                WHERE id = %s
                """,
                (
                    achievement.name,
                    achievement.category,
                    achievement.content,
                    achievement.audit_state.value,
                    achievement.is_active,
                    achievement.submitted_at,
                    achievement.updated_at,
                    achievement.audited_at,
                    str(achievement.auditor_id) if achievement.auditor_id else None,
                    str(achievement.id),
                ),
            )
            if record is not None:
                _insert_record(cursor, record)
            ctx._conn.commit()
        except psycopg2.Error as e:
            raise self._translate(e, "Transition commit failed") from e

        return achievement

    def _do_rollback(self, ctx: TransitionContext) -> None:
        if ctx._conn is not None:
            try:
                ctx._conn.rollback()
            except psycopg2.Error:
                pass

    def list_achievements(
        self,
        criteria: Optional[AchievementFilter] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[Achievement]:
        where, params = _filter_clause(criteria or AchievementFilter())
        sql = (
            f"SELECT {_ACHIEVEMENT_COLUMNS} FROM achievements "
            f"WHERE {where} ORDER BY submitted_at DESC OFFSET %s"
        )
        params.append(offset)
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)
        rows = self._fetch(sql, tuple(params))
        return [_row_to_achievement(row) for row in rows]

    def count_achievements(self, criteria: Optional[AchievementFilter] = None) -> int:
        where, params = _filter_clause(criteria or AchievementFilter())
        row = self._fetch(
            f"SELECT COUNT(*) FROM achievements WHERE {where}",
            tuple(params),
            one=True,
        )
        return int(row[0]) if row else 0


def _row_to_evaluation(row: tuple) -> Evaluation:
    return Evaluation(
        evaluation_id=_as_uuid(row[0]),
        achievement_id=_as_uuid(row[1]),
        user_id=_as_uuid(row[2]),
        rating=row[3],
        comment=row[4] or "",
        created_at=row[5],
        updated_at=row[6],
        is_active=row[7],
    )


class PostgresEvaluationStore(_PostgresBase, EvaluationStore):
    """
    PostgreSQL implementation of EvaluationStore.

    The partial unique index uq_evaluations_active decides duplicate
    submissions, so racing inserts cannot both succeed.
    """

    PGCODE_UNIQUE_VIOLATION = "23505"

    _ORDER = "ORDER BY COALESCE(updated_at, created_at) DESC"

    def insert(self, evaluation: Evaluation) -> Evaluation:
        conn, cursor = self._connect("Evaluation insert failed")
        try:
            cursor.execute(
                f"INSERT INTO evaluations ({_EVALUATION_COLUMNS}) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    str(evaluation.evaluation_id),
                    str(evaluation.achievement_id),
                    str(evaluation.user_id),
                    evaluation.rating,
                    evaluation.comment,
                    evaluation.created_at,
                    evaluation.updated_at,
                    evaluation.is_active,
                ),
            )
            conn.commit()
            return evaluation
        except psycopg2.Error as e:
            conn.rollback()
            if getattr(e, "pgcode", None) == self.PGCODE_UNIQUE_VIOLATION:
                raise DuplicateEvaluationError(
                    f"User {evaluation.user_id} already evaluated {evaluation.achievement_id}"
                ) from e
            raise self._translate(e, "Evaluation insert failed") from e
        finally:
            cursor.close()
            conn.close()

    def get_by_id(self, evaluation_id: UUID) -> Optional[Evaluation]:
        row = self._fetch(
            f"SELECT {_EVALUATION_COLUMNS} FROM evaluations WHERE evaluation_id = %s",
            (str(evaluation_id),),
            one=True,
        )
        return _row_to_evaluation(row) if row else None

    def update(self, evaluation: Evaluation) -> bool:
        conn, cursor = self._connect("Evaluation update failed")
        try:
            cursor.execute(
                "UPDATE evaluations SET rating = %s, comment = %s, updated_at = %s, is_active = %s "
                "WHERE evaluation_id = %s",
                (
                    evaluation.rating,
                    evaluation.comment,
                    evaluation.updated_at,
                    evaluation.is_active,
                    str(evaluation.evaluation_id),
                ),
            )
            updated = cursor.rowcount > 0
            conn.commit()
            return updated
        except psycopg2.Error as e:
            conn.rollback()
            raise self._translate(e, "Evaluation update failed") from e
        finally:
            cursor.close()
            conn.close()

    def find_active(self, user_id: UUID, achievement_id: UUID) -> Optional[Evaluation]:
        row = self._fetch(
            f"SELECT {_EVALUATION_COLUMNS} FROM evaluations "
            "WHERE user_id = %s AND achievement_id = %s AND is_active = TRUE",
            (str(user_id), str(achievement_id)),
            one=True,
        )
        return _row_to_evaluation(row) if row else None

    def list_for_achievement(
        self,
        achievement_id: UUID,
        offset: int = 0,
        limit: int = 10,
    ) -> list[Evaluation]:
        rows = self._fetch(
            f"SELECT {_EVALUATION_COLUMNS} FROM evaluations "
            f"WHERE achievement_id = %s AND is_active = TRUE {self._ORDER} OFFSET %s LIMIT %s",
            (str(achievement_id), offset, limit),
        )
        return [_row_to_evaluation(row) for row in rows]

    def list_for_user(self, user_id: UUID, offset: int = 0, limit: int = 10) -> list[Evaluation]:
        rows = self._fetch(
            f"SELECT {_EVALUATION_COLUMNS} FROM evaluations "
            f"WHERE user_id = %s AND is_active = TRUE {self._ORDER} OFFSET %s LIMIT %s",
            (str(user_id), offset, limit),
        )
        return [_row_to_evaluation(row) for row in rows]

    def count_for_achievement(self, achievement_id: UUID) -> int:
        row = self._fetch(
            "SELECT COUNT(*) FROM evaluations WHERE achievement_id = %s AND is_active = TRUE",
            (str(achievement_id),),
            one=True,
        )
        return int(row[0]) if row else 0

    def count_for_user(self, user_id: UUID) -> int:
        row = self._fetch(
            "SELECT COUNT(*) FROM evaluations WHERE user_id = %s AND is_active = TRUE",
            (str(user_id),),
            one=True,
        )
        return int(row[0]) if row else 0

    def rating_counts(self, achievement_id: UUID) -> dict[int, int]:
        rows = self._fetch(
            "SELECT rating, COUNT(*) FROM evaluations "
            "WHERE achievement_id = %s AND is_active = TRUE GROUP BY rating",
            (str(achievement_id),),
        )
        return {int(rating): int(count) for rating, count in rows}
