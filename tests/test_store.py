"""Tests for the in-memory stores and the transition context."""

import threading
from datetime import timedelta
from uuid import uuid4

import pytest

from achievements.core import ApprovalWorkflow, AuditTrail
from achievements.db import (
    AchievementFilter,
    InMemoryAuditRecordStore,
    InMemoryResourceStore,
    LockTimeoutError,
    StoreError,
)
from achievements.schemas import AuditDecision, AuditRecord, AuditState

from conftest import BASE_TIME, FixedClock, make_achievement


def make_record(achievement_id):
    return AuditRecord(
        record_id=uuid4(),
        achievement_id=achievement_id,
        auditor_id=uuid4(),
        decision=AuditDecision.APPROVED,
        decided_at=BASE_TIME,
        submitted_at=BASE_TIME,
    )


class TestResourceStore:

    def test_add_and_get(self, resources):
        achievement = resources.add(make_achievement())
        assert resources.get_by_id(achievement.id) == achievement
        assert resources.get_owner_id(achievement.id) == achievement.owner_id

    def test_missing(self, resources):
        assert resources.get_by_id(uuid4()) is None
        assert resources.get_owner_id(uuid4()) is None

    def test_duplicate_add(self, resources):
        achievement = resources.add(make_achievement())
        with pytest.raises(StoreError, match="already exists"):
            resources.add(achievement)

    def test_update(self, resources):
        achievement = resources.add(make_achievement())
        assert resources.update(achievement.model_copy(update={"name": "Renamed"}))
        assert resources.get_by_id(achievement.id).name == "Renamed"

    def test_update_missing(self, resources):
        assert resources.update(make_achievement()) is False

    def test_count_pending_excludes_inactive(self, resources):
        resources.add(make_achievement())
        resources.add(make_achievement(is_active=False))
        resources.add(make_achievement(audit_state=AuditState.APPROVED))
        assert resources.count_pending() == 1

    def test_list_filters_and_order(self, resources):
        owner = uuid4()
        old = resources.add(make_achievement(owner_id=owner, submitted_at=BASE_TIME - timedelta(days=1)))
        new = resources.add(make_achievement(owner_id=owner))
        resources.add(make_achievement())
        resources.add(make_achievement(owner_id=owner, is_active=False))

        assert resources.list_achievements(AchievementFilter(owner_id=owner)) == [new, old]
        assert resources.count_achievements(AchievementFilter(owner_id=owner)) == 2
        assert resources.count_achievements(
            AchievementFilter(owner_id=owner, include_inactive=True)
        ) == 3
        assert resources.list_achievements(
            AchievementFilter(submitted_to=BASE_TIME - timedelta(hours=1))
        ) == [old]
        assert resources.list_achievements(offset=2, limit=5) == [old]


class TestTransitionContext:

    def test_uncommitted_transition_changes_nothing(self, resources):
        achievement = resources.add(make_achievement())
        with resources.begin_transition(achievement.id) as ctx:
            assert ctx.achievement == achievement
        assert resources.get_by_id(achievement.id) == achievement

    def test_missing_achievement_cannot_commit(self, resources):
        with resources.begin_transition(uuid4()) as ctx:
            assert ctx.achievement is None
            with pytest.raises(StoreError):
                ctx.commit(make_achievement())

    def test_double_commit(self, resources):
        achievement = resources.add(make_achievement())
        with resources.begin_transition(achievement.id) as ctx:
            ctx.commit(achievement)
            with pytest.raises(StoreError, match="already committed"):
                ctx.commit(achievement)

    def test_commit_after_rollback(self, resources):
        achievement = resources.add(make_achievement())
        with resources.begin_transition(achievement.id) as ctx:
            ctx.rollback()
            with pytest.raises(StoreError, match="rolled back"):
                ctx.commit(achievement)

    def test_owner_cannot_change(self, resources):
        achievement = resources.add(make_achievement())
        with resources.begin_transition(achievement.id) as ctx:
            with pytest.raises(StoreError, match="ownership"):
                ctx.commit(achievement.model_copy(update={"owner_id": uuid4()}))

    def test_id_mismatch(self, resources):
        achievement = resources.add(make_achievement())
        other = resources.add(make_achievement(owner_id=achievement.owner_id))
        with resources.begin_transition(achievement.id) as ctx:
            with pytest.raises(StoreError):
                ctx.commit(other)

    def test_lock_released_after_exception(self, resources):
        achievement = resources.add(make_achievement())
        with pytest.raises(RuntimeError):
            with resources.begin_transition(achievement.id):
                raise RuntimeError("boom")

        with resources.begin_transition(achievement.id) as ctx:
            assert ctx.achievement == achievement

    def test_lock_timeout(self):
        resources = InMemoryResourceStore(lock_timeout=0.05)
        achievement = resources.add(make_achievement())
        holding = threading.Event()
        release = threading.Event()

        def hold():
            with resources.begin_transition(achievement.id):
                holding.set()
                release.wait(timeout=5)

        holder = threading.Thread(target=hold)
        holder.start()
        try:
            assert holding.wait(timeout=5)
            with pytest.raises(LockTimeoutError):
                with resources.begin_transition(achievement.id):
                    pass
        finally:
            release.set()
            holder.join()

    def test_unknown_ids_do_not_grow_lock_registry(self, resources, metrics):
        known = resources.add(make_achievement())
        workflow = ApprovalWorkflow(
            resources, AuditTrail(resources.audit_store), clock=FixedClock(), metrics=metrics
        )

        assert workflow.batch_approve([uuid4() for _ in range(200)], uuid4()) == 0
        for _ in range(50):
            with resources.begin_transition(uuid4()) as ctx:
                assert ctx.achievement is None

        assert set(resources._locks) == {known.id}

    def test_other_achievements_not_blocked(self, resources):
        first = resources.add(make_achievement())
        second = resources.add(make_achievement())
        with resources.begin_transition(first.id):
            with resources.begin_transition(second.id) as ctx:
                assert ctx.achievement == second


class TestAuditRecordStore:

    def test_shared_with_resource_store(self):
        audit = InMemoryAuditRecordStore()
        resources = InMemoryResourceStore(audit_store=audit)
        assert resources.audit_store is audit

    def test_clear(self, resources):
        achievement = resources.add(make_achievement())
        with resources.begin_transition(achievement.id) as ctx:
            ctx.commit(
                achievement.model_copy(update={"audit_state": AuditState.APPROVED}),
                make_record(achievement.id),
            )
        audit = resources.audit_store
        assert audit.count() == 1
        audit.clear()
        assert audit.count() == 0
        assert audit.query_by_resource(achievement.id) == []
