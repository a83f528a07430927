"""Tests for the audit trail and its aggregates."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from achievements.core import (
    AuditTrail,
    InvalidArgumentError,
    NotFoundError,
    StorageError,
    start_of_day,
)
from achievements.db import InMemoryAuditRecordStore, InMemoryResourceStore, StoreError
from achievements.schemas import AuditDecision, AuditRecord

from conftest import BASE_TIME, make_achievement


def make_record(
    decision=AuditDecision.APPROVED,
    decided_at=BASE_TIME,
    hours=1.0,
    achievement_id=None,
    auditor_id=None,
    comment=None,
) -> AuditRecord:
    if decision == AuditDecision.REJECTED and comment is None:
        comment = "Not enough evidence"
    return AuditRecord(
        record_id=uuid4(),
        achievement_id=achievement_id or uuid4(),
        auditor_id=auditor_id or uuid4(),
        decision=decision,
        decided_at=decided_at,
        submitted_at=decided_at - timedelta(hours=hours),
        comment=comment,
    )


class BrokenAuditStore(InMemoryAuditRecordStore):
    def query_by_resource(self, achievement_id):
        raise StoreError("connection reset")

    def rejection_rate(self, since=None):
        raise StoreError("connection reset")


@pytest.fixture
def store():
    return InMemoryAuditRecordStore()


@pytest.fixture
def trail(store):
    return AuditTrail(store)


class TestAuditRecordSchema:
    """Records are immutable facts."""

    def test_rejection_requires_comment(self):
        with pytest.raises(ValueError):
            make_record(decision=AuditDecision.REJECTED, comment="  ")

    def test_approval_comment_optional(self):
        assert make_record().comment is None

    def test_records_are_frozen(self):
        record = make_record()
        with pytest.raises(Exception):
            record.comment = "edited"

    def test_processing_hours(self):
        assert make_record(hours=3.5).processing_hours == pytest.approx(3.5)


class TestRecordTarget:
    """With a resource store, records must point at a real achievement."""

    def test_unknown_achievement_refused(self, store):
        trail = AuditTrail(store, InMemoryResourceStore(audit_store=store))
        with pytest.raises(NotFoundError):
            trail.record(make_record())
        assert store.count() == 0

    def test_known_achievement_accepted(self, store):
        resources = InMemoryResourceStore(audit_store=store)
        achievement = resources.add(make_achievement())
        trail = AuditTrail(store, resources)

        record = trail.record(make_record(achievement_id=achievement.id))
        assert trail.for_resource(achievement.id) == [record]

    def test_lookup_failure_is_storage_error(self, store):
        class DownResources(InMemoryResourceStore):
            def get_by_id(self, achievement_id):
                raise StoreError("connection refused")

        with pytest.raises(StorageError):
            AuditTrail(store, DownResources()).record(make_record())


class TestQueries:
    """Per-achievement and per-auditor reads."""

    def test_for_resource_chronological(self, trail):
        achievement_id = uuid4()
        later = trail.record(make_record(achievement_id=achievement_id, decided_at=BASE_TIME))
        earlier = trail.record(make_record(
            decision=AuditDecision.REJECTED,
            achievement_id=achievement_id,
            decided_at=BASE_TIME - timedelta(days=1),
        ))
        trail.record(make_record())

        assert trail.for_resource(achievement_id) == [earlier, later]
        assert trail.history(achievement_id) == [later, earlier]

    def test_for_auditor_pages(self, trail):
        auditor = uuid4()
        records = [
            trail.record(make_record(auditor_id=auditor, decided_at=BASE_TIME + timedelta(minutes=i)))
            for i in range(5)
        ]

        assert trail.for_auditor(auditor, page=1, page_size=2) == [records[4], records[3]]
        assert trail.for_auditor(auditor, page=3, page_size=2) == [records[0]]
        assert trail.for_auditor(auditor, page=4, page_size=2) == []
        assert trail.for_auditor(uuid4()) == []

    @pytest.mark.parametrize("page,page_size", [(0, 20), (1, 0), (-1, 5)])
    def test_for_auditor_rejects_bad_paging(self, trail, page, page_size):
        with pytest.raises(InvalidArgumentError):
            trail.for_auditor(uuid4(), page=page, page_size=page_size)

    def test_store_failure_is_storage_error(self):
        trail = AuditTrail(BrokenAuditStore())
        with pytest.raises(StorageError):
            trail.for_resource(uuid4())
        with pytest.raises(StorageError):
            trail.rejection_rate()


class TestAggregates:
    """Counts, averages and rates."""

    def test_empty_aggregates_are_zero(self, trail):
        assert trail.rejection_rate() == 0.0
        assert trail.average_processing_hours() == 0.0
        assert trail.count_approved_today(BASE_TIME) == 0

    def test_rejection_rate(self, trail):
        trail.record(make_record())
        trail.record(make_record())
        trail.record(make_record())
        trail.record(make_record(decision=AuditDecision.REJECTED))

        assert trail.rejection_rate() == pytest.approx(0.25)

    def test_rejection_rate_since(self, trail):
        trail.record(make_record(decision=AuditDecision.REJECTED, decided_at=BASE_TIME - timedelta(days=2)))
        trail.record(make_record(decided_at=BASE_TIME))

        assert trail.rejection_rate(since=BASE_TIME - timedelta(days=1)) == 0.0
        assert trail.rejection_rate() == pytest.approx(0.5)

    def test_average_processing_hours(self, trail):
        trail.record(make_record(hours=2))
        trail.record(make_record(hours=4, decision=AuditDecision.REJECTED))

        assert trail.average_processing_hours() == pytest.approx(3.0)

    def test_count_approved_today(self, trail):
        midnight = start_of_day(BASE_TIME)
        trail.record(make_record(decided_at=midnight))
        trail.record(make_record(decided_at=midnight + timedelta(hours=11)))
        trail.record(make_record(decided_at=midnight - timedelta(seconds=1)))
        trail.record(make_record(decision=AuditDecision.REJECTED, decided_at=midnight + timedelta(hours=1)))

        assert trail.count_approved_today(BASE_TIME) == 2


class TestStartOfDay:

    def test_utc_midnight(self):
        assert start_of_day(BASE_TIME) == datetime(2024, 3, 15, tzinfo=timezone.utc)

    def test_other_timezone(self):
        tz = timezone(timedelta(hours=-5))
        # 03:00 UTC is still the previous day five hours west
        now = datetime(2024, 3, 15, 3, 0, tzinfo=timezone.utc)
        assert start_of_day(now, tz) == datetime(2024, 3, 14, tzinfo=tz)
