"""Shared fixtures for the review core tests."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from achievements.db import InMemoryResourceStore
from achievements.observability import MetricsCollector
from achievements.schemas import Achievement, Actor, AuditState, Role


BASE_TIME = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_achievement(owner_id=None, submitted_at=BASE_TIME, **overrides) -> Achievement:
    data = dict(
        id=uuid4(),
        owner_id=owner_id or uuid4(),
        name="Low-power sensor network",
        category="research",
        content="Field results",
        audit_state=AuditState.PENDING,
        is_active=True,
        created_at=submitted_at,
        submitted_at=submitted_at,
    )
    data.update(overrides)
    return Achievement(**data)


def make_actor(*roles: Role, **overrides) -> Actor:
    return Actor(id=overrides.pop("id", uuid4()), roles=tuple(roles), **overrides)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def resources():
    return InMemoryResourceStore()


@pytest.fixture
def publisher():
    return make_actor(Role.PUBLISHER, username="u1")


@pytest.fixture
def other_publisher():
    return make_actor(Role.PUBLISHER, username="u2")


@pytest.fixture
def reader():
    return make_actor(Role.GENERAL_USER, username="reader")


@pytest.fixture
def admin():
    return make_actor(Role.ADMINISTRATOR, username="admin")
