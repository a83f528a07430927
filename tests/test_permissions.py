"""
Tests for role resolution and permission evaluation.

Covers the capability table, ownership-scoped permissions, administrator
override and the fail-closed behaviour for anything unrecognised.
"""

from uuid import uuid4

import pytest

from achievements.core import (
    OWNERSHIP_SCOPED,
    ROLE_CAPABILITIES,
    PermissionEvaluator,
    RoleCatalog,
    UnauthorizedError,
)
from achievements.db import StoreError
from achievements.schemas import Actor, Permission, Role

from conftest import make_achievement, make_actor


class TestRoleSchema:
    """Role and Permission enums."""

    def test_role_ranks(self):
        assert Role.GENERAL_USER.rank == 0
        assert Role.PUBLISHER.rank == 1
        assert Role.ADMINISTRATOR.rank == 2

    def test_authority_strings(self):
        assert Role.ADMINISTRATOR.authority == "ROLE_2"
        assert Role.from_authority("ROLE_1") == Role.PUBLISHER
        assert Role.from_rank(0) == Role.GENERAL_USER

    def test_unknown_authority_is_none(self):
        """Unknown grants never default to a role."""
        assert Role.from_authority("ROLE_9") is None
        assert Role.from_authority("admin") is None
        assert Role.from_rank(7) is None

    def test_permission_parse(self):
        assert Permission.parse(Permission.READ) == Permission.READ
        assert Permission.parse("approve") == Permission.APPROVE
        assert Permission.parse(" update_own ") == Permission.UPDATE_OWN

    def test_permission_parse_legacy_suffix(self):
        assert Permission.parse("APPROVE_ACHIEVEMENT") == Permission.APPROVE
        assert Permission.parse("create_achievement") == Permission.CREATE

    def test_permission_parse_unknown(self):
        assert Permission.parse("LAUNCH_MISSILES") is None
        assert Permission.parse("") is None
        assert Permission.parse(None) is None
        assert Permission.parse(42) is None


class TestRoleCatalog:
    """The static capability table."""

    def test_general_user_is_read_only(self):
        caps = RoleCatalog.capabilities(Role.GENERAL_USER)
        assert caps == {
            Permission.READ,
            Permission.SEARCH,
            Permission.DOWNLOAD,
            Permission.COMMENT,
            Permission.RATE,
        }

    def test_publisher_extends_reader(self):
        caps = RoleCatalog.capabilities(Role.PUBLISHER)
        assert RoleCatalog.capabilities(Role.GENERAL_USER) < caps
        assert Permission.CREATE in caps
        assert Permission.UPDATE_OWN in caps
        assert Permission.DELETE_OWN in caps
        assert Permission.APPROVE not in caps
        assert Permission.UPDATE_ANY not in caps

    def test_administrator_holds_everything(self):
        assert RoleCatalog.capabilities(Role.ADMINISTRATOR) == frozenset(Permission)

    def test_only_own_permissions_are_scoped(self):
        assert OWNERSHIP_SCOPED == {Permission.UPDATE_OWN, Permission.DELETE_OWN}
        assert not RoleCatalog.is_ownership_scoped(Permission.UPDATE_ANY)

    def test_every_role_has_an_entry(self):
        assert set(ROLE_CAPABILITIES) == set(Role)

    @pytest.mark.parametrize("grants,expected", [
        ((), None),
        ((None,), None),
        ((None, Role.GENERAL_USER), Role.GENERAL_USER),
        ((Role.GENERAL_USER, Role.ADMINISTRATOR), Role.ADMINISTRATOR),
        ((Role.PUBLISHER, Role.GENERAL_USER), Role.PUBLISHER),
        ((Role.ADMINISTRATOR, Role.PUBLISHER), Role.ADMINISTRATOR),
    ])
    def test_resolve_role(self, grants, expected):
        assert RoleCatalog.resolve_role(grants) == expected


class TestPermissionEvaluator:
    """Allow/deny decisions."""

    @pytest.fixture
    def evaluator(self, resources):
        return PermissionEvaluator(resources)

    @pytest.mark.parametrize("role", list(Role))
    @pytest.mark.parametrize("permission", list(Permission))
    def test_matches_capability_table_for_owner(self, role, permission):
        """With the actor as owner, the decision is exactly the table."""
        actor = make_actor(role)
        allowed = PermissionEvaluator().evaluate(actor, permission, owner_id=actor.id)
        assert allowed == (permission in ROLE_CAPABILITIES[role])

    def test_publisher_updates_own(self, evaluator, resources, publisher):
        achievement = resources.add(make_achievement(owner_id=publisher.id))
        assert evaluator.evaluate(publisher, Permission.UPDATE_OWN, achievement.id)
        assert evaluator.evaluate(publisher, Permission.DELETE_OWN, achievement.id)

    def test_publisher_cannot_update_others(self, evaluator, resources, publisher, other_publisher):
        achievement = resources.add(make_achievement(owner_id=publisher.id))
        assert not evaluator.evaluate(other_publisher, Permission.UPDATE_OWN, achievement.id)
        assert not evaluator.evaluate(other_publisher, Permission.DELETE_OWN, achievement.id)

    def test_explicit_owner_skips_lookup(self, publisher):
        evaluator = PermissionEvaluator()
        assert evaluator.evaluate(publisher, Permission.UPDATE_OWN, owner_id=publisher.id)
        assert not evaluator.evaluate(publisher, Permission.UPDATE_OWN, owner_id=uuid4())

    def test_scoped_permission_without_target_is_denied(self, evaluator, publisher):
        assert not evaluator.evaluate(publisher, Permission.UPDATE_OWN)

    def test_scoped_permission_on_missing_achievement_is_denied(self, evaluator, publisher):
        assert not evaluator.evaluate(publisher, Permission.UPDATE_OWN, uuid4())

    def test_unscoped_permission_ignores_target(self, evaluator, resources, publisher, other_publisher):
        achievement = resources.add(make_achievement(owner_id=publisher.id))
        assert evaluator.evaluate(other_publisher, Permission.READ, achievement.id)
        assert evaluator.evaluate(other_publisher, Permission.CREATE, uuid4())

    def test_administrator_is_unconditional(self, evaluator, resources, publisher, admin):
        achievement = resources.add(make_achievement(owner_id=publisher.id))
        assert evaluator.evaluate(admin, Permission.UPDATE_OWN, achievement.id)
        assert evaluator.evaluate(admin, Permission.DELETE_OWN, uuid4())
        assert evaluator.evaluate(admin, Permission.APPROVE)
        assert evaluator.evaluate(admin, Permission.MANAGE_ROLES)

    def test_only_administrator_approves(self, evaluator, reader, publisher, admin):
        assert not evaluator.evaluate(reader, Permission.APPROVE)
        assert not evaluator.evaluate(publisher, Permission.APPROVE)
        assert evaluator.evaluate(admin, Permission.APPROVE)

    def test_unknown_token_denied_even_for_administrator(self, evaluator, admin):
        assert not evaluator.evaluate(admin, "LAUNCH_MISSILES")

    def test_legacy_tokens_accepted(self, evaluator, admin, reader):
        assert evaluator.evaluate(admin, "APPROVE_ACHIEVEMENT")
        assert evaluator.evaluate(reader, "read")

    def test_anonymous_denied(self, evaluator):
        assert not evaluator.evaluate(None, Permission.READ)
        anonymous = Actor(id=uuid4(), roles=(Role.ADMINISTRATOR,), authenticated=False)
        assert not evaluator.evaluate(anonymous, Permission.READ)

    @pytest.mark.parametrize("permission", list(Permission))
    def test_no_roles_denied(self, evaluator, permission):
        actor = make_actor()
        assert not evaluator.evaluate(actor, permission, owner_id=actor.id)

    def test_highest_role_wins(self, evaluator):
        actor = make_actor(Role.GENERAL_USER, Role.ADMINISTRATOR)
        assert evaluator.evaluate(actor, Permission.APPROVE)

    def test_owner_lookup_failure_denies(self, publisher):
        class BrokenStore:
            def get_owner_id(self, achievement_id):
                raise StoreError("connection refused")

        evaluator = PermissionEvaluator(BrokenStore())
        assert not evaluator.evaluate(publisher, Permission.UPDATE_OWN, uuid4())

    def test_require_raises_unauthorized(self, evaluator, reader):
        with pytest.raises(UnauthorizedError) as exc:
            evaluator.require(reader, Permission.APPROVE)
        assert exc.value.to_dict() == {
            "error": "unauthorized",
            "message": "Insufficient permissions",
        }

    def test_require_passes_silently(self, evaluator, admin):
        assert evaluator.require(admin, Permission.APPROVE) is None
