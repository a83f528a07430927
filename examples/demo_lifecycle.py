"""
Demonstration: Complete Review Lifecycle

A publisher submits an achievement, another publisher tries to edit it,
an administrator approves it, the owner edits it (sending it back for
review) and the administrator rejects the new version.

Run with: python -m examples.demo_lifecycle
"""

from uuid import uuid4

from achievements.core import WorkflowError
from achievements.db import InMemoryResourceStore
from achievements.main import build_core
from achievements.schemas import (
    AchievementChanges,
    AchievementDraft,
    Actor,
    Permission,
    Role,
)


def section(title: str) -> None:
    print("=" * 60)
    print(title)
    print("=" * 60)


def main():
    section("Achievement Review - Lifecycle Demonstration")

    resources = InMemoryResourceStore()
    core = build_core(resources, resources.audit_store)

    owner = Actor(id=uuid4(), roles=(Role.PUBLISHER,), username="u1")
    other = Actor(id=uuid4(), roles=(Role.PUBLISHER,), username="u2")
    admin = Actor(id=uuid4(), roles=(Role.ADMINISTRATOR,), username="a1")
    second_admin = Actor(id=uuid4(), roles=(Role.ADMINISTRATOR,), username="a2")

    section("STEP 1: SUBMIT")
    r1 = core.achievements.submit(owner, AchievementDraft(
        name="Low-power sensor network",
        category="research",
        content="Field results from a 200-node deployment.",
    ))
    print(f"Submitted {r1.id} -> {r1.audit_state.value}")

    section("STEP 2: PERMISSION CHECKS")
    print(f"Other publisher UPDATE_OWN: {core.evaluate(other, Permission.UPDATE_OWN, r1.id)}")
    print(f"Owner UPDATE_OWN:           {core.evaluate(owner, Permission.UPDATE_OWN, r1.id)}")
    print(f"Owner APPROVE:              {core.evaluate(owner, Permission.APPROVE)}")
    print(f"Admin APPROVE:              {core.evaluate(admin, Permission.APPROVE)}")

    section("STEP 3: APPROVE")
    core.approve(r1.id, admin.id)
    for record in core.get_history(r1.id):
        print(f"  {record.decision.value} by {record.auditor_id}: {record.comment}")

    try:
        core.approve(r1.id, second_admin.id)
    except WorkflowError as e:
        print(f"Second approval refused: {e.kind.value}")

    section("STEP 4: EDIT (RE-SUBMIT) AND REJECT")
    edited = core.achievements.update(owner, r1.id, AchievementChanges(content="Revised results."))
    print(f"After edit: {edited.audit_state.value}")
    core.reject(r1.id, admin.id, "Results no longer match the abstract")
    print(f"History ({len(core.get_history(r1.id))} records, newest first):")
    for record in core.get_history(r1.id):
        print(f"  {record.decision.value}: {record.comment}")

    section("STATISTICS")
    stats = core.get_statistics()
    print(f"  Pending:            {stats.pending_count}")
    print(f"  Approved today:     {stats.today_approved_count}")
    print(f"  Avg processing (h): {stats.avg_processing_hours}")
    print(f"  Rejection rate:     {stats.rejection_rate}")

    return core


if __name__ == "__main__":
    main()
