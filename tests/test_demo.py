"""Smoke test for the lifecycle demonstration script."""

from examples.demo_lifecycle import main
from achievements.schemas import AuditDecision


def test_demo_lifecycle_runs(capsys):
    core = main()
    out = capsys.readouterr().out

    assert "Other publisher UPDATE_OWN: False" in out
    assert "Owner UPDATE_OWN:           True" in out
    assert "Second approval refused: invalid_state" in out

    stats = core.get_statistics()
    assert stats.pending_count == 0
    assert stats.rejection_rate == 0.5
    (achievement,) = core.resource_store.list_achievements()
    decisions = [r.decision for r in core.get_history(achievement.id)]
    assert decisions == [AuditDecision.REJECTED, AuditDecision.APPROVED]
