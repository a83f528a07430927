#!/usr/bin/env python3
"""
Achievement Review Management CLI

Commands for operating the review core:
- init-db: Create PostgreSQL tables
- stats: Show review statistics
- history: Show the decisions on one achievement
- reviewer-history: Show one auditor's decisions
- approve / reject / batch-approve: Review achievements
- check-permission: Evaluate a role/permission pair
- health-check: Run store health checks

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage init-db
    python -m tools.manage stats
    python -m tools.manage reject 6f1c... --auditor 2b7e... --reason "Missing sources"
    python -m tools.manage check-permission --role publisher --permission UPDATE_OWN
"""

import argparse
import json
import sys
from uuid import UUID, uuid4

from achievements.core import PermissionEvaluator, WorkflowError
from achievements.db.config import StoreDriver, get_database_config, get_store_driver
from achievements.main import build_core
from achievements.observability import setup_logging
from achievements.schemas import Actor, Role


def _print_records(records) -> None:
    if not records:
        print("No audit records.")
        return
    for r in records:
        comment = f" - {r.comment}" if r.comment else ""
        print(
            f"  {r.decided_at.isoformat()}  {r.decision.value:8}  "
            f"achievement={r.achievement_id} auditor={r.auditor_id}{comment}"
        )


def cmd_init_db(args):
    """Create the PostgreSQL schema."""
    if get_store_driver() != StoreDriver.PSYCOPG2:
        print("Error: no PostgreSQL database configured (set DATABASE_URL).")
        return 1

    import psycopg2

    from achievements.db.postgres import create_schema

    config = get_database_config()
    print(f"Creating schema in {config.to_url(include_password=False)} ...")
    create_schema(lambda: psycopg2.connect(config.to_dsn()))
    print("[OK] Schema ready")
    return 0


def cmd_stats(args, core):
    """Print review statistics."""
    stats = core.get_statistics()
    if args.json:
        print(json.dumps(stats.model_dump()))
    else:
        print(f"  Pending:              {stats.pending_count}")
        print(f"  Approved today:       {stats.today_approved_count}")
        print(f"  Avg processing (h):   {stats.avg_processing_hours}")
        print(f"  Rejection rate:       {stats.rejection_rate}")
    return 0


def cmd_history(args, core):
    """Print the decisions on one achievement, newest first."""
    _print_records(core.get_history(args.achievement_id))
    return 0


def cmd_reviewer_history(args, core):
    """Print one page of an auditor's decisions."""
    _print_records(core.get_reviewer_history(args.auditor_id, page=args.page, page_size=args.page_size))
    return 0


def cmd_approve(args, core):
    record = core.approve(args.achievement_id, args.auditor)
    print(f"[OK] Approved {record.achievement_id} (record {record.record_id})")
    return 0


def cmd_reject(args, core):
    record = core.reject(args.achievement_id, args.auditor, args.reason)
    print(f"[OK] Rejected {record.achievement_id} (record {record.record_id})")
    return 0


def cmd_batch_approve(args, core):
    succeeded = core.batch_approve(args.achievement_ids, args.auditor)
    print(f"Approved {succeeded} of {len(args.achievement_ids)} achievements")
    return 0 if succeeded == len(args.achievement_ids) else 1


def cmd_check_permission(args):
    """Evaluate one permission for a role, without touching any store."""
    actor_id = args.actor or uuid4()
    actor = Actor(id=actor_id, roles=(Role(args.role),))
    owner_id = args.owner
    allowed = PermissionEvaluator().evaluate(actor, args.permission, owner_id=owner_id)
    print(f"{args.role} {args.permission}: {'ALLOW' if allowed else 'DENY'}")
    return 0 if allowed else 1


def cmd_health_check(args, core):
    status = core.health()
    for name, check in status.checks.items():
        print(f"  {name}: {check}")
    print(f"Healthy: {status.healthy} ({status.duration_ms} ms)")
    return 0 if status.healthy else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Achievement Review Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-db", help="Create PostgreSQL tables")

    p_stats = subparsers.add_parser("stats", help="Show review statistics")
    p_stats.add_argument("--json", action="store_true", help="Print as JSON")

    p_history = subparsers.add_parser("history", help="Decisions on one achievement")
    p_history.add_argument("achievement_id", type=UUID)

    p_reviewer = subparsers.add_parser("reviewer-history", help="One auditor's decisions")
    p_reviewer.add_argument("auditor_id", type=UUID)
    p_reviewer.add_argument("--page", type=int, default=1)
    p_reviewer.add_argument("--page-size", type=int, default=20)

    p_approve = subparsers.add_parser("approve", help="Approve a pending achievement")
    p_approve.add_argument("achievement_id", type=UUID)
    p_approve.add_argument("--auditor", type=UUID, required=True)

    p_reject = subparsers.add_parser("reject", help="Reject a pending achievement")
    p_reject.add_argument("achievement_id", type=UUID)
    p_reject.add_argument("--auditor", type=UUID, required=True)
    p_reject.add_argument("--reason", required=True)

    p_batch = subparsers.add_parser("batch-approve", help="Approve several achievements")
    p_batch.add_argument("achievement_ids", nargs="+")
    p_batch.add_argument("--auditor", type=UUID, required=True)

    p_check = subparsers.add_parser("check-permission", help="Evaluate a role/permission pair")
    p_check.add_argument("--role", required=True, choices=[r.value for r in Role])
    p_check.add_argument("--permission", required=True)
    p_check.add_argument("--owner", type=UUID, help="Owner of the target achievement")
    p_check.add_argument("--actor", type=UUID, help="Acting user id")

    subparsers.add_parser("health-check", help="Run store health checks")

    return parser


def main(argv=None, core=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    standalone = {
        "init-db": cmd_init_db,
        "check-permission": cmd_check_permission,
    }
    if args.command in standalone:
        return standalone[args.command](args) or 0

    commands = {
        "stats": cmd_stats,
        "history": cmd_history,
        "reviewer-history": cmd_reviewer_history,
        "approve": cmd_approve,
        "reject": cmd_reject,
        "batch-approve": cmd_batch_approve,
        "health-check": cmd_health_check,
    }

    if core is None:
        setup_logging()
        core = build_core(cache_statistics=False)

    try:
        return commands[args.command](args, core) or 0
    except WorkflowError as e:
        print(f"Error [{e.kind.value}]: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
