#!/usr/bin/env python3
"""
Scheduled maintenance and monitoring commands for the mission workflow.

Usage:
    python -m scripts.maintenance [--database-url URL] [--config PATH] COMMAND

Commands:
    init-db                 Create tables and install immutability triggers
    cleanup-idempotency     Delete expired idempotency records
    cleanup-notifications   Expire stale pending notifications, purge old sent ones
    daily-stats [--date D]  Workflow statistics for a Paris calendar day
    anomalies               Scan open missions for anomalies
    snapshot                Monitoring dashboard snapshot
    transitions             Dump the configured transition table

Every command prints JSON on stdout.  The database URL defaults to
$DATABASE_URL, then to a local SQLite file.
"""

import argparse
import json
import os
import sys

from mission_config import get_active_config
from mission_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from mission_kernel.db.immutability import register_immutability_listeners
from mission_kernel.exceptions import WorkflowKernelError
from mission_services.procedures import WorkflowProcedures

DEFAULT_DB_URL = "sqlite:///missions.db"


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Mission workflow maintenance")
    p.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL", DEFAULT_DB_URL),
        help=f"Database URL (default: $DATABASE_URL or {DEFAULT_DB_URL!r})",
    )
    p.add_argument(
        "--config",
        default=None,
        help="Workflow YAML (default: $MISSION_WORKFLOW_CONFIG or the shipped workflow)",
    )
    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create tables and triggers")
    sub.add_parser("cleanup-idempotency", help="Delete expired idempotency records")
    sub.add_parser("cleanup-notifications", help="Expire and purge notifications")
    stats = sub.add_parser("daily-stats", help="Statistics for one day")
    stats.add_argument("--date", default=None, help="YYYY-MM-DD (default: today in Paris)")
    sub.add_parser("anomalies", help="Detect workflow anomalies")
    sub.add_parser("snapshot", help="Monitoring dashboard snapshot")
    sub.add_parser("transitions", help="List configured transitions")
    return p.parse_args(argv)


def run(args: argparse.Namespace):
    """Execute one command and return its JSON-friendly result."""
    init_engine_from_url(args.database_url)
    register_immutability_listeners()

    if args.command == "init-db":
        create_tables()
        return {"initialized": True}

    procedures = WorkflowProcedures(
        session_factory=get_session_factory(),
        config=get_active_config(args.config),
    )
    if args.command == "cleanup-idempotency":
        return procedures.cleanup_expired_idempotency()
    if args.command == "cleanup-notifications":
        return procedures.cleanup_expired_notifications()
    if args.command == "daily-stats":
        day = args.date or procedures.now_paris()[:10]
        return procedures.generate_daily_stats(day)
    if args.command == "anomalies":
        return procedures.detect_workflow_anomalies()
    if args.command == "snapshot":
        return procedures.monitoring_dashboard()
    if args.command == "transitions":
        return procedures.list_workflow_transitions()
    raise ValueError(f"unknown command {args.command!r}")


def main(argv=None) -> int:
    args = _parse_args(argv)
    try:
        result = run(args)
    except WorkflowKernelError as exc:
        print(json.dumps(exc.to_dict(), indent=2), file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
