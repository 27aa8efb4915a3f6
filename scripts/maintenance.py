#!/usr/bin/env python3
"""
Command-line maintenance utility: integrity check, pending-action expiry
sweep and retention of finished actions.
"""

import argparse
import json
import sys
from pathlib import Path

# Add the repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from advisor.core.db import init_db
from advisor.core.maintenance import (
    MaintenanceReport,
    check_database_integrity,
    expire_stale_actions,
    perform_full_maintenance,
    purge_finished_actions,
)


def format_report(report: MaintenanceReport) -> str:
    """Format a maintenance report for display."""
    lines = [f"Operation: {report.operation}"]
    if report.completed_at and report.started_at:
        duration = report.completed_at - report.started_at
        lines.append(f"Duration: {duration.total_seconds():.2f} seconds")

    if report.errors:
        lines.append(f"Status: FAILED ({len(report.errors)} errors)")
    elif report.issues_found > 0 and report.issues_resolved < report.issues_found:
        lines.append(f"Status: ISSUES FOUND ({report.issues_found} issues)")
    else:
        lines.append("Status: SUCCESS")

    if report.metadata:
        lines.append("Details:")
        for key, value in report.metadata.items():
            lines.append(f"  {key}: {value}")

    if report.errors:
        lines.append("Errors:")
        for error in report.errors:
            lines.append(f"  - {error}")

    if report.recommendations:
        lines.append("Recommendations:")
        for rec in report.recommendations:
            lines.append(f"  - {rec}")

    if report.actions_taken and len(report.actions_taken) <= 5:
        lines.append("Actions Taken:")
        for action in report.actions_taken:
            lines.append(f"  - {action}")

    return "\n".join(lines)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Advisor database maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --check-integrity          # Check database integrity
  %(prog)s --expire-actions           # Expire overdue pending actions
  %(prog)s --purge-actions --days 60  # Remove finished actions older than 60 days
  %(prog)s --full-maintenance --json  # Run everything, JSON output

Environment variables:
- DB_PATH=./data/advisor.db (database location)
        """
    )
    parser.add_argument("--check-integrity", "-i", action="store_true",
                        help="Check SQLite integrity and required tables")
    parser.add_argument("--expire-actions", "-e", action="store_true",
                        help="Mark overdue pending actions as EXPIRED")
    parser.add_argument("--purge-actions", "-p", action="store_true",
                        help="Delete finished actions past the retention window")
    parser.add_argument("--days", type=int, default=30,
                        help="Retention window in days for --purge-actions (default: 30)")
    parser.add_argument("--full-maintenance", "-f", action="store_true",
                        help="Perform all maintenance operations in sequence")
    parser.add_argument("--json", "-j", action="store_true",
                        help="Output results as JSON instead of human-readable text")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Suppress non-error output")

    args = parser.parse_args(argv)

    if not (args.check_integrity or args.expire_actions or args.purge_actions or args.full_maintenance):
        parser.error("Must specify at least one maintenance operation")

    if args.full_maintenance and any([args.check_integrity, args.expire_actions, args.purge_actions]):
        parser.error("--full-maintenance cannot be combined with individual operations")

    init_db()

    if args.full_maintenance:
        reports = perform_full_maintenance(args.days)
    else:
        reports = []
        if args.check_integrity:
            reports.append(check_database_integrity())
        if args.expire_actions:
            reports.append(expire_stale_actions())
        if args.purge_actions:
            reports.append(purge_finished_actions(args.days))

    if args.json:
        print(json.dumps({
            "operations": len(reports),
            "total_issues_found": sum(r.issues_found for r in reports),
            "total_issues_resolved": sum(r.issues_resolved for r in reports),
            "errors": sum(len(r.errors) for r in reports),
            "reports": [r.to_dict() for r in reports],
        }, indent=2, default=str))
    else:
        for i, report in enumerate(reports, 1):
            if not args.quiet or report.errors:
                if len(reports) > 1:
                    print(f"\nOperation {i}: {report.operation.upper()}")
                    print("-" * 40)
                print(format_report(report))

    if any(r.errors for r in reports):
        return 1
    if any(r.issues_found > r.issues_resolved for r in reports):
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
