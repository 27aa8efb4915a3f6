"""
Maintenance routines: database integrity, pending-action expiry sweep and
retention of finished actions. Correctness never depends on these running;
expiry is also enforced lazily whenever an action is touched.
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config, dao
from .db import REQUIRED_TABLES, get_db
from .pending_actions import PendingActionRegistry
from ..util.logging import audit_event


@dataclass
class MaintenanceReport:
    """Maintenance operation report."""
    operation: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    issues_found: int = 0
    issues_resolved: int = 0
    actions_taken: List[str] = None
    recommendations: List[str] = None
    errors: List[str] = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.actions_taken is None:
            self.actions_taken = []
        if self.recommendations is None:
            self.recommendations = []
        if self.errors is None:
            self.errors = []
        if self.metadata is None:
            self.metadata = {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "issues_found": self.issues_found,
            "issues_resolved": self.issues_resolved,
            "actions_taken": self.actions_taken,
            "recommendations": self.recommendations,
            "errors": self.errors,
            "metadata": self.metadata
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


def check_database_integrity() -> MaintenanceReport:
    """Run SQLite's integrity check and confirm the advisor tables exist."""
    report = MaintenanceReport(operation="database_integrity_check", started_at=datetime.now())

    if not Path(config.DB_PATH).exists():
        report.errors.append(f"Database file not found: {config.DB_PATH}")
        report.completed_at = datetime.now()
        return report

    try:
        with get_db() as conn:
            result = conn.execute("PRAGMA integrity_check").fetchone()[0]
            report.metadata["integrity_check"] = result
            if result != "ok":
                report.issues_found += 1
                report.recommendations.append("Restore the database from a known good copy")

            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
            missing = [t for t in REQUIRED_TABLES if t not in tables]
            if missing:
                report.issues_found += len(missing)
                report.metadata["missing_tables"] = missing
                report.recommendations.append("Start the API once or call init_db() to create missing tables")
            else:
                stuck = conn.execute(
                    "SELECT COUNT(*) FROM pending_actions WHERE state = 'CONFIRMED' AND last_error IS NOT NULL"
                ).fetchone()[0]
                report.metadata["failed_executions_awaiting_retry"] = stuck
                if stuck:
                    report.issues_found += stuck
                    report.recommendations.append("Confirmed actions with a recorded error can be retried by their requester")
    except sqlite3.Error as e:
        report.errors.append(f"Database error: {e}")

    report.completed_at = datetime.now()
    return report


def expire_stale_actions(registry: Optional[PendingActionRegistry] = None) -> MaintenanceReport:
    """Mark overdue PENDING/CONFIRMED actions as EXPIRED."""
    report = MaintenanceReport(operation="pending_action_expiry", started_at=datetime.now())
    registry = registry or PendingActionRegistry()

    try:
        expired = registry.expire_stale()
    except sqlite3.Error as e:
        report.errors.append(f"Expiry sweep failed: {e}")
        report.completed_at = datetime.now()
        return report

    report.issues_found = len(expired)
    report.issues_resolved = len(expired)
    report.actions_taken = [f"expired {action_id}" for action_id in expired]
    report.metadata["expired_count"] = len(expired)
    report.completed_at = datetime.now()

    if expired:
        audit_event("pending_actions_expired", {"count": len(expired)})
    return report


def purge_finished_actions(retention_days: int = 30) -> MaintenanceReport:
    """Delete EXECUTED, EXPIRED and CANCELLED actions older than the retention window."""
    report = MaintenanceReport(operation="pending_action_retention", started_at=datetime.now())
    if retention_days < 1:
        report.errors.append("retention_days must be >= 1")
        report.completed_at = datetime.now()
        return report

    try:
        removed = dao.purge_terminal_actions(datetime.now() - timedelta(days=retention_days))
    except sqlite3.Error as e:
        report.errors.append(f"Retention purge failed: {e}")
        report.completed_at = datetime.now()
        return report

    report.issues_resolved = removed
    report.metadata["removed"] = removed
    report.metadata["retention_days"] = retention_days
    if removed:
        report.actions_taken.append(f"removed {removed} finished actions")
    report.completed_at = datetime.now()
    return report


def perform_full_maintenance(retention_days: int = 30) -> List[MaintenanceReport]:
    reports = [check_database_integrity()]
    if reports[0].errors:
        return reports
    reports.append(expire_stale_actions())
    reports.append(purge_finished_actions(retention_days))
    return reports
