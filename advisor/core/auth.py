"""
Identity and capability checks.

Token issuance lives outside this service; here a bearer token is only
looked up. Every authorization decision (queries, financial reads, action
create/confirm/execute) goes through has_capability(), which reads the
caller's current role from the store on each call.
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from .db import get_db
from .errors import DataUnavailable, Forbidden, Unauthenticated

ADVISOR_QUERY = "advisor.query"
STUDENTS_READ = "students.read"
ATTENDANCE_READ = "attendance.read"
FEES_READ = "fees.read"
PAYROLL_READ = "payroll.read"
ACTIONS_WRITE = "actions.write"

ROLE_CAPABILITIES: Dict[str, FrozenSet[str]] = {
    "principal": frozenset({
        ADVISOR_QUERY, STUDENTS_READ, ATTENDANCE_READ, FEES_READ, PAYROLL_READ, ACTIONS_WRITE
    }),
    "administrator": frozenset({
        ADVISOR_QUERY, STUDENTS_READ, ATTENDANCE_READ, FEES_READ, PAYROLL_READ
    }),
    "accountant": frozenset({
        ADVISOR_QUERY, STUDENTS_READ, FEES_READ, PAYROLL_READ
    }),
    "teacher": frozenset({
        ADVISOR_QUERY, STUDENTS_READ, ATTENDANCE_READ
    }),
}


@dataclass(frozen=True)
class Identity:
    """Authenticated caller. school_id is the caller's active school, if any."""
    user_id: str
    school_id: Optional[str] = None
    role: Optional[str] = None


def resolve_identity(token: Optional[str]) -> Identity:
    """Resolve a bearer token to an Identity or raise Unauthenticated."""
    if not token or not token.strip():
        raise Unauthenticated("Missing authorization")

    with get_db() as conn:
        row = conn.execute(
            "SELECT user_id, expires_at FROM auth_tokens WHERE token = ?",
            (token.strip(),)
        ).fetchone()

        if not row:
            raise Unauthenticated("Invalid or expired token")

        if row["expires_at"] and datetime.fromisoformat(row["expires_at"]) < datetime.now():
            raise Unauthenticated("Invalid or expired token")

        membership = conn.execute(
            "SELECT school_id, role FROM school_members "
            "WHERE user_id = ? AND is_active = 1 ORDER BY school_id LIMIT 1",
            (row["user_id"],)
        ).fetchone()

    if not membership:
        return Identity(user_id=row["user_id"])

    return Identity(user_id=row["user_id"], school_id=membership["school_id"], role=membership["role"])


def current_role(user_id: str, school_id: str) -> Optional[str]:
    """Role the user holds right now in the given school, None if inactive."""
    try:
        with get_db() as conn:
            row = conn.execute(
                "SELECT role FROM school_members WHERE user_id = ? AND school_id = ? AND is_active = 1",
                (user_id, school_id)
            ).fetchone()
    except sqlite3.Error as e:
        raise DataUnavailable("membership", f"Role lookup failed: {e}")
    return row["role"] if row else None


def has_capability(identity: Identity, scope: Optional[str], capability: str) -> bool:
    """Single authorization decision used by every privileged path."""
    if identity is None or not scope:
        return False

    role = current_role(identity.user_id, scope)
    if role is None:
        return False

    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def require_capability(identity: Identity, scope: Optional[str], capability: str, message: str = "") -> None:
    if not has_capability(identity, scope, capability):
        raise Forbidden(message or f"Access denied: {capability} required")
