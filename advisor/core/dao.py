"""
Data access for advisor-owned state: conversations, pending actions, audit log,
and the service-credential writer used by the execution engine.
"""

import json
import sqlite3
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import config
from .db import get_db
from .errors import Forbidden, NotFound
from ..util.logging import logger


def _now() -> str:
    return datetime.now().isoformat()


# Audit trail

def record_audit(user_id: Optional[str], school_id: Optional[str], action: str, detail: Any = None) -> bool:
    """Append an audit record. Failures are logged, never raised."""
    try:
        with get_db() as conn:
            conn.execute(
                "INSERT INTO audit_log (ts, user_id, school_id, action, detail) VALUES (?, ?, ?, ?, ?)",
                (_now(), user_id, school_id, action,
                 json.dumps(detail, default=str) if detail is not None else None)
            )
            conn.commit()
        return True
    except sqlite3.Error as e:
        logger.error(f"Failed to record audit event {action}: {e}")
        return False


def list_audit(user_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    with get_db() as conn:
        if user_id:
            rows = conn.execute(
                "SELECT ts, user_id, school_id, action, detail FROM audit_log WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, limit)
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT ts, user_id, school_id, action, detail FROM audit_log ORDER BY id DESC LIMIT ?",
                (limit,)
            ).fetchall()
    return [dict(row) for row in rows]


# Conversations

def insert_conversation(row: Dict[str, Any]) -> None:
    with get_db() as conn:
        conn.execute(
            "INSERT INTO conversations (id, owner_user_id, school_id, title, messages, created_at, last_updated) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (row["id"], row["owner_user_id"], row.get("school_id"), row["title"],
             json.dumps(row["messages"]), row["created_at"], row["last_updated"])
        )
        conn.commit()


def get_conversation(conversation_id: str) -> Optional[Dict[str, Any]]:
    with get_db() as conn:
        row = conn.execute(
            "SELECT id, owner_user_id, school_id, title, messages, created_at, last_updated "
            "FROM conversations WHERE id = ?",
            (conversation_id,)
        ).fetchone()
    if not row:
        return None
    data = dict(row)
    data["messages"] = json.loads(data["messages"] or "[]")
    return data


def update_conversation(conversation_id: str, messages: List[Dict[str, Any]], last_updated: str,
                        title: Optional[str] = None) -> bool:
    with get_db() as conn:
        if title is None:
            cursor = conn.execute(
                "UPDATE conversations SET messages = ?, last_updated = ? WHERE id = ?",
                (json.dumps(messages), last_updated, conversation_id)
            )
        else:
            cursor = conn.execute(
                "UPDATE conversations SET messages = ?, last_updated = ?, title = ? WHERE id = ?",
                (json.dumps(messages), last_updated, title, conversation_id)
            )
        conn.commit()
        return cursor.rowcount == 1


def delete_conversation(conversation_id: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        conn.commit()
        return cursor.rowcount == 1


def list_conversations(owner_user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT id, title, created_at, last_updated FROM conversations "
            "WHERE owner_user_id = ? ORDER BY last_updated DESC LIMIT ?",
            (owner_user_id, limit)
        ).fetchall()
    return [dict(row) for row in rows]


# Pending actions

PENDING_ACTION_COLUMNS = (
    "id, requester_user_id, school_scope_id, action_type, action_summary, action_data, "
    "created_at, expires_at, state, confirmed_by, executed_at, result_message, last_error"
)


def insert_pending_action(row: Dict[str, Any]) -> None:
    with get_db() as conn:
        conn.execute(
            "INSERT INTO pending_actions (id, requester_user_id, school_scope_id, action_type, "
            "action_summary, action_data, created_at, expires_at, state) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (row["id"], row["requester_user_id"], row["school_scope_id"], row["action_type"],
             row["action_summary"], json.dumps(row["action_data"]), row["created_at"],
             row["expires_at"], row["state"])
        )
        conn.commit()


def _pending_row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data["action_data"] = json.loads(data["action_data"])
    return data


def get_pending_action(action_id: str) -> Optional[Dict[str, Any]]:
    with get_db() as conn:
        row = conn.execute(
            f"SELECT {PENDING_ACTION_COLUMNS} FROM pending_actions WHERE id = ?",
            (action_id,)
        ).fetchone()
    return _pending_row_to_dict(row) if row else None


def list_pending_actions(requester_user_id: str, state: Optional[str] = None) -> List[Dict[str, Any]]:
    with get_db() as conn:
        if state:
            rows = conn.execute(
                f"SELECT {PENDING_ACTION_COLUMNS} FROM pending_actions "
                "WHERE requester_user_id = ? AND state = ? ORDER BY created_at DESC",
                (requester_user_id, state)
            ).fetchall()
        else:
            rows = conn.execute(
                f"SELECT {PENDING_ACTION_COLUMNS} FROM pending_actions "
                "WHERE requester_user_id = ? ORDER BY created_at DESC",
                (requester_user_id,)
            ).fetchall()
    return [_pending_row_to_dict(row) for row in rows]


TRANSITION_FIELDS = {"confirmed_by", "executed_at", "result_message", "last_error"}


def transition_action(action_id: str, from_state: str, to_state: str,
                      conn: Optional[sqlite3.Connection] = None, **fields) -> bool:
    """Compare-and-swap the action state. True only for the caller that moved it.

    When ``conn`` is given the update joins the caller's open transaction and
    is not committed here.
    """
    unknown = set(fields) - TRANSITION_FIELDS
    if unknown:
        raise ValueError(f"Unknown pending action fields: {sorted(unknown)}")

    assignments = ["state = ?"] + [f"{name} = ?" for name in fields]
    params = [to_state] + list(fields.values()) + [action_id, from_state]
    sql = f"UPDATE pending_actions SET {', '.join(assignments)} WHERE id = ? AND state = ?"

    if conn is not None:
        return conn.execute(sql, params).rowcount == 1

    with get_db() as own_conn:
        cursor = own_conn.execute(sql, params)
        own_conn.commit()
        return cursor.rowcount == 1


def record_action_error(action_id: str, error: str) -> None:
    with get_db() as conn:
        conn.execute("UPDATE pending_actions SET last_error = ? WHERE id = ?", (error[:500], action_id))
        conn.commit()


def expire_overdue_actions(now: datetime) -> List[str]:
    """Mark PENDING or CONFIRMED actions past their expiry as EXPIRED; return their ids."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT id, state FROM pending_actions WHERE state IN ('PENDING', 'CONFIRMED') AND expires_at < ?",
            (now.isoformat(),)
        ).fetchall()
        expired = []
        for row in rows:
            if transition_action(row["id"], row["state"], "EXPIRED", conn=conn):
                expired.append(row["id"])
        conn.commit()
    return expired


def purge_terminal_actions(older_than: datetime) -> int:
    """Delete EXECUTED/EXPIRED/CANCELLED rows created before the cutoff."""
    with get_db() as conn:
        cursor = conn.execute(
            "DELETE FROM pending_actions WHERE state IN ('EXECUTED', 'EXPIRED', 'CANCELLED') AND created_at < ?",
            (older_than.isoformat(),)
        )
        conn.commit()
        return cursor.rowcount


class ServiceStore:
    """Record writer bound to the service credential.

    Requesters never hold this credential; only the execution engine opens
    one, inside the transaction that also flips the action to EXECUTED.
    """

    def __init__(self, conn: sqlite3.Connection, service_key: str):
        if not service_key or service_key != config.SERVICE_ROLE_KEY:
            raise Forbidden("Service credential rejected")
        self.conn = conn

    def insert_student(self, school_id: str, name: str, class_name: Optional[str], fee_amount: int,
                       fee_type: str, join_date: Optional[str]) -> str:
        student_id = str(uuid.uuid4())
        self.conn.execute(
            "INSERT INTO students (id, school_id, name, class_name, fee_amount, fee_type, join_date) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (student_id, school_id, name, class_name, fee_amount, fee_type, join_date)
        )
        return student_id

    def update_student(self, school_id: str, student_id: str, changes: Dict[str, Any]) -> None:
        allowed = {"name", "class_name", "fee_amount", "fee_type", "join_date", "is_archived"}
        columns = {k: v for k, v in changes.items() if k in allowed}
        if not columns:
            return
        assignments = ", ".join(f"{name} = ?" for name in columns)
        cursor = self.conn.execute(
            f"UPDATE students SET {assignments} WHERE id = ? AND school_id = ?",
            list(columns.values()) + [student_id, school_id]
        )
        if cursor.rowcount != 1:
            raise NotFound("Student not found in this school")

    def insert_payment(self, school_id: str, student_id: str, amount: int, paid_on: str,
                       method: Optional[str], created_by: str) -> str:
        """Record a fee payment and post the matching fee ledger entry."""
        owner = self.conn.execute(
            "SELECT 1 FROM students WHERE id = ? AND school_id = ?", (student_id, school_id)
        ).fetchone()
        if not owner:
            raise NotFound("Student not found in this school")

        payment_id = str(uuid.uuid4())
        self.conn.execute(
            "INSERT INTO payments (id, school_id, student_id, amount, paid_on, method, created_by) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (payment_id, school_id, student_id, amount, paid_on, method, created_by)
        )
        self.conn.execute(
            "INSERT INTO fee_ledger (id, school_id, amount, posted_on, memo, payment_id) VALUES (?, ?, ?, ?, ?, ?)",
            (str(uuid.uuid4()), school_id, amount, paid_on, "fee payment", payment_id)
        )
        return payment_id

    def insert_expense(self, school_id: str, category: str, amount: int, spent_on: str,
                       description: Optional[str], created_by: str) -> str:
        expense_id = str(uuid.uuid4())
        self.conn.execute(
            "INSERT INTO expenses (id, school_id, category, amount, spent_on, description, created_by) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (expense_id, school_id, category, amount, spent_on, description, created_by)
        )
        return expense_id

    def upsert_attendance(self, school_id: str, student_id: str, date: str, status: str, marked_by: str) -> None:
        owner = self.conn.execute(
            "SELECT 1 FROM students WHERE id = ? AND school_id = ?", (student_id, school_id)
        ).fetchone()
        if not owner:
            raise NotFound("Student not found in this school")

        self.conn.execute(
            "INSERT INTO attendance (id, school_id, student_id, date, status, marked_by) VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(student_id, date) DO UPDATE SET status = excluded.status, marked_by = excluded.marked_by",
            (str(uuid.uuid4()), school_id, student_id, date, status, marked_by)
        )

    def deactivate_member(self, school_id: str, user_id: str) -> None:
        cursor = self.conn.execute(
            "UPDATE school_members SET is_active = 0 WHERE user_id = ? AND school_id = ? AND is_active = 1",
            (user_id, school_id)
        )
        if cursor.rowcount != 1:
            raise NotFound("Active member not found in this school")
        self.conn.execute("DELETE FROM auth_tokens WHERE user_id = ?", (user_id,))
