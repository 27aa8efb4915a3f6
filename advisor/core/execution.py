"""
Privileged Execution Engine.

Applies a CONFIRMED action with the service credential. The move to EXECUTED
and the mutation commit together or not at all; on a store failure or a
missing target record the action stays CONFIRMED with last_error set and
the caller gets ExecutionFailed. Only store failures are retryable.
"""

import sqlite3
from datetime import datetime
from typing import Callable

from . import config, dao
from .auth import ACTIONS_WRITE, Identity, has_capability
from .db import get_db
from .errors import ExecutionFailed, Expired, Forbidden, NotFound
from .money import format_inr, from_minor, to_minor
from .pending_actions import ActionState, PendingAction, load_action, raise_for_state
from .schema import parse_action
from ..util.logging import logger


def _add_student(store: dao.ServiceStore, action: PendingAction, payload) -> str:
    store.insert_student(
        action.school_scope_id, payload.name, payload.class_name, to_minor(payload.fee_amount),
        payload.fee_type, payload.join_date.isoformat() if payload.join_date else None,
    )
    return f"Added student {payload.name}" + (f" to {payload.class_name}." if payload.class_name else ".")


def _update_student(store: dao.ServiceStore, action: PendingAction, payload) -> str:
    changes = payload.changes()
    if 'fee_amount' in changes:
        changes['fee_amount'] = to_minor(changes['fee_amount'])
    if 'join_date' in changes:
        changes['join_date'] = changes['join_date'].isoformat()
    if 'is_archived' in changes:
        changes['is_archived'] = int(changes['is_archived'])
    store.update_student(action.school_scope_id, payload.student_id, changes)
    return f"Updated student record ({', '.join(sorted(changes))})."


def _add_payment(store: dao.ServiceStore, action: PendingAction, payload) -> str:
    amount = to_minor(payload.amount)
    store.insert_payment(action.school_scope_id, payload.student_id, amount,
                         payload.paid_on.isoformat(), payload.method, action.requester_user_id)
    return f"Recorded payment of {format_inr(from_minor(amount))}."


def _add_expense(store: dao.ServiceStore, action: PendingAction, payload) -> str:
    amount = to_minor(payload.amount)
    store.insert_expense(action.school_scope_id, payload.category, amount,
                         payload.spent_on.isoformat(), payload.description, action.requester_user_id)
    return f"Recorded {payload.category} expense of {format_inr(from_minor(amount))}."


def _update_attendance(store: dao.ServiceStore, action: PendingAction, payload) -> str:
    store.upsert_attendance(action.school_scope_id, payload.student_id, payload.date.isoformat(),
                            payload.status, action.requester_user_id)
    return f"Marked attendance as {payload.status} for {payload.date.isoformat()}."


def _deactivate_member(store: dao.ServiceStore, action: PendingAction, payload) -> str:
    store.deactivate_member(action.school_scope_id, payload.user_id)
    return "Member access revoked."


ACTION_HANDLERS = {
    'add_student': _add_student,
    'update_student': _update_student,
    'add_payment': _add_payment,
    'add_expense': _add_expense,
    'update_attendance': _update_attendance,
    'deactivate_member': _deactivate_member,
}


class PrivilegedExecutor:
    """Runs confirmed actions. Holds no state between calls."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock

    def execute(self, action_id: str, actor: Identity) -> PendingAction:
        action = load_action(action_id)

        if action.state != ActionState.CONFIRMED:
            raise_for_state(action, actor.user_id, "execute")

        # Role and ownership may have changed since confirm.
        if (actor.user_id != action.requester_user_id
                or not has_capability(actor, action.school_scope_id, ACTIONS_WRITE)):
            logger.log_action_rejected(action.id, "execute", actor.user_id, "not authorized")
            raise Forbidden("Your role no longer allows this change")

        if action.is_overdue(self.clock()):
            if dao.transition_action(action.id, ActionState.CONFIRMED.value, ActionState.EXPIRED.value):
                logger.log_pending_action(action.id, "expired", actor.user_id)
            raise Expired("This action has expired, please request it again")

        payload = parse_action(action.action_type, action.action_data)
        handler = ACTION_HANDLERS[action.action_type]

        try:
            with get_db() as conn:
                store = dao.ServiceStore(conn, config.SERVICE_ROLE_KEY)
                try:
                    executed_at = self.clock().isoformat()
                    if not dao.transition_action(action.id, ActionState.CONFIRMED.value,
                                                 ActionState.EXECUTED.value, conn=conn,
                                                 executed_at=executed_at):
                        conn.rollback()
                        raise_for_state(load_action(action.id), actor.user_id, "execute")

                    result_message = handler(store, action, payload)
                    conn.execute(
                        "UPDATE pending_actions SET result_message = ?, last_error = NULL WHERE id = ?",
                        (result_message, action.id)
                    )
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except NotFound as e:
            self._record_failure(action, actor, e.message)
            raise ExecutionFailed(f"The change could not be applied: {e.message}. Nothing was changed.",
                                  {"action_id": action.id}, retryable=False)
        except sqlite3.Error as e:
            self._record_failure(action, actor, str(e))
            raise ExecutionFailed("The change could not be saved. Nothing was applied, you can retry.",
                                  {"action_id": action.id})

        logger.log_pending_action(action.id, "executed", actor.user_id, {"action_type": action.action_type})
        dao.record_audit(actor.user_id, action.school_scope_id, "action_executed",
                         {"action_id": action.id, "action_type": action.action_type})
        return load_action(action.id)

    def _record_failure(self, action: PendingAction, actor: Identity, error: str) -> None:
        dao.record_action_error(action.id, error)
        logger.log_pending_action(action.id, "execution_failed", actor.user_id, {"error": error})
        dao.record_audit(actor.user_id, action.school_scope_id, "action_failed",
                         {"action_id": action.id, "error": error})
