"""
Pending Action Registry - two-phase confirmation for writes.

    PENDING --confirm--> CONFIRMED --execute--> EXECUTED
       |                     |
       +--cancel--> CANCELLED
       +--ttl-----> EXPIRED <+

Every transition is a compare-and-swap on the current state in the store, so
of two concurrent confirms exactly one observes PENDING. Expiry is checked
lazily whenever an action is touched; expire_stale() only tidies rows.
"""

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from . import config, dao
from .auth import ACTIONS_WRITE, Identity, has_capability, require_capability
from .errors import AlreadyExecuted, AlreadyHandled, Expired, Forbidden, InvalidAction, NotFound
from .schema import normalize_action
from ..util.logging import logger


class ActionState(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    EXECUTED = "EXECUTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


TERMINAL_STATES = {ActionState.EXECUTED, ActionState.EXPIRED, ActionState.CANCELLED}


@dataclass
class PendingAction:
    id: str
    requester_user_id: str
    school_scope_id: str
    action_type: str
    action_summary: str
    action_data: Dict[str, Any]
    created_at: datetime
    expires_at: datetime
    state: ActionState
    confirmed_by: Optional[str] = None
    executed_at: Optional[datetime] = None
    result_message: Optional[str] = None
    last_error: Optional[str] = None

    def is_overdue(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage and responses."""
        data = asdict(self)
        data['state'] = self.state.value
        data['created_at'] = self.created_at.isoformat()
        data['expires_at'] = self.expires_at.isoformat()
        data['executed_at'] = self.executed_at.isoformat() if self.executed_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PendingAction':
        data = dict(data)
        data['state'] = ActionState(data['state'])
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['expires_at'] = datetime.fromisoformat(data['expires_at'])
        if data.get('executed_at'):
            data['executed_at'] = datetime.fromisoformat(data['executed_at'])
        return cls(**data)


def load_action(action_id: str) -> PendingAction:
    data = dao.get_pending_action(action_id)
    if not data:
        raise NotFound("Pending action not found")
    return PendingAction.from_dict(data)


def raise_for_state(action: PendingAction, actor: str, attempted: str) -> None:
    """Raise the race outcome for an action that is no longer where the caller expected."""
    logger.log_action_rejected(action.id, attempted, actor, f"state is {action.state.value}")
    if action.state == ActionState.EXECUTED:
        raise AlreadyExecuted("This action has already been executed")
    if action.state == ActionState.EXPIRED:
        raise Expired("This action has expired, please request it again")
    raise AlreadyHandled(f"This action was already {action.state.value.lower()}")


class PendingActionRegistry:
    """Creates, confirms and cancels pending actions for authenticated users."""

    def __init__(self, executor=None, clock: Callable[[], datetime] = datetime.now):
        if executor is None:
            from .execution import PrivilegedExecutor
            executor = PrivilegedExecutor(clock=clock)
        self.executor = executor
        self.clock = clock

    def create(self, requester: Identity, action_type: str, action_summary: str,
               action_data: Dict[str, Any], scope: Optional[str] = None) -> PendingAction:
        scope = scope or requester.school_id
        if not scope:
            raise Forbidden("No active school membership")
        require_capability(requester, scope, ACTIONS_WRITE, "Your role cannot request changes for this school")

        summary = (action_summary or "").strip()
        if not summary:
            raise InvalidAction("action_summary cannot be empty")

        data = normalize_action(action_type, action_data)
        if action_type == 'deactivate_member' and data['user_id'] == requester.user_id:
            raise InvalidAction("You cannot deactivate your own membership")

        created_at = self.clock()
        action = PendingAction(
            id=str(uuid.uuid4()),
            requester_user_id=requester.user_id,
            school_scope_id=scope,
            action_type=action_type,
            action_summary=summary,
            action_data=data,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=config.PENDING_ACTION_TTL_SEC),
            state=ActionState.PENDING,
        )
        dao.insert_pending_action(action.to_dict())

        logger.log_pending_action(action.id, "created", requester.user_id, {"action_type": action_type})
        dao.record_audit(requester.user_id, scope, "action_created",
                         {"action_id": action.id, "action_type": action_type})
        return action

    def confirm(self, action_id: str, confirmer: Identity) -> PendingAction:
        """Confirm and execute. Returns the EXECUTED action or raises."""
        action = load_action(action_id)

        if action.state != ActionState.PENDING:
            raise_for_state(action, confirmer.user_id, "confirm")

        if action.is_overdue(self.clock()):
            self._expire(action, confirmer.user_id)
            raise Expired("This action has expired, please request it again")

        if (confirmer.user_id != action.requester_user_id
                or not has_capability(confirmer, action.school_scope_id, ACTIONS_WRITE)):
            logger.log_action_rejected(action.id, "confirm", confirmer.user_id, "not authorized")
            raise Forbidden("Only the requester, with a role that allows changes, can confirm this action")

        if not dao.transition_action(action.id, ActionState.PENDING.value, ActionState.CONFIRMED.value,
                                     confirmed_by=confirmer.user_id):
            raise_for_state(load_action(action.id), confirmer.user_id, "confirm")

        logger.log_pending_action(action.id, "confirmed", confirmer.user_id)
        dao.record_audit(confirmer.user_id, action.school_scope_id, "action_confirmed", {"action_id": action.id})

        return self.executor.execute(action.id, confirmer)

    def retry(self, action_id: str, confirmer: Identity) -> PendingAction:
        """Re-run execution for an action a store failure left CONFIRMED."""
        action = load_action(action_id)
        if confirmer.user_id != action.requester_user_id:
            raise Forbidden("Only the requester can retry this action")
        if action.state != ActionState.CONFIRMED:
            raise_for_state(action, confirmer.user_id, "retry")
        return self.executor.execute(action.id, confirmer)

    def cancel(self, action_id: str, requester: Identity) -> PendingAction:
        """PENDING -> CANCELLED. Already cancelled, expired or executed is a no-op."""
        action = load_action(action_id)
        if requester.user_id != action.requester_user_id:
            raise Forbidden("Only the requester can cancel this action")

        if action.state in TERMINAL_STATES:
            return action
        if action.state == ActionState.CONFIRMED:
            raise AlreadyHandled("This action is being executed and can no longer be cancelled")

        if action.is_overdue(self.clock()):
            self._expire(action, requester.user_id)
            return load_action(action.id)

        if dao.transition_action(action.id, ActionState.PENDING.value, ActionState.CANCELLED.value):
            logger.log_pending_action(action.id, "cancelled", requester.user_id)
            dao.record_audit(requester.user_id, action.school_scope_id, "action_cancelled", {"action_id": action.id})
            return load_action(action.id)

        current = load_action(action.id)
        if current.state in TERMINAL_STATES:
            return current
        raise_for_state(current, requester.user_id, "cancel")

    def get(self, action_id: str, viewer: Identity) -> PendingAction:
        action = load_action(action_id)
        if viewer.user_id != action.requester_user_id:
            raise Forbidden("This action belongs to another user")
        if action.state == ActionState.PENDING and action.is_overdue(self.clock()):
            self._expire(action, viewer.user_id)
            action = load_action(action_id)
        return action

    def list_pending(self, requester: Identity) -> List[PendingAction]:
        now = self.clock()
        actions = []
        for data in dao.list_pending_actions(requester.user_id, ActionState.PENDING.value):
            action = PendingAction.from_dict(data)
            if action.is_overdue(now):
                self._expire(action, requester.user_id)
                continue
            actions.append(action)
        return actions

    def expire_stale(self) -> List[str]:
        expired = dao.expire_overdue_actions(self.clock())
        for action_id in expired:
            logger.log_pending_action(action_id, "expired", "system")
        return expired

    def _expire(self, action: PendingAction, actor: str) -> None:
        if dao.transition_action(action.id, action.state.value, ActionState.EXPIRED.value):
            logger.log_pending_action(action.id, "expired", actor)
            dao.record_audit(actor, action.school_scope_id, "action_expired", {"action_id": action.id})
