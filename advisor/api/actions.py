"""
Pending action API - request, confirm, cancel and inspect write actions.

Confirm runs confirmation and execution in one call; the caller sees either
the executed action or the reason it was not applied.
"""

from fastapi import APIRouter, Depends

from .deps import current_identity, get_registry
from .schemas import (
    ActionConfirmRequest,
    ActionCreateRequest,
    ActionListResponse,
    ActionResponse,
    ActionResultResponse,
)
from ..core.auth import Identity
from ..core.pending_actions import PendingAction, PendingActionRegistry

router = APIRouter()


def _to_response(action: PendingAction) -> ActionResponse:
    data = action.to_dict()
    return ActionResponse(**{k: v for k, v in data.items() if k in ActionResponse.model_fields})


@router.post("", response_model=ActionResponse, status_code=201)
def create_action(
    req: ActionCreateRequest,
    identity: Identity = Depends(current_identity),
    registry: PendingActionRegistry = Depends(get_registry),
):
    action = registry.create(identity, req.action_type, req.action_summary, req.action_data)
    return _to_response(action)


@router.get("", response_model=ActionListResponse)
def list_actions(
    identity: Identity = Depends(current_identity),
    registry: PendingActionRegistry = Depends(get_registry),
):
    return ActionListResponse(actions=[_to_response(a) for a in registry.list_pending(identity)])


@router.post("/confirm", response_model=ActionResultResponse)
def confirm_action(
    req: ActionConfirmRequest,
    identity: Identity = Depends(current_identity),
    registry: PendingActionRegistry = Depends(get_registry),
):
    action = registry.confirm(req.action_id, identity)
    return ActionResultResponse(
        message=action.result_message or "Action executed.",
        action_id=action.id,
        state=action.state.value,
    )


@router.get("/{action_id}", response_model=ActionResponse)
def get_action(
    action_id: str,
    identity: Identity = Depends(current_identity),
    registry: PendingActionRegistry = Depends(get_registry),
):
    return _to_response(registry.get(action_id, identity))


@router.post("/{action_id}/cancel", response_model=ActionResultResponse)
def cancel_action(
    action_id: str,
    identity: Identity = Depends(current_identity),
    registry: PendingActionRegistry = Depends(get_registry),
):
    action = registry.cancel(action_id, identity)
    messages = {
        "CANCELLED": "Action cancelled.",
        "EXPIRED": "Action had already expired.",
        "EXECUTED": "Action was already executed.",
    }
    return ActionResultResponse(
        message=messages.get(action.state.value, "No change."),
        action_id=action.id,
        state=action.state.value,
    )


@router.post("/{action_id}/retry", response_model=ActionResultResponse)
def retry_action(
    action_id: str,
    identity: Identity = Depends(current_identity),
    registry: PendingActionRegistry = Depends(get_registry),
):
    action = registry.retry(action_id, identity)
    return ActionResultResponse(
        message=action.result_message or "Action executed.",
        action_id=action.id,
        state=action.state.value,
    )
