"""
Chat API - advisory questions and the caller's own conversation history.
"""

from fastapi import APIRouter, Depends

from .deps import current_identity, get_assembler, get_session_store
from .schemas import (
    ChatMessageRequest,
    ChatMessageResponse,
    MessageModel,
    SessionDetailResponse,
    SessionListResponse,
    SessionSummary,
)
from ..agents.assembler import AnswerAssembler
from ..core.auth import Identity
from ..core.sessions import SessionStore

router = APIRouter()


@router.post("/message", response_model=ChatMessageResponse)
async def send_chat_message(
    req: ChatMessageRequest,
    identity: Identity = Depends(current_identity),
    assembler: AnswerAssembler = Depends(get_assembler),
):
    answer = await assembler.respond(req.message, identity, req.session_id)
    return ChatMessageResponse(message=answer.answer_text, session_id=answer.session_id)


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(
    identity: Identity = Depends(current_identity),
    sessions: SessionStore = Depends(get_session_store),
):
    return SessionListResponse(sessions=[SessionSummary(**row) for row in sessions.list(identity.user_id)])


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
def get_session(
    session_id: str,
    identity: Identity = Depends(current_identity),
    sessions: SessionStore = Depends(get_session_store),
):
    session = sessions.get(session_id, identity.user_id)
    return SessionDetailResponse(
        id=session.id,
        title=session.title,
        messages=[MessageModel(**m.to_dict()) for m in session.messages],
        created_at=session.created_at,
        last_updated=session.last_updated,
    )


@router.delete("/sessions/{session_id}")
def delete_session(
    session_id: str,
    identity: Identity = Depends(current_identity),
    sessions: SessionStore = Depends(get_session_store),
):
    sessions.delete(session_id, identity.user_id)
    return {"success": True, "session_id": session_id}
