"""
Shared FastAPI dependencies: caller identity and request-scoped services.
"""

from typing import Optional

from fastapi import Header

from ..agents.assembler import AnswerAssembler
from ..core.auth import Identity, resolve_identity
from ..core.errors import Unauthenticated
from ..core.pending_actions import PendingActionRegistry
from ..core.sessions import SessionStore


def current_identity(authorization: Optional[str] = Header(None)) -> Identity:
    """Resolve `Authorization: Bearer <token>` to the calling identity."""
    if not authorization:
        raise Unauthenticated("Missing authorization")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("Authorization must be a bearer token")
    return resolve_identity(token)


def get_assembler() -> AnswerAssembler:
    return AnswerAssembler()


def get_registry() -> PendingActionRegistry:
    return PendingActionRegistry()


def get_session_store() -> SessionStore:
    return SessionStore()
