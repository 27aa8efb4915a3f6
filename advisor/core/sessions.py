"""
Conversational memory. A session is context for continuity and tone only;
nothing in it is ever read as a fact. It has no path to the record store's
operational tables.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import dao
from .errors import Forbidden, NotFound
from ..util.logging import logger

ROLES = ("user", "assistant")
TITLE_LENGTH = 50


@dataclass(frozen=True)
class Message:
    role: str
    content: str
    timestamp: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Invalid message role: {self.role}")

    @classmethod
    def now(cls, role: str, content: str) -> "Message":
        return cls(role=role, content=content, timestamp=datetime.now().isoformat())

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class ConversationSession:
    id: str
    owner_user_id: str
    title: str
    messages: List[Message] = field(default_factory=list)
    last_updated: str = ""
    school_id: Optional[str] = None
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_user_id": self.owner_user_id,
            "school_id": self.school_id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "created_at": self.created_at,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationSession":
        return cls(
            id=data["id"],
            owner_user_id=data["owner_user_id"],
            title=data["title"],
            messages=[Message(**m) for m in data.get("messages", [])],
            last_updated=data.get("last_updated", ""),
            school_id=data.get("school_id"),
            created_at=data.get("created_at", ""),
        )


def title_from(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= TITLE_LENGTH:
        return text or "New conversation"
    return text[:TITLE_LENGTH].rstrip() + "..."


class SessionStore:
    """Owner-scoped conversation persistence."""

    def create(self, owner_user_id: str, school_id: Optional[str] = None,
               title: str = "New conversation") -> ConversationSession:
        now = datetime.now().isoformat()
        session = ConversationSession(
            id=str(uuid.uuid4()),
            owner_user_id=owner_user_id,
            title=title,
            messages=[],
            last_updated=now,
            school_id=school_id,
            created_at=now,
        )
        dao.insert_conversation(session.to_dict())
        logger.log_operation("session_create", "success", {"session_id": session.id, "owner": owner_user_id})
        return session

    def get(self, session_id: str, owner_user_id: str) -> ConversationSession:
        data = dao.get_conversation(session_id)
        if not data:
            raise NotFound("Conversation not found")
        if data["owner_user_id"] != owner_user_id:
            raise Forbidden("Conversation belongs to another user")
        return ConversationSession.from_dict(data)

    def append(self, session: ConversationSession, *messages: Message) -> ConversationSession:
        """Append messages in order and persist. The title is set from the first user message."""
        title = None
        if not session.messages:
            first_user = next((m for m in messages if m.role == "user"), None)
            if first_user:
                title = title_from(first_user.content)
                session.title = title

        session.messages.extend(messages)
        session.last_updated = datetime.now().isoformat()

        if not dao.update_conversation(session.id, [m.to_dict() for m in session.messages],
                                       session.last_updated, title):
            raise NotFound("Conversation was deleted")
        return session

    def delete(self, session_id: str, owner_user_id: str) -> None:
        self.get(session_id, owner_user_id)
        dao.delete_conversation(session_id)
        logger.log_operation("session_delete", "success", {"session_id": session_id, "owner": owner_user_id})

    def list(self, owner_user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return dao.list_conversations(owner_user_id, limit)

    def history(self, session: ConversationSession, limit: int) -> List[Message]:
        """Most recent messages, oldest first."""
        if limit <= 0:
            return []
        return list(session.messages[-limit:])
