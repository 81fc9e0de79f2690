"""Conversation data models."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    """Author of a conversation turn."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConversationTurn:
    """
    A single message in a conversation.

    ``turn_index`` is the only ordering and addressing key; ``created_at``
    is informational. ``id`` is the datastore row id and stays ``None``
    until the turn has been inserted.
    """
    conversation_id: str
    turn_index: int
    role: Role
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    id: Optional[int] = None

    def to_message(self) -> Dict[str, str]:
        """Role-tagged message as consumed by the text-generation service."""
        return {"role": self.role.value, "content": self.content}
