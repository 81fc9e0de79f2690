"""API request/response models."""
from datetime import datetime
from typing import Any, Dict, List
from pydantic import BaseModel, Field

from .conversation import ConversationTurn


class TurnOut(BaseModel):
    """A stored conversation turn as returned by the API."""
    turn_index: int
    role: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @classmethod
    def from_turn(cls, turn: ConversationTurn) -> "TurnOut":
        return cls(
            turn_index=turn.turn_index,
            role=turn.role.value,
            content=turn.content,
            metadata=turn.metadata,
            created_at=turn.created_at
        )


class HistoryResponse(BaseModel):
    """Ordered history of one conversation."""
    conversation_id: str
    header_turns: int
    dialogue_turns: int
    turns: List[TurnOut]


class RepairResponse(BaseModel):
    """Outcome of an index repair pass."""
    conversation_id: str
    renumbered: int
    changed: bool
