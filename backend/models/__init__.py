"""Data models for the Luna WhatsApp tutor backend."""
from .conversation import ConversationTurn, Role
from .api import TurnOut, HistoryResponse, RepairResponse

__all__ = [
    "ConversationTurn",
    "Role",
    "TurnOut",
    "HistoryResponse",
    "RepairResponse",
]
