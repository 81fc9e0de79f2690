"""Services for the Luna WhatsApp tutor backend."""
from .turn_store import SupabaseTurnStore, InMemoryTurnStore, StoreUnavailable, DuplicateTurnIndex
from .history_cache import HistoryCache
from .conversation_log import ConversationLog, LogPolicy, CompactionResult, IntegrityViolation
from .llm_client import LLMClient, LLMResponse, LLMError, LLMClientError
from .grammar_checker import GrammarChecker, GrammarCorrection
from .level_detector import LevelDetector, LearnerLevel
from .tutor_service import TutorService, TutorReply
from .whatsapp_client import WhatsAppClient, WhatsAppError

__all__ = [
    'SupabaseTurnStore', 'InMemoryTurnStore', 'StoreUnavailable', 'DuplicateTurnIndex',
    'HistoryCache', 'ConversationLog', 'LogPolicy', 'CompactionResult', 'IntegrityViolation',
    'LLMClient', 'LLMResponse', 'LLMError', 'LLMClientError', 'GrammarChecker', 'GrammarCorrection',
    'LevelDetector', 'LearnerLevel',
    'TutorService', 'TutorReply', 'WhatsAppClient', 'WhatsAppError'
]
