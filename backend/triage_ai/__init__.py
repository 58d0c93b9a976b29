from .chat import ChatService, sanitize_history
from .errors import (
    EmptyModelResponse,
    NetworkUnreachable,
    RateLimited,
    ServerFault,
    SessionNotFound,
    TriageError,
    Unauthorized,
    UnparsableResponse,
    ValidationError,
)
from .inference import TwoPhaseInference
from .models import AnalysisSession, Conclusion, TriageResult
from .parser import parse_chat_reply, parse_triage_reply
from .providers import GeminiProvider, ModelProvider, OpenAICompatibleProvider, provider_from_env
from .session_cache import (
    SESSION_TTL_SECONDS,
    AnalysisSessionCache,
    InMemorySessionBackend,
    SQLiteSessionBackend,
)

__all__ = [
    "SESSION_TTL_SECONDS",
    "AnalysisSession",
    "AnalysisSessionCache",
    "ChatService",
    "Conclusion",
    "EmptyModelResponse",
    "GeminiProvider",
    "InMemorySessionBackend",
    "ModelProvider",
    "NetworkUnreachable",
    "OpenAICompatibleProvider",
    "RateLimited",
    "SQLiteSessionBackend",
    "ServerFault",
    "SessionNotFound",
    "TriageError",
    "TriageResult",
    "TwoPhaseInference",
    "Unauthorized",
    "UnparsableResponse",
    "ValidationError",
    "parse_chat_reply",
    "parse_triage_reply",
    "provider_from_env",
    "sanitize_history",
]
