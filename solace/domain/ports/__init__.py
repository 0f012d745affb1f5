"""
Domain Ports
依存性逆転のためのインターフェース定義
"""

from .ai_port import (
    ChatMessage,
    GeneratedReply,
    IAnalysisProvider,
    IResponseGenerator,
    MoodContext,
)
from .connection_port import IConnection
from .storage_port import IConversationStore

__all__ = [
    "IConversationStore",
    "IAnalysisProvider",
    "IResponseGenerator",
    "IConnection",
    "ChatMessage",
    "GeneratedReply",
    "MoodContext",
]
