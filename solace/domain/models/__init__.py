"""
Domain Models
会話・分析・ユーザー・イベントのドメインモデル
"""

from .analysis import (
    EMOTION_VOCABULARY,
    CrisisAssessment,
    RiskLevel,
    SentimentResult,
    dominant_emotion,
)
from .conversation import (
    MOODS,
    ContentType,
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
)
from .events import SessionEvent
from .user import (
    Identity,
    UserAccount,
    UserRole,
)

__all__ = [
    # 分析
    "EMOTION_VOCABULARY",
    "SentimentResult",
    "CrisisAssessment",
    "RiskLevel",
    "dominant_emotion",
    # 会話
    "MOODS",
    "Conversation",
    "ConversationStatus",
    "Message",
    "MessageRole",
    "ContentType",
    # イベント
    "SessionEvent",
    # ユーザー
    "Identity",
    "UserAccount",
    "UserRole",
]
