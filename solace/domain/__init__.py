"""
Solace Domain Layer
コアビジネスロジックとドメインモデル
"""

from .models import (
    ContentType,
    Conversation,
    ConversationStatus,
    CrisisAssessment,
    Identity,
    Message,
    MessageRole,
    RiskLevel,
    SentimentResult,
    SessionEvent,
    UserAccount,
    UserRole,
)

__all__ = [
    # 会話
    "Conversation",
    "ConversationStatus",
    "Message",
    "MessageRole",
    "ContentType",
    # 分析
    "SentimentResult",
    "CrisisAssessment",
    "RiskLevel",
    # イベント
    "SessionEvent",
    # ユーザー
    "Identity",
    "UserAccount",
    "UserRole",
]
