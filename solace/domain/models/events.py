"""
セッションイベント
WebSocket 上でサーバーからクライアントへ送るイベント
"""

from dataclasses import dataclass, field
from typing import Any

from ...core.exceptions import RateLimited, SolaceException
from .conversation import Message

# クライアント → サーバー
JOIN_CONVERSATION = "join-conversation"
LEAVE_CONVERSATION = "leave-conversation"
SEND_MESSAGE = "send-message"
TYPING = "typing"

# サーバー → クライアント
JOINED_CONVERSATION = "joined-conversation"
NEW_MESSAGE = "new-message"
AI_TYPING = "ai-typing"
USER_TYPING = "user-typing"
ERROR = "error"


@dataclass(frozen=True)
class SessionEvent:
    """送信イベント（{"event": 名前, "data": ペイロード}）"""

    name: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "data": self.data}

    # === ファクトリ ===

    @classmethod
    def joined(cls, conversation_id: str, messages: list[Message]) -> "SessionEvent":
        return cls(JOINED_CONVERSATION, {
            "conversationId": conversation_id,
            "messages": [m.to_dict() for m in messages],
        })

    @classmethod
    def new_message(cls, message: Message) -> "SessionEvent":
        return cls(NEW_MESSAGE, {"message": message.to_dict()})

    @classmethod
    def ai_typing(cls, is_typing: bool) -> "SessionEvent":
        return cls(AI_TYPING, {"isTyping": is_typing})

    @classmethod
    def user_typing(cls, user_id: str, is_typing: bool) -> "SessionEvent":
        return cls(USER_TYPING, {"userId": user_id, "isTyping": is_typing})

    @classmethod
    def error(cls, error: SolaceException) -> "SessionEvent":
        data: dict[str, Any] = {"message": error.message, "code": error.error_code}
        if isinstance(error, RateLimited):
            data["retryAfter"] = error.retry_after
        return cls(ERROR, data)
