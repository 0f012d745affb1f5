"""
API Schemas
Pydanticモデル定義（REST と WebSocket ペイロード）
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MoodLiteral = Literal["happy", "sad", "anxious", "angry", "neutral", "confused"]


# === 会話 ===


class StartConversationRequest(BaseModel):
    """会話開始リクエスト"""

    model_config = ConfigDict(populate_by_name=True)

    title: str | None = Field(None, max_length=255, description="タイトル")
    initial_mood: MoodLiteral | None = Field(None, alias="initialMood", description="開始時の気分")


class EndConversationRequest(BaseModel):
    """会話終了リクエスト"""

    model_config = ConfigDict(populate_by_name=True)

    end_mood: MoodLiteral | None = Field(None, alias="endMood", description="終了時の気分")


class ConversationResponse(BaseModel):
    """会話"""

    id: str
    user_id: str
    title: str
    status: str
    is_crisis: bool
    mood_start: str | None
    mood_end: str | None
    summary: str | None
    techniques: list[str]
    started_at: datetime
    ended_at: datetime | None


class ConversationOverviewResponse(ConversationResponse):
    """履歴一覧の1行"""

    message_count: int
    last_message_at: datetime | None


class ConversationListResponse(BaseModel):
    """会話履歴レスポンス"""

    conversations: list[ConversationOverviewResponse]
    limit: int
    offset: int


class MessageResponse(BaseModel):
    """メッセージ"""

    id: str
    conversation_id: str
    role: str
    content: str
    content_type: str
    user_id: str | None
    audio_url: str | None
    sentiment: dict[str, Any] | None
    crisis: dict[str, Any] | None
    is_flagged: bool
    metadata: dict[str, Any]
    sequence: int
    created_at: datetime


class ConversationDetailsResponse(BaseModel):
    """会話詳細レスポンス"""

    conversation: ConversationResponse
    messages: list[MessageResponse]


# === ユーザー ===


class DeactivateUserResponse(BaseModel):
    """ユーザー非アクティブ化レスポンス"""

    user_id: str
    is_active: bool
    closed_connections: int


# === WebSocket ペイロード ===


class ClientEnvelope(BaseModel):
    """クライアントからのイベント（{"event": 名前, "data": ペイロード}）"""

    event: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


class JoinConversationPayload(BaseModel):
    """join-conversation"""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(..., min_length=1, alias="conversationId")


class SendMessagePayload(BaseModel):
    """send-message"""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(..., min_length=1, alias="conversationId")
    content: str
    content_type: Literal["text", "audio-transcript"] = Field("text", alias="contentType")
    audio_url: str | None = Field(None, alias="audioUrl")


class TypingPayload(BaseModel):
    """typing"""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(..., min_length=1, alias="conversationId")
    is_typing: bool = Field(..., alias="isTyping")


# === システム ===


class HealthResponse(BaseModel):
    """ヘルスチェックレスポンス"""

    status: str
    timestamp: datetime
    version: str
    components: dict[str, bool]
    connections: int = 0


class APIInfoResponse(BaseModel):
    """API情報レスポンス"""

    service: str
    version: str
    description: str
    features: list[str]
