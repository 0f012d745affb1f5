"""
会話モデル
会話（スレッド）とメッセージを定義
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .analysis import CrisisAssessment, SentimentResult


class ConversationStatus(Enum):
    """会話ステータス"""
    ACTIVE = "active"
    COMPLETED = "completed"


class MessageRole(Enum):
    """メッセージの発言者"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ContentType(Enum):
    """メッセージの内容種別"""
    TEXT = "text"
    AUDIO_TRANSCRIPT = "audio-transcript"


# 開始・終了時の気分
MOODS = ("happy", "sad", "anxious", "angry", "neutral", "confused")


@dataclass
class Message:
    """
    個別メッセージ

    会話内で追記のみ。sequence は会話内の全順序を表し、
    応答生成のコンテキストと入室時の再送に使われる。
    """
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    content_type: ContentType = ContentType.TEXT
    user_id: str | None = None  # アシスタントの発言は所有者なし
    audio_url: str | None = None
    sentiment: SentimentResult | None = None
    crisis: CrisisAssessment | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    sequence: int = 0
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_flagged(self) -> bool:
        return bool(self.crisis and self.crisis.is_crisis)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": self.role.value,
            "content": self.content,
            "content_type": self.content_type.value,
            "user_id": self.user_id,
            "audio_url": self.audio_url,
            "sentiment": self.sentiment.to_dict() if self.sentiment else None,
            "crisis": self.crisis.to_dict() if self.crisis else None,
            "is_flagged": self.is_flagged,
            "metadata": self.metadata,
            "sequence": self.sequence,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            conversation_id=data["conversation_id"],
            role=MessageRole(data["role"]),
            content=data["content"],
            content_type=ContentType(data.get("content_type", "text")),
            user_id=data.get("user_id"),
            audio_url=data.get("audio_url"),
            sentiment=SentimentResult.from_dict(data["sentiment"]) if data.get("sentiment") else None,
            crisis=CrisisAssessment.from_dict(data["crisis"]) if data.get("crisis") else None,
            metadata=data.get("metadata", {}),
            sequence=data.get("sequence", 0),
            created_at=datetime.fromisoformat(data.get("created_at", datetime.now().isoformat())),
        )


@dataclass
class Conversation:
    """
    会話

    crisis_flag は単調（一度 True になったらこのエンジンでは戻さない）。
    削除はデータ管理の責務でありコアでは行わない。
    """
    id: str
    user_id: str
    title: str = "New Conversation"
    status: ConversationStatus = ConversationStatus.ACTIVE
    is_crisis: bool = False
    mood_start: str | None = None
    mood_end: str | None = None
    summary: str | None = None
    techniques: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == ConversationStatus.ACTIVE

    def add_techniques(self, techniques: list[str]) -> None:
        """使用した技法を蓄積（重複なし、初出順）"""
        for technique in techniques:
            if technique and technique not in self.techniques:
                self.techniques.append(technique)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "status": self.status.value,
            "is_crisis": self.is_crisis,
            "mood_start": self.mood_start,
            "mood_end": self.mood_end,
            "summary": self.summary,
            "techniques": self.techniques,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Conversation":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            title=data.get("title", "New Conversation"),
            status=ConversationStatus(data.get("status", "active")),
            is_crisis=data.get("is_crisis", False),
            mood_start=data.get("mood_start"),
            mood_end=data.get("mood_end"),
            summary=data.get("summary"),
            techniques=data.get("techniques", []),
            started_at=datetime.fromisoformat(data.get("started_at", datetime.now().isoformat())),
            ended_at=datetime.fromisoformat(data["ended_at"]) if data.get("ended_at") else None,
        )
