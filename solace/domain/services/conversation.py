"""
会話管理サービス
会話の開始・終了・履歴・詳細と、ユーザーの非アクティブ化
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

from ...core.exceptions import NotFound, ValidationFailed
from ...core.logging import get_logger, log_business_event
from ..models.conversation import MOODS, Conversation, Message, MessageRole
from ..ports.storage_port import IConversationStore
from .registry import CONVERSATION_NOT_FOUND, SessionRegistry

logger = get_logger("conversation")

GREETING = "Hello! I'm here to listen and support you. How are you feeling today?"


@dataclass
class ConversationOverview:
    """履歴一覧の1行"""

    conversation: Conversation
    message_count: int
    last_message_at: datetime | None


@dataclass
class ConversationDetails:
    """会話と全メッセージ（順序付き）"""

    conversation: Conversation
    messages: list[Message]


class ConversationService:
    """
    会話管理サービス

    リアルタイム経路（MessagePipeline）以外の会話操作を担う。
    """

    def __init__(self, store: IConversationStore, registry: SessionRegistry | None = None):
        self._store = store
        self._registry = registry

    def attach_registry(self, registry: SessionRegistry) -> None:
        """lifespan で生成されたレジストリを接続"""
        self._registry = registry

    async def start_conversation(
        self,
        user_id: str,
        title: str | None = None,
        initial_mood: str | None = None,
    ) -> Conversation:
        """
        会話を開始

        作成直後にアシスタントの挨拶メッセージを追加する。

        Args:
            user_id: 所有者
            title: タイトル（省略時 "New Conversation"）
            initial_mood: 開始時の気分

        Returns:
            Conversation: 作成された会話
        """
        self._validate_mood(initial_mood, "initialMood")

        conversation = await self._store.create_conversation(
            user_id=user_id, title=title, mood_start=initial_mood
        )
        await self._store.append_message(Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation.id,
            role=MessageRole.ASSISTANT,
            content=GREETING,
        ))

        log_business_event(
            logger, "conversation_started", user_id=user_id, conversation_id=conversation.id
        )
        return conversation

    async def end_conversation(
        self,
        user_id: str,
        conversation_id: str,
        end_mood: str | None = None,
    ) -> Conversation:
        """
        会話を終了（メッセージは保持）

        Raises:
            NotFound: 会話が存在しないか所有者でない
        """
        self._validate_mood(end_mood, "endMood")
        await self._get_owned(user_id, conversation_id)

        messages = await self._store.list_messages(conversation_id)
        summary = self.summarize(messages)
        conversation = await self._store.end_conversation(
            conversation_id, mood_end=end_mood, summary=summary
        )

        log_business_event(
            logger,
            "conversation_ended",
            user_id=user_id,
            conversation_id=conversation_id,
            message_count=len(messages),
        )
        return conversation

    async def get_history(
        self, user_id: str, limit: int = 10, offset: int = 0
    ) -> list[ConversationOverview]:
        """会話履歴（新しい順）"""
        conversations = await self._store.list_conversations(user_id, limit=limit, offset=offset)
        overviews = []
        for conversation in conversations:
            messages = await self._store.list_messages(conversation.id)
            overviews.append(ConversationOverview(
                conversation=conversation,
                message_count=len(messages),
                last_message_at=messages[-1].created_at if messages else None,
            ))
        return overviews

    async def get_details(self, user_id: str, conversation_id: str) -> ConversationDetails:
        """
        会話の詳細

        Raises:
            NotFound: 会話が存在しないか所有者でない
        """
        conversation = await self._get_owned(user_id, conversation_id)
        messages = await self._store.list_messages(conversation_id)
        return ConversationDetails(conversation=conversation, messages=messages)

    async def deactivate_user(self, user_id: str) -> int:
        """
        ユーザーを非アクティブ化し、ライブセッションを破棄

        Returns:
            int: 閉じた接続数

        Raises:
            NotFound: ユーザーが存在しない
        """
        if not await self._store.set_user_active(user_id, False):
            raise NotFound("User not found", details={"user_id": user_id})

        closed = 0
        if self._registry is not None:
            closed = await self._registry.disconnect_identity(user_id)

        log_business_event(logger, "user_deactivated", user_id=user_id, closed_connections=closed)
        return closed

    @staticmethod
    def summarize(messages: list[Message]) -> str:
        """会話の簡易サマリー"""
        word_count = sum(len(m.content.split()) for m in messages)
        return (
            f"Conversation with {len(messages)} messages "
            f"and approximately {word_count} words."
        )

    async def _get_owned(self, user_id: str, conversation_id: str) -> Conversation:
        conversation = await self._store.get_conversation(conversation_id, owner_id=user_id)
        if conversation is None:
            raise NotFound(CONVERSATION_NOT_FOUND, details={"conversation_id": conversation_id})
        return conversation

    @staticmethod
    def _validate_mood(mood: str | None, field: str) -> None:
        if mood is not None and mood not in MOODS:
            raise ValidationFailed(f"{field} must be one of: {', '.join(MOODS)}", field=field)
