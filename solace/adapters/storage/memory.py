"""
インメモリストレージアダプター
プロセス内の辞書で保持する会話ストア（開発・テスト用）
"""

import copy
import uuid
from datetime import datetime

from ...core.exceptions import NotFound
from ...domain.models.conversation import Conversation, ConversationStatus, Message
from ...domain.models.user import UserAccount
from ...domain.ports.storage_port import IConversationStore


class InMemoryConversationStore(IConversationStore):
    """
    インメモリ会話ストア

    返すオブジェクトはコピーであり、呼び出し側の変更はストアに影響しない。
    """

    def __init__(self):
        self._users: dict[str, UserAccount] = {}
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[Message]] = {}

    # === ユーザー ===

    async def save_user(self, user: UserAccount) -> None:
        self._users[user.user_id] = copy.deepcopy(user)

    async def get_user(self, user_id: str) -> UserAccount | None:
        user = self._users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def set_user_active(self, user_id: str, is_active: bool) -> bool:
        user = self._users.get(user_id)
        if user is None:
            return False
        user.is_active = is_active
        return True

    # === 会話 ===

    async def create_conversation(
        self,
        user_id: str,
        title: str | None = None,
        mood_start: str | None = None,
    ) -> Conversation:
        conversation = Conversation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title or "New Conversation",
            mood_start=mood_start,
        )
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []
        return copy.deepcopy(conversation)

    async def get_conversation(
        self, conversation_id: str, owner_id: str | None = None
    ) -> Conversation | None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return None
        if owner_id is not None and conversation.user_id != owner_id:
            return None
        return copy.deepcopy(conversation)

    async def list_conversations(
        self, user_id: str, limit: int = 10, offset: int = 0
    ) -> list[Conversation]:
        owned = [c for c in self._conversations.values() if c.user_id == user_id]
        owned.sort(key=lambda c: c.started_at, reverse=True)
        return [copy.deepcopy(c) for c in owned[offset:offset + limit]]

    async def set_crisis_flag(self, conversation_id: str) -> None:
        self._require(conversation_id).is_crisis = True

    async def add_techniques(self, conversation_id: str, techniques: list[str]) -> None:
        self._require(conversation_id).add_techniques(techniques)

    async def end_conversation(
        self,
        conversation_id: str,
        mood_end: str | None = None,
        summary: str | None = None,
    ) -> Conversation:
        conversation = self._require(conversation_id)
        conversation.status = ConversationStatus.COMPLETED
        conversation.ended_at = datetime.now()
        conversation.mood_end = mood_end
        conversation.summary = summary
        return copy.deepcopy(conversation)

    # === メッセージ ===

    async def append_message(self, message: Message) -> Message:
        self._require(message.conversation_id)
        messages = self._messages.setdefault(message.conversation_id, [])
        stored = copy.deepcopy(message)
        stored.sequence = len(messages) + 1
        messages.append(stored)
        return copy.deepcopy(stored)

    async def list_messages(self, conversation_id: str) -> list[Message]:
        messages = self._messages.get(conversation_id, [])
        ordered = sorted(messages, key=lambda m: (m.sequence, m.created_at))
        return [copy.deepcopy(m) for m in ordered]

    async def list_recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        if limit <= 0:
            return []
        messages = self._messages.get(conversation_id, [])
        return [copy.deepcopy(m) for m in messages[-limit:]]

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found", details={"conversation_id": conversation_id})
        return conversation
