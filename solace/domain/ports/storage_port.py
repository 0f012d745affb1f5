"""
ストレージポート
会話・メッセージ・ユーザーの永続化インターフェース
"""

from abc import ABC, abstractmethod

from ..models.conversation import Conversation, Message
from ..models.user import UserAccount


class IConversationStore(ABC):
    """
    会話ストアインターフェース

    会話ステータスと危機フラグの唯一の正とする。
    実装は永続化に失敗した場合 StoreFailure を送出すること。
    """

    # === ユーザーテーブル ===

    @abstractmethod
    async def save_user(self, user: UserAccount) -> None:
        """
        ユーザーを保存

        Args:
            user: 保存するユーザー
        """

    @abstractmethod
    async def get_user(self, user_id: str) -> UserAccount | None:
        """
        ユーザーを取得

        Args:
            user_id: ユーザーID

        Returns:
            UserAccount | None: ユーザー（存在しない場合None）
        """

    @abstractmethod
    async def set_user_active(self, user_id: str, is_active: bool) -> bool:
        """
        ユーザーのアクティブ状態を変更

        Returns:
            bool: 対象ユーザーが存在したか
        """

    # === 会話 ===

    @abstractmethod
    async def create_conversation(
        self,
        user_id: str,
        title: str | None = None,
        mood_start: str | None = None,
    ) -> Conversation:
        """
        会話を作成（ステータス active）

        Args:
            user_id: 所有者
            title: タイトル
            mood_start: 開始時の気分

        Returns:
            Conversation: 作成された会話
        """

    @abstractmethod
    async def get_conversation(
        self, conversation_id: str, owner_id: str | None = None
    ) -> Conversation | None:
        """
        会話を取得

        Args:
            conversation_id: 会話ID
            owner_id: 指定した場合、所有者が一致しなければNone

        Returns:
            Conversation | None: 会話
        """

    @abstractmethod
    async def list_conversations(
        self, user_id: str, limit: int = 10, offset: int = 0
    ) -> list[Conversation]:
        """
        ユーザーの会話一覧（開始日時の新しい順）
        """

    @abstractmethod
    async def set_crisis_flag(self, conversation_id: str) -> None:
        """
        危機フラグを立てる（単調: 解除はしない）

        Raises:
            NotFound: 会話が存在しない場合
        """

    @abstractmethod
    async def add_techniques(self, conversation_id: str, techniques: list[str]) -> None:
        """会話に使用した技法を追加"""

    @abstractmethod
    async def end_conversation(
        self,
        conversation_id: str,
        mood_end: str | None = None,
        summary: str | None = None,
    ) -> Conversation:
        """
        会話を終了（ステータス completed）。メッセージは削除しない。

        Raises:
            NotFound: 会話が存在しない場合
        """

    # === メッセージ ===

    @abstractmethod
    async def append_message(self, message: Message) -> Message:
        """
        メッセージを追記

        会話内の sequence を採番して返す。

        Raises:
            NotFound: 会話が存在しない場合
        """

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> list[Message]:
        """会話の全メッセージ（古い順）"""

    async def list_recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """
        直近のメッセージを取得

        Args:
            conversation_id: 会話ID
            limit: 件数

        Returns:
            list[Message]: 直近 limit 件（古い順）
        """
        if limit <= 0:
            return []
        messages = await self.list_messages(conversation_id)
        return messages[-limit:]
