"""
ファイルストレージアダプター
JSONファイルベースの会話ストア

書き込みのたびに一時ファイルへ保存してからアトミックに置換する。
書き込みに失敗した場合はディスク上の最後の状態に戻して StoreFailure を送出する。
"""

import asyncio
import json
import os
from datetime import datetime
from pathlib import Path

from ...core.exceptions import StoreFailure
from ...core.logging import get_logger
from ...domain.models.conversation import Conversation, Message
from ...domain.models.user import UserAccount
from .memory import InMemoryConversationStore

logger = get_logger(__name__)


class FileConversationStore(InMemoryConversationStore):
    """
    ファイル会話ストア

    メモリキャッシュを正とし、変更ごとにファイル全体を書き出す。
    """

    def __init__(self, data_dir: str = "data", filename: str = "solace.json"):
        super().__init__()
        self.data_dir = Path(data_dir)
        self.data_file = self.data_dir / filename
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self._loaded = False
        self._lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        """データが読み込まれていることを保証"""
        if not self._loaded:
            async with self._lock:
                if not self._loaded:
                    await self._load_data()
                    self._loaded = True

    async def _load_data(self) -> None:
        """ファイルからデータを読み込み"""
        self._users, self._conversations, self._messages = {}, {}, {}
        if not self.data_file.exists():
            return

        try:
            loop = asyncio.get_running_loop()
            data = await loop.run_in_executor(None, self._read_json_file)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load data file: {e}", extra={"path": str(self.data_file)})
            raise StoreFailure(
                "Failed to load conversation data", details={"cause": str(e)}
            ) from e

        for user_id, user_data in data.get("users", {}).items():
            self._users[user_id] = UserAccount.from_dict(user_data)
        for conversation_id, conversation_data in data.get("conversations", {}).items():
            self._conversations[conversation_id] = Conversation.from_dict(conversation_data)
        for conversation_id, messages in data.get("messages", {}).items():
            self._messages[conversation_id] = [Message.from_dict(m) for m in messages]

    def _read_json_file(self) -> dict:
        """JSONファイルを同期的に読み込み（スレッドプール用）"""
        with open(self.data_file, encoding="utf-8") as f:
            return json.load(f)

    async def _save_data_now(self) -> None:
        """ファイルにデータを即時保存（アトミック書き込み）"""
        data = {
            "users": {uid: u.to_dict() for uid, u in self._users.items()},
            "conversations": {cid: c.to_dict() for cid, c in self._conversations.items()},
            "messages": {
                cid: [m.to_dict() for m in messages] for cid, messages in self._messages.items()
            },
            "updated_at": datetime.now().isoformat(),
        }

        temp_file = self.data_file.with_suffix(".tmp")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write_json_file, temp_file, data)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save data file: {e}", extra={"path": str(self.data_file)})
            # メモリ上の変更を破棄して最後に保存された状態に戻す
            await self._load_data()
            raise StoreFailure(details={"cause": str(e)}) from e

    def _write_json_file(self, path: Path, data: dict) -> None:
        """JSONファイルを同期的に書き込み、アトミックに置換（スレッドプール用）"""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, separators=(",", ":"))
            f.flush()
            os.fsync(f.fileno())
        os.replace(path, self.data_file)

    # === 読み取り ===

    async def get_user(self, user_id: str) -> UserAccount | None:
        await self._ensure_loaded()
        return await super().get_user(user_id)

    async def get_conversation(
        self, conversation_id: str, owner_id: str | None = None
    ) -> Conversation | None:
        await self._ensure_loaded()
        return await super().get_conversation(conversation_id, owner_id)

    async def list_conversations(
        self, user_id: str, limit: int = 10, offset: int = 0
    ) -> list[Conversation]:
        await self._ensure_loaded()
        return await super().list_conversations(user_id, limit, offset)

    async def list_messages(self, conversation_id: str) -> list[Message]:
        await self._ensure_loaded()
        return await super().list_messages(conversation_id)

    async def list_recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        await self._ensure_loaded()
        return await super().list_recent_messages(conversation_id, limit)

    # === 書き込み（変更ごとに保存） ===

    async def save_user(self, user: UserAccount) -> None:
        await self._ensure_loaded()
        async with self._lock:
            await super().save_user(user)
            await self._save_data_now()

    async def set_user_active(self, user_id: str, is_active: bool) -> bool:
        await self._ensure_loaded()
        async with self._lock:
            found = await super().set_user_active(user_id, is_active)
            if found:
                await self._save_data_now()
            return found

    async def create_conversation(
        self,
        user_id: str,
        title: str | None = None,
        mood_start: str | None = None,
    ) -> Conversation:
        await self._ensure_loaded()
        async with self._lock:
            conversation = await super().create_conversation(user_id, title, mood_start)
            await self._save_data_now()
            return conversation

    async def set_crisis_flag(self, conversation_id: str) -> None:
        await self._ensure_loaded()
        async with self._lock:
            await super().set_crisis_flag(conversation_id)
            await self._save_data_now()

    async def add_techniques(self, conversation_id: str, techniques: list[str]) -> None:
        await self._ensure_loaded()
        async with self._lock:
            await super().add_techniques(conversation_id, techniques)
            await self._save_data_now()

    async def end_conversation(
        self,
        conversation_id: str,
        mood_end: str | None = None,
        summary: str | None = None,
    ) -> Conversation:
        await self._ensure_loaded()
        async with self._lock:
            conversation = await super().end_conversation(conversation_id, mood_end, summary)
            await self._save_data_now()
            return conversation

    async def append_message(self, message: Message) -> Message:
        await self._ensure_loaded()
        async with self._lock:
            stored = await super().append_message(message)
            await self._save_data_now()
            return stored
