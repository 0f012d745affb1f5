"""
ストレージアダプターのテスト

- メッセージの sequence が会話内で単調増加するか
- 返すオブジェクトがコピーであるか
- ファイルストアの永続化と書き込み失敗時のロールバック
"""

import uuid

import pytest

from conftest import create_user
from solace.adapters.storage.file import FileConversationStore
from solace.adapters.storage.memory import InMemoryConversationStore
from solace.core.exceptions import NotFound, StoreFailure
from solace.domain.models.analysis import CrisisAssessment, RiskLevel, SentimentResult
from solace.domain.models.conversation import ConversationStatus, Message, MessageRole


def user_message(conversation_id: str, content: str) -> Message:
    return Message(
        id=str(uuid.uuid4()),
        conversation_id=conversation_id,
        role=MessageRole.USER,
        content=content,
        user_id="alice",
    )


class TestInMemoryStore:
    """インメモリストアのテスト"""

    @pytest.mark.asyncio
    async def test_sequence(self, store: InMemoryConversationStore):
        conversation = await store.create_conversation("alice")

        stored = [await store.append_message(user_message(conversation.id, t)) for t in "abc"]

        assert [m.sequence for m in stored] == [1, 2, 3]
        assert [m.content for m in await store.list_messages(conversation.id)] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_recent_messages(self, store: InMemoryConversationStore):
        conversation = await store.create_conversation("alice")
        for t in "abcde":
            await store.append_message(user_message(conversation.id, t))

        recent = await store.list_recent_messages(conversation.id, 2)

        assert [m.content for m in recent] == ["d", "e"]
        assert await store.list_recent_messages(conversation.id, 0) == []

    @pytest.mark.asyncio
    async def test_returns_copies(self, store: InMemoryConversationStore):
        """返したオブジェクトを変更してもストアは変わらない"""
        conversation = await store.create_conversation("alice")
        conversation.title = "changed"
        conversation.techniques.append("validation")

        stored = await store.get_conversation(conversation.id)

        assert stored.title == "New Conversation"
        assert stored.techniques == []

    @pytest.mark.asyncio
    async def test_owner_filter(self, store: InMemoryConversationStore):
        conversation = await store.create_conversation("alice")

        assert await store.get_conversation(conversation.id, owner_id="alice") is not None
        assert await store.get_conversation(conversation.id, owner_id="bob") is None

    @pytest.mark.asyncio
    async def test_append_to_missing_conversation(self, store: InMemoryConversationStore):
        with pytest.raises(NotFound):
            await store.append_message(user_message("missing", "hi"))

    @pytest.mark.asyncio
    async def test_crisis_flag_and_techniques(self, store: InMemoryConversationStore):
        conversation = await store.create_conversation("alice")

        await store.set_crisis_flag(conversation.id)
        await store.add_techniques(conversation.id, ["grounding", "validation"])
        await store.add_techniques(conversation.id, ["validation", "reflection"])

        stored = await store.get_conversation(conversation.id)
        assert stored.is_crisis is True
        assert stored.techniques == ["grounding", "validation", "reflection"]

    @pytest.mark.asyncio
    async def test_list_conversations_paging(self, store: InMemoryConversationStore):
        for _ in range(5):
            await store.create_conversation("alice")

        assert len(await store.list_conversations("alice", limit=3)) == 3
        assert len(await store.list_conversations("alice", limit=3, offset=3)) == 2
        assert await store.list_conversations("bob") == []

    @pytest.mark.asyncio
    async def test_users(self, store: InMemoryConversationStore):
        await create_user(store, "alice")

        assert await store.set_user_active("alice", False) is True
        assert (await store.get_user("alice")).is_active is False
        assert await store.set_user_active("ghost", False) is False


class TestFileStore:
    """ファイルストアのテスト"""

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        """再起動後もデータと sequence が引き継がれる"""
        store = FileConversationStore(data_dir=str(tmp_path))
        await create_user(store, "alice")
        conversation = await store.create_conversation("alice", title="Morning", mood_start="sad")
        message = user_message(conversation.id, "I feel sad")
        message.sentiment = SentimentResult(score=-0.8, emotions={"sadness": 0.8})
        message.crisis = CrisisAssessment(is_crisis=False, risk_level=RiskLevel.MEDIUM)
        await store.append_message(message)
        await store.set_crisis_flag(conversation.id)
        await store.end_conversation(conversation.id, mood_end="neutral", summary="done")

        reloaded = FileConversationStore(data_dir=str(tmp_path))

        user = await reloaded.get_user("alice")
        assert user.email == "alice@example.com"

        stored = await reloaded.get_conversation(conversation.id)
        assert stored.title == "Morning"
        assert stored.is_crisis is True
        assert stored.status == ConversationStatus.COMPLETED
        assert stored.mood_end == "neutral"

        messages = await reloaded.list_messages(conversation.id)
        assert messages[0].sentiment.dominant_emotion == "sadness"
        assert messages[0].crisis.risk_level == RiskLevel.MEDIUM

        appended = await reloaded.append_message(user_message(conversation.id, "again"))
        assert appended.sequence == 2

    @pytest.mark.asyncio
    async def test_write_failure_rolls_back(self, tmp_path, monkeypatch):
        """書き込み失敗時はメモリ上の変更を破棄して StoreFailure"""
        store = FileConversationStore(data_dir=str(tmp_path))
        conversation = await store.create_conversation("alice")
        await store.append_message(user_message(conversation.id, "kept"))

        def broken_write(path, data):
            raise OSError("disk full")

        monkeypatch.setattr(store, "_write_json_file", broken_write)

        with pytest.raises(StoreFailure):
            await store.append_message(user_message(conversation.id, "lost"))

        monkeypatch.undo()
        assert [m.content for m in await store.list_messages(conversation.id)] == ["kept"]

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        (tmp_path / "solace.json").write_text("{not json", encoding="utf-8")
        store = FileConversationStore(data_dir=str(tmp_path))

        with pytest.raises(StoreFailure):
            await store.get_user("alice")

    @pytest.mark.asyncio
    async def test_no_temp_file_left(self, tmp_path):
        store = FileConversationStore(data_dir=str(tmp_path))
        await store.create_conversation("alice")

        assert (tmp_path / "solace.json").exists()
        assert not (tmp_path / "solace.tmp").exists()
