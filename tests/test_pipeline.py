"""
メッセージパイプラインのテスト

- 正常系の状態遷移とブロードキャスト順序
- 同じ会話への同時送信がアドミッション順に直列化されるか
- 分析の失敗・タイムアウトでも継続するか
- 危機フラグが応答生成の失敗に関わらず永続化されるか
- 処理中に送信者が切断しても完了するか
"""

import asyncio

import pytest

from conftest import (
    EchoResponseGenerator,
    FailingResponseGenerator,
    FakeConnection,
    FlakyStore,
    GatedResponseGenerator,
    StaticAnalysisProvider,
)
from solace.domain.models.analysis import CrisisAssessment, RiskLevel, SentimentResult
from solace.domain.models.conversation import MessageRole
from solace.domain.models.user import Identity
from solace.domain.services.analysis import KeywordAnalysisProvider
from solace.domain.services.pipeline import (
    ConversationSequencer,
    InboundMessage,
    MessagePipeline,
    PipelineState,
)
from solace.domain.services.registry import SessionRegistry

ALICE = Identity(user_id="alice")


async def open_session(store, registry, identity: Identity = ALICE, conversation=None):
    """会話を作成して接続を参加させる"""
    if conversation is None:
        conversation = await store.create_conversation(identity.user_id)
    connection = FakeConnection()
    await registry.register(connection, identity)
    await registry.join_room(connection, conversation.id)
    return connection, conversation


def make_pipeline(store, analysis=None, generator=None, **kwargs):
    registry = SessionRegistry(store)
    pipeline = MessagePipeline(
        store=store,
        analysis=analysis or KeywordAnalysisProvider(),
        generator=generator or EchoResponseGenerator(),
        registry=registry,
        **kwargs,
    )
    return pipeline, registry


def new_message_contents(connection: FakeConnection) -> list[str]:
    return [e.data["message"]["content"] for e in connection.events("new-message")]


class TestHappyPath:
    """正常系のテスト"""

    @pytest.mark.asyncio
    async def test_full_turn(self, store):
        """ユーザー発言と応答が永続化・配信される"""
        pipeline, registry = make_pipeline(store)
        connection, conversation = await open_session(store, registry)

        result = await pipeline.process(
            connection, ALICE, InboundMessage(conversation.id, "I feel happy today")
        )

        assert result.succeeded
        assert result.transitions == [
            PipelineState.ADMITTED,
            PipelineState.VALIDATED,
            PipelineState.ANALYZED,
            PipelineState.PERSISTED,
            PipelineState.CLEAR,
            PipelineState.REPLY_REQUESTED,
            PipelineState.REPLY_PERSISTED,
            PipelineState.BROADCAST,
            PipelineState.DONE,
        ]

        messages = await store.list_messages(conversation.id)
        assert [(m.role, m.sequence) for m in messages] == [
            (MessageRole.USER, 1),
            (MessageRole.ASSISTANT, 2),
        ]
        assert messages[0].user_id == "alice"
        assert messages[0].sentiment.dominant_emotion == "joy"
        assert messages[1].user_id is None
        assert messages[1].content == "reply to I feel happy today"

    @pytest.mark.asyncio
    async def test_broadcast_order(self, store):
        """ユーザー発言 → 入力中 → 入力終了 → 応答 の順に届く"""
        pipeline, registry = make_pipeline(store)
        connection, conversation = await open_session(store, registry)

        await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hello"))

        assert connection.names() == ["new-message", "ai-typing", "ai-typing", "new-message"]
        assert connection.sent[1].data == {"isTyping": True}
        assert connection.sent[2].data == {"isTyping": False}
        assert new_message_contents(connection) == ["hello", "reply to hello"]

    @pytest.mark.asyncio
    async def test_reply_metadata_and_techniques(self, store):
        """応答の技法が会話に蓄積される"""
        generator = EchoResponseGenerator(techniques=["validation", "reflection"])
        pipeline, registry = make_pipeline(store, generator=generator)
        connection, conversation = await open_session(store, registry)

        result = await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hi"))

        assert result.reply.metadata["techniques"] == ["validation", "reflection"]
        stored = await store.get_conversation(conversation.id)
        assert stored.techniques == ["validation", "reflection"]

    @pytest.mark.asyncio
    async def test_history_window(self, store):
        """応答生成には直近のメッセージのみ渡す"""
        generator = EchoResponseGenerator()
        pipeline, registry = make_pipeline(store, generator=generator, history_window=3)
        connection, conversation = await open_session(store, registry)

        for text in ("one", "two", "three"):
            await pipeline.process(connection, ALICE, InboundMessage(conversation.id, text))

        history, _ = generator.calls[-1]
        assert [m.content for m in history] == ["two", "reply to two", "three"]
        assert history[-1].role == "user"

    @pytest.mark.asyncio
    async def test_mood_context(self, store):
        generator = EchoResponseGenerator()
        pipeline, registry = make_pipeline(store, generator=generator)
        connection, conversation = await open_session(store, registry)

        await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "I am so sad"))

        _, mood = generator.calls[0]
        assert mood.current_mood == "sadness"
        assert mood.is_crisis is False


class TestOrdering:
    """順序保証のテスト"""

    @pytest.mark.asyncio
    async def test_concurrent_messages_keep_admission_order(self, store):
        """先のメッセージの応答が遅くても順序は入れ替わらない"""
        generator = EchoResponseGenerator(delays={"first": 0.05, "second": 0.01})
        pipeline, registry = make_pipeline(store, generator=generator)
        connection, conversation = await open_session(store, registry)

        tasks = [
            asyncio.create_task(
                pipeline.process(connection, ALICE, InboundMessage(conversation.id, text))
            )
            for text in ("first", "second", "third")
        ]
        results = await asyncio.gather(*tasks)

        assert all(r.succeeded for r in results)
        messages = await store.list_messages(conversation.id)
        expected = [
            "first", "reply to first",
            "second", "reply to second",
            "third", "reply to third",
        ]
        assert [m.content for m in messages] == expected
        assert [m.sequence for m in messages] == [1, 2, 3, 4, 5, 6]
        assert new_message_contents(connection) == expected

    @pytest.mark.asyncio
    async def test_sequencer_releases_locks(self, store):
        pipeline, registry = make_pipeline(store)
        connection, conversation = await open_session(store, registry)

        await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hi"))

        assert len(pipeline.sequencer) == 0
        assert pipeline.sequencer.pending(conversation.id) == 0

    @pytest.mark.asyncio
    async def test_sequencer_is_fifo(self):
        """ロックは要求順に渡される"""
        sequencer = ConversationSequencer()
        order: list[int] = []

        async def worker(n: int, delay: float):
            async with sequencer.hold("c1"):
                await asyncio.sleep(delay)
                order.append(n)

        await asyncio.gather(*(worker(n, 0.02 if n == 0 else 0) for n in range(4)))

        assert order == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_different_conversations_run_concurrently(self):
        sequencer = ConversationSequencer()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with sequencer.hold("c1"):
                entered.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await entered.wait()

        async with sequencer.hold("c2"):
            assert sequencer.pending("c1") == 1

        release.set()
        await task


class TestDegradedAnalysis:
    """分析失敗時のテスト"""

    @pytest.mark.asyncio
    async def test_sentiment_failure_still_persists(self, store):
        """感情分析が失敗しても保存・配信される"""
        analysis = StaticAnalysisProvider(fail_sentiment=True)
        pipeline, registry = make_pipeline(store, analysis=analysis)
        connection, conversation = await open_session(store, registry)

        result = await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hello"))

        assert result.succeeded
        assert result.user_message.sentiment is None
        assert result.user_message.crisis is not None
        assert new_message_contents(connection) == ["hello", "reply to hello"]

    @pytest.mark.asyncio
    async def test_both_analyses_fail(self, store):
        analysis = StaticAnalysisProvider(fail_sentiment=True, fail_crisis=True)
        pipeline, registry = make_pipeline(store, analysis=analysis)
        connection, conversation = await open_session(store, registry)

        result = await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hello"))

        assert result.succeeded
        assert result.user_message.sentiment is None
        assert result.user_message.crisis is None
        assert PipelineState.CLEAR in result.transitions

    @pytest.mark.asyncio
    async def test_analysis_timeout(self, store):
        """タイムアウトした分析は None として継続"""
        analysis = StaticAnalysisProvider(delay=1.0)
        pipeline, registry = make_pipeline(store, analysis=analysis, analysis_timeout=0.01)
        connection, conversation = await open_session(store, registry)

        result = await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hello"))

        assert result.succeeded
        assert result.user_message.sentiment is None
        assert result.user_message.crisis is None


class TestCrisis:
    """危機エスカレーションのテスト"""

    @pytest.mark.asyncio
    async def test_crisis_flag_set(self, store):
        pipeline, registry = make_pipeline(store)
        connection, conversation = await open_session(store, registry)

        result = await pipeline.process(
            connection, ALICE, InboundMessage(conversation.id, "I want to die")
        )

        assert result.succeeded
        assert PipelineState.CRISIS_FLAGGED in result.transitions
        assert result.user_message.is_flagged
        assert (await store.get_conversation(conversation.id)).is_crisis is True

    @pytest.mark.asyncio
    async def test_crisis_flag_survives_generation_failure(self, store):
        """応答生成が失敗しても危機フラグは残る"""
        pipeline, registry = make_pipeline(store, generator=FailingResponseGenerator())
        connection, conversation = await open_session(store, registry)

        result = await pipeline.process(
            connection, ALICE, InboundMessage(conversation.id, "I want to die")
        )

        assert result.state == PipelineState.PIPELINE_FAILED
        assert result.error.error_code == "GenerationFailed"
        assert (await store.get_conversation(conversation.id)).is_crisis is True

        messages = await store.list_messages(conversation.id)
        assert [m.role for m in messages] == [MessageRole.USER]

        # 入力中表示を止めてから送信者にエラー
        assert connection.names() == ["new-message", "ai-typing", "ai-typing", "error"]
        assert connection.sent[2].data == {"isTyping": False}

    @pytest.mark.asyncio
    async def test_crisis_flag_retried(self, store):
        """書き込み失敗は有限回再試行"""
        flaky = FlakyStore(crisis_failures=2)
        pipeline, registry = make_pipeline(flaky, crisis_flag_retries=2)
        connection, conversation = await open_session(flaky, registry)

        result = await pipeline.process(
            connection, ALICE, InboundMessage(conversation.id, "I want to die")
        )

        assert result.succeeded
        assert flaky.crisis_attempts == 3
        assert (await flaky.get_conversation(conversation.id)).is_crisis is True

    @pytest.mark.asyncio
    async def test_crisis_flag_exhausted(self, store):
        """再試行を使い切ったら PipelineFailed"""
        flaky = FlakyStore(crisis_failures=10)
        pipeline, registry = make_pipeline(flaky, crisis_flag_retries=1)
        connection, conversation = await open_session(flaky, registry)

        result = await pipeline.process(
            connection, ALICE, InboundMessage(conversation.id, "I want to die")
        )

        assert result.state == PipelineState.PIPELINE_FAILED
        assert result.error.error_code == "StoreFailure"
        assert flaky.crisis_attempts == 2
        assert connection.names() == ["error"]

    @pytest.mark.asyncio
    async def test_crisis_from_provider(self, store):
        analysis = StaticAnalysisProvider(
            sentiment=SentimentResult(score=-0.9, emotions={"sadness": 0.9}),
            crisis=CrisisAssessment(is_crisis=True, risk_level=RiskLevel.HIGH,
                                    indicators=["self-harm"]),
        )
        generator = EchoResponseGenerator()
        pipeline, registry = make_pipeline(store, analysis=analysis, generator=generator)
        connection, conversation = await open_session(store, registry)

        await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "..."))

        _, mood = generator.calls[0]
        assert mood.is_crisis is True
        assert mood.risk_level == RiskLevel.HIGH


class TestRejection:
    """バリデーション失敗のテスト（何も永続化しない）"""

    @pytest.mark.asyncio
    async def test_not_joined(self, store):
        pipeline, registry = make_pipeline(store)
        conversation = await store.create_conversation("alice")
        connection = FakeConnection()
        await registry.register(connection, ALICE)

        result = await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hi"))

        assert result.state == PipelineState.REJECTED
        assert result.error.error_code == "AuthorizationDenied"
        assert await store.list_messages(conversation.id) == []
        assert connection.names() == ["error"]

    @pytest.mark.asyncio
    async def test_joined_other_room(self, store):
        """別の会話に参加中の接続からは送信できない"""
        pipeline, registry = make_pipeline(store)
        connection, _ = await open_session(store, registry)
        other = await store.create_conversation("alice")

        result = await pipeline.process(connection, ALICE, InboundMessage(other.id, "hi"))

        assert result.state == PipelineState.REJECTED
        assert await store.list_messages(other.id) == []

    @pytest.mark.asyncio
    async def test_ended_conversation(self, store):
        pipeline, registry = make_pipeline(store)
        connection, conversation = await open_session(store, registry)
        await store.end_conversation(conversation.id)

        result = await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hi"))

        assert result.state == PipelineState.REJECTED
        assert result.error.message == "Conversation has ended"
        assert await store.list_messages(conversation.id) == []

    @pytest.mark.asyncio
    async def test_foreign_conversation(self, store):
        """所有者でない会話は存在しない扱い"""
        pipeline, registry = make_pipeline(store)
        conversation = await store.create_conversation("bob")
        connection = FakeConnection()
        await registry.register(connection, ALICE)

        result = await pipeline.process(
            connection, ALICE, InboundMessage(conversation.id, "hi", room=conversation.id)
        )

        assert result.state == PipelineState.REJECTED
        assert result.error.error_code == "NotFound"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", "x" * 101])
    async def test_invalid_content(self, store, content):
        pipeline, registry = make_pipeline(store, max_message_length=100)
        connection, conversation = await open_session(store, registry)

        result = await pipeline.process(connection, ALICE, InboundMessage(conversation.id, content))

        assert result.state == PipelineState.REJECTED
        assert result.error.error_code == "ValidationFailed"
        assert await store.list_messages(conversation.id) == []


class TestFailures:
    """永続化・生成失敗のテスト"""

    @pytest.mark.asyncio
    async def test_user_message_store_failure(self, store):
        """ユーザー発言の保存失敗は送信者にのみ通知"""
        flaky = FlakyStore(append_failures=1)
        pipeline, registry = make_pipeline(flaky)
        connection, conversation = await open_session(flaky, registry)

        result = await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hi"))

        assert result.state == PipelineState.PIPELINE_FAILED
        assert result.error.error_code == "StoreFailure"
        assert connection.names() == ["error"]
        assert connection.sent[0].data["message"] == "Failed to save your message"

    @pytest.mark.asyncio
    async def test_technique_failure_still_delivers_reply(self, store):
        """技法の蓄積に失敗しても保存済みの応答は配信される"""
        flaky = FlakyStore(technique_failures=1)
        generator = EchoResponseGenerator(techniques=["validation"])
        pipeline, registry = make_pipeline(flaky, generator=generator)
        connection, conversation = await open_session(flaky, registry)

        result = await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hi"))

        assert result.state == PipelineState.DONE
        assert connection.events("error") == []
        assert connection.names() == ["new-message", "ai-typing", "ai-typing", "new-message"]
        assert new_message_contents(connection) == ["hi", "reply to hi"]
        stored = await flaky.list_messages(conversation.id)
        assert [m.role for m in stored] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert (await flaky.get_conversation(conversation.id)).techniques == []

    @pytest.mark.asyncio
    async def test_error_goes_to_sender_only(self, store):
        pipeline, registry = make_pipeline(store, generator=FailingResponseGenerator())
        connection, conversation = await open_session(store, registry)
        observer, _ = await open_session(store, registry, conversation=conversation)

        await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hi"))

        assert connection.events("error")
        assert observer.events("error") == []
        assert observer.names() == ["new-message", "ai-typing", "ai-typing"]

    @pytest.mark.asyncio
    async def test_generation_timeout(self, store):
        generator = EchoResponseGenerator(delays={"hi": 1.0})
        pipeline, registry = make_pipeline(store, generator=generator, generation_timeout=0.01)
        connection, conversation = await open_session(store, registry)

        result = await pipeline.process(connection, ALICE, InboundMessage(conversation.id, "hi"))

        assert result.state == PipelineState.PIPELINE_FAILED
        assert result.error.error_code == "GenerationFailed"
        # ユーザー発言は保存されたまま
        assert len(await store.list_messages(conversation.id)) == 1


class TestDisconnect:
    """処理中の切断のテスト"""

    @pytest.mark.asyncio
    async def test_sender_disconnects_mid_pipeline(self, store):
        """送信者が切断しても応答は保存され、他のメンバーに届く"""
        generator = GatedResponseGenerator()
        pipeline, registry = make_pipeline(store, generator=generator)
        connection, conversation = await open_session(store, registry)
        observer, _ = await open_session(store, registry, conversation=conversation)
        inbound = InboundMessage(conversation.id, "hi", room=registry.room_of(connection))

        task = asyncio.create_task(pipeline.process(connection, ALICE, inbound))
        await generator.started.wait()

        connection.drop()
        await registry.unregister(connection)
        generator.gate.set()
        result = await task

        assert result.succeeded
        messages = await store.list_messages(conversation.id)
        assert [m.content for m in messages] == ["hi", "thanks for waiting"]
        assert new_message_contents(observer) == ["hi", "thanks for waiting"]
