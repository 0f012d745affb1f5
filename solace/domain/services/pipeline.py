"""
メッセージパイプライン
受信メッセージ1件を状態機械として処理する

Admitted → Validated → Analyzed → Persisted → {CrisisFlagged | Clear}
  → ReplyRequested → ReplyPersisted → Broadcast → Done
終端の失敗状態: Rejected（何も永続化しない）, PipelineFailed

同じ会話のメッセージは会話ごとの FIFO ロックで直列化され、
ブロードキャスト順はアドミッション順と一致する。
"""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum

from ...core.exceptions import (
    AnalysisUnavailable,
    AuthorizationDenied,
    GenerationFailed,
    NotFound,
    SolaceException,
    StoreFailure,
    ValidationFailed,
)
from ...core.logging import get_logger, log_business_event, log_error
from ..models.analysis import CrisisAssessment, SentimentResult
from ..models.conversation import ContentType, Conversation, Message, MessageRole
from ..models.events import SessionEvent
from ..models.user import Identity
from ..ports.ai_port import ChatMessage, IAnalysisProvider, IResponseGenerator, MoodContext
from ..ports.connection_port import IConnection
from ..ports.storage_port import IConversationStore
from .registry import CONVERSATION_NOT_FOUND, SessionRegistry

logger = get_logger("pipeline")


class PipelineState(Enum):
    """パイプラインの状態"""

    ADMITTED = "admitted"
    VALIDATED = "validated"
    ANALYZED = "analyzed"
    PERSISTED = "persisted"
    CRISIS_FLAGGED = "crisis_flagged"
    CLEAR = "clear"
    REPLY_REQUESTED = "reply_requested"
    REPLY_PERSISTED = "reply_persisted"
    BROADCAST = "broadcast"
    DONE = "done"
    # 終端の失敗
    REJECTED = "rejected"
    PIPELINE_FAILED = "pipeline_failed"


@dataclass
class InboundMessage:
    """受信した send-message"""

    conversation_id: str
    content: str
    content_type: ContentType = ContentType.TEXT
    audio_url: str | None = None
    # アドミッション時点で参加していたルーム（None ならレジストリに問い合わせる）
    room: str | None = None


@dataclass
class PipelineResult:
    """処理結果"""

    state: PipelineState = PipelineState.ADMITTED
    user_message: Message | None = None
    reply: Message | None = None
    error: SolaceException | None = None
    transitions: list[PipelineState] = field(default_factory=lambda: [PipelineState.ADMITTED])

    def advance(self, state: PipelineState) -> None:
        self.state = state
        self.transitions.append(state)

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.DONE


class ConversationSequencer:
    """
    会話ごとの FIFO ロック

    参照カウントで管理し、待機者がいなくなったロックは削除する。
    ロックは会話単位なので、別の会話は並行に処理される。
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, conversation_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        self._refs[conversation_id] = self._refs.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[conversation_id] -= 1
            if self._refs[conversation_id] == 0:
                del self._refs[conversation_id]
                del self._locks[conversation_id]

    def pending(self, conversation_id: str) -> int:
        """保持中または待機中のタスク数"""
        return self._refs.get(conversation_id, 0)

    def __len__(self) -> int:
        return len(self._locks)


class MessagePipeline:
    """
    メッセージパイプライン

    感情分析と危機検出は並行に実行し、それぞれ個別にタイムアウトと
    失敗を扱う（失敗は分析なしとして継続）。危機フラグは応答生成より前に
    永続化され、以降の失敗で取り消されることはない。
    """

    def __init__(
        self,
        store: IConversationStore,
        analysis: IAnalysisProvider,
        generator: IResponseGenerator,
        registry: SessionRegistry,
        sequencer: ConversationSequencer | None = None,
        analysis_timeout: float = 10.0,
        generation_timeout: float = 30.0,
        history_window: int = 10,
        max_message_length: int = 5000,
        crisis_flag_retries: int = 2,
    ):
        self._store = store
        self._analysis = analysis
        self._generator = generator
        self._registry = registry
        self.sequencer = sequencer or ConversationSequencer()
        self._analysis_timeout = analysis_timeout
        self._generation_timeout = generation_timeout
        self._history_window = history_window
        self._max_length = max_message_length
        self._crisis_retries = crisis_flag_retries

    async def process(
        self, connection: IConnection, identity: Identity, inbound: InboundMessage
    ) -> PipelineResult:
        """
        メッセージを処理

        呼び出し直後（最初の await より前）に会話ロックの待ち行列に入る。

        Args:
            connection: 送信元の接続
            identity: 送信者
            inbound: 受信メッセージ

        Returns:
            PipelineResult: 最終状態と永続化されたメッセージ
        """
        start_time = time.time()
        async with self.sequencer.hold(inbound.conversation_id):
            result = await self._run(connection, identity, inbound)

        log_business_event(
            logger,
            "message_processed",
            user_id=identity.user_id,
            conversation_id=inbound.conversation_id,
            state=result.state.value,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return result

    async def _run(
        self, connection: IConnection, identity: Identity, inbound: InboundMessage
    ) -> PipelineResult:
        result = PipelineResult()
        conversation_id = inbound.conversation_id

        # 1. バリデーション
        try:
            conversation = await self._validate(connection, identity, inbound)
        except SolaceException as e:
            return await self._fail(connection, result, PipelineState.REJECTED, e)
        result.advance(PipelineState.VALIDATED)

        # 2. 分析（ベストエフォート）
        sentiment, crisis = await asyncio.gather(
            self._analyze_sentiment(inbound.content, conversation_id),
            self._detect_crisis(inbound.content, conversation_id),
        )
        result.advance(PipelineState.ANALYZED)

        # 3. ユーザーメッセージの永続化
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=MessageRole.USER,
            content=inbound.content,
            content_type=inbound.content_type,
            user_id=identity.user_id,
            audio_url=inbound.audio_url,
            sentiment=sentiment,
            crisis=crisis,
        )
        try:
            result.user_message = await self._store.append_message(message)
        except Exception as e:
            return await self._fail(
                connection, result, PipelineState.PIPELINE_FAILED, self._as_store_failure(e)
            )
        result.advance(PipelineState.PERSISTED)

        # 4. 危機エスカレーション
        is_crisis = bool(crisis and crisis.is_crisis)
        if is_crisis:
            try:
                await self._flag_crisis(conversation_id, identity.user_id, crisis)
            except SolaceException as e:
                return await self._fail(connection, result, PipelineState.PIPELINE_FAILED, e)
            result.advance(PipelineState.CRISIS_FLAGGED)
        else:
            result.advance(PipelineState.CLEAR)

        await self._registry.broadcast(conversation_id, SessionEvent.new_message(result.user_message))

        # 5. 応答生成
        await self._registry.broadcast(conversation_id, SessionEvent.ai_typing(True))
        result.advance(PipelineState.REPLY_REQUESTED)
        try:
            reply = await self._generate(conversation, sentiment, crisis)
        except SolaceException as e:
            await self._registry.broadcast(conversation_id, SessionEvent.ai_typing(False))
            return await self._fail(connection, result, PipelineState.PIPELINE_FAILED, e)

        # 6. 応答の永続化
        assistant_message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=MessageRole.ASSISTANT,
            content=reply.text,
            metadata=reply.metadata(),
        )
        try:
            result.reply = await self._store.append_message(assistant_message)
        except Exception as e:
            await self._registry.broadcast(conversation_id, SessionEvent.ai_typing(False))
            return await self._fail(
                connection, result, PipelineState.PIPELINE_FAILED, self._as_store_failure(e)
            )
        if reply.techniques:
            await self._accumulate_techniques(conversation_id, reply.techniques)
        result.advance(PipelineState.REPLY_PERSISTED)

        # 7. ブロードキャスト
        await self._registry.broadcast(conversation_id, SessionEvent.ai_typing(False))
        await self._registry.broadcast(conversation_id, SessionEvent.new_message(result.reply))
        result.advance(PipelineState.BROADCAST)

        result.advance(PipelineState.DONE)
        return result

    async def _validate(
        self, connection: IConnection, identity: Identity, inbound: InboundMessage
    ) -> Conversation:
        """参加状態・所有権・会話ステータス・内容を検証"""
        content = inbound.content or ""
        if not content.strip():
            raise ValidationFailed("Message content is required", field="content")
        if len(content) > self._max_length:
            raise ValidationFailed(
                f"Message must be at most {self._max_length} characters", field="content"
            )

        room = inbound.room if inbound.room is not None else self._registry.room_of(connection)
        if room != inbound.conversation_id:
            raise AuthorizationDenied(
                "Join the conversation before sending messages",
                details={"conversation_id": inbound.conversation_id},
            )

        try:
            conversation = await self._store.get_conversation(inbound.conversation_id)
        except SolaceException:
            raise
        except Exception as e:
            raise self._as_store_failure(e) from e

        if conversation is None or conversation.user_id != identity.user_id:
            raise NotFound(CONVERSATION_NOT_FOUND, details={"conversation_id": inbound.conversation_id})
        if not conversation.is_active:
            raise ValidationFailed("Conversation has ended", field="conversationId")
        return conversation

    async def _analyze_sentiment(self, text: str, conversation_id: str) -> SentimentResult | None:
        try:
            return await asyncio.wait_for(
                self._analysis.analyze_sentiment(text), timeout=self._analysis_timeout
            )
        except Exception as e:
            self._log_analysis_unavailable("sentiment", conversation_id, e)
            return None

    async def _detect_crisis(self, text: str, conversation_id: str) -> CrisisAssessment | None:
        try:
            return await asyncio.wait_for(
                self._analysis.detect_crisis(text), timeout=self._analysis_timeout
            )
        except Exception as e:
            self._log_analysis_unavailable("crisis", conversation_id, e)
            return None

    def _log_analysis_unavailable(self, kind: str, conversation_id: str, error: Exception) -> None:
        unavailable = AnalysisUnavailable(
            f"{kind} analysis unavailable",
            service_name=kind,
            details={"conversation_id": conversation_id, "cause": repr(error)},
        )
        logger.warning(
            unavailable.message,
            extra={"conversation_id": conversation_id, "error_code": unavailable.error_code,
                   "cause": repr(error)},
        )

    async def _accumulate_techniques(self, conversation_id: str, techniques: list[str]) -> None:
        """応答の技法を会話に蓄積（応答は保存済みのため失敗しても続行）"""
        try:
            await self._store.add_techniques(conversation_id, techniques)
        except Exception as e:
            logger.warning(
                "Failed to record reply techniques",
                extra={"conversation_id": conversation_id, "techniques": techniques,
                       "cause": repr(e)},
            )

    async def _flag_crisis(
        self, conversation_id: str, user_id: str, crisis: CrisisAssessment
    ) -> None:
        """危機フラグを書き込む（有限回の再試行）"""
        attempts = self._crisis_retries + 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                await self._store.set_crisis_flag(conversation_id)
            except Exception as e:
                last_error = e
                logger.warning(
                    "Crisis flag write failed",
                    extra={"conversation_id": conversation_id, "attempt": attempt,
                           "error": str(e)},
                )
                continue

            log_business_event(
                logger,
                "crisis_detected",
                user_id=user_id,
                level=logging.WARNING,
                conversation_id=conversation_id,
                risk_level=crisis.risk_level.value,
                indicators=crisis.indicators,
            )
            return

        logger.critical(
            "Crisis flag could not be persisted",
            extra={"conversation_id": conversation_id, "user_id": user_id,
                   "risk_level": crisis.risk_level.value, "attempts": attempts},
        )
        raise StoreFailure(details={"conversation_id": conversation_id, "cause": repr(last_error)})

    async def _generate(
        self,
        conversation: Conversation,
        sentiment: SentimentResult | None,
        crisis: CrisisAssessment | None,
    ):
        """直近の履歴と気分コンテキストから応答を生成"""
        try:
            recent = await self._store.list_recent_messages(conversation.id, self._history_window)
        except SolaceException:
            raise
        except Exception as e:
            raise self._as_store_failure(e) from e

        history = [ChatMessage(role=m.role.value, content=m.content) for m in recent]
        mood = MoodContext(
            current_mood=(sentiment.dominant_emotion if sentiment else None) or conversation.mood_start,
            techniques=list(conversation.techniques),
            is_crisis=conversation.is_crisis or bool(crisis and crisis.is_crisis),
            risk_level=crisis.risk_level if crisis else None,
        )

        try:
            reply = await asyncio.wait_for(
                self._generator.generate_reply(history, mood), timeout=self._generation_timeout
            )
        except GenerationFailed:
            raise
        except asyncio.TimeoutError as e:
            raise GenerationFailed(
                service_name=self._generator.model_name, details={"cause": "timeout"}
            ) from e
        except Exception as e:
            raise GenerationFailed(
                service_name=self._generator.model_name, details={"cause": repr(e)}
            ) from e

        if not reply.text or not reply.text.strip():
            raise GenerationFailed(
                service_name=self._generator.model_name, details={"cause": "empty reply"}
            )
        return reply

    async def _fail(
        self,
        connection: IConnection,
        result: PipelineResult,
        state: PipelineState,
        error: SolaceException,
    ) -> PipelineResult:
        """終端の失敗状態に遷移し、送信者にだけエラーを通知"""
        result.error = error
        result.advance(state)
        if state == PipelineState.REJECTED:
            logger.info(
                f"Message rejected: {error.error_code}",
                extra={"error_code": error.error_code, "details": error.details},
            )
        else:
            log_error(logger, error, {"pipeline_state": state.value})
        await self._registry.send_to_connection(connection, SessionEvent.error(error))
        return result

    @staticmethod
    def _as_store_failure(error: Exception | None) -> SolaceException:
        if isinstance(error, SolaceException):
            return error
        return StoreFailure(details={"cause": repr(error)})
