"""
セッションルーター
接続ごとのクライアントイベントをレジストリとパイプラインに振り分ける

- open: ハンドシェイク（レート制限 → 認証 → 登録）
- join / leave: ルームの参加・退出と履歴の再送
- send_message: アドミッション後、メッセージごとにタスクを生成
- typing: 同じルームの他メンバーに中継
- shutdown: 処理中のタスクを待ってからレジストリを閉じる
"""

import asyncio

from ...core.exceptions import (
    AuthenticationFailed,
    AuthorizationDenied,
    NotFound,
    RateLimited,
    ServiceUnavailable,
    SolaceException,
)
from ...core.logging import get_logger, log_error
from ..models.conversation import ContentType
from ..models.events import SessionEvent
from ..models.user import Identity
from ..ports.connection_port import IConnection
from ..ports.storage_port import IConversationStore
from .admission import AdmissionController
from .credentials import CredentialVerifier
from .pipeline import InboundMessage, MessagePipeline, PipelineResult
from .registry import CONVERSATION_NOT_FOUND, SessionRegistry

logger = get_logger("router")

# WebSocket クローズコード
CLOSE_AUTH_FAILED = 4001
CLOSE_RATE_LIMITED = 4029
CLOSE_TRY_AGAIN_LATER = 1013


class SessionRouter:
    """セッションルーター"""

    def __init__(
        self,
        verifier: CredentialVerifier,
        registry: SessionRegistry,
        pipeline: MessagePipeline,
        admission: AdmissionController,
        store: IConversationStore,
        replay_limit: int = 50,
    ):
        self.verifier = verifier
        self.registry = registry
        self.pipeline = pipeline
        self.admission = admission
        self._store = store
        self._replay_limit = replay_limit
        self._tasks: set[asyncio.Task] = set()
        self._closing = False

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def is_closing(self) -> bool:
        return self._closing

    # === 接続 ===

    async def open(self, connection: IConnection, token: str | None) -> Identity | None:
        """
        ハンドシェイク

        失敗時はエラーイベントを送ってから接続を閉じる。

        Returns:
            Identity | None: 成功時のアイデンティティ
        """
        if self._closing:
            error = ServiceUnavailable()
            await self._reject(connection, error, CLOSE_TRY_AGAIN_LATER, error.message)
            return None

        subject = self.verifier.peek_subject(token)
        key = f"user:{subject}" if subject else f"ip:{connection.client_host or 'unknown'}"
        try:
            self.admission.admit_request(key)
        except RateLimited as e:
            await self._reject(connection, e, CLOSE_RATE_LIMITED, "Too many requests")
            return None

        try:
            identity = await self.verifier.verify(token)
            # 認証待ちの間に停止が始まった場合
            if self._closing:
                raise ServiceUnavailable()
            await self.registry.register(connection, identity)
        except AuthenticationFailed as e:
            await self._reject(connection, e, CLOSE_AUTH_FAILED, e.message)
            return None
        except ServiceUnavailable as e:
            await self._reject(connection, e, CLOSE_TRY_AGAIN_LATER, e.message)
            return None

        logger.info(
            "Connection opened",
            extra={"user_id": identity.user_id, "connection_id": connection.connection_id},
        )
        return identity

    async def close(self, connection: IConnection) -> None:
        """切断時の後処理（処理中のメッセージはそのまま完了させる）"""
        await self.registry.unregister(connection)

    async def _reject(
        self, connection: IConnection, error: SolaceException, code: int, reason: str
    ) -> None:
        await self.registry.send_to_connection(connection, SessionEvent.error(error))
        if connection.is_open:
            await connection.close(code, reason)

    # === クライアントイベント ===

    async def join(self, connection: IConnection, conversation_id: str) -> bool:
        """
        会話ルームに参加し、順序付きの履歴を再送

        存在しない会話と他人の会話はどちらも "Conversation not found" を返す。
        """
        try:
            await self.registry.join_room(connection, conversation_id)
            messages = await self._store.list_recent_messages(conversation_id, self._replay_limit)
        except (NotFound, AuthorizationDenied):
            await self.send_error(
                connection,
                NotFound(CONVERSATION_NOT_FOUND, error_code="NotFound"),
            )
            return False
        except SolaceException as e:
            log_error(logger, e, {"conversation_id": conversation_id})
            await self.send_error(connection, e)
            return False

        await self.registry.send_to_connection(
            connection, SessionEvent.joined(conversation_id, messages)
        )
        return True

    async def leave(self, connection: IConnection) -> None:
        await self.registry.leave_room(connection)

    async def send_message(
        self,
        connection: IConnection,
        conversation_id: str,
        content: str,
        content_type: ContentType = ContentType.TEXT,
        audio_url: str | None = None,
    ) -> asyncio.Task | None:
        """
        メッセージを受け付け、パイプラインのタスクを生成

        アドミッションに失敗した場合は何も永続化せずエラーを返す。

        Returns:
            asyncio.Task | None: パイプラインのタスク（拒否時 None）
        """
        identity = self.registry.identity_of(connection)
        if identity is None:
            await self.send_error(connection, AuthorizationDenied())
            return None

        if self._closing:
            await self.send_error(connection, ServiceUnavailable())
            return None

        try:
            self.admission.admit_message(identity.user_id)
        except RateLimited as e:
            await self.send_error(connection, e)
            return None

        inbound = InboundMessage(
            conversation_id=conversation_id,
            content=content,
            content_type=content_type,
            audio_url=audio_url,
            room=self.registry.room_of(connection),
        )
        task = asyncio.create_task(self._process(connection, identity, inbound))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _process(
        self, connection: IConnection, identity: Identity, inbound: InboundMessage
    ) -> PipelineResult | None:
        try:
            return await self.pipeline.process(connection, identity, inbound)
        except Exception as e:
            log_error(
                logger, e,
                {"user_id": identity.user_id, "conversation_id": inbound.conversation_id},
            )
            raise

    async def typing(self, connection: IConnection, conversation_id: str, is_typing: bool) -> None:
        """入力中表示を同じルームの他メンバーに中継"""
        identity = self.registry.identity_of(connection)
        if identity is None or self.registry.room_of(connection) != conversation_id:
            return
        await self.registry.broadcast(
            conversation_id,
            SessionEvent.user_typing(identity.user_id, is_typing),
            exclude={connection.connection_id},
        )

    async def send_error(self, connection: IConnection, error: SolaceException) -> None:
        await self.registry.send_to_connection(connection, SessionEvent.error(error))

    # === 停止 ===

    async def shutdown(self, timeout: float = 30.0) -> None:
        """
        新規の接続とメッセージを拒否し、処理中のタスクを待ってから全接続を閉じる
        """
        self._closing = True
        if self._tasks:
            logger.info("Draining in-flight messages", extra={"tasks": len(self._tasks)})
            _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning("Cancelled unfinished messages", extra={"tasks": len(pending)})
        await self.registry.shutdown()
