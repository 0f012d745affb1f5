"""
セッションレジストリ
接続・アイデンティティ・会話ルームの対応を管理

- アイデンティティ → 接続IDの集合
- 接続 → 参加中のルーム（最大1つ）
- ルーム → メンバー接続ID（レジストリのみが変更する）

アプリケーションの lifespan で生成し、シャットダウン時に破棄する。
1接続に対する変更は接続ごとのロックで直列化される。
"""

import asyncio
from dataclasses import dataclass, field

from ...core.exceptions import (
    AuthorizationDenied,
    NotFound,
    ServiceUnavailable,
)
from ...core.logging import get_logger, log_business_event
from ..models.conversation import Conversation
from ..models.events import SessionEvent
from ..models.user import Identity
from ..ports.connection_port import IConnection
from ..ports.storage_port import IConversationStore

logger = get_logger("registry")

# クライアントには存在しない場合と所有者でない場合を区別させない
CONVERSATION_NOT_FOUND = "Conversation not found"


@dataclass
class _Session:
    """登録済み接続の状態"""

    connection: IConnection
    identity: Identity
    room: str | None = None
    # 1接続への送信順序を保つ
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SessionRegistry:
    """
    セッションレジストリ

    ルームのメンバーシップはキャッシュであり、入室のたびにストアで
    所有権を再検証する。
    """

    def __init__(self, store: IConversationStore):
        self._store = store
        self._sessions: dict[str, _Session] = {}
        self._identities: dict[str, set[str]] = {}
        self._rooms: dict[str, set[str]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _lock_for(self, connection_id: str) -> asyncio.Lock:
        lock = self._locks.get(connection_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[connection_id] = lock
        return lock

    # === 登録 ===

    async def register(self, connection: IConnection, identity: Identity) -> None:
        """
        接続を登録（ハンドシェイク後に1回）

        同じ接続IDの再登録は冪等。別アイデンティティでの再登録は拒否。

        Raises:
            AuthorizationDenied: 別アイデンティティでの再登録
            ServiceUnavailable: シャットダウン後
        """
        if self._closed:
            raise ServiceUnavailable()

        async with self._lock_for(connection.connection_id):
            existing = self._sessions.get(connection.connection_id)
            if existing is not None:
                if existing.identity.user_id != identity.user_id:
                    raise AuthorizationDenied(
                        details={"connection_id": connection.connection_id}
                    )
                return

            self._sessions[connection.connection_id] = _Session(connection, identity)
            first = identity.user_id not in self._identities
            self._identities.setdefault(identity.user_id, set()).add(connection.connection_id)

        log_business_event(
            logger,
            "connection_registered",
            user_id=identity.user_id,
            connection_id=connection.connection_id,
            came_online=first,
        )

    async def unregister(self, connection: IConnection) -> None:
        """
        接続とメンバーシップを削除

        アイデンティティの最後の接続ならオフラインになる。
        """
        connection_id = connection.connection_id
        async with self._lock_for(connection_id):
            session = self._sessions.pop(connection_id, None)
            if session is None:
                self._locks.pop(connection_id, None)
                return

            self._remove_from_room(connection_id, session)

            user_id = session.identity.user_id
            connections = self._identities.get(user_id)
            went_offline = False
            if connections is not None:
                connections.discard(connection_id)
                if not connections:
                    del self._identities[user_id]
                    went_offline = True

        self._locks.pop(connection_id, None)
        log_business_event(
            logger,
            "connection_unregistered",
            user_id=user_id,
            connection_id=connection_id,
            went_offline=went_offline,
        )

    # === ルーム ===

    async def join_room(self, connection: IConnection, conversation_id: str) -> Conversation:
        """
        会話ルームに参加

        毎回ストアで所有権を再検証する。成功時は以前の参加を置き換える。

        Returns:
            Conversation: 参加した会話

        Raises:
            NotFound: 会話が存在しない
            AuthorizationDenied: 未登録の接続、または他人の会話
        """
        connection_id = connection.connection_id
        # 未登録の接続にはロックを作らない
        if connection_id not in self._sessions:
            raise AuthorizationDenied(details={"connection_id": connection_id})
        async with self._lock_for(connection_id):
            session = self._sessions.get(connection_id)
            if session is None:
                raise AuthorizationDenied(details={"connection_id": connection_id})

            conversation = await self._store.get_conversation(conversation_id)
            if conversation is None:
                raise NotFound(CONVERSATION_NOT_FOUND, details={"conversation_id": conversation_id})
            if conversation.user_id != session.identity.user_id:
                log_business_event(
                    logger,
                    "join_denied",
                    user_id=session.identity.user_id,
                    conversation_id=conversation_id,
                )
                raise AuthorizationDenied(
                    CONVERSATION_NOT_FOUND, details={"conversation_id": conversation_id}
                )

            # 待機中に登録解除された場合は何もしない
            if self._sessions.get(connection_id) is not session:
                raise AuthorizationDenied(details={"connection_id": connection_id})

            self._remove_from_room(connection_id, session)
            session.room = conversation_id
            self._rooms.setdefault(conversation_id, set()).add(connection_id)

        log_business_event(
            logger,
            "room_joined",
            user_id=session.identity.user_id,
            conversation_id=conversation_id,
            connection_id=connection_id,
        )
        return conversation

    async def leave_room(self, connection: IConnection) -> str | None:
        """
        ルームから退出（未参加なら何もしない）

        Returns:
            str | None: 退出したルーム
        """
        if connection.connection_id not in self._sessions:
            return None
        async with self._lock_for(connection.connection_id):
            session = self._sessions.get(connection.connection_id)
            if session is None or session.room is None:
                return None
            room = session.room
            self._remove_from_room(connection.connection_id, session)
            return room

    def _remove_from_room(self, connection_id: str, session: _Session) -> None:
        if session.room is None:
            return
        members = self._rooms.get(session.room)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._rooms[session.room]
        session.room = None

    # === 照会 ===

    def room_of(self, connection: IConnection) -> str | None:
        session = self._sessions.get(connection.connection_id)
        return session.room if session else None

    def identity_of(self, connection: IConnection) -> Identity | None:
        session = self._sessions.get(connection.connection_id)
        return session.identity if session else None

    def room_members(self, conversation_id: str) -> set[str]:
        return set(self._rooms.get(conversation_id, ()))

    def is_online(self, user_id: str) -> bool:
        return user_id in self._identities

    def online_users(self) -> list[str]:
        return list(self._identities)

    @property
    def connection_count(self) -> int:
        return len(self._sessions)

    # === 送信 ===

    async def broadcast(
        self,
        conversation_id: str,
        event: SessionEvent,
        exclude: set[str] | None = None,
    ) -> int:
        """
        ルームの全メンバーに送信

        閉じた接続・存在しない接続はスキップし、例外は送出しない。

        Returns:
            int: 送信に成功した接続数
        """
        member_ids = self._rooms.get(conversation_id, set()) - (exclude or set())
        return await self._fan_out(member_ids, event)

    async def send_to_identity(self, user_id: str, event: SessionEvent) -> int:
        """アイデンティティの全接続に送信"""
        return await self._fan_out(set(self._identities.get(user_id, ())), event)

    async def send_to_connection(self, connection: IConnection, event: SessionEvent) -> bool:
        """
        特定の接続に送信

        未登録（ハンドシェイク失敗など）の接続にも直接送信する。
        """
        session = self._sessions.get(connection.connection_id)
        if session is None:
            return await self._deliver(connection, event)
        return await self._send(session, event)

    async def _fan_out(self, connection_ids: set[str], event: SessionEvent) -> int:
        sessions = [self._sessions[cid] for cid in connection_ids if cid in self._sessions]
        if not sessions:
            return 0
        results = await asyncio.gather(
            *(self._send(session, event) for session in sessions),
            return_exceptions=True,
        )
        return sum(1 for r in results if r is True)

    async def _send(self, session: _Session, event: SessionEvent) -> bool:
        async with session.send_lock:
            return await self._deliver(session.connection, event)

    async def _deliver(self, connection: IConnection, event: SessionEvent) -> bool:
        if not connection.is_open:
            return False
        try:
            await connection.send(event)
        except Exception as e:
            logger.warning(
                f"Send failed: {event.name}",
                extra={"connection_id": connection.connection_id, "error": str(e)},
            )
            return False
        return True

    # === 破棄 ===

    async def disconnect_identity(
        self, user_id: str, code: int = 4003, reason: str = "Account deactivated"
    ) -> int:
        """
        アイデンティティの全セッションを破棄（非アクティブ化時）

        Returns:
            int: 閉じた接続数
        """
        sessions = [
            self._sessions[cid]
            for cid in list(self._identities.get(user_id, ()))
            if cid in self._sessions
        ]
        for session in sessions:
            await self._close(session.connection, code, reason)
            await self.unregister(session.connection)

        if sessions:
            log_business_event(
                logger, "identity_disconnected", user_id=user_id, connections=len(sessions)
            )
        return len(sessions)

    async def shutdown(self) -> None:
        """全接続を閉じる（以後の登録は拒否）"""
        self._closed = True
        sessions = list(self._sessions.values())
        for session in sessions:
            await self._close(session.connection, 1001, "Server shutting down")
            await self.unregister(session.connection)
        logger.info("Session registry shut down", extra={"connections": len(sessions)})

    async def _close(self, connection: IConnection, code: int, reason: str) -> None:
        if not connection.is_open:
            return
        try:
            await connection.close(code, reason)
        except Exception as e:
            logger.warning(
                "Close failed",
                extra={"connection_id": connection.connection_id, "error": str(e)},
            )
