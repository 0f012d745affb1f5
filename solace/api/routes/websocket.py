"""
WebSocket エンドポイント
リアルタイム会話セッション

プロトコル:
1. 接続時に Authorization: Bearer ヘッダーまたは ?token= でトークンを渡す
2. 失敗時は error イベントの後 4001 "Authentication failed" で切断
3. 以後 {"event": 名前, "data": {...}} 形式でイベントを送受信
"""

import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ...adapters.transport.websocket import WebSocketConnection
from ...core.exceptions import ValidationFailed
from ...core.logging import get_logger
from ...domain.models import events
from ...domain.models.conversation import ContentType
from ...domain.services.router import SessionRouter
from ..auth import extract_bearer_token
from ..dependencies import get_session_router
from ..schemas import (
    ClientEnvelope,
    JoinConversationPayload,
    SendMessagePayload,
    TypingPayload,
)

logger = get_logger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def conversation_socket(
    websocket: WebSocket,
    session_router: SessionRouter = Depends(get_session_router),
) -> None:
    """会話セッション"""
    await websocket.accept()
    connection = WebSocketConnection(websocket)

    token = extract_bearer_token(websocket.headers.get("Authorization"))
    if token is None:
        token = websocket.query_params.get("token")

    identity = await session_router.open(connection, token)
    if identity is None:
        return

    try:
        while True:
            raw = await websocket.receive_text()
            await dispatch(session_router, connection, raw)
    except WebSocketDisconnect:
        connection.mark_closed()
        logger.info(
            "Connection closed",
            extra={"user_id": identity.user_id, "connection_id": connection.connection_id},
        )
    finally:
        await session_router.close(connection)


async def dispatch(session_router: SessionRouter, connection: WebSocketConnection, raw: str) -> None:
    """受信したイベントをルーターに振り分ける"""
    try:
        envelope = ClientEnvelope.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError):
        await session_router.send_error(connection, ValidationFailed("Invalid event format"))
        return

    try:
        if envelope.event == events.JOIN_CONVERSATION:
            payload = JoinConversationPayload.model_validate(envelope.data)
            await session_router.join(connection, payload.conversation_id)

        elif envelope.event == events.LEAVE_CONVERSATION:
            await session_router.leave(connection)

        elif envelope.event == events.SEND_MESSAGE:
            message = SendMessagePayload.model_validate(envelope.data)
            await session_router.send_message(
                connection,
                conversation_id=message.conversation_id,
                content=message.content,
                content_type=ContentType(message.content_type),
                audio_url=message.audio_url,
            )

        elif envelope.event == events.TYPING:
            typing = TypingPayload.model_validate(envelope.data)
            await session_router.typing(connection, typing.conversation_id, typing.is_typing)

        else:
            await session_router.send_error(
                connection, ValidationFailed(f"Unknown event: {envelope.event}", field="event")
            )
    except ValidationError as e:
        await session_router.send_error(
            connection,
            ValidationFailed(
                f"Invalid payload for {envelope.event}",
                details={"errors": [err["msg"] for err in e.errors()]},
            ),
        )
