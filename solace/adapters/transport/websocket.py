"""
WebSocket トランスポート
FastAPI (Starlette) の WebSocket を IConnection として扱う
"""

import uuid

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from ...domain.models.events import SessionEvent
from ...domain.ports.connection_port import IConnection


class WebSocketConnection(IConnection):
    """
    WebSocket 接続

    接続ごとに一意な ID を払い出す。送信は JSON の
    {"event": 名前, "data": ペイロード} 形式。
    """

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self._connection_id = f"ws_{uuid.uuid4().hex}"
        self._closed = False

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    @property
    def client_host(self) -> str | None:
        # プロキシ経由の場合は X-Forwarded-For を優先
        forwarded = self._websocket.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        client = self._websocket.client
        return client.host if client else None

    async def send(self, event: SessionEvent) -> None:
        await self._websocket.send_json(event.to_dict())

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        if self._websocket.application_state == WebSocketState.CONNECTED:
            await self._websocket.close(code=code, reason=reason)

    def mark_closed(self) -> None:
        """クライアント側からの切断を記録"""
        self._closed = True
