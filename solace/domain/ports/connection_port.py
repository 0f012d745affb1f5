"""
コネクションポート
リアルタイム接続（WebSocket等）を抽象化
"""

from abc import ABC, abstractmethod

from ..models.events import SessionEvent


class IConnection(ABC):
    """
    コネクションインターフェース

    トランスポート1インスタンスにつき1つ。トランスポートより長生きしない。
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """トランスポートごとに一意なID"""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """送信可能か"""

    @property
    def client_host(self) -> str | None:
        """接続元アドレス（不明な場合None）"""
        return None

    @abstractmethod
    async def send(self, event: SessionEvent) -> None:
        """
        イベントを送信

        Raises:
            Exception: 送信失敗時（切断済みなど）
        """

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """接続を閉じる"""
