"""
Transport Adapters
リアルタイム接続の実装
"""

from .websocket import WebSocketConnection

__all__ = [
    "WebSocketConnection",
]
