"""
API Routes
エンドポイント定義
"""

from .conversations import router as conversations_router
from .users import router as users_router
from .websocket import router as websocket_router

__all__ = [
    "conversations_router",
    "users_router",
    "websocket_router",
]
