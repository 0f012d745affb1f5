"""
Storage Adapters
会話ストアの実装

使用例:
    from solace.adapters.storage.file import FileConversationStore
    from solace.adapters.storage.memory import InMemoryConversationStore
"""

from .file import FileConversationStore
from .memory import InMemoryConversationStore

__all__ = [
    "FileConversationStore",
    "InMemoryConversationStore",
]
