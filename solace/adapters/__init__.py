"""
Adapters Layer
ポートインターフェースの具体的な実装

使用例:
    from solace.adapters.ai.openai import OpenAIAdapter
    from solace.adapters.storage.file import FileConversationStore
"""

# 遅延インポート用のサブモジュール名のみエクスポート
__all__ = [
    "ai",
    "storage",
    "transport",
]
