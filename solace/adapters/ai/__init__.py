"""
AI Adapters
分析・応答生成プロバイダーの実装
"""

from .openai import OpenAIAdapter

__all__ = [
    "OpenAIAdapter",
]
