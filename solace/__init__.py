"""
Solace - リアルタイム会話サポートエンジン

認証済みユーザーとAIエージェントのターン制会話:
- 全メッセージの感情分析と危機検出
- 会話ルームへのリアルタイム配信
- ユーザー単位のレート制限
"""

__version__ = "1.0.0"
