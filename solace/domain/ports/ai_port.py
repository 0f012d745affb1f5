"""
AIプロバイダーポート
感情分析・危機検出・応答生成へのアクセスを抽象化
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ..models.analysis import CrisisAssessment, RiskLevel, SentimentResult


@dataclass
class ChatMessage:
    """チャットメッセージ"""

    role: str  # "user", "assistant" or "system"
    content: str


@dataclass
class MoodContext:
    """応答生成に渡す会話レベルのコンテキスト"""

    current_mood: str | None = None
    techniques: list[str] = field(default_factory=list)
    is_crisis: bool = False
    risk_level: RiskLevel | None = None


@dataclass
class GeneratedReply:
    """生成された応答とメタデータ"""

    text: str
    techniques: list[str] = field(default_factory=list)
    tone: str = "supportive"
    follow_ups: list[str] = field(default_factory=list)

    def metadata(self) -> dict:
        return {
            "techniques": self.techniques,
            "emotional_tone": self.tone,
            "follow_up_questions": self.follow_ups,
        }


class IAnalysisProvider(ABC):
    """
    分析プロバイダーインターフェース

    感情分析と危機検出は独立して呼び出される（並行実行される）。
    失敗時は例外を送出してよい（呼び出し側で劣化運転する）。
    """

    @abstractmethod
    async def analyze_sentiment(self, text: str) -> SentimentResult:
        """
        感情を分析

        Args:
            text: 分析するテキスト

        Returns:
            SentimentResult: 分析結果
        """

    @abstractmethod
    async def detect_crisis(self, text: str) -> CrisisAssessment:
        """
        危機の兆候を検出

        Args:
            text: 分析するテキスト

        Returns:
            CrisisAssessment: 危機評価
        """


class IResponseGenerator(ABC):
    """
    応答生成インターフェース

    LLM API（OpenAI等）やローカル実装で切り替え可能。
    """

    @abstractmethod
    async def generate_reply(
        self, history: list[ChatMessage], mood: MoodContext
    ) -> GeneratedReply:
        """
        次のエージェント発話を生成

        Args:
            history: 直近の会話履歴（古い順）
            mood: 気分・技法などのコンテキスト

        Returns:
            GeneratedReply: 応答テキストとメタデータ
        """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """
        使用中のモデル名

        Returns:
            str: モデル名
        """
