"""
分析モデル
感情（センチメント）分析結果と危機評価
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# 固定の感情語彙（この順序が主要感情の同点処理に使われる）
EMOTION_VOCABULARY: tuple[str, ...] = (
    "joy",
    "sadness",
    "anger",
    "fear",
    "surprise",
    "disgust",
)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def dominant_emotion(emotions: dict[str, float]) -> str | None:
    """
    主要感情を決定

    最大強度の感情を返す。同点の場合は EMOTION_VOCABULARY の順序で
    先に現れる感情を選ぶ（入力辞書の順序には依存しない）。
    すべて 0 または空の場合は None。

    例: {"sadness": 0.4, "joy": 0.4, "anger": 0.1} -> "joy"
    """
    best: str | None = None
    best_value = 0.0
    for emotion in EMOTION_VOCABULARY:
        value = emotions.get(emotion, 0.0)
        if value > best_value:
            best, best_value = emotion, value
    return best


@dataclass
class SentimentResult:
    """
    感情分析結果

    score: -1.0（ネガティブ）〜 1.0（ポジティブ）
    emotions: 語彙内の感情ごとの強度 0.0-1.0
    """

    score: float
    emotions: dict[str, float] = field(default_factory=dict)
    keywords: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.score = _clamp(float(self.score), -1.0, 1.0)
        # 語彙外の感情は捨て、範囲外の値は丸める
        self.emotions = {
            emotion: _clamp(float(self.emotions[emotion]), 0.0, 1.0)
            for emotion in EMOTION_VOCABULARY
            if emotion in self.emotions
        }

    @property
    def dominant_emotion(self) -> str | None:
        return dominant_emotion(self.emotions)

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "score": self.score,
            "emotions": self.emotions,
            "dominant_emotion": self.dominant_emotion,
            "keywords": self.keywords,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SentimentResult":
        """辞書から生成"""
        return cls(
            score=data.get("score", 0.0),
            emotions=data.get("emotions", {}),
            keywords=data.get("keywords", []),
        )


class RiskLevel(Enum):
    """危機リスクレベル（low < medium < high < critical）"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def __lt__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


@dataclass
class CrisisAssessment:
    """危機評価結果"""

    is_crisis: bool
    risk_level: RiskLevel = RiskLevel.LOW
    indicators: list[str] = field(default_factory=list)
    suggested_actions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_crisis": self.is_crisis,
            "risk_level": self.risk_level.value,
            "indicators": self.indicators,
            "suggested_actions": self.suggested_actions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CrisisAssessment":
        return cls(
            is_crisis=bool(data.get("is_crisis", False)),
            risk_level=RiskLevel(data.get("risk_level", "low")),
            indicators=list(data.get("indicators", [])),
            suggested_actions=list(data.get("suggested_actions", [])),
        )

    @classmethod
    def clear(cls) -> "CrisisAssessment":
        """危機なしの評価を生成"""
        return cls(is_crisis=False)


# 危機とみなすリスクレベル
CRISIS_RISK_LEVELS = {RiskLevel.HIGH, RiskLevel.CRITICAL}
