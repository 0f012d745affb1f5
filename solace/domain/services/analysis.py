"""
キーワード分析プロバイダー
APIキーが未設定の環境で使う、ローカルの感情分析・危機検出

パフォーマンス最適化:
- 正規表現パターンを事前コンパイル
- 危機キーワードは重大度ごとに結合パターンで一度に検索
"""

import re

from ..models.analysis import (
    EMOTION_VOCABULARY,
    CRISIS_RISK_LEVELS,
    CrisisAssessment,
    RiskLevel,
    SentimentResult,
)
from ..ports.ai_port import IAnalysisProvider

# 感情キーワード辞書（感情語彙ごと）
EMOTION_KEYWORDS: dict[str, dict] = {
    "joy": {
        "keywords": [
            "happy", "glad", "joy", "great", "wonderful", "excited", "grateful",
            "thankful", "love", "relieved", "proud", "hopeful", "better", "calm",
        ],
        "weight": 2.0,
    },
    "sadness": {
        "keywords": [
            "sad", "down", "depressed", "lonely", "alone", "miserable", "cry",
            "crying", "hopeless", "empty", "grief", "hurt", "lost", "worthless",
        ],
        "weight": 3.0,
    },
    "anger": {
        "keywords": [
            "angry", "mad", "furious", "annoyed", "irritated", "hate", "rage",
            "frustrated", "unfair", "resent",
        ],
        "weight": 3.0,
    },
    "fear": {
        "keywords": [
            "afraid", "scared", "anxious", "anxiety", "worried", "worry", "panic",
            "nervous", "terrified", "stressed", "overwhelmed", "fear",
        ],
        "weight": 2.5,
    },
    "surprise": {
        "keywords": ["surprised", "shocked", "unexpected", "suddenly", "amazed"],
        "weight": 1.5,
    },
    "disgust": {
        "keywords": ["disgusted", "gross", "sick of", "ashamed", "repulsed"],
        "weight": 2.0,
    },
}

POSITIVE_EMOTIONS = {"joy"}
NEGATIVE_EMOTIONS = {"sadness", "anger", "fear", "disgust"}

# 危機キーワード（重大度別）
CRISIS_KEYWORDS: dict[RiskLevel, list[str]] = {
    RiskLevel.CRITICAL: [
        "kill myself", "suicide", "suicidal", "end my life", "want to die",
        "better off dead", "take my own life", "don't want to live",
        "do not want to live", "wish i were dead", "wish i was dead",
    ],
    RiskLevel.HIGH: [
        "hurt myself", "self-harm", "self harm", "cutting myself",
        "no reason to live", "can't go on", "cannot go on",
        "don't want to be here", "do not want to be here", "want to disappear",
        "not want to be here anymore",
    ],
    RiskLevel.MEDIUM: [
        "hopeless", "worthless", "can't take it anymore", "give up on everything",
        "nobody would care", "no way out",
    ],
}

SUGGESTED_ACTIONS: dict[RiskLevel, list[str]] = {
    RiskLevel.CRITICAL: [
        "Contact local emergency services immediately",
        "Reach out to a suicide and crisis hotline",
        "Stay with someone you trust",
    ],
    RiskLevel.HIGH: [
        "Reach out to a crisis hotline",
        "Contact a mental health professional",
    ],
    RiskLevel.MEDIUM: [
        "Talk to someone you trust",
        "Consider speaking with a counselor",
    ],
}

# 強調語・否定語
EMPHASIS_WORDS = {"very", "really", "so", "extremely", "totally", "completely"}
NEGATION_WORDS = {"not", "no", "never", "don't", "isn't", "wasn't", "can't"}


class KeywordAnalysisProvider(IAnalysisProvider):
    """
    キーワードベースの分析プロバイダー

    LLMほどの精度はないが、外部依存なしで常に応答する。
    """

    def __init__(self):
        self._compiled_patterns: dict[str, list[tuple[re.Pattern, str, float]]] = {}
        for emotion, emotion_data in EMOTION_KEYWORDS.items():
            weight = emotion_data["weight"]
            self._compiled_patterns[emotion] = [
                (re.compile(r"\b" + re.escape(kw) + r"\b"), kw, weight)
                for kw in emotion_data["keywords"]
            ]

        # 重大度ごとの結合パターン（一度の検索で全チェック）
        self._crisis_patterns: list[tuple[RiskLevel, re.Pattern]] = [
            (level, re.compile("|".join(re.escape(kw) for kw in keywords)))
            for level, keywords in CRISIS_KEYWORDS.items()
        ]

    async def analyze_sentiment(self, text: str) -> SentimentResult:
        return self.analyze_sentiment_sync(text)

    async def detect_crisis(self, text: str) -> CrisisAssessment:
        return self.detect_crisis_sync(text)

    def analyze_sentiment_sync(self, text: str) -> SentimentResult:
        """
        感情を分析（同期版）

        Args:
            text: 分析するテキスト

        Returns:
            SentimentResult: 分析結果（感情が検出されなければ score 0）
        """
        if not text or not text.strip():
            return SentimentResult(score=0.0)

        text_lower = text.strip().lower()
        scores, keywords = self._calculate_emotion_scores(text_lower)
        scores = self._apply_modifiers(text_lower, scores)

        positive = sum(scores[e] for e in POSITIVE_EMOTIONS)
        negative = sum(scores[e] for e in NEGATIVE_EMOTIONS)
        total = positive + negative
        score = (positive - negative) / total if total > 0 else 0.0

        # 強度を0.0-1.0に正規化
        emotions = {e: min(scores[e] / 10.0, 1.0) for e in EMOTION_VOCABULARY}

        return SentimentResult(score=score, emotions=emotions, keywords=keywords)

    def detect_crisis_sync(self, text: str) -> CrisisAssessment:
        """
        危機の兆候を検出（同期版）

        最も重大度の高いマッチがリスクレベルになる。
        """
        if not text or not text.strip():
            return CrisisAssessment.clear()

        # スマートクォートを ' に揃える
        text_lower = text.lower().replace("\u2019", "'")
        risk_level = RiskLevel.LOW
        indicators: list[str] = []

        for level, pattern in self._crisis_patterns:
            found = pattern.findall(text_lower)
            if not found:
                continue
            indicators.extend(kw for kw in found if kw not in indicators)
            if risk_level < level:
                risk_level = level

        return CrisisAssessment(
            is_crisis=risk_level in CRISIS_RISK_LEVELS,
            risk_level=risk_level,
            indicators=indicators,
            suggested_actions=list(SUGGESTED_ACTIONS.get(risk_level, [])),
        )

    def _calculate_emotion_scores(
        self, text_lower: str
    ) -> tuple[dict[str, float], list[str]]:
        """各感情のスコアとマッチしたキーワード"""
        scores = {emotion: 0.0 for emotion in EMOTION_VOCABULARY}
        keywords: list[str] = []

        for emotion, patterns in self._compiled_patterns.items():
            for pattern, keyword, weight in patterns:
                matches = pattern.findall(text_lower)
                if matches:
                    scores[emotion] += len(matches) * weight
                    if keyword not in keywords:
                        keywords.append(keyword)

        return scores, keywords

    def _apply_modifiers(self, text_lower: str, scores: dict[str, float]) -> dict[str, float]:
        """修飾語による感情スコアの調整"""
        modified = scores.copy()
        words = set(re.findall(r"[a-z']+", text_lower))

        # "not happy" のような否定はポジティブを弱め、悲しみに寄せる
        if NEGATION_WORDS & words and modified["joy"] > 0:
            modified["joy"] = max(0.0, modified["joy"] - 2)
            modified["sadness"] += 1

        if EMPHASIS_WORDS & words:
            for emotion in modified:
                modified[emotion] *= 1.5

        return modified
