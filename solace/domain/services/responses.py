"""
テンプレート応答生成
APIキーが未設定の環境で使う、ローカルの応答生成器
"""

from ..models.analysis import RiskLevel
from ..ports.ai_port import ChatMessage, GeneratedReply, IResponseGenerator, MoodContext

CRISIS_RESPONSE = (
    "I'm really sorry you're going through this, and I'm glad you told me. "
    "Your safety matters. If you are in immediate danger, please contact local "
    "emergency services or a suicide and crisis hotline right now. "
    "Would you be willing to reach out to someone you trust while we keep talking?"
)


class SupportTypeClassifier:
    """気分コンテキストから支援タイプを分類"""

    _MOOD_SUPPORT = {
        "sadness": "validation",
        "sad": "validation",
        "fear": "grounding",
        "anxious": "grounding",
        "anger": "reflection",
        "angry": "reflection",
        "disgust": "reflection",
        "joy": "encouragement",
        "happy": "encouragement",
        "surprise": "exploration",
        "confused": "exploration",
    }

    def classify(self, mood: MoodContext) -> str:
        # 危機的状況の優先判定
        if mood.is_crisis or (mood.risk_level is not None and RiskLevel.HIGH <= mood.risk_level):
            return "crisis_support"
        return self._MOOD_SUPPORT.get(mood.current_mood or "", "general_support")


class TemplateResponseGenerator(IResponseGenerator):
    """
    テンプレート応答生成器

    支援タイプごとの定型文・技法・トーン・フォローアップ質問を返す。
    """

    def __init__(self):
        self.classifier = SupportTypeClassifier()
        self._templates: dict[str, dict] = {
            "crisis_support": {
                "text": CRISIS_RESPONSE,
                "techniques": ["safety planning", "crisis support"],
                "tone": "calming",
                "follow_ups": [
                    "Are you safe right now?",
                    "Is there someone you trust who could be with you?",
                ],
            },
            "validation": {
                "text": "It sounds like you're carrying a lot right now. "
                        "What you're feeling makes sense, and you don't have to face it alone.",
                "techniques": ["validation", "active listening"],
                "tone": "supportive",
                "follow_ups": [
                    "When did you start feeling this way?",
                    "What has helped you get through hard days before?",
                ],
            },
            "grounding": {
                "text": "That sounds really stressful. Let's slow down for a moment. "
                        "Try taking a slow breath in for four counts and out for six.",
                "techniques": ["grounding", "breathing exercise"],
                "tone": "calming",
                "follow_ups": [
                    "What is worrying you the most right now?",
                    "How does your body feel when the worry shows up?",
                ],
            },
            "reflection": {
                "text": "I can hear how frustrating this is. Anger often points to something "
                        "that matters to us.",
                "techniques": ["reflective listening", "CBT"],
                "tone": "supportive",
                "follow_ups": [
                    "What feels most unfair about the situation?",
                    "What would you like to happen next?",
                ],
            },
            "encouragement": {
                "text": "I'm glad to hear that. It's worth noticing what went well.",
                "techniques": ["strengths-based reflection"],
                "tone": "encouraging",
                "follow_ups": [
                    "What do you think made the difference?",
                    "How could you bring more of that into your week?",
                ],
            },
            "exploration": {
                "text": "It sounds like a lot is still unclear. Let's take it one piece at a time.",
                "techniques": ["open-ended questioning"],
                "tone": "curious",
                "follow_ups": [
                    "Which part feels most confusing?",
                    "What would help you feel a little clearer?",
                ],
            },
            "general_support": {
                "text": "Thank you for sharing that with me. I'm here to listen.",
                "techniques": ["active listening", "empathy"],
                "tone": "supportive",
                "follow_ups": [
                    "Could you tell me a bit more about that?",
                    "How has this been affecting you?",
                ],
            },
        }

    async def generate_reply(
        self, history: list[ChatMessage], mood: MoodContext
    ) -> GeneratedReply:
        support_type = self.classifier.classify(mood)
        template = self._templates[support_type]
        return GeneratedReply(
            text=template["text"],
            techniques=list(template["techniques"]),
            tone=template["tone"],
            follow_ups=list(template["follow_ups"]),
        )

    @property
    def model_name(self) -> str:
        return "template"
