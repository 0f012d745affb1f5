"""
OpenAI AIアダプター
OpenAI API (GPT-4.1等) への接続実装

感情分析・危機検出・応答生成はいずれも function calling（tools）で
構造化された引数として受け取る。
"""

import asyncio
import json
from typing import Any

import aiohttp

from ...core.exceptions import AnalysisUnavailable, ExternalServiceError, GenerationFailed
from ...core.logging import get_logger
from ...domain.models.analysis import (
    EMOTION_VOCABULARY,
    CrisisAssessment,
    RiskLevel,
    SentimentResult,
)
from ...domain.ports.ai_port import (
    ChatMessage,
    GeneratedReply,
    IAnalysisProvider,
    IResponseGenerator,
    MoodContext,
)

logger = get_logger("adapters.openai")

SENTIMENT_SYSTEM_PROMPT = (
    "You are a sentiment analysis expert. Analyze the emotional content of the text."
)

CRISIS_SYSTEM_PROMPT = (
    "You are a mental health crisis detection specialist. Analyze text for crisis "
    "indicators including suicidal ideation, self-harm, severe depression, or immediate "
    "danger. Be thorough but careful not to over-diagnose."
)

DEFAULT_TECHNIQUES = "CBT, active listening, empathy"

SENTIMENT_TOOL = {
    "type": "function",
    "function": {
        "name": "sentiment_analysis",
        "description": "Analyze sentiment and emotions in text",
        "parameters": {
            "type": "object",
            "properties": {
                "sentiment": {
                    "type": "number",
                    "description": "Overall sentiment score from -1 (negative) to 1 (positive)",
                },
                "emotions": {
                    "type": "object",
                    "properties": {e: {"type": "number"} for e in EMOTION_VOCABULARY},
                    "description": "Emotion scores from 0 to 1",
                },
                "keywords": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Key emotional words or phrases",
                },
            },
            "required": ["sentiment", "emotions", "keywords"],
        },
    },
}

CRISIS_TOOL = {
    "type": "function",
    "function": {
        "name": "crisis_detection",
        "description": "Detect crisis indicators in text",
        "parameters": {
            "type": "object",
            "properties": {
                "isCrisis": {
                    "type": "boolean",
                    "description": "Whether crisis indicators are present",
                },
                "riskLevel": {
                    "type": "string",
                    "enum": [level.value for level in RiskLevel],
                    "description": "Overall risk level assessment",
                },
                "indicators": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Specific crisis indicators found",
                },
                "suggestedActions": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Recommended immediate actions",
                },
            },
            "required": ["isCrisis", "riskLevel", "indicators", "suggestedActions"],
        },
    },
}

REPLY_TOOL = {
    "type": "function",
    "function": {
        "name": "therapeutic_response",
        "description": "Generate a therapeutic response with techniques and follow-up questions",
        "parameters": {
            "type": "object",
            "properties": {
                "response": {
                    "type": "string",
                    "description": "The main therapeutic response to the user",
                },
                "suggestedTechniques": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Therapeutic techniques being applied",
                },
                "emotionalTone": {
                    "type": "string",
                    "description": "The emotional tone of the response (supportive, encouraging, calming, etc.)",
                },
                "followUpQuestions": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Follow-up questions to deepen the conversation",
                },
            },
            "required": ["response", "suggestedTechniques", "emotionalTone", "followUpQuestions"],
        },
    },
}


def build_system_prompt(mood: MoodContext) -> str:
    """応答生成用のシステムプロンプトを構築"""
    techniques = ", ".join(mood.techniques) or DEFAULT_TECHNIQUES
    prompt = (
        "You are a compassionate and professional AI therapeutic assistant. Your role is to "
        "provide supportive, empathetic responses while maintaining appropriate boundaries.\n\n"
        "Guidelines:\n"
        f"1. Use therapeutic techniques including: {techniques}\n"
        "2. Be empathetic and non-judgmental\n"
        "3. Ask open-ended questions to encourage self-reflection\n"
        "4. Validate feelings while encouraging healthy coping strategies\n"
        "5. Never provide medical diagnoses or medication advice\n"
        "6. If you detect crisis indicators, express concern and suggest professional help\n"
        "7. Maintain a warm, professional tone\n"
        "8. Focus on the user's strengths and resilience\n"
        f"9. Current user mood: {mood.current_mood or 'unknown'}\n\n"
        "Remember: You are not a replacement for professional therapy. Encourage users to "
        "seek professional help when appropriate."
    )
    if mood.is_crisis:
        prompt += (
            "\n\nIMPORTANT: This conversation has been flagged for crisis indicators. "
            "Prioritize the user's safety and point them to emergency services or a crisis hotline."
        )
    return prompt


class OpenAIAdapter(IAnalysisProvider, IResponseGenerator):
    """
    OpenAI AIアダプター

    OpenAI APIを使用して分析と応答生成を行う。
    GPT-4.1をデフォルトモデルとして使用。
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4.1",
        timeout: int = 60,
        base_url: str = "https://api.openai.com/v1",
        max_tokens: int = 2000,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def analyze_sentiment(self, text: str) -> SentimentResult:
        """
        感情を分析

        Raises:
            AnalysisUnavailable: API呼び出し失敗時
        """
        messages = [
            {"role": "system", "content": SENTIMENT_SYSTEM_PROMPT},
            {"role": "user", "content": f'Analyze the sentiment and emotions in this text: "{text}"'},
        ]
        try:
            args = await self._call_tool(messages, SENTIMENT_TOOL, temperature=0.3)
            return SentimentResult(
                score=float(args.get("sentiment", 0.0)),
                emotions={k: float(v) for k, v in (args.get("emotions") or {}).items()
                          if isinstance(v, (int, float))},
                keywords=[str(k) for k in args.get("keywords") or []],
            )
        except (ExternalServiceError, ValueError, TypeError) as e:
            raise AnalysisUnavailable(
                "Failed to analyze sentiment", service_name="openai", details={"cause": str(e)}
            ) from e

    async def detect_crisis(self, text: str) -> CrisisAssessment:
        """
        危機の兆候を検出

        Raises:
            AnalysisUnavailable: API呼び出し失敗時
        """
        messages = [
            {"role": "system", "content": CRISIS_SYSTEM_PROMPT},
            {"role": "user", "content": f'Analyze this text for crisis indicators: "{text}"'},
        ]
        try:
            args = await self._call_tool(messages, CRISIS_TOOL, temperature=0.1)
            assessment = CrisisAssessment(
                is_crisis=bool(args.get("isCrisis", False)),
                risk_level=RiskLevel(args.get("riskLevel", "low")),
                indicators=[str(i) for i in args.get("indicators") or []],
                suggested_actions=[str(a) for a in args.get("suggestedActions") or []],
            )
        except (ExternalServiceError, ValueError, TypeError) as e:
            raise AnalysisUnavailable(
                "Failed to detect crisis indicators", service_name="openai", details={"cause": str(e)}
            ) from e

        if assessment.is_crisis:
            logger.warning(
                "Crisis indicators detected",
                extra={"risk_level": assessment.risk_level.value,
                       "indicators": assessment.indicators},
            )
        return assessment

    async def generate_reply(
        self, history: list[ChatMessage], mood: MoodContext
    ) -> GeneratedReply:
        """
        応答を生成

        Raises:
            GenerationFailed: API呼び出し失敗時
        """
        messages = [{"role": "system", "content": build_system_prompt(mood)}]
        messages.extend({"role": m.role, "content": m.content} for m in history)

        try:
            args = await self._call_tool(
                messages, REPLY_TOOL, temperature=self.temperature, max_tokens=self.max_tokens
            )
            reply = GeneratedReply(
                text=str(args.get("response", "")),
                techniques=[str(t) for t in args.get("suggestedTechniques") or []],
                tone=str(args.get("emotionalTone") or "supportive"),
                follow_ups=[str(q) for q in args.get("followUpQuestions") or []],
            )
        except (ExternalServiceError, ValueError, TypeError) as e:
            raise GenerationFailed(service_name="openai", details={"cause": str(e)}) from e

        logger.info("Therapeutic response generated", extra={"techniques": reply.techniques})
        return reply

    async def _call_tool(
        self,
        messages: list[dict[str, str]],
        tool: dict[str, Any],
        temperature: float,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        """OpenAI APIを呼び出し、指定した関数の引数を返す"""
        name = tool["function"]["name"]
        request_body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "tools": [tool],
            "tool_choice": {"type": "function", "function": {"name": name}},
        }
        if max_tokens:
            request_body["max_tokens"] = max_tokens

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=request_body,
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ExternalServiceError(
                            f"OpenAI API error: HTTP {response.status} - {error_text}",
                            service_name="openai",
                            status_code=response.status,
                        )
                    response_data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExternalServiceError(f"OpenAI API request failed: {e}", service_name="openai") from e

        return self._extract_arguments(response_data, name)

    @staticmethod
    def _extract_arguments(response_data: dict[str, Any], name: str) -> dict[str, Any]:
        if not response_data.get("choices"):
            raise ExternalServiceError("No choices in OpenAI response", service_name="openai")

        message = response_data["choices"][0].get("message") or {}
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            if function.get("name") == name:
                try:
                    arguments = json.loads(function.get("arguments") or "{}")
                except json.JSONDecodeError as e:
                    raise ExternalServiceError(
                        "Invalid function arguments from OpenAI API", service_name="openai"
                    ) from e
                if not isinstance(arguments, dict):
                    raise ExternalServiceError(
                        "Invalid function arguments from OpenAI API", service_name="openai"
                    )
                return arguments

        raise ExternalServiceError("No function call in response", service_name="openai")

    @property
    def model_name(self) -> str:
        """使用中のモデル名"""
        return self.model
