"""
Domain Services
ビジネスロジックを担当するサービス層
"""

from .admission import AdmissionController, RateLimitDecision, SlidingWindowRateLimiter
from .analysis import KeywordAnalysisProvider
from .conversation import ConversationService
from .credentials import CredentialVerifier
from .pipeline import (
    ConversationSequencer,
    InboundMessage,
    MessagePipeline,
    PipelineResult,
    PipelineState,
)
from .registry import SessionRegistry
from .responses import TemplateResponseGenerator
from .router import SessionRouter

__all__ = [
    "AdmissionController",
    "RateLimitDecision",
    "SlidingWindowRateLimiter",
    "KeywordAnalysisProvider",
    "ConversationService",
    "CredentialVerifier",
    "ConversationSequencer",
    "InboundMessage",
    "MessagePipeline",
    "PipelineResult",
    "PipelineState",
    "SessionRegistry",
    "TemplateResponseGenerator",
    "SessionRouter",
]
