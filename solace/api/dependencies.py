"""
API Dependencies
依存性注入の設定

ストア・AIプロバイダー等はモジュール単位のシングルトン。
セッションレジストリとルーターは lifespan で生成し app.state に保持する。
"""

from typing import Optional

from fastapi import Request, WebSocket

from ..adapters.ai.openai import OpenAIAdapter
from ..adapters.storage.file import FileConversationStore
from ..adapters.storage.memory import InMemoryConversationStore
from ..core.config import get_settings
from ..domain.ports.ai_port import IAnalysisProvider, IResponseGenerator
from ..domain.ports.storage_port import IConversationStore
from ..domain.services.admission import AdmissionController
from ..domain.services.analysis import KeywordAnalysisProvider
from ..domain.services.conversation import ConversationService
from ..domain.services.credentials import CredentialVerifier
from ..domain.services.pipeline import MessagePipeline
from ..domain.services.registry import SessionRegistry
from ..domain.services.responses import TemplateResponseGenerator
from ..domain.services.router import SessionRouter

# === シングルトンインスタンス ===

_store: Optional[IConversationStore] = None
_openai: Optional[OpenAIAdapter] = None
_analysis_provider: Optional[IAnalysisProvider] = None
_response_generator: Optional[IResponseGenerator] = None
_verifier: Optional[CredentialVerifier] = None
_admission: Optional[AdmissionController] = None
_conversation_service: Optional[ConversationService] = None


# === 依存性取得関数 ===

def get_store() -> IConversationStore:
    """会話ストアを取得

    環境変数 SOLACE_STORAGE=memory でインメモリストアを使用
    """
    global _store
    if _store is None:
        settings = get_settings()
        if settings.storage_backend == "memory":
            _store = InMemoryConversationStore()
        else:
            _store = FileConversationStore(data_dir=settings.data_dir)
    return _store


def _get_openai() -> OpenAIAdapter:
    global _openai
    if _openai is None:
        ai = get_settings().ai
        _openai = OpenAIAdapter(
            api_key=ai.openai_api_key,
            model=ai.openai_model,
            base_url=ai.openai_base_url,
            max_tokens=ai.openai_max_tokens,
            temperature=ai.openai_temperature,
        )
    return _openai


def get_analysis_provider() -> IAnalysisProvider:
    """分析プロバイダーを取得（APIキー未設定時はキーワード分析）"""
    global _analysis_provider
    if _analysis_provider is None:
        if get_settings().ai.is_configured:
            _analysis_provider = _get_openai()
        else:
            _analysis_provider = KeywordAnalysisProvider()
    return _analysis_provider


def get_response_generator() -> IResponseGenerator:
    """応答生成器を取得（APIキー未設定時はテンプレート応答）"""
    global _response_generator
    if _response_generator is None:
        if get_settings().ai.is_configured:
            _response_generator = _get_openai()
        else:
            _response_generator = TemplateResponseGenerator()
    return _response_generator


def get_verifier() -> CredentialVerifier:
    """クレデンシャル検証サービスを取得"""
    global _verifier
    if _verifier is None:
        auth = get_settings().auth
        _verifier = CredentialVerifier(
            store=get_store(),
            secret_key=auth.secret_key,
            ttl_seconds=auth.token_ttl_seconds,
        )
    return _verifier


def get_admission_controller() -> AdmissionController:
    """アドミッション制御を取得"""
    global _admission
    if _admission is None:
        _admission = AdmissionController.from_settings(get_settings().rate_limit)
    return _admission


def get_conversation_service() -> ConversationService:
    """会話管理サービスを取得"""
    global _conversation_service
    if _conversation_service is None:
        _conversation_service = ConversationService(store=get_store())
    return _conversation_service


def build_session_router(registry: SessionRegistry) -> SessionRouter:
    """レジストリに結び付いたルーターとパイプラインを構築"""
    settings = get_settings()
    pipeline = MessagePipeline(
        store=get_store(),
        analysis=get_analysis_provider(),
        generator=get_response_generator(),
        registry=registry,
        analysis_timeout=settings.ai.analysis_timeout,
        generation_timeout=settings.ai.generation_timeout,
        history_window=settings.session.history_window,
        max_message_length=settings.session.max_message_length,
        crisis_flag_retries=settings.session.crisis_flag_retries,
    )
    return SessionRouter(
        verifier=get_verifier(),
        registry=registry,
        pipeline=pipeline,
        admission=get_admission_controller(),
        store=get_store(),
        replay_limit=settings.session.replay_limit,
    )


def get_registry(request: Request) -> SessionRegistry:
    """lifespan で生成されたレジストリを取得"""
    return request.app.state.registry


def get_session_router(websocket: WebSocket) -> SessionRouter:
    """lifespan で生成されたルーターを取得"""
    return websocket.app.state.router


# === テスト用リセット関数 ===

def reset_dependencies() -> None:
    """依存性をリセット（テスト用）"""
    global _store, _openai, _analysis_provider, _response_generator
    global _verifier, _admission, _conversation_service
    _store = None
    _openai = None
    _analysis_provider = None
    _response_generator = None
    _verifier = None
    _admission = None
    _conversation_service = None


def set_store(store: IConversationStore) -> None:
    """ストアを設定（テスト用）"""
    global _store
    _store = store


def set_analysis_provider(provider: IAnalysisProvider) -> None:
    """分析プロバイダーを設定（テスト用）"""
    global _analysis_provider
    _analysis_provider = provider


def set_response_generator(generator: IResponseGenerator) -> None:
    """応答生成器を設定（テスト用）"""
    global _response_generator
    _response_generator = generator


def set_admission_controller(admission: AdmissionController) -> None:
    """アドミッション制御を設定（テスト用）"""
    global _admission
    _admission = admission
