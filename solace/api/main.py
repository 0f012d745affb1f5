"""
Solace API - メインアプリケーション
リアルタイム会話セッションエンジンの FastAPI アプリケーション
"""

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from .. import __version__
from ..core.config import get_settings
from ..core.logging import SolaceLogger, get_logger
from ..domain.services.registry import SessionRegistry
from .auth import RateLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from .dependencies import (
    build_session_router,
    get_conversation_service,
    get_response_generator,
    get_store,
)
from .routes import conversations_router, users_router, websocket_router
from .schemas import APIInfoResponse, HealthResponse

logger = get_logger("api.main")

API_VERSION = __version__


class APIVersionMiddleware(BaseHTTPMiddleware):
    """APIバージョンをレスポンスヘッダーに追加"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-API-Version"] = API_VERSION
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    アプリケーションライフサイクル

    セッションレジストリとルーターはここで生成し、終了時に破棄する。
    """
    settings = get_settings()

    logger.info(f"Solace API v{API_VERSION} starting...")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Storage backend: {settings.storage_backend}")
    logger.info(f"Rate limiting: {settings.rate_limit.enabled}")

    if not settings.ai.is_configured:
        logger.warning("OPENAI_API_KEY not set - using keyword analysis and template replies")
    if settings.auth.secret_key == "change-me-in-production":
        logger.warning("SOLACE_AUTH_SECRET_KEY is the default value - set it in production")

    registry = SessionRegistry(get_store())
    get_conversation_service().attach_registry(registry)
    app.state.registry = registry
    app.state.router = build_session_router(registry)

    yield

    logger.info("Solace API shutting down...")
    await app.state.router.shutdown()


def create_app() -> FastAPI:
    """FastAPIアプリケーションを作成"""
    settings = get_settings()
    SolaceLogger.configure(settings.log_level)

    application = FastAPI(
        title="Solace API",
        description=(
            "AIによるリアルタイム会話サポート\n\n"
            "**特徴:**\n"
            "- 全メッセージの感情分析と危機検出\n"
            "- WebSocket による会話ルームへのリアルタイム配信\n"
            "- ユーザー単位のレート制限\n"
        ),
        version=API_VERSION,
        lifespan=lifespan,
    )

    # ミドルウェア（実行順序: 下から上）
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    application.add_middleware(SecurityHeadersMiddleware)
    application.add_middleware(RateLimitMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(APIVersionMiddleware)

    # ルーター登録
    application.include_router(conversations_router)
    application.include_router(users_router)
    application.include_router(websocket_router)

    @application.get("/", response_model=APIInfoResponse)
    async def root() -> APIInfoResponse:
        """API情報を取得"""
        return APIInfoResponse(
            service="Solace - AI conversation support API",
            version=API_VERSION,
            description="Real-time conversation sessions with sentiment and crisis screening",
            features=[
                "リアルタイム会話セッション",
                "感情分析",
                "危機検出",
                "会話履歴",
            ],
        )

    @application.get("/v1/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        """ヘルスチェック"""
        components = {
            "storage": True,
            "response_generator": True,
        }

        try:
            await get_store().get_user("__health__")
        except Exception as e:
            logger.warning("Health check: storage unavailable", extra={"error": str(e)})
            components["storage"] = False

        try:
            get_response_generator()
        except Exception as e:
            logger.warning("Health check: generator unavailable", extra={"error": str(e)})
            components["response_generator"] = False

        registry = getattr(request.app.state, "registry", None)
        status = "healthy" if all(components.values()) else "degraded"

        return HealthResponse(
            status=status,
            timestamp=datetime.now(),
            version=API_VERSION,
            components=components,
            connections=registry.connection_count if registry else 0,
        )

    return application


# デフォルトアプリケーションインスタンス
app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
