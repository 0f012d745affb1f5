"""
API 認証・認可

- ベアラートークン認証
- レート制限
- セキュリティミドルウェア
"""

from __future__ import annotations

import time
from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from ..core.exceptions import AuthenticationFailed
from ..core.logging import get_logger
from ..domain.models.user import Identity
from .dependencies import get_admission_controller, get_verifier

# === ベアラートークン認証 ===

bearer_scheme = HTTPBearer(auto_error=False)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Authorization ヘッダーからトークンを取り出す"""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> Identity:
    """
    ベアラートークンを検証

    Returns:
        アクティブなアイデンティティ

    Raises:
        HTTPException: 認証失敗時（理由は区別しない）
    """
    token = credentials.credentials if credentials else None
    try:
        return await get_verifier().verify(token)
    except AuthenticationFailed as e:
        raise HTTPException(
            status_code=401,
            detail={"error": e.error_code, "message": e.message},
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    """管理者ロールを要求"""
    if not identity.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"error": "AuthorizationDenied", "message": "Admin role required"},
        )
    return identity


# === レート制限 ===


def get_client_key(request: Request) -> str:
    """
    一般レート制限のキーを取得

    有効なトークンがあればユーザー単位、なければ IP アドレス単位。
    """
    token = extract_bearer_token(request.headers.get("Authorization"))
    subject = get_verifier().peek_subject(token)
    if subject:
        return f"user:{subject}"

    # X-Forwarded-For ヘッダーを確認（プロキシ経由の場合）
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"

    client = request.client
    if client:
        return f"ip:{client.host}"

    return "ip:unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    レート制限ミドルウェア

    全リクエストに対してレート制限を適用。
    制限を超えた場合は 429 Too Many Requests を返す。
    WebSocket のハンドシェイクはルーター側で同じリミッターを使う。
    """

    # レート制限を適用しないパス
    EXEMPT_PATHS = {"/", "/v1/health", "/docs", "/openapi.json", "/redoc"}

    async def dispatch(self, request: Request, call_next: Callable):
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        decision = get_admission_controller().check_request(get_client_key(request))

        # レート制限が無効な場合はスキップ
        if decision is None:
            return await call_next(request)

        if not decision.allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "RateLimited",
                    "message": "Too many requests, please try again later.",
                    "retry_after": decision.retry_after,
                },
                headers=decision.headers(),
            )

        response = await call_next(request)

        # レート制限情報をヘッダーに追加
        response.headers.update(decision.headers())
        return response


# === セキュリティヘッダーミドルウェア ===


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    セキュリティヘッダーを追加

    OWASP 推奨のセキュリティヘッダーを設定。
    """

    # Swagger UI / ReDoc が使用する CDN
    DOCS_PATHS = {"/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        if request.url.path in self.DOCS_PATHS:
            response.headers["Content-Security-Policy"] = (
                "default-src 'self'; "
                "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
                "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
                "img-src 'self' data: https://cdn.jsdelivr.net https://fastapi.tiangolo.com;"
            )
        else:
            response.headers["Content-Security-Policy"] = "default-src 'self'"

        return response


# === リクエストログミドルウェア ===


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    リクエスト/レスポンスログミドルウェア

    全リクエストの開始・終了を構造化ログで記録。
    メッセージ本文やトークンは記録しない。
    """

    # ログを出力しないパス（ヘルスチェック等）
    SKIP_LOGGING_PATHS = {"/v1/health", "/docs", "/openapi.json", "/redoc"}

    async def dispatch(self, request: Request, call_next: Callable):
        if request.url.path in self.SKIP_LOGGING_PATHS:
            return await call_next(request)

        logger = get_logger("api.request")
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", f"req_{int(start_time * 1000)}")

        logger.info(
            f"Request: {request.method} {request.url.path}",
            extra={
                "event_type": "request_start",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
            },
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                extra={
                    "event_type": "request_error",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round(duration_ms, 2),
                    "error": str(e),
                },
                exc_info=True,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Response: {response.status_code} ({duration_ms:.2f}ms)",
            extra={
                "event_type": "request_complete",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

        response.headers["X-Request-ID"] = request_id
        return response
