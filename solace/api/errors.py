"""
API エラー変換
SolaceException を HTTP ステータスに対応付ける
"""

from fastapi import HTTPException

from ..core.exceptions import (
    AuthenticationFailed,
    AuthorizationDenied,
    GenerationFailed,
    NotFound,
    RateLimited,
    ServiceUnavailable,
    SolaceException,
    StoreFailure,
    ValidationFailed,
)

# 上から順に isinstance で判定
STATUS_CODES: list[tuple[type[SolaceException], int]] = [
    (AuthenticationFailed, 401),
    (AuthorizationDenied, 403),
    (NotFound, 404),
    (ValidationFailed, 400),
    (RateLimited, 429),
    (StoreFailure, 503),
    (ServiceUnavailable, 503),
    (GenerationFailed, 502),
]


def status_code_for(error: SolaceException) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(error, exc_type):
            return status_code
    return 500


def to_http_exception(error: SolaceException) -> HTTPException:
    """
    HTTPException に変換

    detail にはクライアント向けのメッセージとエラーコードのみを含める。
    """
    headers = None
    if isinstance(error, RateLimited):
        headers = {"Retry-After": str(error.retry_after)}
    elif isinstance(error, AuthenticationFailed):
        headers = {"WWW-Authenticate": "Bearer"}

    return HTTPException(
        status_code=status_code_for(error),
        detail={"error": error.error_code, "message": error.message},
        headers=headers,
    )
