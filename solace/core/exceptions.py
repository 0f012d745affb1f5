"""
カスタム例外クラス
階層的な例外処理によるエラーハンドリングの統一

接続元へはエラーイベント（WebSocket）または HTTP ステータスとして返す。
AnalysisUnavailable のみパイプライン内で吸収される。
"""

from typing import Any


class SolaceException(Exception):
    """Solaceアプリケーションのベース例外クラス"""

    # クライアントへ返す既定メッセージ
    public_message: str = "Something went wrong"

    def __init__(self, message: str | None = None, error_code: str | None = None,
                 details: dict[str, Any] | None = None):
        message = message or self.public_message
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(SolaceException):
    """設定関連のエラー"""


class AuthenticationFailed(SolaceException):
    """認証エラー

    原因（期限切れ・不正形式・無効ユーザー）は呼び出し元に区別させない。
    詳細は監査ログにのみ記録する。
    """

    public_message = "Authentication failed"

    def __init__(self, reason: str = "unknown", **kwargs):
        super().__init__(self.public_message, **kwargs)
        # 監査ログ用（クライアントには返さない）
        self.reason = reason


class AuthorizationDenied(SolaceException):
    """認可エラー（ルーム非参加・会話の所有者でない等）"""

    public_message = "Not authorized"


class RateLimited(SolaceException):
    """レート制限超過"""

    public_message = "Rate limit exceeded"

    def __init__(self, message: str | None = None, retry_after: int = 1,
                 limit: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.details["retry_after"] = retry_after
        if limit is not None:
            self.details["limit"] = limit


class ValidationFailed(SolaceException):
    """入力バリデーションエラー"""

    public_message = "Invalid input"

    def __init__(self, message: str | None = None, field: str | None = None,
                 value: Any | None = None, **kwargs):
        super().__init__(message, **kwargs)
        if field:
            self.details["field"] = field
        if value is not None:
            self.details["value"] = value


class NotFound(SolaceException):
    """対象（会話・メッセージ）が存在しない"""

    public_message = "Not found"


class ExternalServiceError(SolaceException):
    """外部サービス（OpenAI APIなど）関連のエラー"""

    def __init__(self, message: str | None = None, service_name: str = "unknown",
                 status_code: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.details["service_name"] = service_name
        if status_code:
            self.details["status_code"] = status_code


class AnalysisUnavailable(ExternalServiceError):
    """感情分析・危機検出が利用できない（劣化運転で継続）"""

    public_message = "Analysis unavailable"


class GenerationFailed(ExternalServiceError):
    """AI応答を生成できなかった"""

    public_message = "Failed to generate a reply"


class StoreFailure(SolaceException):
    """永続化層のエラー（常に表面化し、無限に再試行しない）"""

    public_message = "Failed to save your message"


class ServiceUnavailable(SolaceException):
    """サービス停止中（シャットダウン後の新規接続など）"""

    public_message = "Service is shutting down"
