"""
統合設定管理

pydantic-settings を使用した型安全な設定管理
- 環境変数から自動読み込み
- バリデーション付き
- デフォルト値対応
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthSettings(BaseSettings):
    """認証設定"""

    model_config = SettingsConfigDict(env_prefix="SOLACE_AUTH_")

    secret_key: str = Field(
        default="change-me-in-production",
        description="トークン署名用シークレット（Fernet キーの導出元）",
    )
    token_ttl_seconds: int = Field(default=7 * 24 * 3600, description="トークン有効期限(秒)")

    @field_validator("token_ttl_seconds")
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        """有効期限は正の値のみ"""
        if v <= 0:
            raise ValueError("token_ttl_seconds must be positive")
        return v


class AISettings(BaseSettings):
    """AI プロバイダー設定"""

    model_config = SettingsConfigDict(env_prefix="")

    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY", description="OpenAI API キー")
    openai_model: str = Field(default="gpt-4.1", alias="OPENAI_MODEL", description="OpenAI モデル")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1", alias="OPENAI_BASE_URL", description="OpenAI API URL"
    )
    openai_max_tokens: int = Field(default=2000, alias="OPENAI_MAX_TOKENS", description="最大トークン数")
    openai_temperature: float = Field(default=0.7, alias="OPENAI_TEMPERATURE", description="生成温度")

    # タイムアウト（パイプラインが無期限に待たないように）
    analysis_timeout: float = Field(default=10.0, alias="SOLACE_ANALYSIS_TIMEOUT", description="感情・危機分析タイムアウト(秒)")
    generation_timeout: float = Field(default=30.0, alias="SOLACE_GENERATION_TIMEOUT", description="応答生成タイムアウト(秒)")

    @property
    def is_configured(self) -> bool:
        """OpenAI が設定済みか"""
        return bool(self.openai_api_key)


class RateLimitSettings(BaseSettings):
    """レート制限設定"""

    model_config = SettingsConfigDict(env_prefix="SOLACE_RATE_LIMIT_")

    enabled: bool = Field(default=True, description="レート制限を有効化")

    # 一般 API（ユーザーまたは IP 単位）
    api_requests: int = Field(default=100, description="一般 API: リクエスト数")
    api_window: int = Field(default=15 * 60, description="一般 API: ウィンドウ(秒)")

    # メッセージ送信（ユーザー単位、より厳しい）
    message_requests: int = Field(default=30, description="メッセージ送信: 件数")
    message_window: int = Field(default=60, description="メッセージ送信: ウィンドウ(秒)")


class SessionSettings(BaseSettings):
    """リアルタイムセッション設定"""

    model_config = SettingsConfigDict(env_prefix="SOLACE_SESSION_")

    history_window: int = Field(default=10, description="応答生成に使う直近メッセージ数")
    replay_limit: int = Field(default=50, description="入室時に再送するメッセージ数")
    max_message_length: int = Field(default=5000, description="メッセージ最大文字数")
    crisis_flag_retries: int = Field(default=2, description="危機フラグ書き込みの再試行回数")


class SolaceSettings(BaseSettings):
    """Solace 全体設定"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 基本設定
    data_dir: str = Field(default="data", alias="SOLACE_DATA_DIR", description="データ保存ディレクトリ")
    storage_backend: str = Field(
        default="file", alias="SOLACE_STORAGE", description="ストレージ種別 (file|memory)"
    )
    debug: bool = Field(default=False, alias="SOLACE_DEBUG", description="デバッグモード")
    log_level: str = Field(default="INFO", alias="SOLACE_LOG_LEVEL", description="ログレベル")

    # サブ設定
    auth: AuthSettings = Field(default_factory=AuthSettings)
    ai: AISettings = Field(default_factory=AISettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)

    # API サーバー設定
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API サーバーホスト")
    api_port: int = Field(default=3001, alias="API_PORT", description="API サーバーポート")
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="SOLACE_CORS_ORIGINS",
        description="許可するオリジン（カンマ区切り）",
    )

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        if v not in ("file", "memory"):
            raise ValueError("SOLACE_STORAGE must be 'file' or 'memory'")
        return v

    @property
    def cors_origins(self) -> List[str]:
        """許可オリジンリストを取得"""
        return [o.strip() for o in self.cors_origins_str.split(",") if o.strip()]

    @classmethod
    def load(cls) -> "SolaceSettings":
        """設定をロード（サブ設定も含む）"""
        return cls(
            auth=AuthSettings(),
            ai=AISettings(),
            rate_limit=RateLimitSettings(),
            session=SessionSettings(),
        )


@lru_cache()
def get_settings() -> SolaceSettings:
    """
    設定を取得（キャッシュ付き）

    使用例:
        settings = get_settings()
        print(settings.ai.openai_model)
        print(settings.rate_limit.message_requests)
    """
    return SolaceSettings.load()


def reload_settings() -> SolaceSettings:
    """設定を再読み込み"""
    get_settings.cache_clear()
    return get_settings()
