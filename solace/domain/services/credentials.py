"""
クレデンシャル検証サービス
ベアラートークン → アクティブな Identity

- トークンは cryptography の Fernet トークン（HMAC 署名 + 発行時刻）
- 署名と有効期限を検証した後、毎回ユーザーテーブルで存在とアクティブ状態を再確認
- 失敗理由は呼び出し元に区別させず、監査ログにのみ記録
"""

import base64
import hashlib
import json
import time
from collections.abc import Callable

from cryptography.fernet import Fernet, InvalidToken

from ...core.exceptions import AuthenticationFailed
from ...core.logging import get_logger, log_audit_event
from ..models.user import Identity, UserRole
from ..ports.storage_port import IConversationStore

logger = get_logger("auth")


def derive_fernet_key(secret: str) -> bytes:
    """
    シークレットから Fernet キーを導出

    Args:
        secret: 設定されたシークレット文字列

    Returns:
        bytes: urlsafe base64 エンコードされた 32 バイトキー
    """
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class CredentialVerifier:
    """
    クレデンシャル検証

    読み取り専用。ストアへの書き込みは行わない。
    """

    def __init__(
        self,
        store: IConversationStore,
        secret_key: str,
        ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._fernet = Fernet(derive_fernet_key(secret_key))
        self._ttl = ttl_seconds
        self._clock = clock

    def issue_token(self, user_id: str, role: UserRole = UserRole.USER) -> str:
        """
        トークンを発行

        Args:
            user_id: ユーザーID
            role: ロール

        Returns:
            str: ベアラートークン
        """
        payload = json.dumps({"sub": user_id, "role": role.value}).encode("utf-8")
        return self._fernet.encrypt_at_time(payload, int(self._clock())).decode("utf-8")

    def peek_subject(self, token: str | None) -> str | None:
        """
        署名済みトークンからユーザーIDを取り出す（ストア照会なし）

        一般レート制限のキーに使う。無効なトークンは None。
        """
        if not token:
            return None
        try:
            payload = self._decrypt(token)
        except AuthenticationFailed:
            return None
        return payload.get("sub")

    async def verify(self, token: str | None) -> Identity:
        """
        トークンを検証

        Args:
            token: ベアラートークン

        Returns:
            Identity: アクティブなアイデンティティ

        Raises:
            AuthenticationFailed: 理由を問わず検証失敗時
        """
        if not token:
            self._reject("missing")

        try:
            payload = self._decrypt(token)
        except AuthenticationFailed as e:
            log_audit_event(logger, "authenticate", "failure", reason=e.reason)
            raise

        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            self._reject("malformed")

        user = await self._store.get_user(user_id)
        if user is None:
            self._reject("unknown_user", user_id)
        if not user.is_active:
            self._reject("inactive", user_id)

        log_audit_event(logger, "authenticate", "success", user_id=user_id)
        return user.to_identity()

    def _decrypt(self, token: str) -> dict:
        """署名と有効期限を検証してペイロードを返す（ログは呼び出し側）"""
        try:
            raw = token.encode("utf-8")
            issued_at = self._fernet.extract_timestamp(raw)
            payload = json.loads(self._fernet.decrypt(raw))
        except (InvalidToken, ValueError, TypeError):
            raise AuthenticationFailed(reason="malformed")

        if self._clock() - issued_at > self._ttl:
            raise AuthenticationFailed(reason="expired")
        if not isinstance(payload, dict):
            raise AuthenticationFailed(reason="malformed")
        return payload

    def _reject(self, reason: str, user_id: str | None = None):
        log_audit_event(logger, "authenticate", "failure", user_id=user_id, reason=reason)
        raise AuthenticationFailed(reason=reason)
