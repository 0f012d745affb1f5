"""
ユーザーモデル
認証済みアイデンティティとユーザーテーブルの行
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class UserRole(Enum):
    """ユーザーロール"""
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class Identity:
    """
    認証済みアイデンティティ

    セッション中は不変。非アクティブになった場合はセッションを破棄する。
    """
    user_id: str
    role: UserRole = UserRole.USER
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass
class UserAccount:
    """ユーザーテーブルの1行（認証情報の保存は外部の責務）"""
    user_id: str
    email: str
    username: str
    role: UserRole = UserRole.USER
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.now)

    def to_identity(self) -> Identity:
        """アイデンティティに変換"""
        return Identity(user_id=self.user_id, role=self.role, is_active=self.is_active)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "username": self.username,
            "role": self.role.value,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserAccount":
        return cls(
            user_id=data["user_id"],
            email=data["email"],
            username=data["username"],
            role=UserRole(data.get("role", "user")),
            is_active=data.get("is_active", True),
            created_at=datetime.fromisoformat(data.get("created_at", datetime.now().isoformat())),
        )
