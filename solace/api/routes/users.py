"""
ユーザー管理エンドポイント（管理者用）
"""

from fastapi import APIRouter, Depends

from ...core.exceptions import SolaceException
from ...core.logging import get_logger, log_audit_event
from ...domain.models.user import Identity
from ...domain.services.conversation import ConversationService
from ..auth import require_admin
from ..dependencies import get_conversation_service
from ..errors import to_http_exception
from ..schemas import DeactivateUserResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/users", tags=["users"])


@router.post("/{user_id}/deactivate", response_model=DeactivateUserResponse)
async def deactivate_user(
    user_id: str,
    admin: Identity = Depends(require_admin),
    service: ConversationService = Depends(get_conversation_service),
) -> DeactivateUserResponse:
    """
    ユーザーを非アクティブ化

    ライブセッションは即座に切断され、以後のハンドシェイクは失敗する。
    """
    try:
        closed = await service.deactivate_user(user_id)
    except SolaceException as e:
        raise to_http_exception(e) from e

    log_audit_event(
        logger, "deactivate_user", "success", user_id=admin.user_id, target_user_id=user_id
    )
    return DeactivateUserResponse(user_id=user_id, is_active=False, closed_connections=closed)
