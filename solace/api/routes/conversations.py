"""
会話エンドポイント
開始・履歴・詳細・終了
"""

from fastapi import APIRouter, Depends, Query

from ...core.exceptions import SolaceException
from ...domain.models.conversation import Conversation, Message
from ...domain.models.user import Identity
from ...domain.services.conversation import ConversationService
from ..auth import get_current_identity
from ..dependencies import get_conversation_service
from ..errors import to_http_exception
from ..schemas import (
    ConversationDetailsResponse,
    ConversationListResponse,
    ConversationOverviewResponse,
    ConversationResponse,
    EndConversationRequest,
    MessageResponse,
    StartConversationRequest,
)

router = APIRouter(prefix="/v1/conversations", tags=["conversations"])


def _conversation_response(conversation: Conversation) -> ConversationResponse:
    return ConversationResponse(**conversation.to_dict())


def _message_response(message: Message) -> MessageResponse:
    return MessageResponse(**message.to_dict())


@router.post("", response_model=ConversationResponse, status_code=201)
async def start_conversation(
    body: StartConversationRequest,
    identity: Identity = Depends(get_current_identity),
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationResponse:
    """
    会話を開始

    アシスタントの挨拶メッセージが最初のメッセージとして追加される。
    """
    try:
        conversation = await service.start_conversation(
            user_id=identity.user_id,
            title=body.title,
            initial_mood=body.initial_mood,
        )
    except SolaceException as e:
        raise to_http_exception(e) from e
    return _conversation_response(conversation)


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_current_identity),
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationListResponse:
    """会話履歴（新しい順）"""
    try:
        overviews = await service.get_history(identity.user_id, limit=limit, offset=offset)
    except SolaceException as e:
        raise to_http_exception(e) from e

    return ConversationListResponse(
        conversations=[
            ConversationOverviewResponse(
                **o.conversation.to_dict(),
                message_count=o.message_count,
                last_message_at=o.last_message_at,
            )
            for o in overviews
        ],
        limit=limit,
        offset=offset,
    )


@router.get("/{conversation_id}", response_model=ConversationDetailsResponse)
async def get_conversation(
    conversation_id: str,
    identity: Identity = Depends(get_current_identity),
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationDetailsResponse:
    """会話の詳細と全メッセージ（順序付き）"""
    try:
        details = await service.get_details(identity.user_id, conversation_id)
    except SolaceException as e:
        raise to_http_exception(e) from e

    return ConversationDetailsResponse(
        conversation=_conversation_response(details.conversation),
        messages=[_message_response(m) for m in details.messages],
    )


@router.post("/{conversation_id}/end", response_model=ConversationResponse)
async def end_conversation(
    conversation_id: str,
    body: EndConversationRequest | None = None,
    identity: Identity = Depends(get_current_identity),
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationResponse:
    """会話を終了（メッセージは保持される）"""
    try:
        conversation = await service.end_conversation(
            user_id=identity.user_id,
            conversation_id=conversation_id,
            end_mood=body.end_mood if body else None,
        )
    except SolaceException as e:
        raise to_http_exception(e) from e
    return _conversation_response(conversation)
