from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.config import Settings
from app.database import get_db
from app.dependencies import get_app_settings, get_current_user, get_messaging_service
from app.models.message import Message
from app.models.user import User
from app.schemas.message import (
    BlockRequest,
    ConversationDto,
    MessageCountsDto,
    MessageDto,
    MessageRequestDto,
    RequestActionBody,
    SendMessageRequest,
    StatusMessage,
)
from app.schemas.user import UserSummary
from app.services.messaging import ACCEPT, DECLINE, MessagingService

router = APIRouter()

BLOCKED_DETAIL = "Cannot send message. You may be blocked."


def _make_message_dto(msg: Message, sender: Optional[User] = None) -> MessageDto:
    sender = sender or msg.sender
    return MessageDto(
        id=msg.id,
        conversation_id=msg.conversation_id,
        sender_id=msg.sender_id,
        receiver_id=msg.receiver_id,
        sender_username=sender.username if sender else None,
        content=msg.content,
        is_read=msg.is_read,
        is_request=msg.is_request,
        request_accepted=msg.request_accepted,
        created_at=msg.created_at,
    )


async def _get_user_or_404(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("", response_model=List[ConversationDto])
async def get_conversations(
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
):
    summaries = await messaging.list_conversations(current_user.id)
    return [
        ConversationDto(
            conversation_id=s.conversation.id,
            other_user=UserSummary.model_validate(s.counterpart),
            last_message=s.last_message.content,
            last_message_at=s.last_message_at,
            unread_count=s.unread_count,
        )
        for s in summaries
    ]


@router.post("", response_model=MessageDto, status_code=status.HTTP_201_CREATED)
async def send_message(
    body: SendMessageRequest,
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
    db: AsyncSession = Depends(get_db),
):
    if body.receiver_id is None:
        raise HTTPException(status_code=400, detail="Receiver ID and content are required")

    receiver = await _get_user_or_404(db, body.receiver_id)

    msg = await messaging.send_message(current_user.id, receiver.id, body.content)
    if msg is None:
        raise HTTPException(status_code=403, detail=BLOCKED_DETAIL)

    return _make_message_dto(msg, sender=current_user)


@router.get("/requests", response_model=List[MessageRequestDto])
async def get_message_requests(
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
):
    requests = await messaging.list_message_requests(current_user.id)
    return [
        MessageRequestDto(
            conversation_id=r.conversation.id,
            sender=UserSummary.model_validate(r.sender),
            last_message=r.last_message.content,
            last_message_at=r.last_message_at,
        )
        for r in requests
    ]


@router.get("/counts", response_model=MessageCountsDto)
async def get_message_counts(
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
    settings: Settings = Depends(get_app_settings),
):
    """Badge counts for the navbar. Clients re-fetch these every poll interval."""
    return MessageCountsDto(
        unread_count=await messaging.get_unread_count(current_user.id),
        request_count=await messaging.get_request_count(current_user.id),
        poll_interval_seconds=settings.poll_interval_seconds,
    )


@router.post("/block", response_model=StatusMessage)
async def block_user(
    body: BlockRequest,
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
    db: AsyncSession = Depends(get_db),
):
    if body.user_id is None:
        raise HTTPException(status_code=400, detail="User ID is required")

    blocked = await _get_user_or_404(db, body.user_id)
    await messaging.block_user(current_user.id, blocked.id)
    return StatusMessage(message="User blocked successfully")


@router.delete("/block", response_model=StatusMessage)
async def unblock_user(
    user_id: Optional[int] = Query(default=None, alias="userId"),
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
):
    if user_id is None:
        raise HTTPException(status_code=400, detail="User ID is required")

    await messaging.unblock_user(current_user.id, user_id)
    return StatusMessage(message="User unblocked successfully")


@router.get("/{conversation_id}", response_model=List[MessageDto])
async def get_messages(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
):
    messages = await messaging.get_messages(conversation_id, current_user.id)
    return [_make_message_dto(m) for m in messages]


@router.put("/{conversation_id}", response_model=StatusMessage)
async def respond_to_request(
    conversation_id: int,
    body: RequestActionBody,
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
):
    """Accept or decline the pending requests the current user received in a conversation."""
    if await messaging.respond_to_request(conversation_id, current_user.id, body.action):
        if body.action == ACCEPT:
            return StatusMessage(message="Request accepted")
        if body.action == DECLINE:
            return StatusMessage(message="Request declined")

    raise HTTPException(status_code=400, detail="Invalid action")
