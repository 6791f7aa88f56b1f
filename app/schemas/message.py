from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime

from app.schemas.user import UserSummary, to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )


class SendMessageRequest(CamelModel):
    receiver_id: Optional[int] = None
    content: Optional[str] = None


class RequestActionBody(CamelModel):
    action: str


class BlockRequest(CamelModel):
    user_id: Optional[int] = None


class MessageDto(CamelModel):
    id: int
    conversation_id: int
    sender_id: int
    receiver_id: int
    sender_username: Optional[str] = None
    content: str
    is_read: bool
    is_request: bool
    request_accepted: bool
    created_at: datetime


class ConversationDto(CamelModel):
    conversation_id: int
    other_user: UserSummary
    last_message: str
    last_message_at: datetime
    unread_count: int = 0


class MessageRequestDto(CamelModel):
    conversation_id: int
    sender: UserSummary
    last_message: str
    last_message_at: datetime


class MessageCountsDto(CamelModel):
    unread_count: int
    request_count: int
    poll_interval_seconds: int


class StatusMessage(BaseModel):
    message: str


