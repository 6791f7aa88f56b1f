from app.schemas.user import UserSummary, FollowToggleResponse, FollowStatusResponse
from app.schemas.message import (
    SendMessageRequest,
    RequestActionBody,
    BlockRequest,
    MessageDto,
    ConversationDto,
    MessageRequestDto,
    MessageCountsDto,
    StatusMessage,
)
from app.schemas.auth import TokenData

__all__ = [
    "UserSummary", "FollowToggleResponse", "FollowStatusResponse",
    "SendMessageRequest", "RequestActionBody", "BlockRequest",
    "MessageDto", "ConversationDto", "MessageRequestDto", "MessageCountsDto", "StatusMessage",
    "TokenData",
]
