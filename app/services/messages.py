import logging
from typing import Dict, List

from sqlalchemy import select, update, delete, distinct, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.conversation import Conversation
from app.models.message import Message

logger = logging.getLogger(__name__)


def visible_to(user_id: int):
    """SQL form of Message.is_visible_to: pending requests only show to their receiver."""
    return or_(
        Message.is_request.is_(False),
        Message.request_accepted.is_(True),
        Message.receiver_id == user_id,
    )


def _counts_as_unread():
    # Pending requests live in the requests tab and are not counted
    return or_(Message.is_request.is_(False), Message.request_accepted.is_(True))


class MessageLedger:
    """Append-only message storage plus the request/read state updates on it."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def append(self, conversation: Conversation, sender_id: int, receiver_id: int, content: str, is_direct: bool) -> Message:
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            is_read=False,
            is_request=not is_direct,
            request_accepted=is_direct,
        )
        self.db.add(message)
        return message

    async def has_accepted_history(self, conversation_id: int) -> bool:
        stmt = (
            select(Message.id)
            .where(Message.conversation_id == conversation_id, Message.request_accepted.is_(True))
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def accept_pending(self, conversation_id: int, receiver_id: int) -> int:
        stmt = (
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.receiver_id == receiver_id,
                Message.is_request.is_(True),
            )
            .values(request_accepted=True)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    async def delete_pending(self, conversation_id: int, receiver_id: int) -> int:
        stmt = (
            delete(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.receiver_id == receiver_id,
                Message.is_request.is_(True),
                Message.request_accepted.is_(False),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    async def visible_in(self, conversation_id: int, user_id: int) -> List[Message]:
        stmt = (
            select(Message)
            .options(selectinload(Message.sender))
            .where(Message.conversation_id == conversation_id, visible_to(user_id))
            .order_by(Message.created_at.asc(), Message.id.asc())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def mark_read(self, conversation_id: int, receiver_id: int) -> int:
        # Rows already loaded keep the state they had when they were read
        stmt = (
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.receiver_id == receiver_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    async def unread_count(self, receiver_id: int) -> int:
        stmt = select(func.count(Message.id)).where(
            Message.receiver_id == receiver_id,
            Message.is_read.is_(False),
            _counts_as_unread(),
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def unread_by_conversation(self, receiver_id: int) -> Dict[int, int]:
        stmt = (
            select(Message.conversation_id, func.count(Message.id))
            .where(
                Message.receiver_id == receiver_id,
                Message.is_read.is_(False),
                _counts_as_unread(),
            )
            .group_by(Message.conversation_id)
        )
        result = await self.db.execute(stmt)
        return {conversation_id: count for conversation_id, count in result.all()}

    async def request_count(self, receiver_id: int) -> int:
        stmt = select(func.count(distinct(Message.conversation_id))).where(
            and_(
                Message.receiver_id == receiver_id,
                Message.is_request.is_(True),
                Message.request_accepted.is_(False),
            )
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()
