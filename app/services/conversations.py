import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.errors import InvalidOperation, StoreError
from app.models.conversation import Conversation
from app.models.message import Message
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

# A lost insert race is retried this many times before giving up
MAX_CREATE_ATTEMPTS = 2


def canonical_pair(user_a: int, user_b: int) -> Tuple[int, int]:
    """Order two user ids so the smaller one comes first."""
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


class ConversationStore:
    """One conversation row per unordered user pair."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, conversation_id: int) -> Optional[Conversation]:
        result = await self.db.execute(select(Conversation).where(Conversation.id == conversation_id))
        return result.scalar_one_or_none()

    async def get_by_pair(self, user1_id: int, user2_id: int, lock: bool = False) -> Optional[Conversation]:
        stmt = select(Conversation).where(Conversation.user1_id == user1_id, Conversation.user2_id == user2_id)
        if lock:
            # Locking read sees rows committed after this transaction's snapshot
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self, user_a: int, user_b: int) -> Conversation:
        """Return the pair's conversation, inserting it if this is the first contact.

        The insert runs inside a savepoint and is committed by the caller together
        with the first message. When a concurrent request wins the insert, only the
        savepoint is rolled back, so objects already loaded in the session stay
        usable, and the winner's row is read back instead.
        """
        if user_a == user_b:
            raise InvalidOperation("Cannot create conversation with yourself")

        user1_id, user2_id = canonical_pair(user_a, user_b)

        for attempt in range(MAX_CREATE_ATTEMPTS):
            conversation = await self.get_by_pair(user1_id, user2_id, lock=attempt > 0)
            if conversation:
                return conversation

            conversation = Conversation(user1_id=user1_id, user2_id=user2_id)
            try:
                async with self.db.begin_nested():
                    self.db.add(conversation)
            except IntegrityError:
                logger.info(
                    f"Conversation for users {user1_id} and {user2_id} created concurrently "
                    f"(attempt {attempt + 1}/{MAX_CREATE_ATTEMPTS}), re-reading"
                )
                continue
            logger.info(f"Created conversation {conversation.id} for users {user1_id} and {user2_id}")
            return conversation

        conversation = await self.get_by_pair(user1_id, user2_id, lock=True)
        if conversation is None:
            raise StoreError("Could not create conversation")
        return conversation

    def touch(self, conversation: Conversation) -> None:
        conversation.last_message_at = utcnow()

    async def for_user(self, user_id: int) -> List[Conversation]:
        """Conversations involving user_id, most recently active first, with messages loaded."""
        stmt = (
            select(Conversation)
            .options(
                selectinload(Conversation.messages).selectinload(Message.sender),
                selectinload(Conversation.user1),
                selectinload(Conversation.user2),
            )
            .where(or_(Conversation.user1_id == user_id, Conversation.user2_id == user_id))
            .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
