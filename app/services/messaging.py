"""
Direct messaging with Instagram-style message requests.

A first message between strangers lands in the receiver's request inbox.
Messages are delivered directly once the two users follow each other, or once
the receiver has accepted a request in that conversation. A user who blocks
another stops receiving new messages from them; existing history is kept.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import InvalidOperation, ValidationError, store_operation
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.user import User
from app.services.block_registry import BlockRegistry
from app.services.conversations import ConversationStore
from app.services.follow_graph import FollowGraph
from app.services.messages import MessageLedger

logger = logging.getLogger(__name__)

ACCEPT = "accept"
DECLINE = "decline"


@dataclass
class ConversationSummary:
    conversation: Conversation
    counterpart: User
    last_message: Message
    unread_count: int = 0

    @property
    def last_message_at(self) -> datetime:
        return self.last_message.created_at


@dataclass
class MessageRequestSummary:
    conversation: Conversation
    sender: User
    last_message: Message

    @property
    def last_message_at(self) -> datetime:
        return self.last_message.created_at


class MessagingService:
    def __init__(self, db: AsyncSession, follows: Optional[FollowGraph] = None, blocks: Optional[BlockRegistry] = None):
        self.db = db
        self.follows = follows or FollowGraph(db)
        self.blocks = blocks or BlockRegistry(db)
        self.conversations = ConversationStore(db)
        self.ledger = MessageLedger(db)

    @store_operation
    async def send_message(self, sender_id: int, receiver_id: int, content: str) -> Optional[Message]:
        """Send a message, deciding whether it is direct or a pending request.

        Returns None when the receiver has blocked the sender. Nothing is
        written in that case, not even the conversation row.
        """
        if sender_id is None or receiver_id is None:
            raise ValidationError("Receiver ID and content are required")
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content cannot be empty")
        if sender_id == receiver_id:
            raise InvalidOperation("Cannot message yourself")

        if await self.blocks.is_blocked(receiver_id, sender_id):
            logger.info(f"User {sender_id} is blocked by {receiver_id}, message dropped")
            return None

        # One-way follow never bypasses the request inbox on its own
        sender_follows = await self.follows.is_following(sender_id, receiver_id)
        logger.debug(f"User {sender_id} follows {receiver_id}: {sender_follows}")

        conversation = await self.conversations.get_or_create(sender_id, receiver_id)
        has_accepted_history = await self.ledger.has_accepted_history(conversation.id)
        is_mutual = await self.follows.is_mutual(sender_id, receiver_id)
        is_direct = is_mutual or has_accepted_history

        logger.info(
            f"Message {sender_id} -> {receiver_id} in conversation {conversation.id}: "
            f"{'direct' if is_direct else 'request'} "
            f"(mutual={is_mutual}, accepted_history={has_accepted_history})"
        )

        message = self.ledger.append(conversation, sender_id, receiver_id, content, is_direct)
        self.conversations.touch(conversation)
        await self.db.commit()
        await self.db.refresh(message)
        return message

    @store_operation
    async def accept_request(self, conversation_id: int, user_id: int) -> bool:
        accepted = await self.ledger.accept_pending(conversation_id, user_id)
        await self.db.commit()
        if accepted:
            logger.info(f"User {user_id} accepted {accepted} request message(s) in conversation {conversation_id}")
        return accepted > 0

    @store_operation
    async def decline_request(self, conversation_id: int, user_id: int) -> bool:
        """Delete the user's pending inbound messages. The conversation row and
        anything the user sent themselves are kept."""
        deleted = await self.ledger.delete_pending(conversation_id, user_id)
        await self.db.commit()
        if deleted:
            logger.info(f"User {user_id} declined {deleted} request message(s) in conversation {conversation_id}")
        return deleted > 0

    async def respond_to_request(self, conversation_id: int, user_id: int, action: str) -> bool:
        if action == ACCEPT:
            return await self.accept_request(conversation_id, user_id)
        if action == DECLINE:
            return await self.decline_request(conversation_id, user_id)
        return False

    @store_operation
    async def list_conversations(self, user_id: int) -> List[ConversationSummary]:
        """Chats whose latest message is visible to the user, most recent first."""
        unread = await self.ledger.unread_by_conversation(user_id)

        out = []
        for conversation in await self.conversations.for_user(user_id):
            if not conversation.messages:
                continue
            latest = conversation.messages[-1]
            if not latest.is_visible_to(user_id):
                continue
            out.append(
                ConversationSummary(
                    conversation=conversation,
                    counterpart=conversation.counterpart_of(user_id),
                    last_message=latest,
                    unread_count=unread.get(conversation.id, 0),
                )
            )
        return out

    @store_operation
    async def list_message_requests(self, user_id: int) -> List[MessageRequestSummary]:
        """One entry per conversation whose latest message is a pending request to the user."""
        out = []
        for conversation in await self.conversations.for_user(user_id):
            if not conversation.messages:
                continue
            latest = conversation.messages[-1]
            if latest.receiver_id == user_id and latest.is_pending_request:
                out.append(MessageRequestSummary(conversation=conversation, sender=latest.sender, last_message=latest))

        out.sort(key=lambda r: (r.last_message.created_at, r.last_message.id), reverse=True)
        return out

    @store_operation
    async def get_messages(self, conversation_id: int, user_id: int) -> List[Message]:
        """Messages visible to the user, oldest first; marks inbound ones read.

        Non-participants get an empty list. Returned rows carry the read state
        from before this call.
        """
        conversation = await self.conversations.get(conversation_id)
        if conversation is None or not conversation.has_participant(user_id):
            return []

        messages = await self.ledger.visible_in(conversation_id, user_id)
        marked = await self.ledger.mark_read(conversation_id, user_id)
        await self.db.commit()
        if marked:
            logger.debug(f"Marked {marked} message(s) read for user {user_id} in conversation {conversation_id}")
        return messages

    async def block_user(self, blocker_id: int, blocked_id: int) -> None:
        if blocker_id is None or blocked_id is None:
            raise ValidationError("User ID is required")
        await self.blocks.block(blocker_id, blocked_id)
        logger.info(f"User {blocker_id} blocked {blocked_id}")

    async def unblock_user(self, blocker_id: int, blocked_id: int) -> None:
        if blocker_id is None or blocked_id is None:
            raise ValidationError("User ID is required")
        await self.blocks.unblock(blocker_id, blocked_id)
        logger.info(f"User {blocker_id} unblocked {blocked_id}")

    @store_operation
    async def get_unread_count(self, user_id: int) -> int:
        return await self.ledger.unread_count(user_id)

    @store_operation
    async def get_request_count(self, user_id: int) -> int:
        return await self.ledger.request_count(user_id)
