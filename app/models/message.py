from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import relationship
from app.database import Base
from app.utils.clock import utcnow


class Message(Base):
    """Message in a conversation, either direct or a pending request."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    is_request = Column(Boolean, default=False, nullable=False)
    request_accepted = Column(Boolean, default=False, nullable=False)

    # Foreign keys
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (
        Index("idx_messages_is_request", "is_request", "request_accepted"),
        CheckConstraint("sender_id <> receiver_id", name="ck_message_not_self"),
    )

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship("User", foreign_keys=[sender_id], back_populates="sent_messages")
    receiver = relationship("User", foreign_keys=[receiver_id])

    @property
    def is_pending_request(self) -> bool:
        return self.is_request and not self.request_accepted

    def is_visible_to(self, user_id: int) -> bool:
        # Pending requests are shown to their receiver only
        return not self.is_request or self.request_accepted or self.receiver_id == user_id
