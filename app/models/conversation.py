from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship
from app.database import Base
from app.utils.clock import utcnow


class Conversation(Base):
    """Direct message conversation between two users."""
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_message_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    # Participants (unordered pair stored as user1_id < user2_id)
    user1_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user2_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        UniqueConstraint("user1_id", "user2_id", name="unique_conversation_pair"),
        CheckConstraint("user1_id < user2_id", name="ck_conversation_pair_order"),
    )

    user1 = relationship("User", foreign_keys=[user1_id], back_populates="conversations_as_user1")
    user2 = relationship("User", foreign_keys=[user2_id], back_populates="conversations_as_user2")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="[Message.created_at, Message.id]",
    )

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.user1_id, self.user2_id)

    def counterpart_of(self, user_id: int):
        return self.user2 if self.user1_id == user_id else self.user1
