from sqlalchemy import Column, DateTime, ForeignKey, Integer, UniqueConstraint
from app.database import Base
from app.utils.clock import utcnow


class Block(Base):
    """blocker_id refuses new messages from blocked_id. One direction only."""
    __tablename__ = "blocks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    blocker_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    blocked_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("blocker_id", "blocked_id", name="unique_block"),
    )
