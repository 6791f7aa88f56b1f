import logging

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import InvalidOperation, store_operation
from app.models.block import Block

logger = logging.getLogger(__name__)


class BlockRegistry:
    def __init__(self, db: AsyncSession):
        self.db = db

    @store_operation
    async def is_blocked(self, blocker_id: int, blocked_id: int, lock: bool = False) -> bool:
        """True when blocker_id has blocked blocked_id (one direction only)."""
        stmt = select(Block.id).where(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id).limit(1)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @store_operation
    async def block(self, blocker_id: int, blocked_id: int) -> None:
        if blocker_id == blocked_id:
            raise InvalidOperation("Cannot block yourself")
        if await self.is_blocked(blocker_id, blocked_id):
            return
        try:
            async with self.db.begin_nested():
                self.db.add(Block(blocker_id=blocker_id, blocked_id=blocked_id))
        except IntegrityError:
            # Only a concurrent duplicate is tolerated; a missing user still fails
            if not await self.is_blocked(blocker_id, blocked_id, lock=True):
                raise
            logger.debug(f"Block {blocker_id} -> {blocked_id} already exists")
        await self.db.commit()

    @store_operation
    async def unblock(self, blocker_id: int, blocked_id: int) -> None:
        await self.db.execute(delete(Block).where(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id))
        await self.db.commit()
