import logging
from typing import List

from sqlalchemy import select, delete, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import InvalidOperation, store_operation
from app.models.follow import Follow

logger = logging.getLogger(__name__)


class FollowGraph:
    """Follow edges between users. Messaging only reads from it."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @store_operation
    async def is_following(self, follower_id: int, following_id: int, lock: bool = False) -> bool:
        stmt = select(Follow.id).where(Follow.follower_id == follower_id, Follow.following_id == following_id).limit(1)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @store_operation
    async def is_mutual(self, user_a: int, user_b: int) -> bool:
        stmt = select(Follow.id).where(
            and_(Follow.follower_id == user_a, Follow.following_id == user_b)
            | and_(Follow.follower_id == user_b, Follow.following_id == user_a)
        )
        result = await self.db.execute(stmt)
        return len(result.scalars().all()) == 2

    @store_operation
    async def following_ids(self, user_id: int) -> List[int]:
        result = await self.db.execute(select(Follow.following_id).where(Follow.follower_id == user_id))
        return list(result.scalars().all())

    @store_operation
    async def follower_ids(self, user_id: int) -> List[int]:
        result = await self.db.execute(select(Follow.follower_id).where(Follow.following_id == user_id))
        return list(result.scalars().all())

    @store_operation
    async def follow(self, follower_id: int, following_id: int) -> None:
        if follower_id == following_id:
            raise InvalidOperation("Cannot follow yourself")
        if await self.is_following(follower_id, following_id):
            return
        try:
            async with self.db.begin_nested():
                self.db.add(Follow(follower_id=follower_id, following_id=following_id))
        except IntegrityError:
            # Concurrent follow already inserted the edge
            if not await self.is_following(follower_id, following_id, lock=True):
                raise
            logger.debug(f"Follow {follower_id} -> {following_id} already exists")
        await self.db.commit()

    @store_operation
    async def unfollow(self, follower_id: int, following_id: int) -> None:
        await self.db.execute(
            delete(Follow).where(Follow.follower_id == follower_id, Follow.following_id == following_id)
        )
        await self.db.commit()
