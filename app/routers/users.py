from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user, get_follow_graph
from app.models.user import User
from app.schemas.user import FollowStatusResponse, FollowToggleResponse
from app.services.follow_graph import FollowGraph

router = APIRouter()


async def _ensure_user_exists(db: AsyncSession, user_id: int) -> None:
    result = await db.execute(select(User.id).where(User.id == user_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="User not found")


@router.put("/{user_id}/follow", response_model=FollowToggleResponse)
async def toggle_follow(
    user_id: int,
    current_user: User = Depends(get_current_user),
    follows: FollowGraph = Depends(get_follow_graph),
    db: AsyncSession = Depends(get_db),
):
    """Follow the user, or unfollow them if already following."""
    await _ensure_user_exists(db, user_id)

    if await follows.is_following(current_user.id, user_id):
        await follows.unfollow(current_user.id, user_id)
        return FollowToggleResponse(message="Unfollowed successfully", is_following=False)

    await follows.follow(current_user.id, user_id)
    return FollowToggleResponse(message="Followed successfully", is_following=True)


@router.get("/{user_id}/follow", response_model=FollowStatusResponse)
async def get_follow_status(
    user_id: int,
    current_user: User = Depends(get_current_user),
    follows: FollowGraph = Depends(get_follow_graph),
):
    return FollowStatusResponse(
        is_following=await follows.is_following(current_user.id, user_id),
        is_mutual=await follows.is_mutual(current_user.id, user_id),
    )
