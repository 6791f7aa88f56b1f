from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


def to_camel(string: str) -> str:
    parts = string.split('_')
    return parts[0] + ''.join(word.capitalize() for word in parts[1:])


class UserSummary(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
        from_attributes=True,
    )

    id: int
    username: str
    profile_pic: Optional[str] = None


class FollowToggleResponse(BaseModel):
    message: str
    is_following: bool = Field(alias="isFollowing")

    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)


class FollowStatusResponse(BaseModel):
    is_following: bool = Field(alias="isFollowing")
    is_mutual: bool = Field(alias="isMutual")

    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)
