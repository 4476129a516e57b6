"""User profile routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from summits_auth.auth.dependencies import get_current_user, get_storage
from summits_auth.database.models import User
from summits_auth.database.storage import Storage

router = APIRouter()


class UserResponse(BaseModel):
    """User response model."""

    id: int
    name: str
    oauth_id: str
    src: int
    images: dict[str, str]


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> UserResponse:
    """Get the current user's profile."""
    return UserResponse(
        id=user.id,
        name=user.name,
        oauth_id=user.oauth_id,
        src=user.src,
        images=await storage.get_user_images(user.id),
    )
