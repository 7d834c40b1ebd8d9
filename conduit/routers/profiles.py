from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.database import get_db
from conduit.dependencies import get_current_user, get_current_user_optional
from conduit.models import User
from conduit.schemas import ProfileResponse
from conduit.services import profile_service

router = APIRouter(prefix="/api/profiles", tags=["profiles"])


@router.get("/{username}", response_model=ProfileResponse)
async def get_profile(
    username: str,
    viewer: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
):
    return {"profile": await profile_service.get_profile(db, username, viewer)}


@router.post("/{username}/follow", response_model=ProfileResponse)
async def follow(
    username: str,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"profile": await profile_service.follow_user(db, viewer, username)}


@router.delete("/{username}/follow", response_model=ProfileResponse)
async def unfollow(
    username: str,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"profile": await profile_service.unfollow_user(db, viewer, username)}
