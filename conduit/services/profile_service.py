"""Profile service: public user views and follow/unfollow by username."""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from conduit.exceptions import ValidationError
from conduit.models import User
from conduit.services import relationship_service, user_service

logger = logging.getLogger(__name__)


async def get_profile(db: AsyncSession, username: str, viewer: User | None) -> dict:
    user = await user_service.load_by_name(db, username)
    following = False
    if viewer is not None:
        following = await relationship_service.is_following(db, viewer.id, user.id)
    return user_service.profile_to_dict(user, following)


async def follow_user(db: AsyncSession, viewer: User, username: str) -> dict:
    """Make *viewer* follow *username*; following twice is a no-op."""
    user = await user_service.load_by_name(db, username)
    if user.id == viewer.id:
        raise ValidationError.single("username", "You cannot follow yourself")
    await relationship_service.follow(db, viewer.id, user.id)
    logger.info("User id=%s follows user id=%s", viewer.id, user.id)
    return user_service.profile_to_dict(user, following=True)


async def unfollow_user(db: AsyncSession, viewer: User, username: str) -> dict:
    user = await user_service.load_by_name(db, username)
    await relationship_service.unfollow(db, viewer.id, user.id)
    logger.info("User id=%s unfollowed user id=%s", viewer.id, user.id)
    return user_service.profile_to_dict(user, following=False)
