import logging

from fastapi import Depends, Query
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.config import settings
from conduit.database import get_db
from conduit.exceptions import NotFoundError, TokenError, UnauthorizedError, ValidationError
from conduit.models import User
from conduit.services import token_service

logger = logging.getLogger(__name__)

TOKEN_SCHEME = "token"

# Raw "Authorization" header; auto_error=False so anonymous requests get None.
authorization_header = APIKeyHeader(
    name="Authorization",
    auto_error=False,
    description="Bearer token in the form 'Token <jwt>'.",
)


async def get_current_user_optional(
    authorization: str | None = Depends(authorization_header),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """
    Resolve the viewer from the ``Authorization: Token <jwt>`` header.

    Returns None when the header is absent.  A header that is present but
    unusable is a 401 even on endpoints that allow anonymous access: the
    client asked to be someone and could not be.  Every rejection reason
    collapses into the same ``UnauthorizedError``.
    """
    if authorization is None:
        return None

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != TOKEN_SCHEME or not token.strip():
        logger.debug("Rejected Authorization header with scheme %r", scheme)
        raise UnauthorizedError()

    try:
        return await token_service.verify(db, token.strip())
    except (TokenError, NotFoundError) as exc:
        logger.debug("Rejected token: %s: %s", type(exc).__name__, exc)
        raise UnauthorizedError() from exc


async def get_current_user(
    user: User | None = Depends(get_current_user_optional),
) -> User:
    """Same as ``get_current_user_optional`` but anonymous requests are a 401."""
    if user is None:
        raise UnauthorizedError()
    return user


class PaginationParams:
    """
    Reusable FastAPI dependency that parses ``limit`` / ``offset``.

    Usage in a router::

        @router.get("/articles")
        async def list_articles(pagination: PaginationParams = Depends()):
            ...

    A ``limit`` above ``settings.MAX_PAGE_SIZE`` is rejected with a 422
    instead of being clamped, so a client never receives fewer rows than it
    asked for without being told.
    """

    def __init__(
        self,
        limit: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            description="Maximum number of articles to return.",
        ),
        offset: int = Query(
            0,
            ge=0,
            description="Number of articles to skip.",
        ),
    ) -> None:
        if limit > settings.MAX_PAGE_SIZE:
            raise ValidationError.single(
                "limit", f"must be less than or equal to {settings.MAX_PAGE_SIZE}"
            )
        self.limit = limit
        self.offset = offset
