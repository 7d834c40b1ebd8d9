"""
Comment service: comments on an article, each rendered with its author's
profile.

Listing hydrates follow flags the same way the article service does: one
lookup for the distinct comment authors, not one per comment.  Only a
comment's own author may delete it; owning the article grants nothing.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from conduit.exceptions import ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from conduit.models import Article, Comment, User, as_utc, utcnow
from conduit.services import relationship_service
from conduit.services.user_service import profile_to_dict

logger = logging.getLogger(__name__)


def _comment_to_dict(comment: Comment, author: User, following: bool) -> dict:
    return {
        "id": comment.id,
        "body": comment.body,
        "created_at": as_utc(comment.created_at),
        "updated_at": as_utc(comment.updated_at),
        "author": profile_to_dict(author, following),
    }


async def _load_article(db: AsyncSession, slug: str) -> Article:
    result = await db.execute(select(Article).where(Article.slug == slug))
    article = result.scalar_one_or_none()
    if article is None:
        raise NotFoundError("article")
    return article


async def add_comment(db: AsyncSession, slug: str, author: User, body: str) -> dict:
    """
    Append a comment by *author* to the article at *slug*.

    Raises ``NotFoundError`` when the article does not exist and
    ``ValidationError`` for a blank body.
    """
    article = await _load_article(db, slug)
    if not body.strip():
        raise ValidationError.single("body", "can't be blank")

    now = utcnow()
    comment = Comment(
        body=body,
        article_id=article.id,
        user_id=author.id,
        created_at=now,
        updated_at=now,
    )
    db.add(comment)
    await db.flush()

    # Nobody can follow themselves, so the flag is known without a query.
    return _comment_to_dict(comment, author, following=False)


async def list_comments(db: AsyncSession, slug: str, viewer: User | None) -> list[dict]:
    article = await _load_article(db, slug)

    q = (
        select(Comment)
        .join(Comment.author)
        .options(contains_eager(Comment.author))
        .where(Comment.article_id == article.id)
        .order_by(Comment.created_at, Comment.id)
    )
    comments = (await db.execute(q)).scalars().all()

    following: dict[int, bool] = {}
    if viewer is not None:
        author_ids = sorted({c.user_id for c in comments})
        following = await relationship_service.is_following_batch(db, viewer.id, author_ids)

    return [
        _comment_to_dict(c, c.author, following.get(c.user_id, False))
        for c in comments
    ]


async def delete_comment(
    db: AsyncSession, slug: str, comment_id: int, viewer: User | None
) -> None:
    """
    Delete comment *comment_id* of the article at *slug*.

    Existence is settled first (404), then authentication (401), then
    authorship (403).
    """
    article = await _load_article(db, slug)
    result = await db.execute(
        select(Comment).where(Comment.id == comment_id, Comment.article_id == article.id)
    )
    comment = result.scalar_one_or_none()
    if comment is None:
        raise NotFoundError("comment")

    if viewer is None:
        raise UnauthorizedError()
    if comment.user_id != viewer.id:
        raise ForbiddenError()

    await db.delete(comment)
    await db.flush()
    logger.info("Comment id=%s deleted by user id=%s", comment_id, viewer.id)
