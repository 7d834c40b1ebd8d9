"""
Relationship service: follow and favorite edges.

Writes are idempotent single statements: inserts use the dialect's
``INSERT ... ON CONFLICT DO NOTHING`` against the composite primary key and
deletes simply affect zero rows when the edge is absent.

The ``*_batch`` / ``*_for`` readers each issue exactly one query for a whole
set of ids (none for an empty set).  The article and comment services use
them to hydrate a page of results without one query per row.
"""
from sqlalchemy import delete, exists, func, insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.models import Favorite, Follow

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def _insert_or_ignore(db: AsyncSession, model, **values) -> None:
    dialect = db.get_bind().dialect.name
    dialect_insert = _INSERT_BY_DIALECT.get(dialect)
    if dialect_insert is not None:
        await db.execute(dialect_insert(model).values(**values).on_conflict_do_nothing())
        return

    # Other dialects: check-then-insert; the primary key still rejects races.
    conditions = [getattr(model, column) == value for column, value in values.items()]
    if not (await db.execute(select(exists().where(*conditions)))).scalar():
        await db.execute(insert(model).values(**values))


# ---------------------------------------------------------------------------
# Follow edges
# ---------------------------------------------------------------------------

async def follow(db: AsyncSession, follower_id: int, followee_id: int) -> None:
    await _insert_or_ignore(db, Follow, follower_id=follower_id, followee_id=followee_id)


async def unfollow(db: AsyncSession, follower_id: int, followee_id: int) -> None:
    await db.execute(
        delete(Follow).where(
            Follow.follower_id == follower_id, Follow.followee_id == followee_id
        )
    )


async def is_following(db: AsyncSession, follower_id: int, followee_id: int) -> bool:
    q = select(
        exists().where(Follow.follower_id == follower_id, Follow.followee_id == followee_id)
    )
    return bool((await db.execute(q)).scalar())


async def is_following_batch(
    db: AsyncSession, viewer_id: int, user_ids: list[int]
) -> dict[int, bool]:
    """Map every id in *user_ids* to whether *viewer_id* follows that user."""
    if not user_ids:
        return {}
    q = select(Follow.followee_id).where(
        Follow.follower_id == viewer_id, Follow.followee_id.in_(user_ids)
    )
    followed = set((await db.execute(q)).scalars().all())
    return {user_id: user_id in followed for user_id in user_ids}


# ---------------------------------------------------------------------------
# Favorite edges
# ---------------------------------------------------------------------------

async def favorite(db: AsyncSession, user_id: int, article_id: int) -> None:
    await _insert_or_ignore(db, Favorite, user_id=user_id, article_id=article_id)


async def unfavorite(db: AsyncSession, user_id: int, article_id: int) -> None:
    await db.execute(
        delete(Favorite).where(Favorite.user_id == user_id, Favorite.article_id == article_id)
    )


async def is_favorited(db: AsyncSession, user_id: int, article_id: int) -> bool:
    q = select(
        exists().where(Favorite.user_id == user_id, Favorite.article_id == article_id)
    )
    return bool((await db.execute(q)).scalar())


async def is_favorited_batch(
    db: AsyncSession, viewer_id: int, article_ids: list[int]
) -> dict[int, bool]:
    if not article_ids:
        return {}
    q = select(Favorite.article_id).where(
        Favorite.user_id == viewer_id, Favorite.article_id.in_(article_ids)
    )
    favorited = set((await db.execute(q)).scalars().all())
    return {article_id: article_id in favorited for article_id in article_ids}


async def favorites_count_for(db: AsyncSession, article_ids: list[int]) -> dict[int, int]:
    """
    Return ``{article_id: favorite count}`` via one grouped COUNT.

    Articles nobody has favorited are absent from the result; callers default
    them to 0.
    """
    if not article_ids:
        return {}
    q = (
        select(Favorite.article_id, func.count())
        .where(Favorite.article_id.in_(article_ids))
        .group_by(Favorite.article_id)
    )
    return {article_id: count for article_id, count in (await db.execute(q)).all()}
