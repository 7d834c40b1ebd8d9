"""
Article service: business logic for the Article aggregate.

Design notes
------------
- Every read returns "rich" articles: the stored fields plus the author's
  profile, the favorite count and the viewer-relative ``favorited`` /
  ``following`` flags.  Single fetches and list pages go through the same
  ``_hydrate`` step, so both shapes always agree.
- A page is hydrated with a fixed number of statements no matter how many
  rows it holds: one SELECT joining articles to authors, one ``selectinload``
  for tags, one grouped favorites COUNT and, with a viewer, one follow lookup
  and one favorite lookup (see ``relationship_service``).
- Slugs are ``"<unix creation ts>-<slugified title>"``.  A title change
  rebuilds the slug from the ORIGINAL creation timestamp, so the slug is
  always a function of (created_at, title) alone.
- Ownership checks run only after the article is known to exist: an unknown
  slug is a 404 for everyone, a foreign article is a 403.
- Service functions flush but do not commit; the transaction boundary is
  owned by the ``get_db`` dependency in the router layer.
"""
import logging
import re
from collections import defaultdict
from datetime import datetime

from sqlalchemy import delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, contains_eager, selectinload

from conduit.config import settings
from conduit.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from conduit.models import (
    Article,
    Comment,
    Favorite,
    Follow,
    Tag,
    User,
    article_tags,
    as_utc,
    utcnow,
)
from conduit.schemas import ArticleDetails, ArticleUpdateDetails
from conduit.services import relationship_service
from conduit.services.user_service import profile_to_dict

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SLUG_STRIP_RE = re.compile(r"[^\w\s-]")
_SLUG_SPACE_RE = re.compile(r"[\s_]+")
_SLUG_DASH_RE = re.compile(r"-+")

_REQUIRED_TEXT_FIELDS = ("title", "description", "body")


def slugify(text: str) -> str:
    """Return a URL-safe, lowercase slug derived from *text*."""
    text = _SLUG_STRIP_RE.sub("", text.lower().strip())
    text = _SLUG_SPACE_RE.sub("-", text)
    return _SLUG_DASH_RE.sub("-", text).strip("-")


def make_slug(created_at: datetime, title: str) -> str:
    return f"{int(as_utc(created_at).timestamp())}-{slugify(title)}"


def _rich_article_query():
    """SELECT articles joined to their authors, with tags loaded alongside."""
    return (
        select(Article)
        .join(Article.author)
        .options(contains_eager(Article.author), selectinload(Article.tags))
    )


async def _load_rich(db: AsyncSession, slug: str) -> Article:
    result = await db.execute(_rich_article_query().where(Article.slug == slug))
    article = result.unique().scalar_one_or_none()
    if article is None:
        raise NotFoundError("article")
    return article


async def _slug_taken(db: AsyncSession, slug: str) -> bool:
    return bool((await db.execute(select(exists().where(Article.slug == slug)))).scalar())


def _ensure_author(article: Article, viewer: User | None) -> User:
    if viewer is None:
        raise UnauthorizedError()
    if article.author_id != viewer.id:
        raise ForbiddenError()
    return viewer


def _check_not_blank(values: dict, errors: dict[str, list[str]]) -> None:
    for field in _REQUIRED_TEXT_FIELDS:
        if field in values and not (values[field] or "").strip():
            errors[field].append("can't be blank")


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _rich_article_to_dict(
    article: Article, *, following: bool, favorites_count: int, favorited: bool
) -> dict:
    return {
        "slug": article.slug,
        "title": article.title,
        "description": article.description,
        "body": article.body,
        "tag_list": article.tag_list,
        "created_at": as_utc(article.created_at),
        "updated_at": as_utc(article.updated_at),
        "favorited": favorited,
        "favorites_count": favorites_count,
        "author": profile_to_dict(article.author, following),
    }


async def _hydrate(
    db: AsyncSession,
    articles: list[Article],
    viewer: User | None,
    *,
    following_all: bool = False,
) -> list[dict]:
    """
    Attach favorite counts and viewer flags to *articles* (authors and tags
    already loaded) using one query per kind of fact, never one per row.

    ``following_all`` skips the follow lookup when the caller already knows
    the viewer follows every author on the page (the feed).
    """
    article_ids = [a.id for a in articles]
    counts = await relationship_service.favorites_count_for(db, article_ids)

    favorited: dict[int, bool] = {}
    following: dict[int, bool] = {}
    if viewer is not None:
        favorited = await relationship_service.is_favorited_batch(db, viewer.id, article_ids)
        if not following_all:
            author_ids = sorted({a.author_id for a in articles})
            following = await relationship_service.is_following_batch(
                db, viewer.id, author_ids
            )

    return [
        _rich_article_to_dict(
            a,
            following=following_all or following.get(a.author_id, False),
            favorites_count=counts.get(a.id, 0),
            favorited=favorited.get(a.id, False),
        )
        for a in articles
    ]


# ---------------------------------------------------------------------------
# Tag resolution helper (used by create / update)
# ---------------------------------------------------------------------------

async def _resolve_tags(db: AsyncSession, tag_names: list[str]) -> list[Tag]:
    """
    Return Tag ORM instances for the distinct, non-blank names in
    *tag_names*, creating the ones that do not exist yet.  All inserts are
    flushed within the caller's transaction.
    """
    names = sorted({name.strip() for name in tag_names if name.strip()})
    if not names:
        return []

    result = await db.execute(select(Tag).where(Tag.name.in_(names)))
    tags = {tag.name: tag for tag in result.scalars().all()}
    for name in names:
        if name not in tags:
            tag = Tag(name=name)
            db.add(tag)
            tags[name] = tag
    await db.flush()
    return [tags[name] for name in names]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_rich_article(db: AsyncSession, slug: str, viewer: User | None) -> dict:
    article = await _load_rich(db, slug)
    return (await _hydrate(db, [article], viewer))[0]


async def list_rich_articles(
    db: AsyncSession,
    viewer: User | None,
    *,
    tag: str | None = None,
    author: str | None = None,
    favorited_by: str | None = None,
    limit: int = settings.DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> dict:
    """
    Return one page of rich articles, newest first.

    Filters combine with AND: *author* matches the author's username, *tag*
    requires the tag on the article, *favorited_by* keeps articles favorited
    by the user with that username.  ``articles_count`` is the size of the
    returned page, not the number of matching articles.
    """
    q = _rich_article_query()

    if author is not None:
        q = q.where(User.username == author)

    if tag is not None:
        q = q.where(Article.tags.any(Tag.name == tag))

    if favorited_by is not None:
        # Aliased so the subquery does not correlate with the joined author.
        favoriter = aliased(User)
        favorited_ids = (
            select(Favorite.article_id)
            .join(favoriter, favoriter.id == Favorite.user_id)
            .where(favoriter.username == favorited_by)
        )
        q = q.where(Article.id.in_(favorited_ids))

    q = q.order_by(Article.created_at.desc(), Article.id.desc()).offset(offset).limit(limit)
    articles = (await db.execute(q)).unique().scalars().all()

    rich = await _hydrate(db, list(articles), viewer)
    return {"articles": rich, "articles_count": len(rich)}


async def feed(
    db: AsyncSession,
    viewer: User,
    limit: int = settings.DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> dict:
    """Articles by the authors *viewer* follows, newest first."""
    followed_ids = select(Follow.followee_id).where(Follow.follower_id == viewer.id)
    q = (
        _rich_article_query()
        .where(Article.author_id.in_(followed_ids))
        .order_by(Article.created_at.desc(), Article.id.desc())
        .offset(offset)
        .limit(limit)
    )
    articles = (await db.execute(q)).unique().scalars().all()

    rich = await _hydrate(db, list(articles), viewer, following_all=True)
    return {"articles": rich, "articles_count": len(rich)}


async def list_distinct_tags(db: AsyncSession) -> list[str]:
    """Every tag name attached to at least one article, alphabetically."""
    q = (
        select(Tag.name)
        .join(article_tags, article_tags.c.tag_id == Tag.id)
        .distinct()
        .order_by(Tag.name)
    )
    return list((await db.execute(q)).scalars().all())


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def create_article(db: AsyncSession, author: User, data: ArticleDetails) -> dict:
    errors: dict[str, list[str]] = defaultdict(list)
    _check_not_blank(data.model_dump(include=set(_REQUIRED_TEXT_FIELDS)), errors)
    if errors:
        raise ValidationError(errors)

    created = utcnow()
    slug = make_slug(created, data.title)
    if await _slug_taken(db, slug):
        raise ConflictError("slug")

    tags = await _resolve_tags(db, data.tag_list)
    article = Article(
        author=author,
        slug=slug,
        title=data.title,
        description=data.description,
        body=data.body,
        created_at=created,
        updated_at=created,
        tags=tags,
    )
    db.add(article)
    await db.flush()

    logger.info("Article %r created by user id=%s", article.slug, author.id)
    return (await _hydrate(db, [article], author))[0]


async def update_article(
    db: AsyncSession, slug: str, viewer: User | None, data: ArticleUpdateDetails
) -> dict:
    """
    Partially update the article at *slug* on behalf of its author.

    Only fields explicitly set in the payload are modified
    (``model_dump(exclude_unset=True)``).  Changing the title moves the
    article to a new slug; ``tag_list`` replaces the whole tag set.
    """
    article = await _load_rich(db, slug)
    viewer = _ensure_author(article, viewer)

    changes = data.model_dump(exclude_unset=True)
    errors: dict[str, list[str]] = defaultdict(list)
    _check_not_blank(changes, errors)
    if errors:
        raise ValidationError(errors)

    if "title" in changes:
        new_slug = make_slug(article.created_at, changes["title"])
        if new_slug != article.slug and await _slug_taken(db, new_slug):
            raise ConflictError("slug")
        article.title = changes["title"]
        article.slug = new_slug

    for field in ("description", "body"):
        if field in changes:
            setattr(article, field, changes[field])

    if changes.get("tag_list") is not None:
        article.tags = await _resolve_tags(db, changes["tag_list"])

    article.updated_at = utcnow()
    await db.flush()
    return (await _hydrate(db, [article], viewer))[0]


async def delete_article(db: AsyncSession, slug: str, viewer: User | None) -> None:
    result = await db.execute(select(Article).where(Article.slug == slug))
    article = result.scalar_one_or_none()
    if article is None:
        raise NotFoundError("article")
    _ensure_author(article, viewer)

    await db.execute(delete(Favorite).where(Favorite.article_id == article.id))
    await db.execute(delete(Comment).where(Comment.article_id == article.id))
    await db.execute(delete(article_tags).where(article_tags.c.article_id == article.id))
    await db.delete(article)
    await db.flush()
    logger.info("Article %r deleted by user id=%s", slug, article.author_id)


async def favorite_article(db: AsyncSession, slug: str, viewer: User) -> dict:
    article = await _load_rich(db, slug)
    await relationship_service.favorite(db, viewer.id, article.id)
    return (await _hydrate(db, [article], viewer))[0]


async def unfavorite_article(db: AsyncSession, slug: str, viewer: User) -> dict:
    article = await _load_rich(db, slug)
    await relationship_service.unfavorite(db, viewer.id, article.id)
    return (await _hydrate(db, [article], viewer))[0]
