from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.database import get_db
from conduit.dependencies import PaginationParams, get_current_user, get_current_user_optional
from conduit.models import User
from conduit.schemas import (
    ArticleCreate,
    ArticleListResponse,
    ArticleResponse,
    ArticleUpdate,
    CommentCreate,
    CommentListResponse,
    CommentResponse,
    TagListResponse,
)
from conduit.services import article_service, comment_service

router = APIRouter(prefix="/api/articles", tags=["articles"])

# Static paths (/feed, /tags) are declared before /{slug} so they win the match.


@router.get("", response_model=ArticleListResponse)
async def list_articles(
    tag: str | None = Query(None),
    author: str | None = Query(None),
    favorited: str | None = Query(None, description="Username of a favoriting user."),
    pagination: PaginationParams = Depends(),
    viewer: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.list_rich_articles(
        db,
        viewer,
        tag=tag,
        author=author,
        favorited_by=favorited,
        limit=pagination.limit,
        offset=pagination.offset,
    )


@router.get("/feed", response_model=ArticleListResponse)
async def feed(
    pagination: PaginationParams = Depends(),
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.feed(db, viewer, pagination.limit, pagination.offset)


@router.get("/tags", response_model=TagListResponse)
async def list_tags(db: AsyncSession = Depends(get_db)):
    return {"tags": await article_service.list_distinct_tags(db)}


@router.post("", status_code=201, response_model=ArticleResponse)
async def create_article(
    data: ArticleCreate,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"article": await article_service.create_article(db, viewer, data.article)}


@router.get("/{slug}", response_model=ArticleResponse)
async def get_article(
    slug: str,
    viewer: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
):
    return {"article": await article_service.get_rich_article(db, slug, viewer)}


# Update/delete resolve the viewer optionally: the service checks that the
# article exists before it demands credentials.
@router.put("/{slug}", response_model=ArticleResponse)
async def update_article(
    slug: str,
    data: ArticleUpdate,
    viewer: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
):
    return {"article": await article_service.update_article(db, slug, viewer, data.article)}


@router.delete("/{slug}", status_code=204)
async def delete_article(
    slug: str,
    viewer: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
):
    await article_service.delete_article(db, slug, viewer)


@router.post("/{slug}/favorite", response_model=ArticleResponse)
async def favorite_article(
    slug: str,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"article": await article_service.favorite_article(db, slug, viewer)}


@router.delete("/{slug}/favorite", response_model=ArticleResponse)
async def unfavorite_article(
    slug: str,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"article": await article_service.unfavorite_article(db, slug, viewer)}


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

@router.get("/{slug}/comments", response_model=CommentListResponse)
async def list_comments(
    slug: str,
    viewer: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
):
    return {"comments": await comment_service.list_comments(db, slug, viewer)}


@router.post("/{slug}/comments", status_code=201, response_model=CommentResponse)
async def add_comment(
    slug: str,
    data: CommentCreate,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"comment": await comment_service.add_comment(db, slug, viewer, data.comment.body)}


@router.delete("/{slug}/comments/{comment_id}", status_code=204)
async def delete_comment(
    slug: str,
    comment_id: int,
    viewer: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
):
    await comment_service.delete_comment(db, slug, comment_id, viewer)
