"""
Direct service-layer tests: exercises business logic without HTTP overhead.

These call the service functions with a database session, covering the
relationship store, token verification and the batching guarantees of
article hydration.
"""
import pytest
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from conduit import security
from conduit.exceptions import (
    ConflictError,
    MalformedTokenError,
    NotFoundError,
    TokenSignatureError,
    ValidationError,
)
from conduit.middleware import query_count_var
from conduit.models import User
from conduit.schemas import ArticleDetails, ArticleUpdateDetails
from conduit.services import (
    article_service,
    profile_service,
    relationship_service,
    token_service,
    user_service,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(db: AsyncSession, username: str = "svcuser") -> User:
    return await user_service.insert(
        db,
        username=username,
        email=f"{username}@example.com",
        password_hash=security.hash_password("secret123"),
    )


def _details(title: str, tags: list[str] | None = None) -> ArticleDetails:
    return ArticleDetails(
        title=title, description="desc", body="body", tag_list=tags or []
    )


# ---------------------------------------------------------------------------
# relationship_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_follow_twice_keeps_one_edge(db_session: AsyncSession):
    a = await _create_user(db_session, "aaa")
    b = await _create_user(db_session, "bbb")

    await relationship_service.follow(db_session, a.id, b.id)
    await relationship_service.follow(db_session, a.id, b.id)
    assert await relationship_service.is_following(db_session, a.id, b.id)
    assert not await relationship_service.is_following(db_session, b.id, a.id)

    await relationship_service.unfollow(db_session, a.id, b.id)
    assert not await relationship_service.is_following(db_session, a.id, b.id)
    # Removing an absent edge is a no-op.
    await relationship_service.unfollow(db_session, a.id, b.id)


@pytest.mark.asyncio
async def test_following_batch(db_session: AsyncSession):
    viewer = await _create_user(db_session, "viewer")
    x = await _create_user(db_session, "xxx")
    y = await _create_user(db_session, "yyy")
    await relationship_service.follow(db_session, viewer.id, y.id)

    result = await relationship_service.is_following_batch(db_session, viewer.id, [x.id, y.id])
    assert result == {x.id: False, y.id: True}
    assert await relationship_service.is_following_batch(db_session, viewer.id, []) == {}


@pytest.mark.asyncio
async def test_favorite_batch_and_counts(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    fan1 = await _create_user(db_session, "fan1")
    fan2 = await _create_user(db_session, "fan2")
    a1 = await article_service.create_article(db_session, author, _details("One"))
    a2 = await article_service.create_article(db_session, author, _details("Two"))
    id1 = (await article_service._load_rich(db_session, a1["slug"])).id
    id2 = (await article_service._load_rich(db_session, a2["slug"])).id

    for fan in (fan1, fan2, fan2):
        await relationship_service.favorite(db_session, fan.id, id1)

    assert await relationship_service.favorites_count_for(db_session, [id1, id2]) == {id1: 2}
    assert await relationship_service.is_favorited_batch(db_session, fan1.id, [id1, id2]) == {
        id1: True, id2: False,
    }
    assert await relationship_service.favorites_count_for(db_session, []) == {}

    await relationship_service.unfavorite(db_session, fan2.id, id1)
    assert not await relationship_service.is_favorited(db_session, fan2.id, id1)
    assert await relationship_service.favorites_count_for(db_session, [id1]) == {id1: 1}


# ---------------------------------------------------------------------------
# token_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_issue_and_verify_token(db_session: AsyncSession):
    user = await _create_user(db_session)
    token = token_service.issue(user)
    assert (await token_service.verify(db_session, token)).id == user.id


@pytest.mark.asyncio
async def test_token_signed_with_other_key_is_rejected(db_session: AsyncSession):
    user = await _create_user(db_session)
    forged = security.create_token(user.id, user.email, "not-the-password-hash")
    with pytest.raises(TokenSignatureError):
        await token_service.verify(db_session, forged)


@pytest.mark.asyncio
async def test_token_for_unknown_user(db_session: AsyncSession):
    token = security.create_token(12345, "ghost@example.com", "whatever")
    with pytest.raises(NotFoundError):
        await token_service.verify(db_session, token)


@pytest.mark.asyncio
async def test_token_with_mismatched_claims(db_session: AsyncSession):
    """Both claims must match the same row."""
    alice = await _create_user(db_session, "alice")
    bob = await _create_user(db_session, "bob")
    token = security.create_token(alice.id, bob.email, alice.password_hash)
    with pytest.raises(NotFoundError):
        await token_service.verify(db_session, token)


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [
    "definitely-not-a-jwt",
    jwt.encode({"sub": "1"}, "key", algorithm="HS256"),
    jwt.encode({"iss": "a@example.com"}, "key", algorithm="HS256"),
    jwt.encode({"iss": "a@example.com", "sub": "abc"}, "key", algorithm="HS256"),
    jwt.encode({"iss": "a@example.com", "sub": "9" * 30}, "key", algorithm="HS256"),
    jwt.encode({"iss": "a@example.com", "sub": "3000000000"}, "key", algorithm="HS256"),
    jwt.encode({"iss": "a@example.com", "sub": "0"}, "key", algorithm="HS256"),
])
async def test_malformed_tokens(db_session: AsyncSession, token: str):
    with pytest.raises(MalformedTokenError):
        await token_service.verify(db_session, token)


# ---------------------------------------------------------------------------
# user_service / profile_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_load_by_id(db_session: AsyncSession):
    user = await _create_user(db_session, "byid")
    assert (await user_service.load_by_id(db_session, user.id)).username == "byid"
    with pytest.raises(NotFoundError):
        await user_service.load_by_id(db_session, user.id + 1)


@pytest.mark.asyncio
async def test_duplicate_insert_is_conflict(db_session: AsyncSession):
    await _create_user(db_session, "dupe")
    with pytest.raises(ConflictError):
        await _create_user(db_session, "dupe")


@pytest.mark.asyncio
async def test_password_too_long_is_rejected(db_session: AsyncSession):
    from conduit.schemas import RegistrationDetails

    details = RegistrationDetails(username="longpw", email="longpw@example.com", password="x" * 73)
    with pytest.raises(ValidationError) as exc_info:
        await user_service.register(db_session, details)
    assert exc_info.value.errors == {"password": ["Password too long"]}


def test_verify_password_rejects_overlong_input():
    hashed = security.hash_password("secret123")
    assert security.verify_password("secret123", hashed)
    assert not security.verify_password("x" * 100, hashed)


@pytest.mark.asyncio
async def test_self_follow_is_rejected(db_session: AsyncSession):
    me = await _create_user(db_session, "myself")
    with pytest.raises(ValidationError):
        await profile_service.follow_user(db_session, me, "myself")
    assert not await relationship_service.is_following(db_session, me.id, me.id)


# ---------------------------------------------------------------------------
# article_service
# ---------------------------------------------------------------------------

def test_slugify():
    assert article_service.slugify("  Hello, World!  ") == "hello-world"
    assert article_service.slugify("a -- b__c") == "a-b-c"


@pytest.mark.asyncio
async def test_same_title_in_same_second_conflicts(db_session: AsyncSession, monkeypatch):
    author = await _create_user(db_session)
    frozen = article_service.utcnow()
    monkeypatch.setattr(article_service, "utcnow", lambda: frozen)

    await article_service.create_article(db_session, author, _details("Twin"))
    with pytest.raises(ConflictError) as exc_info:
        await article_service.create_article(db_session, author, _details("Twin"))
    assert exc_info.value.field == "slug"


@pytest.mark.asyncio
async def test_update_validation_runs_after_authorization(db_session: AsyncSession):
    author = await _create_user(db_session, "owner")
    other = await _create_user(db_session, "other")
    article = await article_service.create_article(db_session, author, _details("Owned"))

    from conduit.exceptions import ForbiddenError

    with pytest.raises(ForbiddenError):
        await article_service.update_article(
            db_session, article["slug"], other, ArticleUpdateDetails(title="")
        )
    with pytest.raises(ValidationError):
        await article_service.update_article(
            db_session, article["slug"], author, ArticleUpdateDetails(title="")
        )


async def _count_list_queries(db: AsyncSession, viewer: User) -> tuple[int, int]:
    token = query_count_var.set(0)
    try:
        page = await article_service.list_rich_articles(db, viewer, limit=100)
        return query_count_var.get(), page["articles_count"]
    finally:
        query_count_var.reset(token)


@pytest.mark.asyncio
async def test_list_query_count_does_not_grow_with_page_size(db_session: AsyncSession):
    viewer = await _create_user(db_session, "viewer")
    authors = [await _create_user(db_session, f"author{i}") for i in range(5)]

    first = await article_service.create_article(db_session, authors[0], _details("A0", ["t"]))
    await relationship_service.follow(db_session, viewer.id, authors[0].id)
    await article_service.favorite_article(db_session, first["slug"], viewer)
    await db_session.commit()

    small_count, small_size = await _count_list_queries(db_session, viewer)
    assert small_size == 1

    for i in range(1, 15):
        author = authors[i % len(authors)]
        created = await article_service.create_article(
            db_session, author, _details(f"A{i}", [f"t{i}", "shared"])
        )
        await article_service.favorite_article(db_session, created["slug"], viewer)
    await db_session.commit()

    large_count, large_size = await _count_list_queries(db_session, viewer)
    assert large_size == 15
    assert large_count == small_count
