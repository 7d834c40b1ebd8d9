from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire format is camelCase; Python code uses snake_case attribute names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Profile ---

class Profile(CamelModel):
    username: str
    bio: str | None = None
    image: str | None = None
    following: bool = False


class ProfileResponse(CamelModel):
    profile: Profile


# --- User ---

class RegistrationDetails(CamelModel):
    username: str = Field(max_length=100)
    email: str = Field(max_length=255)
    password: str


class Registration(CamelModel):
    user: RegistrationDetails


class LoginDetails(CamelModel):
    email: str
    password: str


class Login(CamelModel):
    user: LoginDetails


class UserUpdateDetails(CamelModel):
    """Partial patch: only the fields present in the payload are applied."""

    username: str | None = Field(None, max_length=100)
    email: str | None = Field(None, max_length=255)
    password: str | None = None
    bio: str | None = None
    image: str | None = Field(None, max_length=500)


class UserUpdate(CamelModel):
    user: UserUpdateDetails


class UserOut(CamelModel):
    email: str
    token: str
    username: str
    bio: str | None = None
    image: str | None = None


class UserResponse(CamelModel):
    user: UserOut


# --- Article ---

class ArticleDetails(CamelModel):
    title: str = Field(max_length=300)
    description: str
    body: str
    tag_list: list[str] = []


class ArticleCreate(CamelModel):
    article: ArticleDetails


class ArticleUpdateDetails(CamelModel):
    title: str | None = Field(None, max_length=300)
    description: str | None = None
    body: str | None = None
    tag_list: list[str] | None = None


class ArticleUpdate(CamelModel):
    article: ArticleUpdateDetails


class RichArticle(CamelModel):
    slug: str
    title: str
    description: str
    body: str
    tag_list: list[str] = []
    created_at: datetime
    updated_at: datetime
    favorited: bool = False
    favorites_count: int = 0
    author: Profile


class ArticleResponse(CamelModel):
    article: RichArticle


class ArticleListResponse(CamelModel):
    articles: list[RichArticle]
    # Size of the returned page, not the number of matches overall.
    articles_count: int


class TagListResponse(CamelModel):
    tags: list[str]


# --- Comment ---

class CommentBody(CamelModel):
    body: str


class CommentCreate(CamelModel):
    comment: CommentBody


class CommentOut(CamelModel):
    id: int
    body: str
    created_at: datetime
    updated_at: datetime
    author: Profile


class CommentResponse(CamelModel):
    comment: CommentOut


class CommentListResponse(CamelModel):
    comments: list[CommentOut]
