"""
User service: the credential store plus the account use cases built on it
(registration, login, self-service update).

Validation never fails fast: every problem found in a payload is collected
into one ``ValidationError`` so the client can fix them all in one round.
"""
import logging
import re
from collections import defaultdict

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from conduit import security
from conduit.exceptions import ConflictError, NotFoundError, ValidationError
from conduit.models import User, utcnow
from conduit.schemas import LoginDetails, RegistrationDetails, UserUpdateDetails

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Validators (compiled once at import, read-only afterwards)
# ---------------------------------------------------------------------------

_EMAIL_RE = re.compile(
    r"\A[a-z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[a-z0-9!#$%&'*+/=?^_`{|}~-]+)*"
    r"@(?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\Z",
    re.IGNORECASE,
)
MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 5


def _check_email_format(email: str, errors: dict[str, list[str]]) -> None:
    if not _EMAIL_RE.match(email):
        errors["email"].append(f"Invalid email: {email}")


def _check_username_format(username: str, errors: dict[str, list[str]]) -> None:
    if len(username.strip()) < MIN_USERNAME_LENGTH:
        errors["username"].append(
            f"Username must be at least {MIN_USERNAME_LENGTH} characters"
        )


def _check_password(password: str, errors: dict[str, list[str]]) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        errors["password"].append("Password too short")
    elif len(password.encode("utf-8")) > security.MAX_PASSWORD_BYTES:
        errors["password"].append("Password too long")


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def user_to_dict(user: User, token: str) -> dict:
    """Serialise *user* for its owner, together with a freshly issued *token*."""
    return {
        "email": user.email,
        "token": token,
        "username": user.username,
        "bio": user.bio,
        "image": user.image,
    }


def profile_to_dict(user: User, following: bool) -> dict:
    """Public view of *user* relative to some viewer."""
    return {
        "username": user.username,
        "bio": user.bio,
        "image": user.image,
        "following": following,
    }


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------

async def load_by_id(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("user")
    return user


async def load_by_name(db: AsyncSession, username: str) -> User:
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("user")
    return user


async def load_by_email(db: AsyncSession, email: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("user")
    return user


async def load_by_claims(db: AsyncSession, user_id: int, email: str) -> User:
    """Load the user matching BOTH token claims."""
    result = await db.execute(
        select(User).where(User.id == user_id, User.email == email)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("user")
    return user


async def exists_by_username(
    db: AsyncSession, username: str, exclude_id: int | None = None
) -> bool:
    condition = User.username == username
    if exclude_id is not None:
        condition = condition & (User.id != exclude_id)
    return bool((await db.execute(select(exists().where(condition)))).scalar())


async def exists_by_email(
    db: AsyncSession, email: str, exclude_id: int | None = None
) -> bool:
    condition = User.email == email
    if exclude_id is not None:
        condition = condition & (User.id != exclude_id)
    return bool((await db.execute(select(exists().where(condition)))).scalar())


async def _flush_unique(db: AsyncSession) -> None:
    """
    Flush pending user changes, mapping a unique-constraint race (two requests
    claiming the same username/email between validation and write) to 409.
    """
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError("username or email") from exc


async def insert(db: AsyncSession, username: str, email: str, password_hash: str) -> User:
    now = utcnow()
    user = User(
        username=username,
        email=email,
        password_hash=password_hash,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    await _flush_unique(db)
    return user


async def update(db: AsyncSession, user: User, changes: dict) -> User:
    """Apply *changes* (column name -> value) to *user*; absent columns are untouched."""
    for field, value in changes.items():
        setattr(user, field, value)
    user.updated_at = utcnow()
    await _flush_unique(db)
    return user


# ---------------------------------------------------------------------------
# Account use cases
# ---------------------------------------------------------------------------

async def register(db: AsyncSession, details: RegistrationDetails) -> User:
    errors: dict[str, list[str]] = defaultdict(list)

    _check_email_format(details.email, errors)
    if await exists_by_email(db, details.email):
        errors["email"].append("Email already exists")

    _check_password(details.password, errors)

    _check_username_format(details.username, errors)
    if await exists_by_username(db, details.username):
        errors["username"].append("Username already exists")

    if errors:
        raise ValidationError(errors)

    user = await insert(
        db,
        username=details.username,
        email=details.email,
        password_hash=security.hash_password(details.password),
    )
    logger.info("Registered user id=%s username=%r", user.id, user.username)
    return user


async def login(db: AsyncSession, details: LoginDetails) -> User:
    user = await load_by_email(db, details.email)
    if not security.verify_password(details.password, user.password_hash):
        raise ValidationError.single("password", "Invalid password")
    return user


async def update_current(db: AsyncSession, user: User, patch: UserUpdateDetails) -> User:
    """
    Apply a partial update to *user*.

    Only fields present in the payload are considered
    (``model_dump(exclude_unset=True)``); a present-but-empty email, username
    or password fails validation rather than being ignored.  A new password
    rotates the token signing key, revoking every token issued before it.
    """
    data = patch.model_dump(exclude_unset=True)
    errors: dict[str, list[str]] = defaultdict(list)
    changes: dict = {}

    if "email" in data:
        email = data["email"] or ""
        _check_email_format(email, errors)
        if await exists_by_email(db, email, exclude_id=user.id):
            errors["email"].append(f"Email already chosen: {email}")
        changes["email"] = email

    if "username" in data:
        username = data["username"] or ""
        _check_username_format(username, errors)
        if await exists_by_username(db, username, exclude_id=user.id):
            errors["username"].append(f"Username already chosen: {username}")
        changes["username"] = username

    if "password" in data:
        password = data["password"] or ""
        _check_password(password, errors)
        if "password" not in errors:
            changes["password_hash"] = security.hash_password(password)

    for field in ("bio", "image"):
        if field in data:
            changes[field] = data[field]

    if errors:
        raise ValidationError(errors)

    await update(db, user, changes)
    if "password_hash" in changes:
        logger.info("User id=%s changed password; outstanding tokens revoked", user.id)
    return user
