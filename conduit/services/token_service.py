"""
Token service: issues and verifies bearer tokens.

Verification is a database round-trip followed by a signature check: the
claims name the user, the user's stored password hash is the key.  Failures
keep their internal classification (``MalformedTokenError``,
``NotFoundError``, ``TokenSignatureError``) so callers can log them; the
request boundary reports all of them as a plain 401.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from conduit import security
from conduit.exceptions import TokenSignatureError
from conduit.models import User
from conduit.services import user_service


def issue(user: User) -> str:
    return security.create_token(user.id, user.email, user.password_hash)


async def verify(db: AsyncSession, token: str) -> User:
    user_id, email = security.read_claims(token)
    user = await user_service.load_by_claims(db, user_id, email)
    if not security.signature_matches(token, user.id, user.email, user.password_hash):
        raise TokenSignatureError(f"signature mismatch for user id={user.id}")
    return user
