"""
Password hashing and bearer-token crypto.

Tokens are HS256 JWTs whose signing key is the user's current password hash
rather than an application secret:

- claims are ``{"iss": email, "sub": str(user_id)}`` with no expiry,
- changing the password changes the hash and therefore revokes every token
  issued before the change.

Verification against the database lives in ``services.token_service``; this
module only knows about bytes and claims.
"""
import bcrypt
from jose import JWTError, jwt

from conduit.config import settings
from conduit.exceptions import MalformedTokenError

# bcrypt ignores (newer releases reject) anything past 72 bytes.
MAX_PASSWORD_BYTES = 72

# Largest value an Integer primary key column can hold.
MAX_USER_ID = 2**31 - 1


def hash_password(password: str) -> str:
    """Hash a plain text password using bcrypt."""
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain text password against a bcrypt hash."""
    if len(plain_password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        # No stored hash was made from a password this long.
        return False
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def create_token(user_id: int, email: str, signing_key: str) -> str:
    claims = {"iss": email, "sub": str(user_id)}
    return jwt.encode(claims, signing_key, algorithm=settings.JWT_ALGORITHM)


def read_claims(token: str) -> tuple[int, str]:
    """
    Return ``(user_id, email)`` from *token* WITHOUT checking the signature.

    The key needed for the signature check is the owner's password hash, so
    the claims have to be read first to find out who the owner is.

    Raises ``MalformedTokenError`` when the token cannot be decoded, a claim
    is missing, or the subject is not an integer id in the primary key range.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise MalformedTokenError("token could not be decoded") from exc

    subject = claims.get("sub")
    issuer = claims.get("iss")
    if not subject or not issuer:
        raise MalformedTokenError("token is missing sub or iss")

    try:
        user_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise MalformedTokenError("token subject is not a user id") from exc

    if not 0 < user_id <= MAX_USER_ID:
        raise MalformedTokenError("token subject is out of the user id range")

    return user_id, issuer


def signature_matches(token: str, user_id: int, email: str, signing_key: str) -> bool:
    """Check *token*'s signature and claims against the given key and identity."""
    try:
        jwt.decode(
            token,
            signing_key,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=email,
            subject=str(user_id),
        )
    except JWTError:
        return False
    return True
