from datetime import UTC, datetime, timedelta
from typing import Optional
from jose import JWTError, jwt

from chatrelay.core.config import settings
from chatrelay.core.logging import logger
from chatrelay.schemas.auth import Identity, Token
from chatrelay.utils.sanitizer import sanitize_string


# JWT Authentication Utilities
# Tokens are issued by the auth service; the relay only needs to verify them.
# create_access_token exists for that service (same secret) and for tests.
def create_access_token(user_id: str, email: Optional[str] = None, expires_delta: Optional[timedelta] = None) -> Token:
    """Creates a new JWT access token.

    Args:
        user_id: The unique identifier of the user (token subject)
        email: Optional email claim
        expires_delta: Optional custom expiration time
    """
    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(days=settings.JWT_ACCESS_TOKEN_EXPIRE_DAYS)

    # the payload is what gets encoded into the token
    to_encode = {
        "sub": user_id,
        "email": email,
        "exp": expire,
        "iat": datetime.now(UTC),  # Issued At (standard claim)
        # JTI (JWT ID): A unique identifier for this specific token instance.
        "jti": sanitize_string(f"{user_id}-{datetime.now(UTC).timestamp()}"),
    }
    encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    logger.debug("encoded_token_generated")

    return Token(access_token=encoded_jwt, expires_at=expire)


def verify_token(token: str) -> Optional[Identity]:
    """
    Decodes and verifies a JWT token. Returns the caller's identity if valid.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        # If the signature is invalid or token is expired, jose raises JWTError
        logger.warning("invalid_or_expired_token", error=str(e))
        return None

    subject = payload.get("sub")
    if not subject:
        return None

    return Identity(user_id=str(subject), email=payload.get("email"))
