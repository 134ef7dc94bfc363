"""Bearer token verification for the function surface."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
import structlog

from wacrm.core.config import settings
from wacrm.core.exceptions import AuthenticationFailed

logger = structlog.get_logger()


@dataclass(frozen=True)
class AuthUser:
    """Authenticated caller extracted from the access token claims."""

    id: str
    email: str | None = None


def parse_bearer(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        logger.warning("Missing or invalid authorization header")
        raise AuthenticationFailed()
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthenticationFailed()
    return token


def decode_access_token(token: str) -> AuthUser:
    """Verify an access token signed by the managed auth service.

    Raises:
        AuthenticationFailed: If the token is expired, tampered or has no subject
    """
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError:
        logger.info("Access token expired")
        raise AuthenticationFailed("Session expired")
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid access token", error=str(e))
        raise AuthenticationFailed()

    subject = claims.get("sub")
    if not subject:
        raise AuthenticationFailed()
    return AuthUser(id=str(subject), email=claims.get("email"))


def create_access_token(user_id: str, email: str | None = None, expires_in: int = 3600) -> str:
    """Sign an access token with the configured secret (development and tests)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
