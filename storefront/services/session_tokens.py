"""
Session Tokens - signed bearer JWTs for storefront users.
"""

import secrets
from datetime import UTC, datetime, timedelta

import jwt
from structlog import get_logger

from storefront.exceptions import AuthenticationError
from storefront.models.domain import IssuedToken, TokenClaims, UserRole

logger = get_logger(__name__)

ALGORITHM = "HS256"


class SessionTokenService:
    """Issues and verifies HS256 bearer tokens."""

    def __init__(self, jwt_secret: str, expire_hours: int = 24 * 7) -> None:
        self.jwt_secret = jwt_secret
        self.expire_hours = expire_hours

    def issue(self, user_id: str, role: UserRole) -> IssuedToken:
        """Sign a token for the user. ``jti`` makes every token distinct."""
        now = datetime.now(UTC)
        expires_at = now + timedelta(hours=self.expire_hours)
        payload = {
            "sub": user_id,
            "role": role.value,
            "jti": secrets.token_hex(8),
            "iat": now,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self.jwt_secret, algorithm=ALGORITHM)
        return IssuedToken(token=token, expires_at=expires_at)

    def verify(self, token: str) -> TokenClaims:
        """
        Raises:
            AuthenticationError: Expired, tampered or malformed token
        """
        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.info("session_token_expired")
            raise AuthenticationError("Token expired") from exc
        except jwt.InvalidTokenError as exc:
            logger.warning("session_token_invalid", error=str(exc))
            raise AuthenticationError("Invalid token") from exc

        try:
            role = UserRole(payload.get("role", UserRole.USER.value))
        except ValueError as exc:
            raise AuthenticationError("Invalid token role") from exc

        return TokenClaims(
            user_id=str(payload["sub"]),
            role=role,
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
        )
