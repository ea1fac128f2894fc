"""
User Authentication Service - passwords, sessions and password resets.

Passwords are hashed with Argon2id; nothing reversible is ever stored.
"""

import secrets
from datetime import timedelta

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.db.models import User, as_utc, utc_now
from storefront.exceptions import AuthenticationError, InvalidResetTokenError
from storefront.models.domain import IssuedToken, UserData, UserRole
from storefront.services.session_tokens import SessionTokenService
from storefront.services.users import UserService, user_to_domain

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 8


class UserAuthService:
    """Registration, login and password reset."""

    def __init__(
        self,
        session: AsyncSession,
        tokens: SessionTokenService,
        reset_expire_minutes: int = 60,
    ) -> None:
        self.session = session
        self.tokens = tokens
        self.reset_expire_minutes = reset_expire_minutes
        self.users = UserService(session)
        self.password_hasher = PasswordHasher()

    async def register(
        self, email: str, username: str, password: str, name: str | None = None
    ) -> tuple[UserData, IssuedToken]:
        """
        Create a password user and sign them in.

        Raises:
            DuplicateUserError: Email or username already taken
            ValueError: Password too short
        """
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        user = await self.users.create(
            email=email,
            username=username,
            name=name or username,
            password_hash=self.password_hasher.hash(password),
        )
        logger.info("user_registered", user_id=user.id)
        return user_to_domain(user), self.tokens.issue(user.id, UserRole(user.role))

    async def login(self, username_or_email: str, password: str) -> tuple[UserData, IssuedToken]:
        """
        Raises:
            AuthenticationError: Unknown user, no password set, or wrong password
        """
        user = await self.users.find_by_username(username_or_email)
        if user is None and "@" in username_or_email:
            user = await self.users.find_by_email(username_or_email)

        if user is None or not user.password_hash:
            logger.info("login_rejected", reason="unknown_user")
            raise AuthenticationError("Invalid username or password")

        try:
            self.password_hasher.verify(user.password_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError) as exc:
            logger.info("login_rejected", reason="bad_password", user_id=user.id)
            raise AuthenticationError("Invalid username or password") from exc

        if self.password_hasher.check_needs_rehash(user.password_hash):
            user.password_hash = self.password_hasher.hash(password)
            await self.session.commit()

        logger.info("user_logged_in", user_id=user.id)
        return user_to_domain(user), self.tokens.issue(user.id, UserRole(user.role))

    async def create_reset_token(self, email: str) -> tuple[User, str] | None:
        """
        Issue a single-use reset token.

        Returns None for unknown emails; callers answer identically either way
        so the endpoint cannot be used to probe for accounts.
        """
        user = await self.users.find_by_email(email)
        if user is None:
            logger.info("password_reset_unknown_email")
            return None

        token = secrets.token_hex(32)
        user.reset_token = token
        user.reset_token_expiry = utc_now() + timedelta(minutes=self.reset_expire_minutes)
        await self.session.commit()

        logger.info("password_reset_requested", user_id=user.id)
        return user, token

    async def reset_password(self, token: str, new_password: str) -> UserData:
        """
        Raises:
            InvalidResetTokenError: Unknown, used or expired token
            ValueError: Password too short
        """
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        stmt = select(User).where(User.reset_token == token)
        result = await self.session.execute(stmt)
        user = result.scalar_one_or_none()

        if (
            user is None
            or user.reset_token_expiry is None
            or as_utc(user.reset_token_expiry) <= utc_now()
        ):
            raise InvalidResetTokenError()

        user.password_hash = self.password_hasher.hash(new_password)
        user.reset_token = None
        user.reset_token_expiry = None
        await self.session.commit()

        logger.info("password_reset_completed", user_id=user.id)
        return user_to_domain(user)

    async def get_user(self, user_id: str) -> UserData:
        """
        Raises:
            UserNotFoundError: Unknown user
        """
        return user_to_domain(await self.users.get_by_id(user_id))

