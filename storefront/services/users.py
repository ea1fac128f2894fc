"""
User Service - lookup and creation of storefront users.

NO DICTIONARIES - All lookups return ORM rows or typed domain models.
"""

import secrets

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.db.models import User, as_utc
from storefront.exceptions import DuplicateUserError, UserNotFoundError, WriteVerificationError
from storefront.models.domain import OAuthUser, UserData, UserRole

logger = get_logger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def user_to_domain(user: User) -> UserData:
    """Convert ORM user to the client-safe domain model."""
    return UserData(
        user_id=user.id,
        email=user.email,
        username=user.username,
        name=user.name,
        role=UserRole(user.role),
        profile_image_url=user.profile_image_url,
        stripe_customer_id=user.stripe_customer_id,
        created_at=as_utc(user.created_at),
    )


class UserService:
    """User lookups plus the two creation paths that do not take a password."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, user_id: str) -> User:
        """
        Raises:
            UserNotFoundError: No user with this id
        """
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def get_by_email(self, email: str) -> User:
        """
        Raises:
            UserNotFoundError: No user with this email
        """
        user = await self.find_by_email(email)
        if user is None:
            raise UserNotFoundError(email)
        return user

    async def find_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == normalize_email(email))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_username(self, username: str) -> User | None:
        stmt = select(User).where(User.username == username)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        email: str,
        username: str,
        name: str,
        password_hash: str | None = None,
        google_id: str | None = None,
        profile_image_url: str | None = None,
    ) -> User:
        """
        Insert a new user.

        Raises:
            DuplicateUserError: Email or username taken (including by a concurrent insert)
        """
        email = normalize_email(email)
        if await self.find_by_email(email) is not None:
            raise DuplicateUserError("email", email)
        if await self.find_by_username(username) is not None:
            raise DuplicateUserError("username", username)

        user = User(
            email=email,
            username=username,
            name=name,
            password_hash=password_hash,
            google_id=google_id,
            profile_image_url=profile_image_url,
            role=UserRole.USER.value,
        )
        self.session.add(user)

        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            raise DuplicateUserError("email", email) from exc

        verified = await self.session.get(User, user.id)
        if verified is None:
            raise WriteVerificationError(f"User {user.id} not found after insert")

        await self.session.commit()
        logger.info("user_created", user_id=verified.id, has_password=password_hash is not None)
        return verified

    async def get_or_create_for_email(self, email: str) -> tuple[User, bool]:
        """
        Find a user by email or create a passwordless one.

        Used by admin grants for customers who have not registered yet.
        """
        existing = await self.find_by_email(email)
        if existing is not None:
            return existing, False

        local_part = normalize_email(email).split("@")[0]
        username = await self._available_username(local_part)
        try:
            return await self.create(email=email, username=username, name=local_part), True
        except DuplicateUserError:
            user = await self.find_by_email(email)
            if user is None:
                raise
            return user, False

    async def upsert_google_user(self, profile: OAuthUser) -> User:
        """
        Link a Google profile to a user, merging by email.

        A user who registered with a password and later signs in with Google
        keeps one account.
        """
        stmt = select(User).where(User.google_id == profile.id)
        result = await self.session.execute(stmt)
        user = result.scalar_one_or_none()
        if user is None:
            user = await self.find_by_email(profile.email)

        if user is not None:
            if not user.google_id:
                user.google_id = profile.id
            if profile.picture and user.profile_image_url != profile.picture:
                user.profile_image_url = profile.picture
            await self.session.commit()
            return user

        local_part = normalize_email(profile.email).split("@")[0]
        return await self.create(
            email=profile.email,
            username=await self._available_username(local_part),
            name=profile.name or local_part,
            google_id=profile.id,
            profile_image_url=profile.picture,
        )

    async def set_stripe_customer_id(self, user: User, customer_id: str) -> None:
        """Persist a newly created gateway customer id."""
        user.stripe_customer_id = customer_id
        await self.session.commit()
        logger.info("stripe_customer_linked", user_id=user.id, customer_id=customer_id)

    async def _available_username(self, base: str) -> str:
        candidate = base or "user"
        while await self.find_by_username(candidate) is not None:
            candidate = f"{base}-{secrets.token_hex(3)}"
        return candidate
