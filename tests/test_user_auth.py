"""
Tests for UserAuthService: registration, login and password reset.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from storefront.db.models import User, utc_now
from storefront.exceptions import AuthenticationError, DuplicateUserError, InvalidResetTokenError
from storefront.services.user_auth import UserAuthService


@pytest.fixture
def auth(db, session_tokens) -> UserAuthService:
    return UserAuthService(db, session_tokens, reset_expire_minutes=30)


class TestRegister:
    """Tests for register()."""

    @pytest.mark.asyncio
    async def test_creates_user_and_token(self, auth, session_tokens, gpt_models):
        user, issued = await auth.register("New@Example.com", "newbie", "correct horse", "New")

        assert user.email == "new@example.com"
        assert user.name == "New"
        assert session_tokens.verify(issued.token).user_id == user.user_id

    @pytest.mark.asyncio
    async def test_password_is_hashed(self, auth, db, gpt_models):
        user, _ = await auth.register("new@example.com", "newbie", "correct horse")

        stored = await db.scalar(select(User.password_hash).where(User.id == user.user_id))
        assert stored.startswith("$argon2")
        assert "correct horse" not in stored

    @pytest.mark.asyncio
    async def test_name_defaults_to_username(self, auth, gpt_models):
        user, _ = await auth.register("new@example.com", "newbie", "correct horse")
        assert user.name == "newbie"

    @pytest.mark.asyncio
    async def test_duplicate_email(self, auth, user):
        with pytest.raises(DuplicateUserError) as exc_info:
            await auth.register("USER@example.com", "someone", "correct horse")
        assert exc_info.value.field == "email"

    @pytest.mark.asyncio
    async def test_duplicate_username(self, auth, user):
        with pytest.raises(DuplicateUserError) as exc_info:
            await auth.register("fresh@example.com", "user", "correct horse")
        assert exc_info.value.field == "username"

    @pytest.mark.asyncio
    async def test_short_password(self, auth, gpt_models):
        with pytest.raises(ValueError, match="at least 8"):
            await auth.register("new@example.com", "newbie", "short")


class TestLogin:
    """Tests for login()."""

    @pytest.mark.asyncio
    async def test_by_username_and_email(self, auth, gpt_models):
        await auth.register("new@example.com", "newbie", "correct horse")

        by_username, _ = await auth.login("newbie", "correct horse")
        by_email, _ = await auth.login("new@example.com", "correct horse")

        assert by_username.user_id == by_email.user_id

    @pytest.mark.asyncio
    async def test_wrong_password(self, auth, gpt_models):
        await auth.register("new@example.com", "newbie", "correct horse")

        with pytest.raises(AuthenticationError):
            await auth.login("newbie", "wrong horse")

    @pytest.mark.asyncio
    async def test_unknown_user(self, auth, gpt_models):
        with pytest.raises(AuthenticationError):
            await auth.login("ghost", "correct horse")

    @pytest.mark.asyncio
    async def test_passwordless_user_cannot_log_in(self, auth, user):
        """Users created by Google login or admin grants have no password."""
        with pytest.raises(AuthenticationError):
            await auth.login(user.username, "")


class TestPasswordReset:
    """Tests for create_reset_token() and reset_password()."""

    @pytest.mark.asyncio
    async def test_unknown_email_returns_none(self, auth, gpt_models):
        assert await auth.create_reset_token("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_reset_then_login(self, auth, gpt_models):
        await auth.register("new@example.com", "newbie", "correct horse")
        _, token = await auth.create_reset_token("new@example.com")

        await auth.reset_password(token, "battery staple")

        user, _ = await auth.login("newbie", "battery staple")
        assert user.email == "new@example.com"

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, auth, gpt_models):
        await auth.register("new@example.com", "newbie", "correct horse")
        _, token = await auth.create_reset_token("new@example.com")
        await auth.reset_password(token, "battery staple")

        with pytest.raises(InvalidResetTokenError):
            await auth.reset_password(token, "another password")

    @pytest.mark.asyncio
    async def test_expired_token(self, auth, db, gpt_models):
        await auth.register("new@example.com", "newbie", "correct horse")
        user, token = await auth.create_reset_token("new@example.com")
        user.reset_token_expiry = utc_now() - timedelta(minutes=1)
        await db.commit()

        with pytest.raises(InvalidResetTokenError):
            await auth.reset_password(token, "battery staple")

    @pytest.mark.asyncio
    async def test_unknown_token(self, auth, gpt_models):
        with pytest.raises(InvalidResetTokenError):
            await auth.reset_password("f" * 64, "battery staple")

    @pytest.mark.asyncio
    async def test_short_new_password(self, auth, gpt_models):
        with pytest.raises(ValueError):
            await auth.reset_password("f" * 64, "short")
