"""
Tests for Google federated login.

Google is replaced by an httpx MockTransport.
"""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from sqlalchemy import select

from storefront.db.models import User
from storefront.exceptions import AuthenticationError
from storefront.services.google_login import STATE_TTL, GoogleLoginService
from storefront.services.google_oauth import GoogleOAuthProvider

CALLBACK = "http://test/api/auth/google/callback"


def _google(profile: dict | None = None, token_status: int = 200) -> httpx.MockTransport:
    profile = profile or {
        "id": "g-123",
        "email": "Fiel@Gmail.com",
        "verified_email": True,
        "name": "Hermano Fiel",
        "picture": "https://lh3.googleusercontent.com/a/photo",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com":
            if token_status != 200:
                return httpx.Response(token_status, text="invalid_grant")
            return httpx.Response(200, json={"access_token": "ya29.token", "expires_in": 3599})
        if request.url.path.endswith("/userinfo"):
            assert request.headers["Authorization"] == "Bearer ya29.token"
            return httpx.Response(200, json=profile)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def _login_service(session_tokens, transport: httpx.MockTransport) -> GoogleLoginService:
    provider = GoogleOAuthProvider(
        client_id="client-id",
        client_secret="client-secret",
        http_client=httpx.AsyncClient(transport=transport),
    )
    return GoogleLoginService(provider, session_tokens)


def _state_of(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


class TestAuthorizationUrl:
    def test_contains_client_and_callback(self, session_tokens):
        service = _login_service(session_tokens, _google())

        url = service.start("/dashboard", CALLBACK)

        query = parse_qs(urlparse(url).query)
        assert url.startswith(GoogleOAuthProvider.AUTH_URL)
        assert query["client_id"] == ["client-id"]
        assert query["redirect_uri"] == [CALLBACK]
        assert query["scope"] == ["openid email profile"]


class TestComplete:
    @pytest.mark.asyncio
    async def test_new_user_created(self, db, session_factory, gpt_models, session_tokens):
        service = _login_service(session_tokens, _google())
        state = _state_of(service.start("/dashboard", CALLBACK))

        user, issued, redirect = await service.complete("auth-code", state, db)

        assert user.email == "fiel@gmail.com"
        assert user.name == "Hermano Fiel"
        assert redirect == "/dashboard"
        assert session_tokens.verify(issued.token).user_id == user.user_id
        async with session_factory() as session:
            google_id = await session.scalar(
                select(User.google_id).where(User.id == user.user_id)
            )
        assert google_id == "g-123"

    @pytest.mark.asyncio
    async def test_existing_email_linked(self, db, user, session_tokens):
        profile = {"id": "g-9", "email": user.email, "verified_email": True}
        service = _login_service(session_tokens, _google(profile))
        state = _state_of(service.start("/dashboard", CALLBACK))

        linked, _, _ = await service.complete("auth-code", state, db)

        assert linked.user_id == user.id

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, db, gpt_models, session_tokens):
        service = _login_service(session_tokens, _google())
        state = _state_of(service.start("/dashboard", CALLBACK))
        await service.complete("auth-code", state, db)

        with pytest.raises(AuthenticationError, match="state"):
            await service.complete("auth-code", state, db)

    @pytest.mark.asyncio
    async def test_unknown_state(self, db, gpt_models, session_tokens):
        service = _login_service(session_tokens, _google())

        with pytest.raises(AuthenticationError):
            await service.complete("auth-code", "forged", db)

    @pytest.mark.asyncio
    async def test_stale_state(self, db, gpt_models, session_tokens):
        service = _login_service(session_tokens, _google())
        state = _state_of(service.start("/dashboard", CALLBACK))
        pending = service._sessions[state]
        service._sessions[state] = pending.__class__(
            redirect_uri=pending.redirect_uri,
            callback_url=pending.callback_url,
            created_at=pending.created_at - STATE_TTL - timedelta(seconds=1),
        )

        with pytest.raises(AuthenticationError):
            await service.complete("auth-code", state, db)

    @pytest.mark.asyncio
    async def test_rejected_code(self, db, gpt_models, session_tokens):
        service = _login_service(session_tokens, _google(token_status=400))
        state = _state_of(service.start("/dashboard", CALLBACK))

        with pytest.raises(AuthenticationError, match="400"):
            await service.complete("bad-code", state, db)

    @pytest.mark.asyncio
    async def test_unverified_email_rejected(self, db, gpt_models, session_tokens):
        profile = {"id": "g-1", "email": "x@gmail.com", "verified_email": False}
        service = _login_service(session_tokens, _google(profile))
        state = _state_of(service.start("/dashboard", CALLBACK))

        with pytest.raises(AuthenticationError, match="verified"):
            await service.complete("auth-code", state, db)
