"""
Tests for account and session routes.
"""

from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from storefront.api.auth_routes import FORGOT_PASSWORD_MESSAGE
from storefront.api.dependencies import get_email_notifier, get_google_login
from storefront.exceptions import AuthenticationError, NotificationError
from storefront.models.domain import IssuedToken, UserData, UserRole


class RecordingNotifier:
    """Stands in for EmailNotifier; keeps every reset link."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    async def send_password_reset(self, to: str, reset_url: str) -> bool:
        if self.fail:
            raise NotificationError("SendGrid returned 500")
        self.sent.append((to, reset_url))
        return True


@pytest.fixture
def notifier(app) -> RecordingNotifier:
    recording = RecordingNotifier()
    app.dependency_overrides[get_email_notifier] = lambda: recording
    return recording


async def _register(client, email="fiel@example.com", username="fiel", password="correct horse"):
    return await client.post(
        "/api/register",
        json={"email": email, "username": username, "password": password, "name": "Fiel"},
    )


class TestRegisterAndLogin:
    @pytest.mark.asyncio
    async def test_register(self, client, gpt_models):
        response = await _register(client)

        assert response.status_code == 201
        body = response.json()
        assert body["token"]
        assert body["user"]["email"] == "fiel@example.com"
        assert body["user"]["role"] == "user"
        assert "passwordHash" not in body["user"]

    @pytest.mark.asyncio
    async def test_duplicate_registration(self, client, gpt_models):
        await _register(client)

        response = await _register(client, username="otro")

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "user_exists"

    @pytest.mark.asyncio
    async def test_invalid_email(self, client, gpt_models):
        response = await _register(client, email="no-es-un-email")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_short_password(self, client, gpt_models):
        response = await _register(client, password="corta")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_login(self, client, gpt_models):
        await _register(client)

        response = await client.post(
            "/api/login", json={"username": "fiel@example.com", "password": "correct horse"}
        )

        assert response.status_code == 200
        assert response.json()["user"]["username"] == "fiel"

    @pytest.mark.asyncio
    async def test_bad_login(self, client, gpt_models):
        await _register(client)

        response = await client.post(
            "/api/login", json={"username": "fiel", "password": "wrong horse"}
        )

        assert response.status_code == 401


class TestSession:
    @pytest.mark.asyncio
    async def test_current_user(self, client, gpt_models):
        token = (await _register(client)).json()["token"]

        response = await client.get("/api/user", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["name"] == "Fiel"

    @pytest.mark.asyncio
    async def test_logout_revokes_token(self, client, gpt_models):
        token = (await _register(client)).json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        logout = await client.post("/api/logout", headers=headers)
        after = await client.get("/api/user", headers=headers)

        assert logout.status_code == 200
        assert after.status_code == 401
        assert after.json()["detail"] == "Token has been revoked"

    @pytest.mark.asyncio
    async def test_other_tokens_survive_logout(self, client, gpt_models):
        first = (await _register(client)).json()["token"]
        second = (
            await client.post("/api/login", json={"username": "fiel", "password": "correct horse"})
        ).json()["token"]

        await client.post("/api/logout", headers={"Authorization": f"Bearer {first}"})
        response = await client.get("/api/user", headers={"Authorization": f"Bearer {second}"})

        assert response.status_code == 200


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_full_reset_flow(self, client, notifier, gpt_models):
        await _register(client)

        forgot = await client.post("/api/forgot-password", json={"email": "fiel@example.com"})
        to, reset_url = notifier.sent[0]
        token = parse_qs(urlparse(reset_url).query)["token"][0]
        reset = await client.post(
            "/api/reset-password", json={"token": token, "password": "battery staple"}
        )
        login = await client.post(
            "/api/login", json={"username": "fiel", "password": "battery staple"}
        )

        assert forgot.json()["message"] == FORGOT_PASSWORD_MESSAGE
        assert to == "fiel@example.com"
        assert reset_url.startswith("https://ministerioai.com/reset-password?token=")
        assert reset.status_code == 200
        assert login.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_email_same_answer(self, client, notifier, gpt_models):
        response = await client.post("/api/forgot-password", json={"email": "nadie@example.com"})

        assert response.status_code == 200
        assert response.json()["message"] == FORGOT_PASSWORD_MESSAGE
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_email_failure_not_exposed(self, app, client, gpt_models):
        app.dependency_overrides[get_email_notifier] = lambda: RecordingNotifier(fail=True)
        await _register(client)

        response = await client.post("/api/forgot-password", json={"email": "fiel@example.com"})

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_bad_reset_token(self, client, gpt_models):
        response = await client.post(
            "/api/reset-password", json={"token": "nope", "password": "battery staple"}
        )

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "invalid_reset_token"


class StubGoogleLogin:
    """Stands in for GoogleLoginService."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.started: list[tuple[str, str]] = []

    def start(self, redirect_uri: str, callback_url: str) -> str:
        self.started.append((redirect_uri, callback_url))
        return "https://accounts.google.com/o/oauth2/v2/auth?state=abc"

    async def complete(self, code, state, db):
        if self.fail:
            raise AuthenticationError("Invalid OAuth state")
        now = datetime.now(UTC)
        user = UserData(
            user_id="user-1",
            email="fiel@gmail.com",
            username="fiel",
            name="Fiel",
            role=UserRole.USER,
            profile_image_url=None,
            stripe_customer_id=None,
            created_at=now,
        )
        token = IssuedToken(token="signed.jwt.token", expires_at=now + timedelta(hours=1))
        return user, token, "https://ministerioai.com/dashboard"


class TestGoogleLogin:
    @pytest.mark.asyncio
    async def test_redirects_to_google(self, app, client):
        stub = StubGoogleLogin()
        app.dependency_overrides[get_google_login] = lambda: stub

        response = await client.get(
            "/api/auth/google",
            params={"redirect_uri": "/dashboard"},
            headers={"X-Forwarded-Proto": "https"},
        )

        assert response.status_code == 302
        assert response.headers["location"].startswith("https://accounts.google.com/")
        assert stub.started == [
            ("https://ministerioai.com/dashboard", "https://test/api/auth/google/callback")
        ]

    @pytest.mark.asyncio
    async def test_offsite_redirect_replaced(self, app, client):
        stub = StubGoogleLogin()
        app.dependency_overrides[get_google_login] = lambda: stub

        await client.get("/api/auth/google", params={"redirect_uri": "https://evil.example"})
        await client.get("/api/auth/google", params={"redirect_uri": "//evil.example/x"})

        assert [redirect for redirect, _ in stub.started] == [
            "https://ministerioai.com/dashboard",
            "https://ministerioai.com/dashboard",
        ]

    @pytest.mark.asyncio
    async def test_callback_hands_over_token(self, app, client):
        app.dependency_overrides[get_google_login] = lambda: StubGoogleLogin()

        response = await client.get(
            "/api/auth/google/callback", params={"code": "c", "state": "abc"}
        )

        assert response.status_code == 302
        assert response.headers["location"] == (
            "https://ministerioai.com/dashboard?token=signed.jwt.token"
        )

    @pytest.mark.asyncio
    async def test_callback_failure(self, app, client):
        app.dependency_overrides[get_google_login] = lambda: StubGoogleLogin(fail=True)

        response = await client.get(
            "/api/auth/google/callback", params={"code": "c", "state": "forged"}
        )

        assert response.status_code == 401
