"""
Google OAuth provider for federated customer login.
"""

from urllib.parse import urlencode

import httpx
from structlog import get_logger

from storefront.exceptions import AuthenticationError
from storefront.models.domain import OAuthToken, OAuthUser

logger = get_logger(__name__)


class GoogleOAuthProvider:
    """Authorization-code flow against Google."""

    AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v1/userinfo"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "prompt": "select_account",
        }
        return f"{self.AUTH_URL}?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str, redirect_uri: str) -> OAuthToken:
        """
        Raises:
            AuthenticationError: Google rejected the code or could not be reached
        """
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            response = await self.http_client.post(self.TOKEN_URL, data=data)
            response.raise_for_status()
            token_data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "token_exchange_failed",
                status=exc.response.status_code,
                text=exc.response.text[:200],
            )
            raise AuthenticationError(
                f"Failed to exchange code: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("token_exchange_error", error=str(exc))
            raise AuthenticationError("Failed to exchange authorization code") from exc

        return OAuthToken(
            access_token=token_data["access_token"],
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=token_data.get("expires_in"),
            refresh_token=token_data.get("refresh_token"),
        )

    async def get_user_info(self, access_token: str) -> OAuthUser:
        """
        Raises:
            AuthenticationError: Profile could not be fetched or has no verified email
        """
        try:
            response = await self.http_client.get(
                self.USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
            )
            response.raise_for_status()
            user_data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error("user_info_fetch_failed", status=exc.response.status_code)
            raise AuthenticationError(
                f"Failed to get user info: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("user_info_error", error=str(exc))
            raise AuthenticationError("Failed to get user information") from exc

        if not user_data.get("email") or user_data.get("verified_email") is False:
            raise AuthenticationError("Google account has no verified email")

        return OAuthUser(
            id=str(user_data["id"]),
            email=user_data["email"],
            name=user_data.get("name"),
            picture=user_data.get("picture"),
        )

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
