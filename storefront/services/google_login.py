"""
Google login flow - state bookkeeping around GoogleOAuthProvider.
"""

import secrets
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.db.models import utc_now
from storefront.exceptions import AuthenticationError
from storefront.models.domain import IssuedToken, OAuthSession, UserData, UserRole
from storefront.services.google_oauth import GoogleOAuthProvider
from storefront.services.session_tokens import SessionTokenService
from storefront.services.users import UserService, user_to_domain

logger = get_logger(__name__)

STATE_TTL = timedelta(minutes=10)


class GoogleLoginService:
    """Starts and completes federated logins."""

    def __init__(self, oauth_provider: GoogleOAuthProvider, tokens: SessionTokenService):
        self.oauth_provider = oauth_provider
        self.tokens = tokens
        self._sessions: dict[str, OAuthSession] = {}

    def start(self, redirect_uri: str, callback_url: str) -> str:
        """Return the Google consent URL for a fresh state."""
        self._drop_stale_states()
        state = secrets.token_urlsafe(32)
        self._sessions[state] = OAuthSession(
            redirect_uri=redirect_uri, callback_url=callback_url, created_at=utc_now()
        )
        logger.info("oauth_flow_initiated", state=state[:8])
        return self.oauth_provider.get_authorization_url(state, callback_url)

    async def complete(
        self, code: str, state: str, db: AsyncSession
    ) -> tuple[UserData, IssuedToken, str]:
        """
        Finish the login and sign the user in.

        Returns:
            (user, token, redirect_uri)

        Raises:
            AuthenticationError: Unknown or expired state, or Google rejected the code
        """
        session = self._sessions.pop(state, None)
        if session is None or utc_now() - session.created_at > STATE_TTL:
            logger.warning("invalid_oauth_state", state=state[:8])
            raise AuthenticationError("Invalid OAuth state")

        token = await self.oauth_provider.exchange_code_for_token(code, session.callback_url)
        profile = await self.oauth_provider.get_user_info(token.access_token)

        user = await UserService(db).upsert_google_user(profile)
        logger.info("oauth_login_success", user_id=user.id)
        return (
            user_to_domain(user),
            self.tokens.issue(user.id, UserRole(user.role)),
            session.redirect_uri,
        )

    def _drop_stale_states(self) -> None:
        now = utc_now()
        stale = [s for s, sess in self._sessions.items() if now - sess.created_at > STATE_TTL]
        for state in stale:
            del self._sessions[state]
