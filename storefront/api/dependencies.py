"""
FastAPI Dependencies - authentication, authorization and service wiring.

All dependencies return typed objects.
"""

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.config import settings
from storefront.db.models import User
from storefront.db.session import get_write_db
from storefront.exceptions import AuthenticationError
from storefront.models.domain import UserRole
from storefront.services.google_login import GoogleLoginService
from storefront.services.google_oauth import GoogleOAuthProvider
from storefront.services.notifications import EmailNotifier
from storefront.services.payment_provider import PaymentProvider
from storefront.services.session_tokens import SessionTokenService
from storefront.services.stripe_provider import StripeProvider
from storefront.services.support_assistant import SupportAssistant
from storefront.services.token_revocation import token_revocation_service

logger = get_logger(__name__)

# Bearer token scheme; missing headers are reported as 401 below, not 403
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller, resolved from a session token."""

    user_id: str
    role: UserRole
    token: str
    token_expires_at: datetime


# ============================================================================
# Service singletons
# ============================================================================


@lru_cache(maxsize=1)
def get_session_tokens() -> SessionTokenService:
    """Token signer built from settings."""
    return SessionTokenService(
        jwt_secret=settings.jwt_secret,
        expire_hours=settings.jwt_expire_hours,
    )


@lru_cache(maxsize=1)
def _stripe_provider() -> StripeProvider:
    return StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
        timeout_seconds=settings.stripe_timeout_seconds,
        retry_attempts=settings.stripe_retry_attempts,
    )


def get_payment_provider() -> PaymentProvider:
    """
    Payment gateway adapter.

    Raises:
        HTTPException(503): Stripe keys are not configured
    """
    if not settings.stripe_api_key:
        logger.error("payment_provider_not_configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider not configured",
        )
    return _stripe_provider()


@lru_cache(maxsize=1)
def get_email_notifier() -> EmailNotifier:
    return EmailNotifier(
        api_key=settings.sendgrid_api_key,
        from_address=settings.email_from_address,
    )


@lru_cache(maxsize=1)
def get_support_assistant() -> SupportAssistant:
    return SupportAssistant(api_key=settings.openai_api_key, model=settings.openai_model)


@lru_cache(maxsize=1)
def get_google_login() -> GoogleLoginService:
    """
    Federated login service.

    A single instance holds the pending OAuth states for this process.
    """
    oauth_provider = GoogleOAuthProvider(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
    )
    return GoogleLoginService(oauth_provider=oauth_provider, tokens=get_session_tokens())


# ============================================================================
# Authentication
# ============================================================================


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_write_db),
    tokens: SessionTokenService = Depends(get_session_tokens),
) -> CurrentUser:
    """
    Validate the session token from the Authorization header.

    Raises:
        HTTPException(401): Missing, invalid, expired or revoked token
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials
    try:
        claims = tokens.verify(token)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    # SECURITY: logged-out tokens stay rejected until they expire
    if await token_revocation_service.is_revoked(token, db):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentUser(
        user_id=claims.user_id,
        role=claims.role,
        token=token,
        token_expires_at=claims.expires_at,
    )


async def require_admin(
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> CurrentUser:
    """
    Require the admin role.

    The role is re-read from the database so a demotion takes effect
    immediately, whatever the token claims.

    Raises:
        HTTPException(403): Caller is not an admin
    """
    user = await db.get(User, current.user_id)
    if user is None or user.role != UserRole.ADMIN.value:
        logger.warning(
            "admin_auth_insufficient_role",
            user_id=current.user_id,
            role=user.role if user else None,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return current
