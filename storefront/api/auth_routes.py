"""
Customer authentication routes: password accounts, Google login, resets.
"""

from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.api.dependencies import (
    CurrentUser,
    get_current_user,
    get_email_notifier,
    get_google_login,
    get_session_tokens,
)
from storefront.api.responses import error, user_response
from storefront.config import settings
from storefront.db.session import get_write_db
from storefront.exceptions import (
    AuthenticationError,
    DuplicateUserError,
    InvalidResetTokenError,
    NotificationError,
    UserNotFoundError,
)
from storefront.models.api import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from storefront.services.google_login import GoogleLoginService
from storefront.services.notifications import EmailNotifier
from storefront.services.session_tokens import SessionTokenService
from storefront.services.token_revocation import token_revocation_service
from storefront.services.user_auth import UserAuthService

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["auth"])

# Same answer whether or not the email exists
FORGOT_PASSWORD_MESSAGE = "If an account exists for that email, a reset link has been sent."


def _auth_service(
    db: AsyncSession = Depends(get_write_db),
    tokens: SessionTokenService = Depends(get_session_tokens),
) -> UserAuthService:
    return UserAuthService(db, tokens, reset_expire_minutes=settings.password_reset_expire_minutes)


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    service: UserAuthService = Depends(_auth_service),
) -> AuthResponse:
    """Create a password account and sign it in."""
    try:
        user, issued = await service.register(
            email=request.email,
            username=request.username,
            password=request.password,
            name=request.name,
        )
    except DuplicateUserError as exc:
        raise error(
            status.HTTP_400_BAD_REQUEST, exc, f"{exc.field.capitalize()} already exists"
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return AuthResponse(token=issued.token, expires_at=issued.expires_at, user=user_response(user))


@router.post("/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    service: UserAuthService = Depends(_auth_service),
) -> AuthResponse:
    """Sign in with username (or email) and password."""
    try:
        user, issued = await service.login(request.username, request.password)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    return AuthResponse(token=issued.token, expires_at=issued.expires_at, user=user_response(user))


@router.post("/logout", response_model=MessageResponse)
async def logout(
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> MessageResponse:
    """Revoke the presented token for the rest of its lifetime."""
    await token_revocation_service.revoke_token(
        token=current.token,
        user_id=current.user_id,
        reason="logout",
        token_exp=current.token_expires_at,
        db=db,
    )
    logger.info("user_logged_out", user_id=current.user_id)
    return MessageResponse(message="Logged out")


@router.get("/user", response_model=UserResponse)
async def get_user(
    current: CurrentUser = Depends(get_current_user),
    service: UserAuthService = Depends(_auth_service),
) -> UserResponse:
    """The signed-in user."""
    try:
        user = await service.get_user(current.user_id)
    except UserNotFoundError as exc:
        raise error(status.HTTP_404_NOT_FOUND, exc, "User not found") from exc
    return user_response(user)


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    request: ForgotPasswordRequest,
    service: UserAuthService = Depends(_auth_service),
    notifier: EmailNotifier = Depends(get_email_notifier),
) -> MessageResponse:
    """Email a reset link. Answers the same for unknown addresses."""
    issued = await service.create_reset_token(request.email)
    if issued is not None:
        user, token = issued
        reset_url = f"{settings.public_base_url}/reset-password?{urlencode({'token': token})}"
        try:
            await notifier.send_password_reset(user.email, reset_url)
        except NotificationError as exc:
            # The token stays valid; the user can ask again
            logger.error("password_reset_email_failed", user_id=user.id, error=str(exc))

    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    request: ResetPasswordRequest,
    service: UserAuthService = Depends(_auth_service),
) -> MessageResponse:
    """Set a new password with a reset token. Tokens are single use."""
    try:
        await service.reset_password(request.token, request.password)
    except InvalidResetTokenError as exc:
        raise error(status.HTTP_400_BAD_REQUEST, exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return MessageResponse(message="Password has been reset")


# ============================================================================
# Google login
# ============================================================================


def _safe_redirect(redirect_uri: str | None) -> str:
    """Only same-site paths are accepted as post-login destinations."""
    if not redirect_uri or not redirect_uri.startswith("/") or redirect_uri.startswith("//"):
        return f"{settings.public_base_url}/dashboard"
    return f"{settings.public_base_url}{redirect_uri}"


@router.get("/auth/google")
async def google_login(
    request: Request,
    redirect_uri: str | None = None,
    login_service: GoogleLoginService = Depends(get_google_login),
) -> RedirectResponse:
    """Redirect to the Google consent screen."""
    scheme = request.headers.get("X-Forwarded-Proto", request.url.scheme)
    host = request.headers.get("Host", request.url.hostname)
    callback_url = f"{scheme}://{host}/api/auth/google/callback"

    auth_url = login_service.start(_safe_redirect(redirect_uri), callback_url)
    return RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)


@router.get("/auth/google/callback")
async def google_callback(
    code: str,
    state: str,
    db: AsyncSession = Depends(get_write_db),
    login_service: GoogleLoginService = Depends(get_google_login),
) -> RedirectResponse:
    """Finish the Google login and hand the session token to the web client."""
    try:
        user, issued, redirect_uri = await login_service.complete(code, state, db)
    except AuthenticationError as exc:
        logger.warning("oauth_callback_failed", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Google login failed",
        ) from exc

    logger.info("oauth_callback_success", user_id=user.user_id)
    return RedirectResponse(
        url=f"{redirect_uri}?{urlencode({'token': issued.token})}",
        status_code=status.HTTP_302_FOUND,
    )
