"""
Access Verification - one entitlement check for every way a GPT is opened.

Both the dashboard "open GPT" action and the cross-system check made by the
GPT's own backend go through ``verify_and_use``.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.db.models import User, utc_now
from storefront.exceptions import (
    AccessDeniedError,
    AccessExpiredError,
    StorefrontError,
    UserNotFoundError,
)
from storefront.models.domain import AccessGrant, AccessResult
from storefront.observability.metrics import metrics
from storefront.services import catalog
from storefront.services.catalog import Product
from storefront.services.ledger import AccessLedger
from storefront.services.users import UserService

logger = get_logger(__name__)


class AccessService:
    """Entitlement checks with usage counting."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.ledger = AccessLedger(session)
        self.users = UserService(session)

    async def verify_and_use(
        self,
        product_identifier: str,
        user_id: str | None = None,
        email: str | None = None,
    ) -> AccessResult:
        """
        Check that the user holds a live grant for the product and count one use.

        The product may be given as a catalog id or as the GPT's slugified name.

        Raises:
            UserNotFoundError: Neither user_id nor email resolve to a user
            ProductNotFoundError: Product is not in the catalog
            AccessDeniedError: User never bought this product
            AccessExpiredError: Grant exists but has expired
        """
        try:
            user = await self._resolve_user(user_id, email)
            product = catalog.resolve_tool(product_identifier)
            grant = await self.ledger.find_access(user.id, product.product_id)
            if grant is None:
                raise AccessDeniedError(user.id, product.product_id)
            return await self._use(grant, product)
        except StorefrontError as exc:
            metrics.record_access_check(False, exc.reason)
            logger.info(
                "access_check_rejected",
                reason=exc.reason,
                product_identifier=product_identifier,
                user_id=user_id,
            )
            raise

    async def verify_access_code(self, access_code: str, product_identifier: str) -> AccessResult:
        """
        Same check keyed by a grant's opaque access token instead of a user.

        Raises:
            ProductNotFoundError: Product is not in the catalog
            AccessDeniedError: Unknown code, or code issued for another product
            AccessExpiredError: Grant has expired
        """
        try:
            product = catalog.resolve_tool(product_identifier)
            grant = await self.ledger.find_access_by_token(access_code)
            if grant is None or grant.model_id != product.product_id:
                raise AccessDeniedError("access-code", product.product_id)
            return await self._use(grant, product)
        except StorefrontError as exc:
            metrics.record_access_check(False, exc.reason)
            logger.info(
                "access_check_rejected", reason=exc.reason, product_identifier=product_identifier
            )
            raise

    async def _resolve_user(self, user_id: str | None, email: str | None) -> User:
        if user_id:
            return await self.users.get_by_id(user_id)
        if email:
            return await self.users.get_by_email(email)
        raise UserNotFoundError("")

    async def _use(self, grant: AccessGrant, product: Product) -> AccessResult:
        if grant.expires_at is not None and grant.expires_at <= utc_now():
            raise AccessExpiredError(grant.user_id, product.product_id, grant.expires_at)

        queries_used = await self.ledger.record_usage(grant.grant_id)

        metrics.record_access_check(True)
        logger.info(
            "access_verified",
            user_id=grant.user_id,
            product_id=product.product_id,
            queries_used=queries_used,
        )
        return AccessResult(
            product_id=product.product_id,
            product_name=product.name,
            gpt_url=product.gpt_url,
            queries_used=queries_used,
        )
