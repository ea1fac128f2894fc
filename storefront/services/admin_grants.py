"""
Admin Grants - complimentary access given by an operator.

A grant is recorded in the ledger as a zero-amount succeeded payment so the
customer's history shows where the access came from.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.exceptions import ProductAlreadyOwnedError, ProductModelMismatchError
from storefront.models.domain import AccessGrant, PaymentStatus, UserData
from storefront.services import catalog
from storefront.services.gpt_models import GptModelService
from storefront.services.ledger import AccessLedger
from storefront.services.users import UserService, user_to_domain

logger = get_logger(__name__)


@dataclass(frozen=True)
class AdminGrantResult:
    """Outcome of a complimentary grant."""

    user: UserData
    grant: AccessGrant
    product_name: str
    user_created: bool


class AdminGrantService:
    """Operator-initiated access grants."""

    def __init__(self, session: AsyncSession) -> None:
        self.ledger = AccessLedger(session)
        self.models = GptModelService(session)
        self.users = UserService(session)

    async def grant(self, email: str, product_id: str, granted_by: str) -> AdminGrantResult:
        """
        Give ``email`` access to ``product_id``, creating the user if needed.

        Raises:
            ProductNotFoundError: Unknown product
            ProductModelMismatchError: Product has no active GPT model
            ProductAlreadyOwnedError: User already has access
        """
        product = catalog.resolve(product_id)
        model = await self.models.get_active(product.product_id)
        if model is None:
            raise ProductModelMismatchError(product.product_id)

        user, user_created = await self.users.get_or_create_for_email(email)
        user_data = user_to_domain(user)

        grant, created = await self.ledger.grant_access(user_data.user_id, model.id)
        if not created:
            raise ProductAlreadyOwnedError(user_data.user_id, product.product_id)

        await self.ledger.record_payment(
            user_id=user_data.user_id,
            stripe_payment_id=f"admin-grant-{uuid4()}",
            amount=Decimal("0.00"),
            currency=product.currency,
            status=PaymentStatus.SUCCEEDED,
            description=f"Admin grant: {product.name} for {user_data.email}",
            product_id=product.product_id,
        )

        logger.info(
            "admin_access_granted",
            user_id=user_data.user_id,
            product_id=product.product_id,
            granted_by=granted_by,
            user_created=user_created,
        )
        return AdminGrantResult(
            user=user_data,
            grant=grant,
            product_name=product.name,
            user_created=user_created,
        )
