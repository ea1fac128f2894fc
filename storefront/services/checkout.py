"""
Checkout Service - creates gateway payment intents priced from the catalog.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.exceptions import ProductAlreadyOwnedError
from storefront.observability.metrics import metrics
from storefront.services import catalog
from storefront.services.ledger import AccessLedger
from storefront.services.payment_provider import (
    CreatedPaymentIntent,
    PaymentIntentRequest,
    PaymentProvider,
)
from storefront.services.users import UserService

logger = get_logger(__name__)


class CheckoutService:
    """Starts a one-time purchase of a GPT."""

    def __init__(self, session: AsyncSession, provider: PaymentProvider) -> None:
        self.session = session
        self.provider = provider
        self.ledger = AccessLedger(session)
        self.users = UserService(session)

    async def create_payment_intent(self, user_id: str, product_id: str) -> CreatedPaymentIntent:
        """
        Create a payment intent for ``product_id`` at its catalog price.

        Raises:
            ProductNotFoundError: Unknown product
            UserNotFoundError: Unknown user
            ProductAlreadyOwnedError: User already holds a grant for this product
            PaymentProviderError: Gateway call failed
        """
        product = catalog.resolve(product_id)
        user = await self.users.get_by_id(user_id)

        if await self.ledger.find_access(user.id, product.product_id) is not None:
            raise ProductAlreadyOwnedError(user.id, product.product_id)

        customer_id, created = await self.provider.get_or_create_customer(
            user.stripe_customer_id, user.email, user.name
        )
        if created:
            await self.users.set_stripe_customer_id(user, customer_id)

        intent = await self.provider.create_payment_intent(
            PaymentIntentRequest(
                amount_minor=product.amount_minor,
                currency=product.currency,
                description=f"One-time purchase: {product.name}",
                customer_id=customer_id,
                user_id=user.id,
                product_id=product.product_id,
                product_name=product.name,
            )
        )

        metrics.payment_intents_created_total.labels(product_id=product.product_id).inc()
        logger.info(
            "checkout_started",
            user_id=user.id,
            product_id=product.product_id,
            payment_intent_id=intent.payment_id,
            amount_minor=product.amount_minor,
        )
        return intent
