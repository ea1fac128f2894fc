"""
Reconciliation Service - turns gateway payments into ledger rows and access.

NO DICTIONARIES - All operations use strongly typed domain models.

Both triggers (the browser confirming a card payment, and the gateway's
webhook) end up in ``reconcile_payment``. It always works from the
gateway's authoritative intent, never from client-supplied amounts.

    CREATED -> PROVIDER_SUCCEEDED -> LEDGER_RECORDED -> ACCESS_GRANTED
            -> PROVIDER_FAILED    -> LEDGER_RECORDED (status=failed)

The payment row is committed before the grant. A replay (client retry,
webhook redelivery, or the fulfilment sweep) that finds a succeeded payment
without a grant writes the missing grant.
"""

from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.exceptions import (
    PaymentMetadataError,
    PaymentNotSuccessfulError,
    PaymentOwnershipMismatchError,
    ProductModelMismatchError,
    ProductNotFoundError,
    ReconciliationError,
    UserNotFoundError,
)
from storefront.models.domain import (
    OrderMetadata,
    PaymentRecord,
    PaymentStatus,
    ReconciliationOutcome,
    ReconciliationStatus,
)
from storefront.observability.logging import log_context
from storefront.observability.metrics import metrics
from storefront.observability.tracing import trace_operation
from storefront.services import catalog
from storefront.services.gpt_models import GptModelService
from storefront.services.ledger import AccessLedger
from storefront.services.payment_provider import (
    PaymentIntentView,
    PaymentProvider,
    WebhookEvent,
)
from storefront.services.users import UserService

logger = get_logger(__name__)

EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"

# Intent states after which the card will not be charged without a new attempt
FAILED_INTENT_STATES = frozenset({"requires_payment_method", "canceled"})

_REQUIRED_METADATA = ("user_id", "product_id")


def order_from_metadata(intent: PaymentIntentView) -> OrderMetadata:
    """
    Read who bought what from the intent metadata.

    Raises:
        PaymentMetadataError: user_id or product_id missing
    """
    missing = [key for key in _REQUIRED_METADATA if not intent.metadata.get(key)]
    if missing:
        raise PaymentMetadataError(intent.payment_id, missing)
    product_id = intent.metadata["product_id"]
    return OrderMetadata(
        user_id=intent.metadata["user_id"],
        product_id=product_id,
        product_name=intent.metadata.get("product_name") or product_id,
    )


def amount_from_minor(amount_minor: int) -> Decimal:
    """Gateway minor units to a two-decimal ledger amount."""
    return (Decimal(amount_minor) / 100).quantize(Decimal("0.01"))


class ReconciliationService:
    """Single reconciliation path shared by client confirmation and webhooks."""

    def __init__(self, session: AsyncSession, provider: PaymentProvider) -> None:
        self.session = session
        self.provider = provider
        self.ledger = AccessLedger(session)
        self.models = GptModelService(session)
        self.users = UserService(session)

    async def confirm_client_side_payment(
        self, payment_intent_id: str, requesting_user_id: str
    ) -> ReconciliationOutcome:
        """
        Reconcile a payment the browser says it completed.

        Raises:
            PaymentProviderError: Gateway unreachable (nothing is granted)
            PaymentNotSuccessfulError: Gateway says the intent has not succeeded
            PaymentMetadataError: Intent lacks user/product metadata
            PaymentOwnershipMismatchError: Intent belongs to a different user
            ProductModelMismatchError: Product has no active GPT model
            ReconciliationError: Payment recorded but the grant could not be written
        """
        with log_context(payment_intent_id=payment_intent_id, trigger="client"):
            intent = await self.provider.retrieve_payment_intent(payment_intent_id)

            # Ownership first: a stranger learns nothing about the intent's state
            order = order_from_metadata(intent)
            if order.user_id != requesting_user_id:
                metrics.record_reconciliation("client", "ownership_mismatch")
                logger.warning(
                    "payment_ownership_mismatch",
                    requesting_user_id=requesting_user_id,
                    owner_user_id=order.user_id,
                )
                raise PaymentOwnershipMismatchError(payment_intent_id, requesting_user_id)

            if not intent.succeeded:
                metrics.record_reconciliation("client", "not_succeeded")
                logger.warning("payment_not_succeeded", status=intent.status)
                raise PaymentNotSuccessfulError(payment_intent_id, intent.status)

            return await self.reconcile_payment(intent, trigger="client")

    async def handle_gateway_event(self, event: WebhookEvent) -> ReconciliationOutcome:
        """
        Reconcile a verified webhook event.

        The intent embedded in the event is only used for its id; the
        authoritative state is fetched again from the gateway.
        """
        with log_context(event_id=event.event_id, trigger="webhook"):
            if event.event_type not in (EVENT_PAYMENT_SUCCEEDED, EVENT_PAYMENT_FAILED):
                logger.info("webhook_event_ignored", event_type=event.event_type)
                metrics.record_reconciliation("webhook", "ignored")
                return ReconciliationOutcome(
                    payment_intent_id=event.intent.payment_id if event.intent else "",
                    status=ReconciliationStatus.IGNORED,
                )

            if event.intent is None:
                logger.warning("webhook_event_without_intent", event_type=event.event_type)
                metrics.record_reconciliation("webhook", "ignored")
                return ReconciliationOutcome(
                    payment_intent_id="", status=ReconciliationStatus.IGNORED
                )

            intent = await self.provider.retrieve_payment_intent(event.intent.payment_id)
            return await self.reconcile_payment(intent, trigger="webhook")

    async def reconcile_payment(
        self, intent: PaymentIntentView, trigger: str
    ) -> ReconciliationOutcome:
        """
        Record a gateway intent in the ledger exactly once.

        Succeeded intents get a payment row and an access grant, failed ones
        a failed payment row. Anything in between (processing, requires_action)
        is left for a later event.
        """
        with trace_operation(
            "reconcile_payment", payment_intent_id=intent.payment_id, trigger=trigger
        ) as span, log_context(payment_intent_id=intent.payment_id):
            if intent.succeeded:
                outcome = await self._reconcile_succeeded(intent, trigger)
            elif intent.status in FAILED_INTENT_STATES:
                outcome = await self._record_failed(intent)
            else:
                logger.info("payment_intent_pending", status=intent.status)
                outcome = ReconciliationOutcome(
                    payment_intent_id=intent.payment_id, status=ReconciliationStatus.IGNORED
                )

            span.set_attribute("outcome", outcome.status.value)
            metrics.record_reconciliation(trigger, outcome.status.value)
            return outcome

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _reconcile_succeeded(
        self, intent: PaymentIntentView, trigger: str
    ) -> ReconciliationOutcome:
        order = order_from_metadata(intent)

        existing = await self.ledger.find_payment(intent.payment_id)
        if existing is not None and existing.status == PaymentStatus.SUCCEEDED:
            return await self._replay(intent, existing)

        model_id = await self._resolve_model(order)
        await self.users.get_by_id(order.user_id)

        amount = amount_from_minor(intent.amount_minor)
        expected = catalog.resolve(order.product_id).amount_minor
        if intent.amount_minor != expected:
            logger.warning(
                "payment_amount_differs_from_catalog",
                paid_minor=intent.amount_minor,
                catalog_minor=expected,
            )

        description = f"One-time purchase: {order.product_name}"
        if existing is not None:
            payment = await self.ledger.promote_to_succeeded(
                intent.payment_id, amount, order.product_id, description
            )
            if payment is None:
                # Promoted by a concurrent reconciliation
                return await self._replay(intent, await self._require_payment(intent))
        else:
            payment, created = await self.ledger.record_payment(
                user_id=order.user_id,
                stripe_payment_id=intent.payment_id,
                amount=amount,
                currency=intent.currency,
                status=PaymentStatus.SUCCEEDED,
                description=description,
                product_id=order.product_id,
            )
            if not created:
                return await self._replay(intent, payment)

        await self._grant(intent.payment_id, order.user_id, model_id)

        logger.info(
            "payment_reconciled",
            trigger=trigger,
            user_id=order.user_id,
            product_id=order.product_id,
            amount=str(payment.amount),
        )
        return ReconciliationOutcome(
            payment_intent_id=intent.payment_id,
            status=ReconciliationStatus.RECORDED,
            user_id=order.user_id,
            product_id=order.product_id,
            access_granted=True,
        )

    async def _replay(
        self, intent: PaymentIntentView, payment: PaymentRecord
    ) -> ReconciliationOutcome:
        """Already recorded. Write the grant if an earlier attempt lost it."""
        if payment.status != PaymentStatus.SUCCEEDED:
            return ReconciliationOutcome(
                payment_intent_id=intent.payment_id,
                status=ReconciliationStatus.ALREADY_PROCESSED,
                user_id=payment.user_id,
                product_id=payment.product_id,
            )

        product_id = payment.product_id or order_from_metadata(intent).product_id
        repaired = False
        if await self.ledger.find_access(payment.user_id, product_id) is None:
            model_id = await self._resolve_model(
                OrderMetadata(user_id=payment.user_id, product_id=product_id, product_name="")
            )
            repaired = await self._grant(intent.payment_id, payment.user_id, model_id)
            if repaired:
                logger.warning(
                    "access_grant_repaired", user_id=payment.user_id, product_id=product_id
                )

        logger.info("payment_already_processed", repaired=repaired)
        return ReconciliationOutcome(
            payment_intent_id=intent.payment_id,
            status=ReconciliationStatus.ALREADY_PROCESSED,
            user_id=payment.user_id,
            product_id=product_id,
            access_granted=True,
            access_repaired=repaired,
        )

    async def _record_failed(self, intent: PaymentIntentView) -> ReconciliationOutcome:
        order = order_from_metadata(intent)
        await self.users.get_by_id(order.user_id)

        _, created = await self.ledger.record_payment(
            user_id=order.user_id,
            stripe_payment_id=intent.payment_id,
            amount=amount_from_minor(intent.amount_minor),
            currency=intent.currency,
            status=PaymentStatus.FAILED,
            description=f"Failed payment: {order.product_name}",
            product_id=order.product_id,
        )
        logger.info("payment_failure_recorded", user_id=order.user_id, created=created)
        return ReconciliationOutcome(
            payment_intent_id=intent.payment_id,
            status=(
                ReconciliationStatus.FAILED_RECORDED
                if created
                else ReconciliationStatus.ALREADY_PROCESSED
            ),
            user_id=order.user_id,
            product_id=order.product_id,
        )

    async def _resolve_model(self, order: OrderMetadata) -> str:
        """
        Map the purchased product to its GPT model id.

        Raises:
            ProductModelMismatchError: Catalog and gpt_models disagree
        """
        try:
            product = catalog.resolve(order.product_id)
        except ProductNotFoundError as exc:
            metrics.record_reconciliation_error("product_not_in_catalog")
            logger.error("catalog_drift_unknown_product", product_id=order.product_id)
            raise ProductModelMismatchError(order.product_id) from exc

        model = await self.models.get_active(product.product_id)
        if model is None:
            metrics.record_reconciliation_error("model_missing")
            logger.error("catalog_drift_model_missing", product_id=product.product_id)
            raise ProductModelMismatchError(product.product_id)
        return model.id

    async def _grant(self, payment_intent_id: str, user_id: str, model_id: str) -> bool:
        """
        Write the access grant for an already-recorded payment.

        Raises:
            ReconciliationError: The grant could not be written; the payment stays
                recorded and the next replay retries the grant
        """
        try:
            _, created = await self.ledger.grant_access(user_id, model_id)
            return created
        except Exception as exc:
            await self.session.rollback()
            metrics.record_reconciliation_error("access_grant_failed")
            logger.critical(
                "reconciliation_access_grant_failed",
                user_id=user_id,
                model_id=model_id,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise ReconciliationError(payment_intent_id, "access grant failed") from exc

    async def _require_payment(self, intent: PaymentIntentView) -> PaymentRecord:
        payment = await self.ledger.find_payment(intent.payment_id)
        if payment is None:
            raise ReconciliationError(intent.payment_id, "payment row disappeared")
        return payment


async def fulfill_unfulfilled_orders(session: AsyncSession, limit: int = 100) -> int:
    """
    Grant access for succeeded payments that never got their grant.

    Returns:
        Number of grants written
    """
    ledger = AccessLedger(session)
    models = GptModelService(session)
    written = 0

    for payment in await ledger.find_unfulfilled_payments(limit=limit):
        if payment.product_id is None:
            continue
        with log_context(payment_intent_id=payment.stripe_payment_id, trigger="sweep"):
            model = await models.get_active(payment.product_id)
            if model is None:
                metrics.record_reconciliation_error("model_missing")
                logger.error("catalog_drift_model_missing", product_id=payment.product_id)
                continue
            try:
                await UserService(session).get_by_id(payment.user_id)
            except UserNotFoundError:
                logger.error("unfulfilled_payment_user_missing", user_id=payment.user_id)
                continue
            _, created = await ledger.grant_access(payment.user_id, model.id)
            if created:
                written += 1
                metrics.record_reconciliation("sweep", "repaired")
                logger.warning(
                    "access_grant_repaired",
                    user_id=payment.user_id,
                    product_id=payment.product_id,
                )

    return written
