"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - All data leaving this module uses strongly typed models.

The stripe library is synchronous; every call runs in a worker thread under
a bounded timeout so a slow gateway cannot pin a request forever.
"""

import asyncio
import time
from collections.abc import Callable
from typing import Any, TypeVar

import stripe
from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from storefront.exceptions import PaymentProviderError, WebhookVerificationError
from storefront.observability.metrics import metrics
from storefront.services.payment_provider import (
    CreatedPaymentIntent,
    PaymentIntentRequest,
    PaymentIntentView,
    WebhookEvent,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Errors worth another attempt; card and validation errors are final.
TRANSIENT_STRIPE_ERRORS: tuple[type[BaseException], ...] = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    asyncio.TimeoutError,
)


def _intent_view(payment_intent: Any) -> PaymentIntentView:
    """Convert a Stripe PaymentIntent object (or its event payload) to a view."""
    metadata = payment_intent.get("metadata") or {}
    return PaymentIntentView(
        payment_id=payment_intent.get("id", ""),
        status=payment_intent.get("status", ""),
        amount_minor=int(payment_intent.get("amount") or 0),
        currency=(payment_intent.get("currency") or "usd").lower(),
        metadata={str(key): str(value) for key, value in metadata.items()},
    )


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe.
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        timeout_seconds: float = 10.0,
        retry_attempts: int = 3,
        backoff_seconds: float = 0.5,
    ) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
            timeout_seconds: Upper bound for a single gateway call
            retry_attempts: Total attempts for idempotent reads
            backoff_seconds: Base delay for exponential backoff between attempts
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self.backoff_seconds = backoff_seconds
        stripe.api_key = api_key

    async def _call(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking stripe call in a thread with a timeout."""
        start = time.monotonic()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs), timeout=self.timeout_seconds
            )
        finally:
            metrics.gateway_call_duration_seconds.labels(operation=operation).observe(
                time.monotonic() - start
            )

    async def create_payment_intent(self, request: PaymentIntentRequest) -> CreatedPaymentIntent:
        """
        Create a Stripe PaymentIntent.

        Not retried: a timed-out create may still have produced an intent, and
        the client simply asks again.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            logger.info(
                "creating_stripe_payment_intent",
                amount_minor=request.amount_minor,
                currency=request.currency,
                product_id=request.product_id,
                user_id=request.user_id,
            )

            params: dict[str, Any] = {
                "amount": request.amount_minor,
                "currency": request.currency.lower(),
                "description": request.description,
                "automatic_payment_methods": {"enabled": True},
                "metadata": {
                    "user_id": request.user_id,
                    "product_id": request.product_id,
                    "product_name": request.product_name,
                },
            }
            if request.customer_id:
                params["customer"] = request.customer_id

            payment_intent = await self._call(
                "create_payment_intent", stripe.PaymentIntent.create, **params
            )

            logger.info(
                "stripe_payment_intent_created",
                payment_intent_id=payment_intent.id,
                status=payment_intent.status,
            )

            return CreatedPaymentIntent(
                payment_id=payment_intent.id,
                client_secret=payment_intent.client_secret or "",
                status=payment_intent.status,
                amount_minor=payment_intent.amount,
                currency=payment_intent.currency.lower(),
            )

        except (stripe.StripeError, asyncio.TimeoutError) as exc:
            logger.error(
                "stripe_payment_intent_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe payment intent creation failed: {exc}") from exc

    async def retrieve_payment_intent(self, payment_id: str) -> PaymentIntentView:
        """
        Fetch the authoritative PaymentIntent from Stripe.

        Transient failures are retried with exponential backoff. When every
        attempt fails the caller gets a PaymentProviderError and must not
        grant anything.

        Raises:
            PaymentProviderError: If Stripe stays unreachable or rejects the id
        """
        logger.info("retrieving_stripe_payment_intent", payment_intent_id=payment_id)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(multiplier=self.backoff_seconds, max=10),
                retry=retry_if_exception_type(TRANSIENT_STRIPE_ERRORS),
                reraise=False,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "stripe_retrieve_retrying",
                            payment_intent_id=payment_id,
                            attempt=attempt.retry_state.attempt_number,
                        )
                    payment_intent = await self._call(
                        "retrieve_payment_intent", stripe.PaymentIntent.retrieve, payment_id
                    )
        except RetryError as exc:
            last = exc.last_attempt.exception()
            logger.error(
                "stripe_retrieve_exhausted",
                payment_intent_id=payment_id,
                attempts=self.retry_attempts,
                error=str(last),
                error_type=type(last).__name__,
            )
            raise PaymentProviderError(
                f"Stripe unavailable after {self.retry_attempts} attempts: {last}"
            ) from last
        except stripe.StripeError as exc:
            logger.error(
                "stripe_retrieve_failed",
                payment_intent_id=payment_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Failed to retrieve payment intent: {exc}") from exc

        view = _intent_view(payment_intent)
        logger.info(
            "stripe_payment_intent_retrieved",
            payment_intent_id=payment_id,
            status=view.status,
        )
        return view

    async def verify_webhook(self, payload: bytes, signature: str | None) -> WebhookEvent:
        """
        Verify and parse Stripe webhook event.

        Args:
            payload: Raw webhook payload, byte-for-byte as received
            signature: Stripe-Signature header value

        Raises:
            WebhookVerificationError: If signature is missing or does not match
        """
        if not self.webhook_secret:
            logger.error("stripe_webhook_secret_not_configured")
            raise WebhookVerificationError("Webhook secret not configured")
        if not signature:
            logger.warning("stripe_webhook_signature_missing")
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        logger.info(
            "stripe_webhook_verified",
            event_id=event.id,
            event_type=event.type,
        )

        intent = None
        data_object = event.data.object
        if data_object.get("object") == "payment_intent":
            intent = _intent_view(data_object)

        return WebhookEvent(event_id=event.id, event_type=event.type, intent=intent)

    async def get_or_create_customer(
        self, customer_id: str | None, email: str, name: str | None
    ) -> tuple[str, bool]:
        """
        Return the user's Stripe customer id, creating the customer if absent.

        A stored id that Stripe no longer knows (deleted customer) is replaced.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            if customer_id:
                try:
                    customer = await self._call(
                        "retrieve_customer", stripe.Customer.retrieve, customer_id
                    )
                    if not customer.get("deleted"):
                        return customer_id, False
                except stripe.InvalidRequestError:
                    logger.warning("stripe_customer_missing", customer_id=customer_id)

            customer = await self._call(
                "create_customer", stripe.Customer.create, email=email, name=name or email
            )
            logger.info("stripe_customer_created", customer_id=customer.id)
            return customer.id, True

        except (stripe.StripeError, asyncio.TimeoutError) as exc:
            logger.error(
                "stripe_customer_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe customer lookup failed: {exc}") from exc
