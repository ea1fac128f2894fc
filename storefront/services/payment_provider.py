"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass, field
from typing import Protocol

PAYMENT_SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class PaymentIntentRequest:
    """
    Provider-agnostic payment intent request.

    Amount and description always come from the catalog, never from the client.
    """

    amount_minor: int
    currency: str
    description: str
    customer_id: str | None
    user_id: str
    product_id: str
    product_name: str

    def __post_init__(self) -> None:
        if self.amount_minor <= 0:
            raise ValueError(f"Payment amount must be positive: {self.amount_minor}")
        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency}")


@dataclass(frozen=True)
class CreatedPaymentIntent:
    """
    Provider-agnostic result of creating a payment intent.

    The client secret is handed to the browser for card confirmation.
    """

    payment_id: str
    client_secret: str
    status: str
    amount_minor: int
    currency: str


@dataclass(frozen=True)
class PaymentIntentView:
    """
    Authoritative server-side view of a payment intent.

    Metadata keys written at creation: user_id, product_id, product_name.
    """

    payment_id: str
    status: str
    amount_minor: int
    currency: str
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == PAYMENT_SUCCEEDED


@dataclass(frozen=True)
class WebhookEvent:
    """
    Provider-agnostic webhook event.

    ``intent`` is the payment intent embedded in the event payload. It is
    only trusted for routing; reconciliation re-fetches the intent.
    """

    event_id: str
    event_type: str
    intent: PaymentIntentView | None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Any payment provider must implement this interface so the reconciliation
    flow stays provider-agnostic.
    """

    async def create_payment_intent(self, request: PaymentIntentRequest) -> CreatedPaymentIntent:
        """
        Create a payment intent with the provider.

        Raises:
            PaymentProviderError: If payment creation fails
        """
        ...

    async def retrieve_payment_intent(self, payment_id: str) -> PaymentIntentView:
        """
        Fetch the provider's authoritative record of a payment intent.

        Raises:
            PaymentProviderError: If the provider cannot be reached after retries
        """
        ...

    async def verify_webhook(self, payload: bytes, signature: str | None) -> WebhookEvent:
        """
        Verify and parse webhook event from provider.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...

    async def get_or_create_customer(
        self, customer_id: str | None, email: str, name: str | None
    ) -> tuple[str, bool]:
        """
        Return a provider customer id for the user, creating one if needed.

        Returns:
            (customer_id, created) - callers persist the id when ``created``
        """
        ...
