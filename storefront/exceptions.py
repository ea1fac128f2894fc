"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Every exception carries a stable machine-readable ``reason`` code that the
HTTP layer returns next to the human message.
"""

from datetime import datetime


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    reason = "storefront_error"


# ============================================================================
# Catalog / identity lookups
# ============================================================================


class ProductNotFoundError(StorefrontError):
    """Raised when a product id (or tool name) is not in the catalog."""

    reason = "product_not_found"

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class UserNotFoundError(StorefrontError):
    """Raised when a user id or email does not resolve to a user."""

    reason = "user_not_found"

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"User not found: {identifier}")


class DuplicateUserError(StorefrontError):
    """Raised when registering a username or email that already exists."""

    reason = "user_exists"

    def __init__(self, field: str, value: str) -> None:
        self.field = field
        self.value = value
        super().__init__(f"User with {field} {value!r} already exists")


# ============================================================================
# Purchase / reconciliation
# ============================================================================


class ProductAlreadyOwnedError(StorefrontError):
    """Raised when a user tries to buy a product they already have access to."""

    reason = "product_already_owned"

    def __init__(self, user_id: str, product_id: str) -> None:
        self.user_id = user_id
        self.product_id = product_id
        super().__init__(f"User {user_id} already owns {product_id}")


class PaymentNotSuccessfulError(StorefrontError):
    """Raised when the gateway reports an intent that has not succeeded."""

    reason = "payment_not_successful"

    def __init__(self, payment_intent_id: str, status: str) -> None:
        self.payment_intent_id = payment_intent_id
        self.status = status
        super().__init__(f"Payment {payment_intent_id} has status {status}")


class PaymentMetadataError(StorefrontError):
    """Raised when a payment intent lacks the metadata needed to fulfil it."""

    reason = "payment_metadata_missing"

    def __init__(self, payment_intent_id: str, missing_fields: list[str]) -> None:
        self.payment_intent_id = payment_intent_id
        self.missing_fields = missing_fields
        super().__init__(
            f"Payment {payment_intent_id} is missing metadata: {', '.join(missing_fields)}"
        )


class PaymentOwnershipMismatchError(StorefrontError):
    """Raised when a user confirms a payment intent created for someone else."""

    reason = "payment_ownership_mismatch"

    def __init__(self, payment_intent_id: str, requesting_user_id: str) -> None:
        self.payment_intent_id = payment_intent_id
        self.requesting_user_id = requesting_user_id
        super().__init__(
            f"Payment {payment_intent_id} does not belong to user {requesting_user_id}"
        )


class ProductModelMismatchError(StorefrontError):
    """Raised when a catalog product has no active GPT model row (catalog drift)."""

    reason = "product_model_mismatch"

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"No GPT model configured for product {product_id}")


class ReconciliationError(StorefrontError):
    """Raised when a payment was recorded but the access grant could not be written."""

    reason = "reconciliation_failed"

    def __init__(self, payment_intent_id: str, message: str) -> None:
        self.payment_intent_id = payment_intent_id
        self.message = message
        super().__init__(f"Reconciliation failed for {payment_intent_id}: {message}")


# ============================================================================
# Access verification
# ============================================================================


class AccessDeniedError(StorefrontError):
    """Raised when a user has no access grant for the requested product."""

    reason = "access_denied"

    def __init__(self, user_id: str, product_id: str) -> None:
        self.user_id = user_id
        self.product_id = product_id
        super().__init__(f"User {user_id} has no access to {product_id}")


class AccessExpiredError(StorefrontError):
    """Raised when an access grant exists but is past its expiry."""

    reason = "access_expired"

    def __init__(self, user_id: str, product_id: str, expired_at: datetime) -> None:
        self.user_id = user_id
        self.product_id = product_id
        self.expired_at = expired_at
        super().__init__(
            f"Access of user {user_id} to {product_id} expired at {expired_at.isoformat()}"
        )


# ============================================================================
# Persistence
# ============================================================================


class WriteVerificationError(StorefrontError):
    """Raised when database write verification fails."""

    reason = "write_verification_failed"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


# ============================================================================
# External collaborators
# ============================================================================


class PaymentProviderError(StorefrontError):
    """Raised when payment provider operation fails."""

    reason = "payment_provider_unavailable"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(StorefrontError):
    """Raised when webhook verification fails."""

    reason = "signature_invalid"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class NotificationError(StorefrontError):
    """Raised when a transactional email cannot be delivered."""

    reason = "notification_failed"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Notification error: {message}")


# ============================================================================
# Authentication / authorization
# ============================================================================


class AuthenticationError(StorefrontError):
    """Raised when authentication fails (bad credentials, invalid token)."""

    reason = "authentication_failed"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class InvalidResetTokenError(StorefrontError):
    """Raised when a password reset token is unknown, used or expired."""

    reason = "invalid_reset_token"

    def __init__(self) -> None:
        super().__init__("Password reset token is invalid or expired")
