"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class PaymentStatus(str, Enum):
    """Ledger status of a payment row."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


class ReconciliationStatus(str, Enum):
    """What a reconciliation attempt did."""

    RECORDED = "recorded"  # new ledger row + access grant
    ALREADY_PROCESSED = "already_processed"  # replay, nothing new recorded
    FAILED_RECORDED = "failed_recorded"  # failed payment logged, no access
    IGNORED = "ignored"  # event or intent state that needs no action


class UserRole(str, Enum):
    """Server-side role checked by admin endpoints."""

    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class UserData:
    """User profile safe to return to clients (no password hash, no reset token)."""

    user_id: str
    email: str
    username: str
    name: str
    role: UserRole
    profile_image_url: str | None
    stripe_customer_id: str | None
    created_at: datetime


@dataclass(frozen=True)
class OrderMetadata:
    """Metadata written onto a payment intent at creation."""

    user_id: str
    product_id: str
    product_name: str

    def __post_init__(self) -> None:
        """Validate metadata fields."""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if not self.product_id:
            raise ValueError("product_id cannot be empty")


@dataclass(frozen=True)
class PaymentRecord:
    """Immutable view of a ledger row."""

    payment_id: str
    user_id: str
    stripe_payment_id: str
    product_id: str | None
    amount: Decimal
    currency: str
    status: PaymentStatus
    description: str | None
    created_at: datetime

    def __post_init__(self) -> None:
        """Validate payment constraints."""
        if self.amount < 0:
            raise ValueError(f"Payment amount cannot be negative: {self.amount}")
        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency}")


@dataclass(frozen=True)
class AccessGrant:
    """Immutable view of a user's entitlement to one GPT model."""

    grant_id: str
    user_id: str
    model_id: str
    access_token: str
    expires_at: datetime | None
    queries_used: int
    last_accessed: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class ReconciliationOutcome:
    """Result of reconciling one payment intent."""

    payment_intent_id: str
    status: ReconciliationStatus
    user_id: str | None = None
    product_id: str | None = None
    access_granted: bool = False
    access_repaired: bool = False

    @property
    def already_processed(self) -> bool:
        return self.status == ReconciliationStatus.ALREADY_PROCESSED


@dataclass(frozen=True)
class AccessResult:
    """Result of a successful access verification."""

    product_id: str
    product_name: str
    gpt_url: str
    queries_used: int


@dataclass(frozen=True)
class PurchasedGpt:
    """Grant joined with catalog details for the dashboard."""

    product_id: str
    name: str
    description: str
    icon: str
    gpt_url: str
    access_token: str
    queries_used: int
    last_accessed: datetime | None
    expires_at: datetime | None


@dataclass(frozen=True)
class CatalogEntry:
    """Catalog product with the current user's purchase state."""

    product_id: str
    name: str
    description: str
    icon: str
    price: Decimal
    currency: str
    purchased: bool


@dataclass(frozen=True)
class DashboardData:
    """Everything the dashboard page renders for one user."""

    user: UserData
    recent_payments: list[PaymentRecord]
    available_products: list[CatalogEntry]
    purchased_gpts: list[PurchasedGpt]


@dataclass(frozen=True)
class OAuthToken:
    """OAuth token data."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None


@dataclass(frozen=True)
class OAuthUser:
    """Google profile returned after federated login."""

    id: str
    email: str
    name: str | None = None
    picture: str | None = None

    def __post_init__(self) -> None:
        """Validate a usable email was returned."""
        if "@" not in self.email:
            raise ValueError(f"Invalid email from OAuth provider: {self.email}")


@dataclass(frozen=True)
class OAuthSession:
    """Pending federated login, keyed by its state parameter."""

    redirect_uri: str
    callback_url: str
    created_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    """A signed bearer token and when it stops being valid."""

    token: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a bearer token."""

    user_id: str
    role: UserRole
    expires_at: datetime


@dataclass(frozen=True)
class SupportAnswer:
    """Structured reply from the support assistant."""

    response: str
    next_steps: list[str]
    severity: str
    category: str
