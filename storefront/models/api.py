"""
API Models - Pydantic models for request/response validation.

The browser client and the external GPT backends speak camelCase JSON, so
every model serializes through a camelCase alias while Python code keeps
snake_case attribute names.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _validate_email(v: str) -> str:
    """Loose shape check; the address is only ever used to send mail to."""
    local, _, domain = v.strip().partition("@")
    if not local or "." not in domain:
        raise ValueError("Invalid email address")
    return v.strip().lower()


class CamelModel(BaseModel):
    """Base model with camelCase aliases on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Error Models
# ============================================================================


class ErrorDetail(CamelModel):
    """Machine-readable reason plus a human message."""

    reason: str
    message: str


# ============================================================================
# Catalog Models
# ============================================================================


class ProductResponse(CamelModel):
    """One catalog product."""

    id: str
    name: str
    description: str
    icon: str
    price: Decimal
    currency: str


class GptModelResponse(CamelModel):
    """GET /api/gpt-models item."""

    id: str
    name: str
    description: str
    icon: str
    required_plan: str
    is_active: bool


# ============================================================================
# Checkout & Reconciliation Models
# ============================================================================


class CreatePaymentIntentRequest(CamelModel):
    """POST /api/create-payment-intent request body."""

    product_id: str = Field(..., min_length=1, max_length=100)


class CreatePaymentIntentResponse(CamelModel):
    """POST /api/create-payment-intent response."""

    client_secret: str
    payment_intent_id: str


class ConfirmPaymentRequest(CamelModel):
    """POST /api/confirm-payment request body."""

    payment_intent_id: str = Field(..., min_length=1, max_length=255)

    @field_validator("payment_intent_id")
    @classmethod
    def validate_payment_intent_id(cls, v: str) -> str:
        """Payment intent ids always carry the gateway's pi_ prefix."""
        if not v.startswith("pi_"):
            raise ValueError('payment_intent_id must start with "pi_"')
        return v


class ConfirmPaymentResponse(CamelModel):
    """POST /api/confirm-payment response."""

    success: bool
    already_processed: bool
    product_id: str | None = None


class WebhookResponse(CamelModel):
    """POST /api/webhooks/stripe response."""

    status: Literal["processed", "already_processed", "failed_recorded", "ignored", "rejected"]
    event_id: str


# ============================================================================
# Access Models
# ============================================================================


class AccessGptRequest(CamelModel):
    """POST /api/access-gpt request body."""

    product_id: str = Field(..., min_length=1, max_length=100)


class AccessGptResponse(CamelModel):
    """POST /api/access-gpt response."""

    gpt_url: str
    product_name: str
    total_usage: int


class GptVerifyRequest(CamelModel):
    """
    POST /api/gpt-verify/{gpt_name} request body.

    ``user_id`` is the caller's own identifier for the end user; the storefront
    account is looked up by email.
    """

    user_id: str | None = Field(None, max_length=255)
    email: str | None = Field(None, max_length=255)


class GptVerifyResponse(CamelModel):
    """POST /api/gpt-verify/{gpt_name} response (success and failure)."""

    success: bool
    message: str
    error: str | None = None
    gpt_name: str | None = None
    queries_used: int | None = None
    purchase_url: str | None = None


class VerifyGptAccessRequest(CamelModel):
    """POST /api/verify-gpt-access request body: email or access code."""

    email: str | None = Field(None, min_length=3, max_length=255)
    access_code: str | None = Field(None, min_length=1, max_length=64)
    product_id: str = Field(..., min_length=1, max_length=100)


class VerifyGptAccessResponse(CamelModel):
    """POST /api/verify-gpt-access response."""

    success: bool
    product_id: str
    product_name: str
    gpt_url: str
    queries_used: int


# ============================================================================
# User & Auth Models
# ============================================================================


class UserResponse(CamelModel):
    """Public user profile."""

    id: str
    email: str
    username: str
    name: str
    role: Literal["user", "admin"]
    profile_image_url: str | None = None
    created_at: datetime


class RegisterRequest(CamelModel):
    """POST /api/register request body."""

    email: str = Field(..., min_length=3, max_length=255)
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(..., min_length=8, max_length=128)
    name: str | None = Field(None, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _validate_email(v)


class LoginRequest(CamelModel):
    """POST /api/login request body. ``username`` may also be an email."""

    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class AuthResponse(CamelModel):
    """Session token plus the signed-in user."""

    token: str
    expires_at: datetime
    user: UserResponse


class MessageResponse(CamelModel):
    """Plain acknowledgement."""

    message: str


class ForgotPasswordRequest(CamelModel):
    """POST /api/forgot-password request body."""

    email: str = Field(..., min_length=3, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _validate_email(v)


class ResetPasswordRequest(CamelModel):
    """POST /api/reset-password request body."""

    token: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=8, max_length=128)


# ============================================================================
# Dashboard Models
# ============================================================================


class PaymentItem(CamelModel):
    """Single ledger row in the dashboard."""

    id: str
    stripe_payment_id: str
    product_id: str | None
    amount: Decimal
    currency: str
    status: str
    description: str | None
    created_at: datetime


class CatalogItem(CamelModel):
    """Catalog product with the user's purchase state."""

    id: str
    name: str
    description: str
    icon: str
    price: Decimal
    currency: str
    purchased: bool


class PurchasedGptItem(CamelModel):
    """A GPT the user can open."""

    id: str
    name: str
    description: str
    icon: str
    gpt_url: str
    access_token: str
    queries_used: int
    last_accessed: datetime | None
    expires_at: datetime | None


class DashboardResponse(CamelModel):
    """GET /api/dashboard response."""

    user: UserResponse
    recent_payments: list[PaymentItem]
    available_products: list[CatalogItem]
    purchased_gpts: list[PurchasedGptItem]


# ============================================================================
# Admin Models
# ============================================================================


class AdminGrantAccessRequest(CamelModel):
    """POST /api/admin/grant-access request body."""

    email: str = Field(..., min_length=3, max_length=255)
    product_id: str = Field(..., min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _validate_email(v)


class AdminGrantAccessResponse(CamelModel):
    """POST /api/admin/grant-access response."""

    success: bool
    message: str
    user_id: str
    user_created: bool
    access_token: str


# ============================================================================
# Support Models
# ============================================================================


class SupportRequest(CamelModel):
    """POST /api/ai-support request body."""

    question: str = Field(..., min_length=1, max_length=2000)


class SupportResponse(CamelModel):
    """POST /api/ai-support response."""

    response: str
    next_steps: list[str]
    severity: Literal["low", "medium", "high", "critical"]
    category: Literal["access", "payment", "technical", "account", "general"]


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
