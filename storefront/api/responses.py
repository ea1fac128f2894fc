"""
Conversions from domain objects to API response models, and error bodies.
"""

from fastapi import HTTPException

from storefront.exceptions import StorefrontError
from storefront.models.api import (
    CatalogItem,
    DashboardResponse,
    ErrorDetail,
    PaymentItem,
    PurchasedGptItem,
    UserResponse,
)
from storefront.models.domain import DashboardData, UserData


def error(status_code: int, exc: StorefrontError, message: str | None = None) -> HTTPException:
    """HTTPException whose detail is ``{reason, message}``."""
    detail = ErrorDetail(reason=exc.reason, message=message or str(exc))
    return HTTPException(status_code=status_code, detail=detail.model_dump(by_alias=True))


def user_response(user: UserData) -> UserResponse:
    return UserResponse(
        id=user.user_id,
        email=user.email,
        username=user.username,
        name=user.name,
        role=user.role.value,
        profile_image_url=user.profile_image_url,
        created_at=user.created_at,
    )


def dashboard_response(data: DashboardData) -> DashboardResponse:
    return DashboardResponse(
        user=user_response(data.user),
        recent_payments=[
            PaymentItem(
                id=payment.payment_id,
                stripe_payment_id=payment.stripe_payment_id,
                product_id=payment.product_id,
                amount=payment.amount,
                currency=payment.currency,
                status=payment.status.value,
                description=payment.description,
                created_at=payment.created_at,
            )
            for payment in data.recent_payments
        ],
        available_products=[
            CatalogItem(
                id=entry.product_id,
                name=entry.name,
                description=entry.description,
                icon=entry.icon,
                price=entry.price,
                currency=entry.currency,
                purchased=entry.purchased,
            )
            for entry in data.available_products
        ],
        purchased_gpts=[
            PurchasedGptItem(
                id=gpt.product_id,
                name=gpt.name,
                description=gpt.description,
                icon=gpt.icon,
                gpt_url=gpt.gpt_url,
                access_token=gpt.access_token,
                queries_used=gpt.queries_used,
                last_accessed=gpt.last_accessed,
                expires_at=gpt.expires_at,
            )
            for gpt in data.purchased_gpts
        ],
    )
