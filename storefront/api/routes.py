"""
API Routes - storefront endpoints for the signed-in customer and the gateway.

All requests/responses use Pydantic models; domain errors are translated to
HTTP status codes here and nowhere else.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.api.dependencies import (
    CurrentUser,
    get_current_user,
    get_payment_provider,
    get_support_assistant,
)
from storefront.api.responses import dashboard_response, error
from storefront.db.session import get_read_db, get_write_db
from storefront.exceptions import (
    AccessDeniedError,
    AccessExpiredError,
    PaymentMetadataError,
    PaymentNotSuccessfulError,
    PaymentOwnershipMismatchError,
    PaymentProviderError,
    ProductAlreadyOwnedError,
    ProductModelMismatchError,
    ProductNotFoundError,
    ReconciliationError,
    UserNotFoundError,
    WebhookVerificationError,
)
from storefront.models.api import (
    AccessGptRequest,
    AccessGptResponse,
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreatePaymentIntentRequest,
    CreatePaymentIntentResponse,
    DashboardResponse,
    GptModelResponse,
    HealthResponse,
    ProductResponse,
    SupportRequest,
    SupportResponse,
    WebhookResponse,
)
from storefront.models.domain import ReconciliationStatus
from storefront.observability.metrics import metrics
from storefront.services import catalog
from storefront.services.access import AccessService
from storefront.services.checkout import CheckoutService
from storefront.services.dashboard import DashboardService
from storefront.services.gpt_models import GptModelService
from storefront.services.ledger import AccessLedger
from storefront.services.payment_provider import PaymentProvider
from storefront.services.reconciliation import ReconciliationService
from storefront.services.support_assistant import SupportAssistant

logger = get_logger(__name__)

router = APIRouter()

_WEBHOOK_STATUS = {
    ReconciliationStatus.RECORDED: "processed",
    ReconciliationStatus.ALREADY_PROCESSED: "already_processed",
    ReconciliationStatus.FAILED_RECORDED: "failed_recorded",
    ReconciliationStatus.IGNORED: "ignored",
}


# ============================================================================
# Catalog
# ============================================================================


@router.get("/api/products", response_model=list[ProductResponse])
async def list_products() -> list[ProductResponse]:
    """Products for sale, priced from the catalog."""
    return [
        ProductResponse(
            id=product.product_id,
            name=product.name,
            description=product.description,
            icon=product.icon,
            price=product.price,
            currency=product.currency,
        )
        for product in catalog.list_products()
    ]


@router.get("/api/gpt-models", response_model=list[GptModelResponse])
async def list_gpt_models(db: AsyncSession = Depends(get_read_db)) -> list[GptModelResponse]:
    """Active GPT models."""
    models = await GptModelService(db).list_active()
    return [
        GptModelResponse(
            id=model.id,
            name=model.name,
            description=model.description,
            icon=model.icon,
            required_plan=model.required_plan,
            is_active=model.is_active,
        )
        for model in models
    ]


# ============================================================================
# Checkout & Reconciliation
# ============================================================================


@router.post("/api/create-payment-intent", response_model=CreatePaymentIntentResponse)
async def create_payment_intent(
    request: CreatePaymentIntentRequest,
    db: AsyncSession = Depends(get_write_db),
    current: CurrentUser = Depends(get_current_user),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CreatePaymentIntentResponse:
    """
    Start a purchase.

    The amount always comes from the catalog; the request only names the product.
    """
    service = CheckoutService(db, provider)
    try:
        intent = await service.create_payment_intent(current.user_id, request.product_id)
    except (ProductNotFoundError, ProductAlreadyOwnedError) as exc:
        raise error(status.HTTP_400_BAD_REQUEST, exc) from exc
    except UserNotFoundError as exc:
        raise error(status.HTTP_404_NOT_FOUND, exc, "User not found") from exc
    except PaymentProviderError as exc:
        raise error(
            status.HTTP_503_SERVICE_UNAVAILABLE, exc, "Payment provider unavailable"
        ) from exc

    return CreatePaymentIntentResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.payment_id,
    )


@router.post("/api/confirm-payment", response_model=ConfirmPaymentResponse)
async def confirm_payment(
    request: ConfirmPaymentRequest,
    db: AsyncSession = Depends(get_write_db),
    current: CurrentUser = Depends(get_current_user),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> ConfirmPaymentResponse:
    """
    Record a payment the browser reports as completed.

    Safe to call repeatedly, and safe to race with the gateway webhook: the
    second caller gets ``alreadyProcessed: true``.
    """
    service = ReconciliationService(db, provider)
    try:
        outcome = await service.confirm_client_side_payment(
            request.payment_intent_id, current.user_id
        )
    except PaymentNotSuccessfulError as exc:
        raise error(status.HTTP_400_BAD_REQUEST, exc, "Payment has not completed") from exc
    except PaymentMetadataError as exc:
        raise error(status.HTTP_400_BAD_REQUEST, exc) from exc
    except PaymentOwnershipMismatchError as exc:
        raise error(
            status.HTTP_403_FORBIDDEN, exc, "Payment belongs to a different user"
        ) from exc
    except UserNotFoundError as exc:
        raise error(status.HTTP_404_NOT_FOUND, exc, "User not found") from exc
    except ProductModelMismatchError as exc:
        raise error(status.HTTP_409_CONFLICT, exc) from exc
    except PaymentProviderError as exc:
        raise error(
            status.HTTP_503_SERVICE_UNAVAILABLE, exc, "Payment provider unavailable"
        ) from exc
    except ReconciliationError as exc:
        raise error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            exc,
            "Payment received but access could not be granted yet. It will be retried.",
        ) from exc
    except Exception as exc:
        metrics.record_error(type(exc).__name__, "confirm_payment")
        logger.error(
            "confirm_payment_failed",
            payment_intent_id=request.payment_intent_id,
            user_id=current.user_id,
            error=str(exc),
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment confirmation failed",
        ) from exc

    return ConfirmPaymentResponse(
        success=True,
        already_processed=outcome.already_processed,
        product_id=outcome.product_id,
    )


@router.post("/api/webhooks/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> WebhookResponse:
    """
    Handle Stripe webhook events.

    Authenticated by signature. Returns 200 for anything Stripe should stop
    retrying (including replays and events that cannot be attributed to a
    user), and 5xx when a retry could succeed.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = await provider.verify_webhook(payload, signature)
    except WebhookVerificationError as exc:
        logger.error("stripe_webhook_verification_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        ) from exc

    logger.info(
        "stripe_webhook_received",
        event_id=event.event_id,
        event_type=event.event_type,
        payment_id=event.intent.payment_id if event.intent else None,
    )

    service = ReconciliationService(db, provider)
    try:
        outcome = await service.handle_gateway_event(event)
    except (PaymentMetadataError, UserNotFoundError) as exc:
        # Redelivery cannot fix these; acknowledge and leave them in the log
        logger.error(
            "stripe_webhook_unattributable",
            event_id=event.event_id,
            reason=exc.reason,
            error=str(exc),
        )
        return WebhookResponse(status="rejected", event_id=event.event_id)
    except PaymentProviderError as exc:
        logger.error("stripe_webhook_provider_unavailable", event_id=event.event_id)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider unavailable",
        ) from exc
    except (ProductModelMismatchError, ReconciliationError) as exc:
        logger.error(
            "stripe_webhook_processing_failed",
            event_id=event.event_id,
            reason=exc.reason,
            error=str(exc),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc
    except Exception as exc:
        metrics.record_error(type(exc).__name__, "stripe_webhook")
        logger.error(
            "stripe_webhook_processing_failed",
            event_id=event.event_id,
            event_type=event.event_type,
            payment_intent_id=event.intent.payment_id if event.intent else None,
            error=str(exc),
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    return WebhookResponse(status=_WEBHOOK_STATUS[outcome.status], event_id=event.event_id)


# ============================================================================
# Access
# ============================================================================


@router.post("/api/access-gpt", response_model=AccessGptResponse)
async def access_gpt(
    request: AccessGptRequest,
    db: AsyncSession = Depends(get_write_db),
    current: CurrentUser = Depends(get_current_user),
) -> AccessGptResponse:
    """Open a purchased GPT; counts one use."""
    try:
        result = await AccessService(db).verify_and_use(request.product_id, user_id=current.user_id)
    except (AccessDeniedError, AccessExpiredError) as exc:
        raise error(
            status.HTTP_403_FORBIDDEN, exc, "Purchase required to access this GPT"
        ) from exc
    except (ProductNotFoundError, UserNotFoundError) as exc:
        raise error(status.HTTP_404_NOT_FOUND, exc) from exc

    return AccessGptResponse(
        gpt_url=result.gpt_url,
        product_name=result.product_name,
        total_usage=result.queries_used,
    )


@router.get("/api/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    db: AsyncSession = Depends(get_read_db),
    current: CurrentUser = Depends(get_current_user),
) -> DashboardResponse:
    """Purchases, recent payments and the catalog for the signed-in user."""
    try:
        data = await DashboardService(db).get_dashboard(current.user_id)
    except UserNotFoundError as exc:
        raise error(status.HTTP_404_NOT_FOUND, exc, "User not found") from exc
    return dashboard_response(data)


# ============================================================================
# Support
# ============================================================================


@router.post("/api/ai-support", response_model=SupportResponse)
async def ai_support(
    request: SupportRequest,
    db: AsyncSession = Depends(get_read_db),
    current: CurrentUser = Depends(get_current_user),
    assistant: SupportAssistant = Depends(get_support_assistant),
) -> SupportResponse:
    """Answer a support question, tailored to whether the user has purchases."""
    grants = await AccessLedger(db).list_access(current.user_id)
    answer = await assistant.answer(request.question, has_purchases=bool(grants))
    return SupportResponse(
        response=answer.response,
        next_steps=answer.next_steps,
        severity=answer.severity,
        category=answer.category,
    )


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
