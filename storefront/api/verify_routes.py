"""
Cross-system verification routes.

Called by the Custom GPTs' own backends, not by the browser, so there is no
session: the end user is identified by email or by a grant's access code.
Messages on /api/gpt-verify are shown to the end user verbatim and are in
Spanish.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.api.limiter import limiter
from storefront.config import settings
from storefront.db.session import get_write_db
from storefront.exceptions import (
    AccessDeniedError,
    AccessExpiredError,
    ProductNotFoundError,
    UserNotFoundError,
)
from storefront.models.api import (
    GptVerifyRequest,
    GptVerifyResponse,
    VerifyGptAccessRequest,
    VerifyGptAccessResponse,
)
from storefront.observability.metrics import metrics
from storefront.services import catalog
from storefront.services.access import AccessService

logger = get_logger(__name__)

router = APIRouter()


def _gpt_verify_failure(
    status_code: int,
    error: str,
    message: str,
    purchase_url: str | None = None,
) -> JSONResponse:
    body = GptVerifyResponse(
        success=False, error=error, message=message, purchase_url=purchase_url
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


@router.post("/api/gpt-verify/{gpt_name}", response_model=GptVerifyResponse)
@limiter.limit(settings.verify_rate_limit)
async def gpt_verify(
    gpt_name: str,
    request: Request,
    body: GptVerifyRequest,
    db: AsyncSession = Depends(get_write_db),
) -> GptVerifyResponse | JSONResponse:
    """
    Check that the end user bought ``gpt_name`` and count one use.

    ``gpt_name`` is the GPT's slug (its name lowercased, spaces as dashes);
    catalog ids are accepted as well.
    """
    if not body.user_id or not body.email:
        return _gpt_verify_failure(
            status.HTTP_400_BAD_REQUEST,
            "Invalid request",
            "Usuario no válido o falta información requerida.",
        )

    try:
        result = await AccessService(db).verify_and_use(gpt_name, email=body.email)
    except UserNotFoundError:
        return _gpt_verify_failure(
            status.HTTP_404_NOT_FOUND,
            "User not found",
            "Usuario no encontrado. Por favor registrate en ministerioai.com",
        )
    except ProductNotFoundError:
        return _gpt_verify_failure(
            status.HTTP_404_NOT_FOUND,
            "GPT not found",
            f'GPT "{gpt_name}" no encontrado.',
        )
    except AccessDeniedError:
        product = catalog.resolve_tool(gpt_name)
        return _gpt_verify_failure(
            status.HTTP_403_FORBIDDEN,
            "Access denied",
            f'No tienes acceso a "{product.name}". '
            "Visita ministerioai.com para adquirir acceso.",
            purchase_url=f"{settings.public_base_url}/checkout",
        )
    except AccessExpiredError:
        product = catalog.resolve_tool(gpt_name)
        return _gpt_verify_failure(
            status.HTTP_403_FORBIDDEN,
            "Access expired",
            f'Tu acceso a "{product.name}" ha expirado. '
            "Visita ministerioai.com para renovarlo.",
            purchase_url=f"{settings.public_base_url}/checkout",
        )
    except Exception as exc:
        metrics.record_error(type(exc).__name__, "gpt_verify")
        logger.error(
            "gpt_verification_failed",
            gpt_name=gpt_name,
            error=str(exc),
            exc_info=True,
        )
        return _gpt_verify_failure(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error",
            "Error interno del servidor. Por favor intenta nuevamente.",
        )

    logger.info(
        "gpt_verified",
        gpt_name=gpt_name,
        external_user_id=body.user_id,
        queries_used=result.queries_used,
    )
    return GptVerifyResponse(
        success=True,
        message=f'Acceso verificado para "{result.product_name}".',
        gpt_name=result.product_name,
        queries_used=result.queries_used,
    )


@router.post("/api/verify-gpt-access", response_model=VerifyGptAccessResponse)
@limiter.limit(settings.verify_rate_limit)
async def verify_gpt_access(
    request: Request,
    body: VerifyGptAccessRequest,
    db: AsyncSession = Depends(get_write_db),
) -> VerifyGptAccessResponse:
    """Same entitlement check, by email or by access code, for a catalog product."""
    if not body.email and not body.access_code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either email or accessCode is required",
        )

    service = AccessService(db)
    try:
        if body.email:
            result = await service.verify_and_use(body.product_id, email=body.email)
        else:
            result = await service.verify_access_code(body.access_code or "", body.product_id)
    except ProductNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid product ID",
        ) from exc
    except (UserNotFoundError, AccessDeniedError) as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access not granted. Purchase this GPT from your dashboard.",
        ) from exc
    except AccessExpiredError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access has expired. Please renew your purchase.",
        ) from exc

    return VerifyGptAccessResponse(
        success=True,
        product_id=result.product_id,
        product_name=result.product_name,
        gpt_url=result.gpt_url,
        queries_used=result.queries_used,
    )
