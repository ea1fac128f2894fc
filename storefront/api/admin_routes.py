"""
Admin routes. Every endpoint requires ``users.role == 'admin'``.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.api.dependencies import CurrentUser, require_admin
from storefront.api.responses import error
from storefront.db.session import get_write_db
from storefront.exceptions import (
    ProductAlreadyOwnedError,
    ProductModelMismatchError,
    ProductNotFoundError,
)
from storefront.models.api import AdminGrantAccessRequest, AdminGrantAccessResponse
from storefront.services.admin_grants import AdminGrantService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/grant-access", response_model=AdminGrantAccessResponse)
async def grant_access(
    request: AdminGrantAccessRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: CurrentUser = Depends(require_admin),
) -> AdminGrantAccessResponse:
    """Give a customer complimentary access, creating the account if needed."""
    try:
        result = await AdminGrantService(db).grant(
            email=request.email, product_id=request.product_id, granted_by=admin.user_id
        )
    except ProductNotFoundError as exc:
        raise error(status.HTTP_400_BAD_REQUEST, exc, "Invalid product ID") from exc
    except ProductAlreadyOwnedError as exc:
        raise error(status.HTTP_409_CONFLICT, exc, "User already has access to this GPT") from exc
    except ProductModelMismatchError as exc:
        raise error(status.HTTP_409_CONFLICT, exc) from exc

    return AdminGrantAccessResponse(
        success=True,
        message=f"Access to {result.product_name} granted to {result.user.email}",
        user_id=result.user.user_id,
        user_created=result.user_created,
        access_token=result.grant.access_token,
    )
