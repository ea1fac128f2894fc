"""
Dashboard Service - a user's purchases and what is still for sale.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.domain import CatalogEntry, DashboardData, PurchasedGpt
from storefront.services import catalog
from storefront.services.ledger import AccessLedger
from storefront.services.users import UserService, user_to_domain

RECENT_PAYMENTS_LIMIT = 10


class DashboardService:
    """Read-only aggregation over the ledger and the catalog."""

    def __init__(self, session: AsyncSession) -> None:
        self.ledger = AccessLedger(session)
        self.users = UserService(session)

    async def get_dashboard(self, user_id: str) -> DashboardData:
        """
        Raises:
            UserNotFoundError: Unknown user
        """
        user = await self.users.get_by_id(user_id)
        grants = await self.ledger.list_access(user.id)
        payments = await self.ledger.list_payments(user.id, limit=RECENT_PAYMENTS_LIMIT)

        owned = {grant.model_id for grant in grants}
        available = [
            CatalogEntry(
                product_id=product.product_id,
                name=product.name,
                description=product.description,
                icon=product.icon,
                price=product.price,
                currency=product.currency,
                purchased=product.product_id in owned,
            )
            for product in catalog.list_products()
        ]

        purchased: list[PurchasedGpt] = []
        for grant in grants:
            product = catalog.GPT_PRODUCTS.get(grant.model_id)
            if product is None:
                # Grant for a product since removed from sale
                continue
            purchased.append(
                PurchasedGpt(
                    product_id=product.product_id,
                    name=product.name,
                    description=product.description,
                    icon=product.icon,
                    gpt_url=product.gpt_url,
                    access_token=grant.access_token,
                    queries_used=grant.queries_used,
                    last_accessed=grant.last_accessed,
                    expires_at=grant.expires_at,
                )
            )

        return DashboardData(
            user=user_to_domain(user),
            recent_payments=payments,
            available_products=available,
            purchased_gpts=purchased,
        )
