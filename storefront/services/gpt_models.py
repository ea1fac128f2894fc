"""
GPT model registry - keeps gpt_models rows in step with the catalog.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.db.models import GptModel
from storefront.services.catalog import list_products

logger = get_logger(__name__)


class GptModelService:
    """Lookup and bootstrap of GPT model rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def sync_from_catalog(self) -> list[str]:
        """
        Insert a row for every catalog product that has none.

        Existing rows are left alone so an operator can deactivate a model
        without the next deploy switching it back on.

        Returns:
            Ids of the rows that were inserted
        """
        result = await self.session.execute(select(GptModel.id))
        existing = set(result.scalars().all())

        inserted: list[str] = []
        for product in list_products():
            if product.product_id in existing:
                continue
            self.session.add(
                GptModel(
                    id=product.product_id,
                    name=product.name,
                    description=product.description,
                    icon=product.icon,
                    required_plan="basic",
                    is_active=True,
                )
            )
            inserted.append(product.product_id)

        if not inserted:
            return []

        try:
            await self.session.commit()
        except IntegrityError:
            # Another worker bootstrapped concurrently
            await self.session.rollback()
            logger.info("gpt_models_sync_raced")
            return []

        logger.info("gpt_models_synced", inserted=inserted)
        return inserted

    async def get_active(self, model_id: str) -> GptModel | None:
        """Active model by id, None when missing or deactivated."""
        model = await self.session.get(GptModel, model_id)
        if model is None or not model.is_active:
            return None
        return model

    async def list_active(self) -> list[GptModel]:
        """All active models ordered by name."""
        stmt = select(GptModel).where(GptModel.is_active.is_(True)).order_by(GptModel.name)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
